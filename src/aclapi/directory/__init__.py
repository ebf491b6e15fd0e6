"""Endpoint directory (tsuru API) client."""

from aclapi.directory.client import (
    AppInfo,
    ClusterInfo,
    ClusterKubeConfig,
    JobInfo,
    PoolInfo,
    TsuruClient,
)

__all__ = [
    "AppInfo",
    "ClusterInfo",
    "ClusterKubeConfig",
    "JobInfo",
    "PoolInfo",
    "TsuruClient",
]
