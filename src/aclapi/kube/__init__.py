"""Kubernetes connection helpers and target resource clients."""

from aclapi.kube.connection import kube_config_for_cluster, new_api_client
from aclapi.kube.patch import create_merge_patch
from aclapi.kube.resources import CronJobClient, ResourceClient, TsuruAppClient

__all__ = [
    "CronJobClient",
    "ResourceClient",
    "TsuruAppClient",
    "create_merge_patch",
    "kube_config_for_cluster",
    "new_api_client",
]
