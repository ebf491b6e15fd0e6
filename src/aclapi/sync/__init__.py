"""Sync coordination: lock keep-alive, passes and the periodic loop."""

from aclapi.sync.coordinator import (
    PassResult,
    RuleSyncResult,
    RuleSyncStatus,
    StrategyPassResult,
    SyncCoordinator,
)
from aclapi.sync.driver import PeriodicDriver
from aclapi.sync.keepalive import LockKeepAlive
from aclapi.sync.service import SyncService

__all__ = [
    "LockKeepAlive",
    "PassResult",
    "PeriodicDriver",
    "RuleSyncResult",
    "RuleSyncStatus",
    "StrategyPassResult",
    "SyncCoordinator",
    "SyncService",
]
