"""Persistent storage for rules and sync locks."""

from aclapi.store.db import AclDB
from aclapi.store.rules import DeleteOpts, FindOpts, RuleStore
from aclapi.store.syncs import DEFAULT_LOCK_EXPIRE, SYNC_HISTORY_LIMIT, SyncFindOpts, SyncStore

__all__ = [
    "AclDB",
    "DEFAULT_LOCK_EXPIRE",
    "DeleteOpts",
    "FindOpts",
    "RuleStore",
    "SYNC_HISTORY_LIMIT",
    "SyncFindOpts",
    "SyncStore",
]
