"""
The storage side of a sync, as seen by the coordinator and the driver.

SyncService couples the lock store with the keep-alive: a lock taken by
sync_start() is pinged until sync_end() releases it.
"""

from datetime import timedelta

from aclapi.schema import Rule, RuleSyncData, RuleSyncInfo
from aclapi.store import FindOpts, RuleStore, SyncStore
from aclapi.sync.keepalive import LockKeepAlive


class SyncService:
    """Rule lookups and lock start/end with keep-alive registration."""

    def __init__(self, rules: RuleStore, syncs: SyncStore, keepalive: LockKeepAlive) -> None:
        self.rules = rules
        self.syncs = syncs
        self.keepalive = keepalive

    def find_all(self) -> list[Rule]:
        """Every stored rule, removed ones included."""
        return self.rules.find_all(FindOpts())

    def find_active(self) -> list[Rule]:
        """Every stored rule not flagged as removed."""
        return [rule for rule in self.find_all() if not rule.removed]

    def sync_start(
        self,
        after: timedelta,
        rule_id: str,
        engine: str,
        force: bool = False,
    ) -> tuple[timedelta, RuleSyncInfo]:
        """
        Take the lock and start pinging it.

        Raises:
            SyncStorageLockedError: If the lock is held or synced too recently
        """
        retry_after, info = self.syncs.start_sync(after, rule_id, engine, force)
        self.keepalive.enqueue(info.sync_id)
        return retry_after, info

    def sync_end(self, info: RuleSyncInfo, data: RuleSyncData) -> None:
        """Stop pinging the lock, then release it with the outcome."""
        self.keepalive.dequeue(info.sync_id)
        self.syncs.end_sync(info, data)
