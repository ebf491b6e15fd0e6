"""
Sync coordinator for aclapi.

A pass takes a list of rules and applies every enabled strategy to each
of them. Strategies run concurrently, one thread per strategy; within a
strategy, rules are processed one at a time in the given order.

Per rule and strategy:
    1. Ask the strategy whether it accepts the rule
    2. Take the (rule, engine) lock; a locked rule is silently skipped
    3. Skip reconciliation of a removed rule whose latest successful
       outcome already recorded the removal
    4. Otherwise reconcile
    5. Release the lock, recording the outcome

Failures are isolated: an error on one rule is logged, counted and
recorded as that rule's outcome, and the pass moves on.
"""

import json
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Callable

from aclapi.errors import SyncStorageLockedError
from aclapi.log import get_logger
from aclapi.metrics import FULL_SYNC_DURATION, RULE_SYNC_DURATION, RULE_SYNC_FAILURES
from aclapi.resolver import LogicCache
from aclapi.schema import Rule, RuleSyncData
from aclapi.strategies import Strategy, StrategyRegistry
from aclapi.sync.service import SyncService

logger = get_logger(__name__)

DEFAULT_SYNC_INTERVAL = timedelta(minutes=1)


class RuleSyncStatus(str, Enum):
    """Outcome of one rule under one strategy."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NOT_ALLOWED = "not_allowed"
    LOCKED = "locked"
    ALREADY_REMOVED = "already_removed"


@dataclass
class RuleSyncResult:
    """
    Result of syncing a single rule with a single strategy.

    Attributes:
        rule_id: Rule that was considered
        engine: Strategy name
        status: Outcome status
        result: Serialized reconcile result, empty when there was none
        error: Error message if failed
        duration_ms: Time spent on the rule in milliseconds
    """

    rule_id: str
    engine: str
    status: RuleSyncStatus = RuleSyncStatus.SUCCEEDED
    result: str = ""
    error: str | None = None
    duration_ms: float = 0.0


@dataclass
class StrategyPassResult:
    """Results of one strategy over the whole rule list."""

    engine: str
    rules: list[RuleSyncResult] = field(default_factory=list)
    duration_ms: float = 0.0

    def count(self, status: RuleSyncStatus) -> int:
        return sum(1 for r in self.rules if r.status == status)

    @property
    def failed(self) -> int:
        return self.count(RuleSyncStatus.FAILED)


@dataclass
class PassResult:
    """
    Result of a complete pass.

    Attributes:
        rules_considered: Number of rules handed to the pass
        strategies: Per-strategy results, in registry order
        duration_ms: Total pass time in milliseconds
    """

    rules_considered: int
    strategies: list[StrategyPassResult] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def failed(self) -> int:
        """Number of failed (rule, strategy) pairs."""
        return sum(s.failed for s in self.strategies)

    @property
    def success(self) -> bool:
        """Whether no rule failed under any strategy."""
        return self.failed == 0

    def for_engine(self, engine: str) -> StrategyPassResult | None:
        for result in self.strategies:
            if result.engine == engine:
                return result
        return None


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _marshal(obj: Any) -> str:
    try:
        return json.dumps(obj, default=str)
    except (TypeError, ValueError):
        return ""


class SyncCoordinator:
    """
    Applies the enabled strategies to a set of rules.

    Usage:
        coordinator = SyncCoordinator(sync_service, registry, cache_factory)
        result = coordinator.sync_rules(rules, force=False)

    Attributes:
        service: Rule lookups and lock handling
        registry: Enabled strategies
        cache_factory: Creates the per-pass resolution cache
        interval: Minimum time between two syncs of the same rule
    """

    def __init__(
        self,
        service: SyncService,
        registry: StrategyRegistry,
        cache_factory: Callable[[], LogicCache],
        interval: timedelta = DEFAULT_SYNC_INTERVAL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.service = service
        self.registry = registry
        self.cache_factory = cache_factory
        self.interval = interval
        self._clock = clock

    def sync_rules(self, rules: list[Rule], force: bool = False) -> PassResult:
        """
        Run one pass over rules with a fresh resolution cache.

        Args:
            rules: Rules to sync, in processing order
            force: Ignore the recent-sync check when taking locks

        Returns:
            PassResult summarizing every strategy's outcomes
        """
        return self.sync_batch(rules, self.registry.build(), force)

    def sync_batch(
        self,
        rules: list[Rule],
        strategies: list[Strategy],
        force: bool = False,
    ) -> PassResult:
        """
        Run one pass over rules with the given strategy instances.

        Blocks until every strategy has finished. Errors on individual
        rules never propagate out of this method.
        """
        start = time.perf_counter()
        cache = self.cache_factory()
        try:
            results: list[StrategyPassResult] = []
            if strategies:
                with ThreadPoolExecutor(
                    max_workers=len(strategies),
                    thread_name_prefix="aclapi-sync",
                ) as pool:
                    futures = [
                        pool.submit(self._strategy_pass, strategy, rules, cache, force)
                        for strategy in strategies
                    ]
                    results = [future.result() for future in futures]
        finally:
            cache.close()

        return PassResult(
            rules_considered=len(rules),
            strategies=results,
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    # =========================================================================
    # Per-strategy pass
    # =========================================================================

    def _strategy_pass(
        self,
        strategy: Strategy,
        rules: list[Rule],
        cache: LogicCache,
        force: bool,
    ) -> StrategyPassResult:
        log = logger.bind(engine=strategy.name)
        start = time.perf_counter()
        pass_result = StrategyPassResult(engine=strategy.name)

        try:
            strategy.before_batch(cache)
        except Exception:
            log.exception("unable to run before sync")

        for rule in rules:
            rule_log = log.bind(ruleid=rule.rule_id)
            rule_log.info("Starting single rule sync")
            rule_start = time.perf_counter()

            result = self._sync_rule(rule_log, strategy, rule, force)

            elapsed = time.perf_counter() - rule_start
            result.duration_ms = elapsed * 1000
            RULE_SYNC_DURATION.labels(engine=strategy.name).observe(elapsed)
            if result.status == RuleSyncStatus.FAILED:
                RULE_SYNC_FAILURES.labels(engine=strategy.name).inc()
                rule_log.error(f"error syncing rule {rule}: {result.error}")
            pass_result.rules.append(result)

        try:
            strategy.after_batch()
        except Exception:
            log.exception("unable to run after sync")

        elapsed = time.perf_counter() - start
        pass_result.duration_ms = elapsed * 1000
        FULL_SYNC_DURATION.labels(engine=strategy.name).observe(elapsed)
        return pass_result

    def _sync_rule(
        self,
        log: Any,
        strategy: Strategy,
        rule: Rule,
        force: bool,
    ) -> RuleSyncResult:
        result = RuleSyncResult(rule_id=rule.rule_id, engine=strategy.name)

        try:
            if not strategy.allowed(rule):
                log.debug("rule not handled by engine")
                result.status = RuleSyncStatus.NOT_ALLOWED
                return result
            _, info = self.service.sync_start(self.interval, rule.rule_id, strategy.name, force)
        except SyncStorageLockedError:
            result.status = RuleSyncStatus.LOCKED
            return result
        except Exception as e:
            result.status = RuleSyncStatus.FAILED
            result.error = str(e)
            return result

        log = log.bind(syncid=info.sync_id)
        start_time = self._clock()
        latest = info.latest_sync()
        try:
            if rule.removed and latest is not None and latest.removed and latest.successful:
                result.status = RuleSyncStatus.ALREADY_REMOVED
            else:
                obj = strategy.reconcile(rule)
                if obj is not None:
                    result.result = _marshal(obj)
        except Exception as e:
            result.status = RuleSyncStatus.FAILED
            result.error = str(e)

        data = RuleSyncData(
            start_time=start_time,
            end_time=self._clock(),
            successful=result.error is None,
            removed=rule.removed,
            error=result.error or "",
            sync_result=result.result,
        )
        try:
            self.service.sync_end(info, data)
        except Exception:
            log.exception("unable to mark sync end")
        return result
