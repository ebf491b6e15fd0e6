"""
End-to-end tests for sync passes.

Rules are stored in a real SQLite database and synced by the built-in
strategies against in-memory resources. Only the cluster API and the
directory are faked.

Tests cover:
- Annotating app and job resources in one pass
- Recording outcomes for every (rule, strategy) pair
- Removal of deleted rules, recorded once
- The periodic driver over the same wiring
"""

import json
import time
from datetime import timedelta
from typing import Any, Callable, Generator

import pytest

from aclapi.config import AclConfig
from aclapi.resolver import LogicCache
from aclapi.schema import ExternalDNSRule, Rule, RuleType
from aclapi.service import RuleService
from aclapi.store import RuleStore, SyncFindOpts, SyncStore
from aclapi.strategies import (
    APP_STRATEGY_NAME,
    JOB_STRATEGY_NAME,
    LAST_UPDATED_ANNOTATION,
    registry_from_config,
)
from aclapi.sync import LockKeepAlive, PeriodicDriver, RuleSyncStatus, SyncCoordinator, SyncService


@pytest.fixture
def keepalive(sync_store: SyncStore) -> Generator[LockKeepAlive, None, None]:
    keepalive = LockKeepAlive(sync_store.ping_syncs, interval=0.05)
    keepalive.run()
    yield keepalive
    keepalive.stop()


@pytest.fixture
def sync_service(rule_store: RuleStore, sync_store: SyncStore, keepalive: LockKeepAlive) -> SyncService:
    return SyncService(rule_store, sync_store, keepalive)


@pytest.fixture
def rule_service(rule_store: RuleStore, sync_store: SyncStore) -> RuleService:
    return RuleService(rule_store, sync_store)


@pytest.fixture
def coordinator(
    sync_service: SyncService,
    resources: Any,
    job_resources: Any,
    cache_factory: Callable[..., LogicCache],
) -> SyncCoordinator:
    config = AclConfig(engines=[APP_STRATEGY_NAME, JOB_STRATEGY_NAME])
    registry = registry_from_config(
        config,
        app_client_factory=lambda target: resources,
        job_client_factory=lambda target: job_resources,
    )
    return SyncCoordinator(sync_service, registry, cache_factory, interval=timedelta(minutes=1))


@pytest.fixture
def stored_rules(rule_service: RuleService, make_rule: Callable[..., Rule]) -> list[Rule]:
    dns = RuleType(external_dns=ExternalDNSRule(name="api.example.com"))
    return rule_service.save(
        [
            make_rule(app="app1", rule_name="app1-to-api", destination=dns),
            make_rule(job="job1", rule_name="job1-to-api", destination=dns),
            make_rule(app="app2", rule_name="app2-to-ip"),
        ]
    )


def _outcomes(sync_store: SyncStore, rule_id: str, engine: str) -> list[Any]:
    records = sync_store.find(SyncFindOpts(rule_ids=[rule_id], engines=[engine]))
    return records[0].syncs if records else []


class TestSyncPass:
    """Tests for complete passes."""

    def test_pass_annotates_sources(
        self,
        coordinator: SyncCoordinator,
        rule_service: RuleService,
        stored_rules: list[Rule],
        resources: Any,
        job_resources: Any,
        sync_store: SyncStore,
    ) -> None:
        resources.add("tsuru", "app1")
        job_resources.add("tsuru-pool1", "job1")

        result = coordinator.sync_rules(rule_service.find_active())

        assert result.success
        assert result.rules_considered == 3
        assert LAST_UPDATED_ANNOTATION in resources.annotations("tsuru", "app1")
        assert LAST_UPDATED_ANNOTATION in job_resources.annotations("tsuru-pool1", "job1")

        app_rule, job_rule, missing_rule = stored_rules
        [outcome] = _outcomes(sync_store, app_rule.rule_id, APP_STRATEGY_NAME)
        assert outcome.successful
        assert json.loads(outcome.sync_result) == "triggered acl-operator"
        [outcome] = _outcomes(sync_store, job_rule.rule_id, JOB_STRATEGY_NAME)
        assert json.loads(outcome.sync_result) == "triggered acl-operator-job"
        # app2 has no App resource: nothing to do, still a successful outcome
        [outcome] = _outcomes(sync_store, missing_rule.rule_id, APP_STRATEGY_NAME)
        assert outcome.successful
        assert outcome.sync_result == ""

    def test_every_pair_recorded(
        self, coordinator: SyncCoordinator, stored_rules: list[Rule], sync_store: SyncStore
    ) -> None:
        coordinator.sync_rules(stored_rules)
        records = sync_store.find()
        assert len(records) == len(stored_rules) * 2
        assert all(not info.running for info in records)

    def test_source_resolved_once_per_pass(
        self,
        coordinator: SyncCoordinator,
        rule_service: RuleService,
        make_rule: Callable[..., Rule],
        resolve_calls: list[str],
    ) -> None:
        rules = rule_service.save([make_rule(app="app1"), make_rule(app="app1"), make_rule(app="app1")])
        coordinator.sync_rules(rules)
        assert resolve_calls == ["resolve"]

    def test_second_pass_within_interval_is_skipped(
        self, coordinator: SyncCoordinator, stored_rules: list[Rule], resources: Any
    ) -> None:
        resources.add("tsuru", "app1")
        coordinator.sync_rules(stored_rules)
        result = coordinator.sync_rules(stored_rules)

        assert result.for_engine(APP_STRATEGY_NAME).count(RuleSyncStatus.LOCKED) == 3
        assert len(resources.patches) == 1

    def test_failure_recorded(
        self,
        coordinator: SyncCoordinator,
        stored_rules: list[Rule],
        resources: Any,
        sync_store: SyncStore,
    ) -> None:
        def broken_patch(namespace: str, name: str, patch: dict[str, Any]) -> dict[str, Any]:
            msg = "admission webhook denied the request"
            raise RuntimeError(msg)

        resources.add("tsuru", "app1")
        resources.patch = broken_patch
        result = coordinator.sync_rules(stored_rules)

        assert result.failed == 1
        [outcome] = _outcomes(sync_store, stored_rules[0].rule_id, APP_STRATEGY_NAME)
        assert not outcome.successful
        assert outcome.error == "admission webhook denied the request"


class TestRemoval:
    """Tests for deleted rules."""

    def test_removal_reconciled_once(
        self,
        coordinator: SyncCoordinator,
        rule_service: RuleService,
        stored_rules: list[Rule],
        resources: Any,
        sync_store: SyncStore,
    ) -> None:
        resources.add("tsuru", "app1")
        app_rule = stored_rules[0]
        rule_service.delete(app_rule.rule_id)
        removed = [rule_service.find_by_id(app_rule.rule_id)]

        first = coordinator.sync_rules(removed, force=True)
        second = coordinator.sync_rules(removed, force=True)

        app_pass = first.for_engine(APP_STRATEGY_NAME)
        assert app_pass.rules[0].status == RuleSyncStatus.SUCCEEDED
        assert second.for_engine(APP_STRATEGY_NAME).rules[0].status == RuleSyncStatus.ALREADY_REMOVED
        assert len(resources.patches) == 1

        outcomes = _outcomes(sync_store, app_rule.rule_id, APP_STRATEGY_NAME)
        assert [o.removed for o in outcomes] == [True, True]

    def test_removed_rules_not_active(
        self, rule_service: RuleService, stored_rules: list[Rule]
    ) -> None:
        rule_service.delete(stored_rules[0].rule_id)
        assert stored_rules[0].rule_id not in {r.rule_id for r in rule_service.find_active()}


class TestPeriodicDriver:
    """Tests for the driver over real storage."""

    def test_driver_syncs_active_rules(
        self,
        coordinator: SyncCoordinator,
        sync_service: SyncService,
        stored_rules: list[Rule],
        resources: Any,
        sync_store: SyncStore,
    ) -> None:
        resources.add("tsuru", "app1")
        driver = PeriodicDriver(coordinator, sync_service, interval=0.05)
        thread = driver.start()

        deadline = time.monotonic() + 5
        while len(sync_store.find()) < len(stored_rules) * 2 and time.monotonic() < deadline:
            time.sleep(0.02)
        driver.shutdown_periodic_sync(timeout=5)
        thread.join(5)

        assert not thread.is_alive()
        assert len(sync_store.find()) == len(stored_rules) * 2
        assert LAST_UPDATED_ANNOTATION in resources.annotations("tsuru", "app1")
