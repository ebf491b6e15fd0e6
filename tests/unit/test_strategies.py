"""
Unit tests for reconciliation strategies.

Tests cover:
- Annotation stamping for apps and jobs
- Grace and cooldown windows
- Rules a strategy ignores
- The strategy registry
"""

from datetime import UTC, datetime, timedelta
from typing import Any, Callable

import pytest

from aclapi.config import AclConfig
from aclapi.errors import StrategyNotFoundError
from aclapi.resolver import LogicCache
from aclapi.schema import ExternalIPRule, Rule, RuleType, TsuruAppRule
from aclapi.strategies import (
    APP_STRATEGY_NAME,
    JOB_STRATEGY_NAME,
    LAST_UPDATED_ANNOTATION,
    AppOperatorStrategy,
    JobOperatorStrategy,
    Strategy,
    StrategyRegistry,
    available_strategies,
    registry_from_config,
)
from aclapi.strategies.annotation import format_timestamp, parse_timestamp


@pytest.fixture
def app_strategy(resources: Any, clock: Any, cache_factory: Callable[..., LogicCache]) -> AppOperatorStrategy:
    strategy = AppOperatorStrategy(lambda target: resources, "tsuru", clock=clock)
    strategy.before_batch(cache_factory())
    return strategy


@pytest.fixture
def old_rule(make_rule: Callable[..., Rule], clock: Any) -> Callable[..., Rule]:
    """Rules created an hour before the clock's now."""

    def factory(**kwargs: Any) -> Rule:
        return make_rule(created=clock.now - timedelta(hours=1), **kwargs)

    return factory


# =============================================================================
# Timestamps
# =============================================================================


class TestTimestamps:
    """Tests for annotation timestamp helpers."""

    def test_format(self, clock: Any) -> None:
        assert format_timestamp(clock.now) == "2024-05-01T12:00:00Z"

    def test_round_trip(self, clock: Any) -> None:
        assert parse_timestamp(format_timestamp(clock.now)) == clock.now

    def test_unparseable(self) -> None:
        assert parse_timestamp("yesterday") is None

    @pytest.mark.parametrize(
        "value",
        ["2999-01-01", "2999-01-01 00:00:00", "29990101T000000", "2999-01-01T00:00:00", "2999-01-01T00:00:00Z\n"],
    )
    def test_partial_iso_forms_rejected(self, value: str) -> None:
        assert parse_timestamp(value) is None

    def test_offset_accepted(self) -> None:
        parsed = parse_timestamp("2024-05-01T14:00:00+02:00")
        assert parsed is not None
        assert parsed == datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


# =============================================================================
# App Strategy
# =============================================================================


class TestAppOperatorStrategy:
    """Tests for the App annotation strategy."""

    def test_missing_annotation_is_added(
        self, app_strategy: AppOperatorStrategy, resources: Any, old_rule: Callable[..., Rule]
    ) -> None:
        resources.add("tsuru", "app1")
        result = app_strategy.reconcile(old_rule(app="app1"))
        assert result == "triggered acl-operator"
        assert resources.annotations("tsuru", "app1") == {LAST_UPDATED_ANNOTATION: "2024-05-01T12:00:00Z"}
        [(_, _, patch)] = resources.patches
        assert patch == {"metadata": {"annotations": {LAST_UPDATED_ANNOTATION: "2024-05-01T12:00:00Z"}}}

    def test_other_annotations_kept(
        self, app_strategy: AppOperatorStrategy, resources: Any, old_rule: Callable[..., Rule]
    ) -> None:
        resources.add("tsuru", "app1", annotations={"team": "a"})
        app_strategy.reconcile(old_rule(app="app1"))
        assert resources.annotations("tsuru", "app1")["team"] == "a"

    def test_cooldown(
        self, app_strategy: AppOperatorStrategy, resources: Any, old_rule: Callable[..., Rule], clock: Any
    ) -> None:
        """A second reconcile inside the cooldown doesn't patch again."""
        resources.add("tsuru", "app1")
        rule = old_rule(app="app1")
        app_strategy.reconcile(rule)
        clock.advance(timedelta(seconds=30))
        assert app_strategy.reconcile(rule) == "triggered acl-operator in the last minute"
        assert len(resources.patches) == 1

        clock.advance(timedelta(seconds=31))
        assert app_strategy.reconcile(rule) == "triggered acl-operator"
        assert len(resources.patches) == 2

    def test_stale_and_fresh_stamps(
        self, app_strategy: AppOperatorStrategy, resources: Any, old_rule: Callable[..., Rule], clock: Any
    ) -> None:
        resources.add("tsuru", "app1")
        resources.add("tsuru", "app2", annotations={LAST_UPDATED_ANNOTATION: format_timestamp(clock.now - timedelta(seconds=30))})
        resources.add("tsuru", "app3", annotations={LAST_UPDATED_ANNOTATION: format_timestamp(clock.now - timedelta(minutes=30))})

        for app in ("app1", "app2", "app3"):
            app_strategy.reconcile(old_rule(app=app))

        assert [name for _, name, _ in resources.patches] == ["app1", "app3"]
        now = format_timestamp(clock.now)
        assert resources.annotations("tsuru", "app3")[LAST_UPDATED_ANNOTATION] == now

    def test_grace_for_new_rules(
        self, app_strategy: AppOperatorStrategy, resources: Any, make_rule: Callable[..., Rule], clock: Any
    ) -> None:
        """A rule created around the stored stamp refreshes it, cooldown or not."""
        stamp = clock.now - timedelta(seconds=10)
        resources.add("tsuru", "app1", annotations={LAST_UPDATED_ANNOTATION: format_timestamp(stamp)})
        rule = make_rule(app="app1", created=clock.now - timedelta(seconds=20))
        assert app_strategy.reconcile(rule) == "triggered acl-operator"

    def test_unparseable_stamp(
        self, app_strategy: AppOperatorStrategy, resources: Any, old_rule: Callable[..., Rule]
    ) -> None:
        resources.add("tsuru", "app1", annotations={LAST_UPDATED_ANNOTATION: "garbage"})
        assert app_strategy.reconcile(old_rule(app="app1")) == "triggered acl-operator"

    def test_date_only_future_stamp(
        self, app_strategy: AppOperatorStrategy, resources: Any, old_rule: Callable[..., Rule]
    ) -> None:
        resources.add("tsuru", "app1", annotations={LAST_UPDATED_ANNOTATION: "2999-01-01"})
        assert app_strategy.reconcile(old_rule(app="app1")) == "triggered acl-operator"

    def test_missing_resource(
        self, app_strategy: AppOperatorStrategy, resources: Any, old_rule: Callable[..., Rule]
    ) -> None:
        assert app_strategy.reconcile(old_rule(app="app1")) is None
        assert resources.patches == []

    def test_unresolved_source(
        self, resources: Any, clock: Any, cache_factory: Callable[..., LogicCache], old_rule: Callable[..., Rule]
    ) -> None:
        """Sources outside kubernetes are left alone."""
        strategy = AppOperatorStrategy(lambda target: resources, "tsuru", clock=clock)
        strategy.before_batch(cache_factory(resolved=None))
        resources.add("tsuru", "app1")
        assert strategy.reconcile(old_rule(app="app1")) is None
        assert resources.gets == []

    def test_pool_source_ignored(self, app_strategy: AppOperatorStrategy, resources: Any) -> None:
        rule = Rule(
            source=RuleType(tsuru_app=TsuruAppRule(pool_name="pool1")),
            destination=RuleType(external_ip=ExternalIPRule(ip="10.0.0.1")),
        )
        assert app_strategy.reconcile(rule) is None
        assert resources.gets == []

    def test_other_source_kinds_ignored(
        self, app_strategy: AppOperatorStrategy, old_rule: Callable[..., Rule], resolve_calls: list[str]
    ) -> None:
        assert app_strategy.reconcile(old_rule(job="job1")) is None
        assert resolve_calls == []

    def test_removed_rule_still_stamps(
        self, app_strategy: AppOperatorStrategy, resources: Any, old_rule: Callable[..., Rule]
    ) -> None:
        resources.add("tsuru", "app1")
        assert app_strategy.reconcile(old_rule(app="app1", removed=True)) == "triggered acl-operator"

    def test_reconcile_outside_pass(self, resources: Any, old_rule: Callable[..., Rule]) -> None:
        strategy = AppOperatorStrategy(lambda target: resources, "tsuru")
        with pytest.raises(RuntimeError):
            strategy.reconcile(old_rule(app="app1"))

    def test_after_batch_drops_cache(self, app_strategy: AppOperatorStrategy, old_rule: Callable[..., Rule]) -> None:
        app_strategy.after_batch()
        with pytest.raises(RuntimeError):
            app_strategy.reconcile(old_rule(app="app1"))


# =============================================================================
# Job Strategy
# =============================================================================


class TestJobOperatorStrategy:
    """Tests for the CronJob annotation strategy."""

    def test_pool_namespace(
        self,
        job_resources: Any,
        clock: Any,
        cache_factory: Callable[..., LogicCache],
        old_rule: Callable[..., Rule],
    ) -> None:
        strategy = JobOperatorStrategy(lambda target: job_resources, "tsuru", clock=clock)
        strategy.before_batch(cache_factory())
        job_resources.add("tsuru-pool1", "job1")

        assert strategy.reconcile(old_rule(job="job1")) == "triggered acl-operator-job"
        assert LAST_UPDATED_ANNOTATION in job_resources.annotations("tsuru-pool1", "job1")

    def test_app_sources_ignored(
        self,
        job_resources: Any,
        cache_factory: Callable[..., LogicCache],
        old_rule: Callable[..., Rule],
    ) -> None:
        strategy = JobOperatorStrategy(lambda target: job_resources, "tsuru")
        strategy.before_batch(cache_factory())
        assert strategy.reconcile(old_rule(app="app1")) is None


# =============================================================================
# Registry
# =============================================================================


class NamedStrategy(Strategy):
    def __init__(self, name: str) -> None:
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def reconcile(self, rule: Rule) -> Any:
        return None


class TestStrategyRegistry:
    """Tests for StrategyRegistry."""

    def test_build_returns_fresh_instances(self) -> None:
        registry = StrategyRegistry()
        registry.enable(lambda: NamedStrategy("a"))
        registry.enable(lambda: NamedStrategy("b"))
        first, second = registry.build(), registry.build()
        assert [s.name for s in first] == ["a", "b"]
        assert first[0] is not second[0]
        assert len(registry) == 2
        assert registry.names() == ["a", "b"]

    def test_empty(self) -> None:
        assert StrategyRegistry().build() == []

    def test_non_callable(self) -> None:
        with pytest.raises(ValueError):
            StrategyRegistry().enable("acl-operator")  # type: ignore[arg-type]

    def test_repr(self) -> None:
        registry = StrategyRegistry()
        registry.enable(lambda: NamedStrategy("a"))
        assert repr(registry) == "<StrategyRegistry: [a]>"

    def test_available_strategies(self, resources: Any) -> None:
        factories = available_strategies("tsuru", app_client_factory=lambda t: resources)
        assert set(factories) == {APP_STRATEGY_NAME, JOB_STRATEGY_NAME}
        assert isinstance(factories[APP_STRATEGY_NAME](), AppOperatorStrategy)

    def test_from_config(self) -> None:
        config = AclConfig(engines=[JOB_STRATEGY_NAME, APP_STRATEGY_NAME])
        assert registry_from_config(config).names() == [JOB_STRATEGY_NAME, APP_STRATEGY_NAME]

    def test_from_config_namespace(self) -> None:
        config = AclConfig.model_validate({"kubernetes": {"namespace": "custom"}})
        [strategy] = registry_from_config(config).build()
        assert strategy.namespace == "custom"

    def test_unknown_engine(self) -> None:
        with pytest.raises(StrategyNotFoundError) as exc_info:
            registry_from_config(AclConfig(engines=["nope"]))
        assert exc_info.value.available == [APP_STRATEGY_NAME, JOB_STRATEGY_NAME]
