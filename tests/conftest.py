"""
Pytest configuration and fixtures for aclapi tests.

This module provides shared fixtures used across unit and integration
tests: temporary databases, rule factories, an in-memory resource client
and a resolution cache that never talks to the directory.
"""

import copy
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Generator

import pytest

from aclapi.kube import ResourceClient
from aclapi.resolver import LogicCache
from aclapi.schema import (
    EndpointKind,
    ExternalIPRule,
    ResolvedTarget,
    Rule,
    RuleType,
    TsuruAppRule,
    TsuruJobRule,
)
from aclapi.store import AclDB, RuleStore, SyncStore


# =============================================================================
# Storage
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path of a database file that doesn't exist yet."""
    return tmp_path / "acl.db"


@pytest.fixture
def db(db_path: Path) -> Generator[AclDB, None, None]:
    """Initialized database."""
    database = AclDB(db_path)
    database.init_schema()
    yield database
    database.close()


@pytest.fixture
def rule_store(db: AclDB) -> RuleStore:
    return RuleStore(db)


@pytest.fixture
def sync_store(db: AclDB) -> SyncStore:
    return SyncStore(db)


# =============================================================================
# Rules
# =============================================================================


def app_endpoint(app_name: str = "", pool_name: str = "") -> RuleType:
    return RuleType(tsuru_app=TsuruAppRule(app_name=app_name, pool_name=pool_name))


def job_endpoint(job_name: str) -> RuleType:
    return RuleType(tsuru_job=TsuruJobRule(job_name=job_name))


def ip_endpoint(ip: str = "10.0.0.1") -> RuleType:
    return RuleType(external_ip=ExternalIPRule(ip=ip))


@pytest.fixture
def make_rule() -> Callable[..., Rule]:
    """
    Factory for rules.

    The source is a tsuru app (app=...) or job (job=...); the destination
    is an external IP unless given.
    """

    def factory(
        app: str = "",
        job: str = "",
        destination: RuleType | None = None,
        created: datetime | None = None,
        **kwargs: Any,
    ) -> Rule:
        source = job_endpoint(job) if job else app_endpoint(app or "app1")
        rule = Rule(source=source, destination=destination or ip_endpoint(), **kwargs)
        if created is not None:
            rule.created = created
        return rule

    return factory


# =============================================================================
# Targets and Resources
# =============================================================================


class FakeResourceClient(ResourceClient):
    """In-memory resources keyed by (namespace, name), recording patches."""

    kind = "Fake"

    def __init__(self) -> None:
        self.resources: dict[tuple[str, str], dict[str, Any]] = {}
        self.patches: list[tuple[str, str, dict[str, Any]]] = []
        self.gets: list[tuple[str, str]] = []

    def add(self, namespace: str, name: str, annotations: dict[str, str] | None = None) -> None:
        metadata: dict[str, Any] = {"name": name, "namespace": namespace}
        if annotations is not None:
            metadata["annotations"] = dict(annotations)
        self.resources[(namespace, name)] = {"metadata": metadata, "spec": {"replicas": 1}}

    def annotations(self, namespace: str, name: str) -> dict[str, str]:
        return self.resources[(namespace, name)]["metadata"].get("annotations") or {}

    def get(self, namespace: str, name: str) -> dict[str, Any] | None:
        self.gets.append((namespace, name))
        resource = self.resources.get((namespace, name))
        return copy.deepcopy(resource) if resource is not None else None

    def patch(self, namespace: str, name: str, patch: dict[str, Any]) -> dict[str, Any]:
        self.patches.append((namespace, name, patch))
        resource = self.resources[(namespace, name)]
        apply_merge_patch(resource, patch)
        return copy.deepcopy(resource)


def apply_merge_patch(target: dict[str, Any], patch: dict[str, Any]) -> None:
    for key, value in patch.items():
        if value is None:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            apply_merge_patch(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class StaticLogic:
    """Resolves every descriptor to the same target and counts calls."""

    def __init__(self, target: ResolvedTarget | None, calls: list[str]) -> None:
        self.target = target
        self.calls = calls
        self.friendly_name = "static"

    def resolve(self) -> ResolvedTarget | None:
        self.calls.append("resolve")
        return self.target


@pytest.fixture
def target() -> ResolvedTarget:
    return ResolvedTarget(cluster_name="c1", kube_config={}, pool="pool1")


@pytest.fixture
def resources() -> FakeResourceClient:
    """App resources."""
    return FakeResourceClient()


@pytest.fixture
def job_resources() -> FakeResourceClient:
    """CronJob resources."""
    return FakeResourceClient()


@pytest.fixture
def resolve_calls() -> list[str]:
    return []


@pytest.fixture
def cache_factory(
    target: ResolvedTarget,
    resolve_calls: list[str],
) -> Callable[..., LogicCache]:
    """
    Factory for caches resolving tsuru apps and jobs to target.

    Pass resolved=None to make every app and job resolve to nothing.
    """

    def factory(resolved: ResolvedTarget | None = target) -> LogicCache:
        def logic_factory(descriptor: RuleType) -> StaticLogic | None:
            if descriptor.kind in (EndpointKind.TSURU_APP, EndpointKind.TSURU_JOB):
                return StaticLogic(resolved, resolve_calls)
            return None

        return LogicCache(logic_factory=logic_factory)

    return factory


# =============================================================================
# Time
# =============================================================================


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC))
