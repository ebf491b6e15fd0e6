"""
Annotation-stamping strategy.

The enforcement agent watches the resources backing rule sources and
recomputes network policies whenever their last-updated annotation
changes. Reconciling a rule therefore means: find the source's resource,
and bump the annotation unless it was bumped recently.

The annotation is rewritten when:
    - it is missing or can't be parsed,
    - the rule was created less than `grace` before the stored stamp
      (the stamp may predate the rule reaching the agent), or
    - the stored stamp is older than `cooldown`.

Many rules usually share a source, so the cooldown keeps a pass from
patching the same resource once per rule.
"""

import copy
import re
from abc import abstractmethod
from datetime import UTC, datetime, timedelta
from typing import Any, Callable

from aclapi.kube import ResourceClient, create_merge_patch
from aclapi.log import get_logger
from aclapi.resolver import LogicCache
from aclapi.schema import EndpointKind, ResolvedTarget, Rule
from aclapi.strategies.base import Strategy

LAST_UPDATED_ANNOTATION = "acl-api.tsuru.io/last-updated"

DEFAULT_WINDOW = timedelta(minutes=1)

RFC3339_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

RFC3339_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})")

ClientFactory = Callable[[ResolvedTarget], ResourceClient]

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


def format_timestamp(value: datetime) -> str:
    """Format as RFC 3339 in UTC, second precision."""
    return value.astimezone(UTC).strftime(RFC3339_FORMAT)


def parse_timestamp(value: str) -> datetime | None:
    """Parse an RFC 3339 timestamp, or return None if it isn't one."""
    if not RFC3339_PATTERN.fullmatch(value):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class AnnotationStrategy(Strategy):
    """
    Stamp the source resource of each rule with LAST_UPDATED_ANNOTATION.

    Subclasses pick the endpoint kind they manage and say where the
    resource lives.
    """

    kind: EndpointKind

    def __init__(
        self,
        client_factory: ClientFactory,
        namespace: str,
        grace: timedelta = DEFAULT_WINDOW,
        cooldown: timedelta = DEFAULT_WINDOW,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the strategy.

        Args:
            client_factory: Builds a resource client for a resolved target
            namespace: Base namespace of tsuru workloads
            grace: How long after a rule's creation its stamp stays stale
            cooldown: Minimum age of a stamp before it is refreshed
            clock: Source of "now", in UTC
        """
        self.client_factory = client_factory
        self.namespace = namespace
        self.grace = grace
        self.cooldown = cooldown
        self.clock = clock
        self._cache: LogicCache | None = None

    @abstractmethod
    def resource_name(self, rule: Rule) -> str:
        """Name of the resource backing the rule's source, or "" if none."""
        ...

    @abstractmethod
    def resource_namespace(self, target: ResolvedTarget) -> str:
        """Namespace of the resource backing a resolved source."""
        ...

    def before_batch(self, cache: LogicCache) -> None:
        self._cache = cache

    def after_batch(self) -> None:
        self._cache = None

    def needs_update(self, rule: Rule, stamp: str | None, now: datetime) -> bool:
        """Decide whether the stored stamp must be refreshed."""
        if not stamp:
            return True
        last_updated = parse_timestamp(stamp)
        if last_updated is None:
            return True
        if rule.created + self.grace > last_updated:
            return True
        return now > last_updated + self.cooldown

    def reconcile(self, rule: Rule) -> Any:
        if rule.source.descriptor_for(self.kind) is None:
            return None
        if self._cache is None:
            msg = f"{self.name}: reconcile called outside a pass"
            raise RuntimeError(msg)

        log = logger.bind(engine=self.name, ruleid=rule.rule_id)
        target = self._cache.resolve_rule(rule)
        if target is None:
            log.debug("ignoring rule, not a kubernetes source")
            return None

        name = self.resource_name(rule)
        if not name:
            return None
        namespace = self.resource_namespace(target)
        client = self.client_factory(target)
        original = client.get(namespace, name)
        if original is None:
            log.debug("source resource not found", namespace=namespace, name=name)
            return None

        now = self.clock()
        annotations = (original.get("metadata") or {}).get("annotations") or {}
        if not self.needs_update(rule, annotations.get(LAST_UPDATED_ANNOTATION), now):
            return f"triggered {self.name} in the last minute"

        modified = copy.deepcopy(original)
        metadata = modified.setdefault("metadata", {})
        if metadata.get("annotations") is None:
            metadata["annotations"] = {}
        metadata["annotations"][LAST_UPDATED_ANNOTATION] = format_timestamp(now)

        client.patch(namespace, name, create_merge_patch(original, modified))
        return f"triggered {self.name}"
