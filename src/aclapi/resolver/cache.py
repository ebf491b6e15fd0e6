"""
Per-pass resolution memo.

Every rule with the same source descriptor resolves to the same target,
and several strategies look at the same rules concurrently. LogicCache
resolves each distinct descriptor once per pass and hands the result,
None included, to every later caller. Failures are not remembered: the
next caller retries the lookup.

A cache lives for one pass only, so directory changes are picked up on the
next pass.
"""

import threading
from typing import Callable

from aclapi.directory import TsuruClient
from aclapi.log import get_logger
from aclapi.resolver.logic import RuleLogic, logic_for
from aclapi.schema import ResolvedTarget, Rule, RuleType

logger = get_logger(__name__)

LogicFactory = Callable[[RuleType], RuleLogic | None]


class LogicCache:
    """
    Thread-safe memo from descriptor cache keys to resolved targets.

    The lock is held while resolving, so concurrent callers asking for the
    same descriptor trigger a single directory lookup.
    """

    def __init__(
        self,
        directory: TsuruClient | None = None,
        logic_factory: LogicFactory | None = None,
    ) -> None:
        """
        Initialize the cache.

        Args:
            directory: Directory client used by the default logic factory;
                closed together with the cache
            logic_factory: Maps a descriptor to its RuleLogic; defaults to
                logic_for() bound to directory
        """
        if logic_factory is None:
            if directory is None:
                msg = "LogicCache needs a directory or a logic_factory"
                raise ValueError(msg)
            bound_directory = directory

            def logic_factory(descriptor: RuleType) -> RuleLogic | None:
                return logic_for(descriptor, bound_directory)

        self.directory = directory
        self._logic_factory = logic_factory
        self._lock = threading.Lock()
        self._memo: dict[str, ResolvedTarget | None] = {}

    def get_or_resolve(self, descriptor: RuleType) -> ResolvedTarget | None:
        """
        Resolve a descriptor, at most once per cache.

        Raises:
            ResolutionError: If resolution fails; nothing is memoized then
        """
        key = descriptor.cache_key()
        with self._lock:
            if key in self._memo:
                return self._memo[key]
            logic = self._logic_factory(descriptor)
            target = logic.resolve() if logic is not None else None
            if logic is not None and target is None:
                logger.debug("endpoint not served by kubernetes", endpoint=logic.friendly_name)
            self._memo[key] = target
            return target

    def resolve_rule(self, rule: Rule) -> ResolvedTarget | None:
        """Resolve the source endpoint of a rule."""
        return self.get_or_resolve(rule.source)

    def close(self) -> None:
        """Close the directory client, if any."""
        if self.directory is not None:
            self.directory.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._memo)
