"""
Base class for reconciliation strategies.

A strategy is one way of pushing rule changes to the infrastructure. The
sync coordinator runs every enabled strategy over every rule of a pass,
each strategy in its own thread, holding a (rule, strategy) lock around
each call.

Design Principles:
    - Fresh instances per pass: the registry builds new strategies for
      every pass, so per-pass state (the resolution cache) lives on self
    - Errors propagate: reconcile() raises, the coordinator records the
      failure for that rule and moves on
    - Results are data: whatever reconcile() returns is JSON-encoded into
      the sync outcome

Example:
    class LoggingStrategy(Strategy):
        @property
        def name(self) -> str:
            return "log"

        def reconcile(self, rule: Rule) -> Any:
            logger.info("rule seen", rule=str(rule))
            return "logged"
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from aclapi.schema import Rule

if TYPE_CHECKING:
    from aclapi.resolver import LogicCache


class Strategy(ABC):
    """
    Abstract base class for all reconciliation strategies.

    Subclasses must implement:
    - name property: Unique strategy name, also the lock key component
    - reconcile(): Push one rule to the infrastructure

    Optional hooks:
    - allowed(): Skip rules the strategy doesn't handle, without locking
    - before_batch(): Receive the pass's resolution cache
    - after_batch(): Release per-pass resources
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        The unique identifier for this strategy.

        Returns:
            The strategy's name (e.g., "acl-operator")
        """
        ...

    @abstractmethod
    def reconcile(self, rule: Rule) -> Any:
        """
        Reconcile one rule.

        Args:
            rule: The rule to reconcile; rule.removed tells whether the
                rule is being removed

        Returns:
            A JSON-serializable description of what was done, or None
            when there was nothing to do

        Raises:
            Exception: Any failure, recorded as an unsuccessful outcome
        """
        ...

    def allowed(self, rule: Rule) -> bool:
        """Whether this strategy handles the rule at all. Defaults to True."""
        return True

    def before_batch(self, cache: "LogicCache") -> None:
        """Called once per pass before any rule, with the pass's cache."""
        return None

    def after_batch(self) -> None:
        """Called once per pass after every rule."""
        return None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.name}>"
