"""Endpoint resolution and the per-pass resolution cache."""

from aclapi.resolver.cache import LogicCache, LogicFactory
from aclapi.resolver.logic import AppRuleLogic, JobRuleLogic, RuleLogic, logic_for

__all__ = [
    "AppRuleLogic",
    "JobRuleLogic",
    "LogicCache",
    "LogicFactory",
    "RuleLogic",
    "logic_for",
]
