"""Reconciliation strategies and their registry."""

from aclapi.strategies.annotation import LAST_UPDATED_ANNOTATION, AnnotationStrategy
from aclapi.strategies.base import Strategy
from aclapi.strategies.job import JOB_STRATEGY_NAME, JobOperatorStrategy
from aclapi.strategies.operator import APP_STRATEGY_NAME, AppOperatorStrategy
from aclapi.strategies.registry import (
    StrategyFactory,
    StrategyRegistry,
    available_strategies,
    registry_from_config,
)

__all__ = [
    "APP_STRATEGY_NAME",
    "AnnotationStrategy",
    "AppOperatorStrategy",
    "JOB_STRATEGY_NAME",
    "JobOperatorStrategy",
    "LAST_UPDATED_ANNOTATION",
    "Strategy",
    "StrategyFactory",
    "StrategyRegistry",
    "available_strategies",
    "registry_from_config",
]
