"""
Strategy registry for aclapi.

The registry holds the factories of the enabled strategies. Every pass
asks it for fresh strategy instances, so strategies can keep per-pass
state without leaking it into the next pass.

Design:
    - Explicit registry objects, no process-wide default
    - Append-only: strategies are enabled once at startup
    - Config-driven: registry_from_config() enables strategies by name

Usage:
    from aclapi.strategies.registry import StrategyRegistry

    registry = StrategyRegistry()
    registry.enable(lambda: AppOperatorStrategy(client_factory, "tsuru"))
    strategies = registry.build()
"""

from typing import Callable

from aclapi.config import AclConfig
from aclapi.errors import StrategyNotFoundError
from aclapi.kube import CronJobClient, TsuruAppClient, new_api_client
from aclapi.schema import ResolvedTarget
from aclapi.strategies.annotation import ClientFactory
from aclapi.strategies.base import Strategy
from aclapi.strategies.job import JOB_STRATEGY_NAME, JobOperatorStrategy
from aclapi.strategies.operator import APP_STRATEGY_NAME, AppOperatorStrategy

StrategyFactory = Callable[[], Strategy]


class StrategyRegistry:
    """
    Ordered collection of strategy factories.

    Attributes:
        _factories: Enabled factories, in enabling order
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._factories: list[StrategyFactory] = []

    def enable(self, factory: StrategyFactory) -> None:
        """
        Enable a strategy.

        Args:
            factory: Zero-argument callable returning a new Strategy

        Raises:
            ValueError: If factory is not callable
        """
        if not callable(factory):
            msg = "Strategy factory must be callable"
            raise ValueError(msg)
        self._factories.append(factory)

    def build(self) -> list[Strategy]:
        """Create one fresh instance of every enabled strategy."""
        return [factory() for factory in self._factories]

    def names(self) -> list[str]:
        """Names of the enabled strategies, in enabling order."""
        return [strategy.name for strategy in self.build()]

    def __len__(self) -> int:
        """Return the number of enabled strategies."""
        return len(self._factories)

    def __repr__(self) -> str:
        """String representation of the registry."""
        return f"<StrategyRegistry: [{', '.join(self.names())}]>"


# =============================================================================
# Built-in Strategies
# =============================================================================


def available_strategies(
    namespace: str,
    request_timeout: float | None = None,
    app_client_factory: ClientFactory | None = None,
    job_client_factory: ClientFactory | None = None,
) -> dict[str, StrategyFactory]:
    """
    Factories of the built-in strategies, by name.

    Args:
        namespace: Base namespace of tsuru workloads
        request_timeout: Timeout for kubernetes API calls, in seconds
        app_client_factory: Override for the App client (tests)
        job_client_factory: Override for the CronJob client (tests)

    Returns:
        Mapping of strategy name to factory
    """

    def default_app_client(target: ResolvedTarget) -> TsuruAppClient:
        return TsuruAppClient(new_api_client(target), request_timeout=request_timeout)

    def default_job_client(target: ResolvedTarget) -> CronJobClient:
        return CronJobClient(new_api_client(target), request_timeout=request_timeout)

    app_clients = app_client_factory or default_app_client
    job_clients = job_client_factory or default_job_client
    return {
        APP_STRATEGY_NAME: lambda: AppOperatorStrategy(app_clients, namespace),
        JOB_STRATEGY_NAME: lambda: JobOperatorStrategy(job_clients, namespace),
    }


def registry_from_config(config: AclConfig, **overrides: ClientFactory) -> StrategyRegistry:
    """
    Build a registry enabling the strategies listed in config.engines.

    Args:
        config: Loaded configuration
        **overrides: app_client_factory / job_client_factory, see
            available_strategies()

    Raises:
        StrategyNotFoundError: If an engine name is unknown
    """
    factories = available_strategies(
        config.kubernetes.namespace,
        request_timeout=config.http.timeout,
        **overrides,
    )
    registry = StrategyRegistry()
    for name in config.engines:
        if name not in factories:
            raise StrategyNotFoundError(strategy=name, available=sorted(factories))
        registry.enable(factories[name])
    return registry
