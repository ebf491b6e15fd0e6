"""
Endpoint resolution.

A RuleLogic turns one endpoint descriptor into the cluster that hosts it:

    app name  -> app's pool  -.
    pool name ----------------+-> pool -> owning cluster -> ResolvedTarget
    job name  -> job's pool  -'

A pool not provisioned by kubernetes resolves to None, meaning "nothing
to reconcile here". Lookup failures from the directory propagate as is.
Only tsuru apps and jobs have a logic; every other kind maps to None.
"""

from abc import ABC, abstractmethod
from typing import Callable

from aclapi.directory import PoolInfo, TsuruClient
from aclapi.directory.client import KUBERNETES_PROVISIONER
from aclapi.errors import EmptyRuleError
from aclapi.kube import kube_config_for_cluster
from aclapi.schema import EndpointKind, ResolvedTarget, RuleType, TsuruAppRule, TsuruJobRule


class RuleLogic(ABC):
    """Resolves one endpoint descriptor through the directory."""

    def __init__(self, directory: TsuruClient) -> None:
        self.directory = directory

    @property
    @abstractmethod
    def friendly_name(self) -> str:
        """Name used in logs and errors."""
        ...

    @abstractmethod
    def pool_name(self) -> str:
        """
        Find the pool the endpoint lives in.

        Raises:
            EmptyRuleError: If the descriptor names nothing
        """
        ...

    def resolve(self) -> ResolvedTarget | None:
        """
        Resolve the endpoint to the cluster serving its pool.

        Returns:
            The target, or None when the pool isn't kubernetes-provisioned

        Raises:
            EmptyRuleError: If the descriptor names nothing
            ResolutionError: If the directory lookups fail
        """
        pool = self.directory.pool_info(self.pool_name())
        if pool.provisioner != KUBERNETES_PROVISIONER:
            return None
        return self._target_for(pool)

    def _target_for(self, pool: PoolInfo) -> ResolvedTarget:
        cluster = self.directory.pool_cluster(pool)
        return ResolvedTarget(
            cluster_name=cluster.name,
            kube_config=kube_config_for_cluster(cluster),
            pool=pool.name,
        )


class AppRuleLogic(RuleLogic):
    """A tsuru app by name, or a whole pool by name."""

    def __init__(self, rule: TsuruAppRule, directory: TsuruClient) -> None:
        super().__init__(directory)
        self.rule = rule

    @property
    def friendly_name(self) -> str:
        return self.rule.app_name or self.rule.pool_name

    def pool_name(self) -> str:
        if not self.rule.app_name and not self.rule.pool_name:
            raise EmptyRuleError()
        if self.rule.app_name:
            return self.directory.app_info(self.rule.app_name).pool
        return self.rule.pool_name


class JobRuleLogic(RuleLogic):
    """A tsuru job by name."""

    def __init__(self, rule: TsuruJobRule, directory: TsuruClient) -> None:
        super().__init__(directory)
        self.rule = rule

    @property
    def friendly_name(self) -> str:
        return self.rule.job_name

    def pool_name(self) -> str:
        if not self.rule.job_name:
            raise EmptyRuleError()
        return self.directory.job_info(self.rule.job_name).pool


LOGIC_BY_KIND: dict[EndpointKind, Callable[[RuleType, TsuruClient], RuleLogic]] = {
    EndpointKind.TSURU_APP: lambda d, directory: AppRuleLogic(d.tsuru_app, directory),
    EndpointKind.TSURU_JOB: lambda d, directory: JobRuleLogic(d.tsuru_job, directory),
}


def logic_for(descriptor: RuleType, directory: TsuruClient) -> RuleLogic | None:
    """Pick the logic for a descriptor's kind, or None if the kind has none."""
    kind = descriptor.kind
    if kind is None or kind not in LOGIC_BY_KIND:
        return None
    return LOGIC_BY_KIND[kind](descriptor, directory)
