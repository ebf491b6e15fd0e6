"""Annotation strategy for tsuru jobs."""

from aclapi.schema import EndpointKind, ResolvedTarget, Rule
from aclapi.strategies.annotation import AnnotationStrategy

JOB_STRATEGY_NAME = "acl-operator-job"


class JobOperatorStrategy(AnnotationStrategy):
    """
    Stamps the CronJob of the rule's source job.

    Job CronJobs live in a per-pool namespace, "<namespace>-<pool>".
    """

    kind = EndpointKind.TSURU_JOB

    @property
    def name(self) -> str:
        return JOB_STRATEGY_NAME

    def resource_name(self, rule: Rule) -> str:
        return rule.source.tsuru_job.job_name if rule.source.tsuru_job else ""

    def resource_namespace(self, target: ResolvedTarget) -> str:
        return f"{self.namespace}-{target.pool}"
