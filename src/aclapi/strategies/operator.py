"""Annotation strategy for tsuru apps."""

from aclapi.schema import EndpointKind, ResolvedTarget, Rule
from aclapi.strategies.annotation import AnnotationStrategy

APP_STRATEGY_NAME = "acl-operator"


class AppOperatorStrategy(AnnotationStrategy):
    """
    Stamps the App custom resource of the rule's source app.

    Apps live in the configured tsuru namespace. Pool-wide sources have no
    single App resource and are left alone.
    """

    kind = EndpointKind.TSURU_APP

    @property
    def name(self) -> str:
        return APP_STRATEGY_NAME

    def resource_name(self, rule: Rule) -> str:
        return rule.source.tsuru_app.app_name if rule.source.tsuru_app else ""

    def resource_namespace(self, target: ResolvedTarget) -> str:
        return self.namespace
