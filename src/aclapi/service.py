"""
Rule service for aclapi.

The service is the entry point for managing rules: it validates rules
before they reach the store and implements the lookups used by the CLI
(by id, by metadata, by source app or job, by a partial rule filter).
"""

from aclapi.errors import ERROR_RULE_NAME_INVALID, RuleValidationError
from aclapi.schema import Rule, RuleSyncInfo, RuleType, dns1123_subdomain_errors
from aclapi.store import DeleteOpts, FindOpts, RuleStore, SyncFindOpts, SyncStore


class RuleService:
    """
    Validated access to stored rules and their sync records.

    Usage:
        service = RuleService(RuleStore(db), SyncStore(db))
        service.save([rule])
        rules = service.find_by_source_app("myapp")
    """

    def __init__(self, rules: RuleStore, syncs: SyncStore) -> None:
        self.rules = rules
        self.syncs = syncs

    def save(self, rules: list[Rule], upsert: bool = False) -> list[Rule]:
        """
        Validate and store rules.

        Every rule is validated before any is written.

        Args:
            rules: Rules to store; ids and creation times are filled in place
            upsert: Replace rules whose id already exists

        Returns:
            The stored rules

        Raises:
            RuleValidationError: If a rule is malformed
            InstanceAlreadyExistsError: If an id or name is taken and upsert is off
        """
        for rule in rules:
            validate_rule(rule)
        return self.rules.save(rules, upsert=upsert)

    def find_all(self) -> list[Rule]:
        return self.rules.find_all(FindOpts())

    def find_active(self) -> list[Rule]:
        return [rule for rule in self.find_all() if not rule.removed]

    def find_metadata(self, metadata: dict[str, str]) -> list[Rule]:
        return self.rules.find_all(FindOpts(metadata=metadata))

    def find_by_id(self, rule_id: str) -> Rule:
        """
        Get a rule by id or name.

        Raises:
            RuleNotFoundError: If nothing matches
        """
        return self.rules.find(rule_id)

    def find_by_source_app(self, app_name: str) -> list[Rule]:
        return self.rules.find_all(FindOpts(source_tsuru_app=app_name))

    def find_by_source_job(self, job_name: str) -> list[Rule]:
        return self.rules.find_all(FindOpts(source_tsuru_job=job_name))

    def find_by_rule(self, rule_filter: Rule) -> list[Rule]:
        """
        Find rules resembling a partial rule.

        Candidates are narrowed by the filter's metadata and creator, then
        both endpoints are compared field by field: a field set on the
        filter must match, an unset field matches anything.
        """
        candidates = self.rules.find_all(
            FindOpts(metadata=rule_filter.metadata, creator=rule_filter.creator)
        )
        return [rule for rule in candidates if rule_matches(rule, rule_filter)]

    def delete(self, rule_id: str) -> int:
        """
        Flag a rule as removed.

        Raises:
            RuleNotFoundError: If the rule does not exist or is already removed
        """
        return self.rules.delete(DeleteOpts(rule_id=rule_id))

    def delete_metadata(self, metadata: dict[str, str]) -> int:
        """Flag every rule carrying metadata as removed."""
        return self.rules.delete(DeleteOpts(metadata=metadata))

    def find_syncs(self, rule_ids: list[str] | None = None) -> list[RuleSyncInfo]:
        """Sync records, newest first. None means every rule."""
        return self.syncs.find(SyncFindOpts(rule_ids=rule_ids))


# =============================================================================
# Validation
# =============================================================================


def validate_rule(rule: Rule) -> None:
    """
    Validate a rule's name and both endpoints.

    Raises:
        RuleValidationError: With field_name set to "rule_name", "source"
            or "destination"
    """
    if rule.rule_name:
        problems = dns1123_subdomain_errors(rule.rule_name)
        if problems:
            raise RuleValidationError(
                field_name="rule_name",
                reason=", ".join(problems),
                code=ERROR_RULE_NAME_INVALID,
            )
    for field_name, descriptor in (("source", rule.source), ("destination", rule.destination)):
        try:
            descriptor.validate_descriptor()
        except RuleValidationError as e:
            raise RuleValidationError(field_name=field_name, reason=e.reason) from e


# =============================================================================
# Matching
# =============================================================================


def rule_type_matches(descriptor: RuleType, rule_filter: RuleType) -> bool:
    """Check descriptor against every kind set on rule_filter."""
    if rule_filter.external_dns is not None:
        dns = descriptor.external_dns
        if dns is None:
            return False
        if rule_filter.external_dns.name and rule_filter.external_dns.name != dns.name:
            return False
        if rule_filter.external_dns.ports is not None and rule_filter.external_dns.ports != dns.ports:
            return False

    if rule_filter.external_ip is not None:
        ext = descriptor.external_ip
        if ext is None:
            return False
        if rule_filter.external_ip.ip and rule_filter.external_ip.ip != ext.ip:
            return False
        if rule_filter.external_ip.ports is not None and rule_filter.external_ip.ports != ext.ports:
            return False

    if rule_filter.tsuru_app is not None:
        app = descriptor.tsuru_app
        if app is None:
            return False
        if rule_filter.tsuru_app.app_name and rule_filter.tsuru_app.app_name != app.app_name:
            return False
        if rule_filter.tsuru_app.pool_name and rule_filter.tsuru_app.pool_name != app.pool_name:
            return False

    if rule_filter.kubernetes_service is not None:
        svc = descriptor.kubernetes_service
        if svc is None:
            return False
        wanted = rule_filter.kubernetes_service
        if wanted.service_name and wanted.service_name != svc.service_name:
            return False
        if wanted.namespace and wanted.namespace != svc.namespace:
            return False

    return True


def rule_matches(rule: Rule, rule_filter: Rule) -> bool:
    return rule_type_matches(rule.source, rule_filter.source) and rule_type_matches(
        rule.destination, rule_filter.destination
    )
