"""
Schema definitions for aclapi.

This module defines the Pydantic models used throughout aclapi:
- RuleType and its per-kind descriptors: Abstract endpoints of a rule
- Rule: A stored source -> destination access rule
- RuleSyncInfo/RuleSyncData: Lock records and the outcome history per strategy
- ResolvedTarget: Connection handle for the cluster owning an endpoint

Design Decisions:
    - Descriptors serialize with their historical field names (TsuruApp,
      AppName, ...) so persisted documents and cache keys stay stable
    - Descriptors are immutable (frozen=True); a Rule only changes its
      removed flag after creation
    - Validation of a descriptor is explicit (validate_descriptor) rather
      than a model validator, because stored rules must load even when
      validation rules get stricter over time
"""

import ipaddress
import json
import re
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from aclapi.errors import RuleValidationError


# =============================================================================
# Name Validation
# =============================================================================

TSURU_NAME_RE = re.compile(r"^[a-z][a-z0-9-]{0,39}$")

DNS1123_LABEL = r"[a-z0-9]([-a-z0-9]*[a-z0-9])?"
DNS1123_SUBDOMAIN_RE = re.compile(rf"^{DNS1123_LABEL}(\.{DNS1123_LABEL})*$")
DNS1123_SUBDOMAIN_MAX_LENGTH = 253

DNS1035_LABEL_RE = re.compile(r"^[a-z]([-a-z0-9]*[a-z0-9])?$")
DNS1035_LABEL_MAX_LENGTH = 63

VALID_PROTOCOLS = frozenset({"TCP", "UDP"})

# Largest IPv4 network accepted without an explicit port list
MAX_PORTLESS_PREFIX = 22


def is_tsuru_name(name: str) -> bool:
    """Check whether name is a valid tsuru app or job name."""
    return bool(TSURU_NAME_RE.match(name))


def dns1123_subdomain_errors(value: str) -> list[str]:
    """
    Validate a DNS-1123 subdomain.

    Returns:
        List of problems, empty when the value is valid
    """
    errors = []
    if len(value) > DNS1123_SUBDOMAIN_MAX_LENGTH:
        errors.append(f"must be no more than {DNS1123_SUBDOMAIN_MAX_LENGTH} characters")
    if not DNS1123_SUBDOMAIN_RE.match(value):
        errors.append(
            "a lowercase RFC 1123 subdomain must consist of lower case alphanumeric "
            "characters, '-' or '.', and must start and end with an alphanumeric character"
        )
    return errors


def is_dns1035_label(value: str) -> bool:
    """Check whether value is a valid DNS-1035 label."""
    return len(value) <= DNS1035_LABEL_MAX_LENGTH and bool(DNS1035_LABEL_RE.match(value))


# =============================================================================
# Enums
# =============================================================================


class EndpointKind(str, Enum):
    """Kind of endpoint a RuleType describes. Values match the serialized keys."""

    TSURU_APP = "TsuruApp"
    TSURU_JOB = "TsuruJob"
    KUBERNETES_SERVICE = "KubernetesService"
    EXTERNAL_DNS = "ExternalDNS"
    EXTERNAL_IP = "ExternalIP"
    RPAAS_INSTANCE = "RpaasInstance"


# =============================================================================
# Endpoint Descriptors
# =============================================================================


class ProtoPort(BaseModel):
    """
    A protocol/port pair.

    Attributes:
        protocol: "TCP" or "UDP", case-insensitive
        port: Port number; 0 is accepted by the model but rejected on validation
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    protocol: str = Field(default="TCP", alias="Protocol")
    port: int = Field(default=0, alias="Port", ge=0, le=65535)

    def __str__(self) -> str:
        return f"{self.protocol}:{self.port}"


def ports_equal(left: list[ProtoPort], right: list[ProtoPort]) -> bool:
    """
    Compare two port lists as per-protocol sets.

    Lists must have the same length; protocol matching is case-insensitive.
    """
    if len(left) != len(right):
        return False

    def by_proto(ports: list[ProtoPort]) -> tuple[set[int], set[int]]:
        tcp = {p.port for p in ports if p.protocol.lower() == "tcp"}
        udp = {p.port for p in ports if p.protocol.lower() == "udp"}
        return tcp, udp

    return by_proto(left) == by_proto(right)


def pretty_ports(ports: list[ProtoPort]) -> str:
    if not ports:
        return ""
    return ", Ports: " + ", ".join(sorted(str(p) for p in ports))


def validate_ports(ports: list[ProtoPort]) -> None:
    """
    Validate a port list.

    Raises:
        RuleValidationError: On port 0 or an unknown protocol
    """
    for p in ports:
        if p.port == 0:
            raise RuleValidationError(reason="invalid port number 0")
        if p.protocol.upper() in VALID_PROTOCOLS:
            continue
        valid = ", ".join(sorted(VALID_PROTOCOLS))
        raise RuleValidationError(reason=f"invalid protocol {p.protocol!r}, valid values are: {valid}")


class TsuruAppRule(BaseModel):
    """A tsuru app by name, or every app of a pool."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    app_name: str = Field(default="", alias="AppName")
    pool_name: str = Field(default="", alias="PoolName")


class TsuruJobRule(BaseModel):
    """A tsuru job by name."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    job_name: str = Field(default="", alias="JobName")


class KubernetesServiceRule(BaseModel):
    """A kubernetes service. Kept for stored rules; new rules are rejected."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    namespace: str = Field(default="", alias="Namespace")
    service_name: str = Field(default="", alias="ServiceName")
    cluster_name: str = Field(default="", alias="ClusterName")


class ExternalDNSRule(BaseModel):
    """An external host name, optionally restricted to ports."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name: str = Field(default="", alias="Name")
    ports: list[ProtoPort] | None = Field(default=None, alias="Ports")
    sync_whole_network: bool = Field(default=False, alias="SyncWholeNetwork")

    def equals(self, other: "ExternalDNSRule | None") -> bool:
        if other is None:
            return False
        if self.name != other.name or self.sync_whole_network != other.sync_whole_network:
            return False
        if self.ports is not None:
            return ports_equal(self.ports, other.ports or [])
        return True


class ExternalIPRule(BaseModel):
    """An external address or IPv4 network, optionally restricted to ports."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    ip: str = Field(default="", alias="IP")
    ports: list[ProtoPort] | None = Field(default=None, alias="Ports")
    sync_whole_network: bool = Field(default=False, alias="SyncWholeNetwork")

    def equals(self, other: "ExternalIPRule | None") -> bool:
        if other is None:
            return False
        if self.ip != other.ip or self.sync_whole_network != other.sync_whole_network:
            return False
        if self.ports is not None:
            return ports_equal(self.ports, other.ports or [])
        return True


class RpaasInstanceRule(BaseModel):
    """An RPaaS instance of a given service."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    service_name: str = Field(default="", alias="ServiceName")
    instance: str = Field(default="", alias="Instance")

    def __str__(self) -> str:
        return f"Rpaas: {self.service_name}/{self.instance}"


class RuleType(BaseModel):
    """
    Abstract endpoint of a rule.

    Exactly one of the kind fields must be set for the descriptor to be
    valid. Unset kinds are omitted from the serialized form.

    Attributes:
        tsuru_app: App by name or pool by name
        tsuru_job: Job by name
        kubernetes_service: Deactivated kind, rejected on validation
        external_dns: Host name with optional ports
        external_ip: Address or network with optional ports
        rpaas_instance: RPaaS service instance
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    tsuru_app: TsuruAppRule | None = Field(default=None, alias="TsuruApp")
    tsuru_job: TsuruJobRule | None = Field(default=None, alias="TsuruJob")
    kubernetes_service: KubernetesServiceRule | None = Field(default=None, alias="KubernetesService")
    external_dns: ExternalDNSRule | None = Field(default=None, alias="ExternalDNS")
    external_ip: ExternalIPRule | None = Field(default=None, alias="ExternalIP")
    rpaas_instance: RpaasInstanceRule | None = Field(default=None, alias="RpaasInstance")

    @property
    def kind(self) -> EndpointKind | None:
        """The first kind set on this descriptor, or None when empty."""
        for kind in EndpointKind:
            if self.descriptor_for(kind) is not None:
                return kind
        return None

    def descriptor_for(self, kind: EndpointKind) -> BaseModel | None:
        return {
            EndpointKind.TSURU_APP: self.tsuru_app,
            EndpointKind.TSURU_JOB: self.tsuru_job,
            EndpointKind.KUBERNETES_SERVICE: self.kubernetes_service,
            EndpointKind.EXTERNAL_DNS: self.external_dns,
            EndpointKind.EXTERNAL_IP: self.external_ip,
            EndpointKind.RPAAS_INSTANCE: self.rpaas_instance,
        }[kind]

    def validate_descriptor(self) -> None:
        """
        Check that exactly one kind is set and that it is well-formed.

        Raises:
            RuleValidationError: Describing the first problem found
        """
        count = 0
        ports: list[ProtoPort] = []

        if self.tsuru_app is not None:
            app = self.tsuru_app
            if not app.app_name and not app.pool_name:
                raise RuleValidationError(reason="cannot have empty tsuru app name and pool name")
            if app.app_name and app.pool_name:
                raise RuleValidationError(reason="cannot set both app name and pool name")
            if app.app_name and not is_tsuru_name(app.app_name):
                raise RuleValidationError(reason="invalid app name")
            count += 1

        if self.tsuru_job is not None:
            if not self.tsuru_job.job_name:
                raise RuleValidationError(reason="cannot have empty tsuru job name")
            if not is_tsuru_name(self.tsuru_job.job_name):
                raise RuleValidationError(reason="invalid job name")
            count += 1

        if self.rpaas_instance is not None:
            rpaas = self.rpaas_instance
            if not rpaas.service_name or not rpaas.instance:
                raise RuleValidationError(reason="cannot have empty rpaas serviceName or instance")
            if not is_dns1035_label(rpaas.service_name):
                raise RuleValidationError(reason="Invalid rpaas service name")
            if not is_dns1035_label(rpaas.instance):
                raise RuleValidationError(reason="Invalid rpaas instance name")
            count += 1

        if self.external_dns is not None:
            dns = self.external_dns
            if not dns.name:
                raise RuleValidationError(reason="cannot have empty external dns name")
            ports = dns.ports or []
            # a single leading dot acts as a wildcard
            name = dns.name[1:] if dns.name.startswith(".") else dns.name
            problems = dns1123_subdomain_errors(name)
            if problems:
                raise RuleValidationError(
                    reason="DNS Rule: Name must be a valid DNS name, " + ", ".join(problems)
                )
            if dns.name.endswith("cluster.local"):
                raise RuleValidationError(reason="DNS Rule: Name must not be a cluster internal address")
            count += 1

        if self.external_ip is not None:
            ext = self.external_ip
            ports = ext.ports or []
            if not ext.ip:
                raise RuleValidationError(reason="cannot have empty external ip address")
            network = _parse_network(ext.ip)
            if network.version == 6:
                raise RuleValidationError(reason="IP Rule: Invalid IP, IPv6 is not supported yet")
            if network.prefixlen < MAX_PORTLESS_PREFIX and not ext.ports:
                raise RuleValidationError(
                    reason="IP Rule: Large CIDR, the maximum size of network without ports is /22"
                )
            count += 1

        if self.kubernetes_service is not None:
            raise RuleValidationError(
                reason="Kubernetes Service Rule: has been deactivated for use, "
                "please use instead: App or RPaaS destinations"
            )

        if count != 1:
            raise RuleValidationError(reason="exactly one rule type must be set")

        validate_ports(ports)

    def equals(self, other: "RuleType | None") -> bool:
        """
        Compare two descriptors kind by kind, driven by the kinds set on self.

        A None on exactly one side compares equal. Stored-rule lookups have
        always relied on this, so it is kept as is.
        """
        if other is None:
            return True
        if self.tsuru_app is not None and self.tsuru_app != other.tsuru_app:
            return False
        if self.kubernetes_service is not None and self.kubernetes_service != other.kubernetes_service:
            return False
        if self.external_dns is not None and not self.external_dns.equals(other.external_dns):
            return False
        if self.external_ip is not None and not self.external_ip.equals(other.external_ip):
            return False
        if self.rpaas_instance is not None and self.rpaas_instance != other.rpaas_instance:
            return False
        return True

    def cache_key(self) -> str:
        """Canonical JSON form with sorted keys and unset kinds omitted."""
        data = self.model_dump(by_alias=True, exclude_none=True)
        return json.dumps(data, sort_keys=True, separators=(",", ":"))

    def __str__(self) -> str:
        if self.tsuru_app is not None:
            if not self.tsuru_app.app_name and self.tsuru_app.pool_name:
                return f"Tsuru Pool: {self.tsuru_app.pool_name}"
            return f"Tsuru APP: {self.tsuru_app.app_name}"
        if self.tsuru_job is not None:
            return f"Tsuru Job: {self.tsuru_job.job_name}"
        if self.external_dns is not None:
            whole = ", whole network" if self.external_dns.sync_whole_network else ""
            return f"DNS: {self.external_dns.name}{pretty_ports(self.external_dns.ports or [])}{whole}"
        if self.external_ip is not None:
            whole = ", whole network" if self.external_ip.sync_whole_network else ""
            return f"IP: {self.external_ip.ip}{pretty_ports(self.external_ip.ports or [])}{whole}"
        if self.kubernetes_service is not None:
            namespace = self.kubernetes_service.namespace or "default"
            return f"Kubernetes Service: {namespace}/{self.kubernetes_service.service_name}"
        if self.rpaas_instance is not None:
            return str(self.rpaas_instance)
        return ""


def _parse_network(value: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
    if "/" not in value:
        if ":" in value:
            value += "/128"
        elif "." in value:
            value += "/32"
    try:
        return ipaddress.ip_network(value, strict=False)
    except ValueError as e:
        raise RuleValidationError(reason=f"IP Rule: Invalid IP, {e}") from e


# =============================================================================
# Rule Models
# =============================================================================


class Rule(BaseModel):
    """
    A stored access rule.

    Attributes:
        rule_id: Unique identifier (generated on save when empty)
        rule_name: Optional unique DNS-1123 name
        source: Endpoint the traffic originates from
        destination: Endpoint the traffic goes to
        removed: Soft-delete flag
        metadata: Free-form labels used for bulk lookup and deletion
        created: Creation time, set by the store
        creator: Who created the rule
    """

    model_config = ConfigDict(extra="forbid")

    rule_id: str = Field(default="", description="Unique identifier")
    rule_name: str = Field(default="", description="Optional unique name")
    source: RuleType = Field(default_factory=RuleType, description="Source endpoint")
    destination: RuleType = Field(default_factory=RuleType, description="Destination endpoint")
    removed: bool = Field(default=False, description="Soft-delete flag")
    metadata: dict[str, str] = Field(default_factory=dict, description="Free-form labels")
    created: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Creation time",
    )
    creator: str = Field(default="", description="Who created the rule")

    @field_validator("created")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    def __str__(self) -> str:
        return f"[RuleID: {self.rule_id}, Source: {self.source}, Destination: {self.destination}]"


class ResolvedTarget(BaseModel):
    """
    Runtime handle for the cluster owning a resolved endpoint.

    Attributes:
        cluster_name: Name of the cluster in the directory
        kube_config: Kubeconfig-shaped dict used to build API clients
        pool: Pool the endpoint resolved to
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    cluster_name: str
    kube_config: dict[str, Any] = Field(default_factory=dict)
    pool: str = ""


class RuleSyncData(BaseModel):
    """
    Outcome of one (rule, strategy) sync.

    Attributes:
        start_time: When the sync started
        end_time: When the sync finished
        successful: Whether the strategy completed without error
        removed: Whether the rule was removed at sync time
        error: Error text when unsuccessful
        sync_result: JSON-encoded strategy result
    """

    model_config = ConfigDict(extra="forbid")

    start_time: datetime
    end_time: datetime
    successful: bool = False
    removed: bool = False
    error: str = ""
    sync_result: str = ""


class RuleSyncInfo(BaseModel):
    """
    Lock record for one (rule, strategy) key.

    Attributes:
        sync_id: Unique id of the lock record
        rule_id: Rule the record belongs to
        engine: Strategy name
        start_time: When the current or last sync started
        end_time: When the last sync ended
        ping_time: Last keep-alive or acquisition time
        running: Whether the lock is held
        syncs: Last outcomes, oldest first, at most SYNC_HISTORY_LIMIT
    """

    model_config = ConfigDict(extra="forbid")

    sync_id: str
    rule_id: str
    engine: str
    start_time: datetime
    end_time: datetime | None = None
    ping_time: datetime
    running: bool = False
    syncs: list[RuleSyncData] = Field(default_factory=list)

    def latest_sync(self) -> RuleSyncData | None:
        """Return the most recent outcome, or None if never synced."""
        if not self.syncs:
            return None
        return self.syncs[-1]


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_rules(path: Path | str) -> list[Rule]:
    """
    Load rules from a YAML file.

    The file holds either a list of rules or a mapping with a "rules" key.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed (not yet validated) rules

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the YAML doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)
    return _rules_from_data(data)


def load_rules_from_string(content: str) -> list[Rule]:
    """Load rules from a YAML string."""
    return _rules_from_data(yaml.safe_load(content))


def _rules_from_data(data: Any) -> list[Rule]:
    if isinstance(data, dict):
        data = data.get("rules", [])
    return [Rule.model_validate(item) for item in data or []]
