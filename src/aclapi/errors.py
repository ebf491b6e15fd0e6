"""
Exception hierarchy for aclapi.

All aclapi exceptions inherit from AclApiError, allowing callers to catch
every aclapi-specific failure with a single except clause.

Exception Categories:
    - RuleValidationError: Malformed rule descriptor, rejected before storage
    - ResolutionError: Endpoint, pool or cluster could not be resolved
    - SyncStorageLockedError: Flow-control signal, the lock is held or too recent
    - StrategyNotFoundError: Configuration enables an unknown strategy
    - StorageError: Database operation failed
    - TargetResourceError: Kubernetes API call on a target resource failed

Lock contention is modelled as an exception because callers of start_sync
need the retry hint, but the sync coordinator never treats it as a failure.
"""

import json
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Validation errors: 1xxx
ERROR_RULE_INVALID = 1001
ERROR_RULE_NAME_INVALID = 1002

# Resolution errors: 2xxx
ERROR_RESOLUTION_FAILED = 2001
ERROR_RESOLUTION_EMPTY_RULE = 2002
ERROR_RESOLUTION_CLUSTER_NOT_FOUND = 2003
ERROR_RESOLUTION_NOT_KUBERNETES_POOL = 2004
ERROR_DIRECTORY_HTTP = 2005
ERROR_DIRECTORY_RESPONSE = 2006

# Sync errors: 3xxx
ERROR_SYNC_LOCKED = 3001
ERROR_SYNC_SHUTDOWN_TIMEOUT = 3002
ERROR_STRATEGY_NOT_FOUND = 3003

# Storage errors: 4xxx
ERROR_STORAGE_CONNECTION = 4001
ERROR_STORAGE_WRITE = 4002
ERROR_STORAGE_READ = 4003
ERROR_RULE_NOT_FOUND = 4004
ERROR_INSTANCE_ALREADY_EXISTS = 4005

# Target resource errors: 5xxx
ERROR_TARGET_RESOURCE = 5001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class AclApiError(Exception):
    """
    Base exception for all aclapi errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Validation Errors
# =============================================================================


@dataclass
class RuleValidationError(AclApiError):
    """
    Raised when a rule or one of its descriptors is malformed.

    Attributes:
        field_name: Which part of the rule failed ("source", "destination", "rule_name")
        reason: The underlying validation message
    """

    field_name: str = ""
    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            if self.field_name:
                self.message = f"{self.field_name}: {self.reason}"
            else:
                self.message = self.reason
        if self.code == 0:
            self.code = ERROR_RULE_INVALID
        self.context.update({
            "field": self.field_name,
            "reason": self.reason,
        })


# =============================================================================
# Resolution Errors
# =============================================================================


@dataclass
class ResolutionError(AclApiError):
    """
    Base class for endpoint resolution errors.

    These abort the current strategy's handling of the current rule only.

    Attributes:
        endpoint: Friendly name of the endpoint being resolved
    """

    endpoint: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if self.code == 0:
            self.code = ERROR_RESOLUTION_FAILED
        self.context["endpoint"] = self.endpoint


@dataclass
class EmptyRuleError(ResolutionError):
    """Raised when a descriptor has neither an endpoint name nor a pool name."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "rule must have an app name or a pool name"
        if self.code == 0:
            self.code = ERROR_RESOLUTION_EMPTY_RULE
        super().__post_init__()


@dataclass
class ClusterNotFoundError(ResolutionError):
    """Raised when no kubernetes cluster owns the pool and none is default."""

    pool: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "cluster not found"
        if self.code == 0:
            self.code = ERROR_RESOLUTION_CLUSTER_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Add the pool to a kubernetes cluster or flag one cluster as default"
        super().__post_init__()
        self.context["pool"] = self.pool


@dataclass
class NotKubernetesPoolError(ResolutionError):
    """Raised when a cluster lookup is attempted for a non-kubernetes pool."""

    pool: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "not a kubernetes pool"
        if self.code == 0:
            self.code = ERROR_RESOLUTION_NOT_KUBERNETES_POOL
        super().__post_init__()
        self.context["pool"] = self.pool


@dataclass
class DirectoryHTTPError(ResolutionError):
    """
    Raised when the tsuru API answers with an unexpected status code.

    Attributes:
        status_code: HTTP status returned
        body: Response body text
        request_id: Request id echoed by the server, if any
    """

    status_code: int = 0
    body: str = ""
    request_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            req_id_msg = f"(request-id: {self.request_id})" if self.request_id else ""
            self.message = f"invalid status code {self.status_code}{req_id_msg}: {json.dumps(self.body)}"
        if self.code == 0:
            self.code = ERROR_DIRECTORY_HTTP
        super().__post_init__()
        self.context.update({
            "status_code": self.status_code,
            "request_id": self.request_id,
        })

    @property
    def not_found(self) -> bool:
        """Whether the server reported the resource as missing."""
        return self.status_code == 404


@dataclass
class DirectoryResponseError(ResolutionError):
    """Raised when a tsuru API response cannot be decoded or is empty."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"unable to decode response: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_DIRECTORY_RESPONSE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


# =============================================================================
# Sync Errors
# =============================================================================


@dataclass
class SyncStorageLockedError(AclApiError):
    """
    Raised when a sync lock cannot be acquired.

    Either another worker holds the lock or the key was synced less than
    the minimum re-sync interval ago.

    Attributes:
        rule_id: Rule the lock belongs to
        engine: Strategy name the lock belongs to
        retry_after: Hint of how long until the key becomes eligible
    """

    rule_id: str = ""
    engine: str = ""
    retry_after: timedelta = field(default_factory=timedelta)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "sync already locked"
        if self.code == 0:
            self.code = ERROR_SYNC_LOCKED
        self.context.update({
            "rule_id": self.rule_id,
            "engine": self.engine,
            "retry_after_seconds": self.retry_after.total_seconds(),
        })


@dataclass
class StrategyNotFoundError(AclApiError):
    """
    Raised when the configuration enables a strategy that doesn't exist.

    Attributes:
        strategy: The unknown strategy name
        available: Names that would have been accepted
    """

    strategy: str = ""
    available: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unknown strategy: {self.strategy}"
        if self.code == 0:
            self.code = ERROR_STRATEGY_NOT_FOUND
        if not self.suggestion and self.available:
            self.suggestion = f"Available strategies: {', '.join(self.available)}"
        self.context["strategy"] = self.strategy


@dataclass
class ShutdownTimeoutError(AclApiError):
    """Raised when the periodic sync loop does not stop before the deadline."""

    timeout_seconds: float = 0.0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"periodic sync did not stop within {self.timeout_seconds}s"
        if self.code == 0:
            self.code = ERROR_SYNC_SHUTDOWN_TIMEOUT
        if not self.suggestion:
            self.suggestion = "Increase sync.shutdown_timeout above the worst-case pass duration"
        self.context["timeout_seconds"] = self.timeout_seconds


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(AclApiError):
    """
    Base class for storage/database errors.

    Attributes:
        operation: The operation that failed (e.g., "start_sync", "save")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StorageConnectionError(StorageError):
    """Raised when database connection fails."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to connect to database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORAGE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the storage path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class StorageWriteError(StorageError):
    """Raised when a write operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database write failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageReadError(StorageError):
    """Raised when a read operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class RuleNotFoundError(StorageError):
    """Raised when a rule id or name does not match any stored rule."""

    rule_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "rule not found"
        if self.code == 0:
            self.code = ERROR_RULE_NOT_FOUND
        super().__post_init__()
        self.context["rule_id"] = self.rule_id


@dataclass
class InstanceAlreadyExistsError(StorageError):
    """Raised when inserting a rule whose id or name is already taken."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "instance already exists"
        if self.code == 0:
            self.code = ERROR_INSTANCE_ALREADY_EXISTS
        super().__post_init__()


# =============================================================================
# Target Resource Errors
# =============================================================================


@dataclass
class TargetResourceError(AclApiError):
    """
    Raised when reading or patching a target resource fails.

    Attributes:
        kind: Resource kind ("App", "CronJob")
        namespace: Namespace of the resource
        name: Name of the resource
        status: HTTP status reported by the kubernetes API, if any
    """

    kind: str = ""
    namespace: str = ""
    name: str = ""
    status: int | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.kind} {self.namespace}/{self.name}: request failed (status {self.status})"
        if self.code == 0:
            self.code = ERROR_TARGET_RESOURCE
        self.context.update({
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
            "status": self.status,
        })
