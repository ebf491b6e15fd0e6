"""
Unit tests for error hierarchy.

Tests cover:
- Base AclApiError behavior
- Validation errors with field prefixes
- Resolution and directory errors
- Sync flow-control errors
- Storage errors
- Error serialization
"""

import json
from datetime import timedelta

import pytest

from aclapi.errors import (
    ERROR_DIRECTORY_HTTP,
    ERROR_RESOLUTION_EMPTY_RULE,
    ERROR_RULE_INVALID,
    ERROR_RULE_NOT_FOUND,
    ERROR_STORAGE_CONNECTION,
    ERROR_SYNC_LOCKED,
    AclApiError,
    ClusterNotFoundError,
    DirectoryHTTPError,
    EmptyRuleError,
    ResolutionError,
    RuleNotFoundError,
    RuleValidationError,
    ShutdownTimeoutError,
    StorageConnectionError,
    StorageError,
    StrategyNotFoundError,
    SyncStorageLockedError,
    TargetResourceError,
)


class TestAclApiError:
    """Tests for base AclApiError."""

    def test_basic_error(self) -> None:
        """Create a basic error with message."""
        err = AclApiError(message="Something went wrong", code=9999)
        assert err.message == "Something went wrong"
        assert err.code == 9999
        assert err.suggestion is None
        assert err.context == {}

    def test_str_format(self) -> None:
        """String format includes code and message."""
        err = AclApiError(message="Test error", code=1234)
        assert str(err) == "[E1234] Test error"

    def test_str_with_suggestion(self) -> None:
        err = AclApiError(message="Failed", code=1, suggestion="Try again")
        assert "Suggestion: Try again" in str(err)

    def test_repr_format(self) -> None:
        """Repr includes class name and details."""
        err = AclApiError(message="Test", code=1)
        assert "AclApiError" in repr(err)
        assert "message='Test'" in repr(err)

    def test_to_dict(self) -> None:
        """Convert error to dictionary."""
        err = AclApiError(message="Test", code=1, suggestion="Try again", context={"foo": "bar"})
        d = err.to_dict()
        assert d["error_type"] == "AclApiError"
        assert d["message"] == "Test"
        assert d["code"] == 1
        assert d["suggestion"] == "Try again"
        assert d["context"]["foo"] == "bar"

    def test_is_exception(self) -> None:
        """AclApiError is a proper exception."""
        with pytest.raises(AclApiError):
            raise AclApiError(message="Test", code=1)


class TestRuleValidationError:
    """Tests for rule validation errors."""

    def test_reason_only(self) -> None:
        err = RuleValidationError(reason="invalid app name")
        assert err.code == ERROR_RULE_INVALID
        assert err.message == "invalid app name"

    def test_field_prefix(self) -> None:
        """The failing side of the rule prefixes the message."""
        err = RuleValidationError(field_name="source", reason="invalid app name")
        assert err.message == "source: invalid app name"
        assert err.context["field"] == "source"
        assert err.context["reason"] == "invalid app name"


class TestResolutionErrors:
    """Tests for resolution and directory errors."""

    def test_empty_rule_default_message(self) -> None:
        err = EmptyRuleError()
        assert err.code == ERROR_RESOLUTION_EMPTY_RULE
        assert err.message == "rule must have an app name or a pool name"
        assert isinstance(err, ResolutionError)

    def test_cluster_not_found(self) -> None:
        err = ClusterNotFoundError(endpoint="pool1", pool="pool1")
        assert err.message == "cluster not found"
        assert err.context["pool"] == "pool1"
        assert "default" in err.suggestion

    def test_directory_http_error_message(self) -> None:
        """Body is quoted and the request id shown when present."""
        err = DirectoryHTTPError(status_code=500, body="boom", request_id="abc")
        assert err.code == ERROR_DIRECTORY_HTTP
        assert err.message == f"invalid status code 500(request-id: abc): {json.dumps('boom')}"
        assert not err.not_found

    def test_directory_http_error_without_request_id(self) -> None:
        err = DirectoryHTTPError(status_code=404, body="")
        assert err.message == 'invalid status code 404: ""'
        assert err.not_found


class TestSyncErrors:
    """Tests for sync flow-control errors."""

    def test_sync_locked(self) -> None:
        err = SyncStorageLockedError(rule_id="r1", engine="e1", retry_after=timedelta(seconds=30))
        assert err.code == ERROR_SYNC_LOCKED
        assert err.message == "sync already locked"
        assert err.retry_after == timedelta(seconds=30)
        assert err.context["retry_after_seconds"] == 30.0

    def test_strategy_not_found_lists_available(self) -> None:
        err = StrategyNotFoundError(strategy="nope", available=["acl-operator", "acl-operator-job"])
        assert "nope" in str(err)
        assert "acl-operator, acl-operator-job" in err.suggestion

    def test_shutdown_timeout(self) -> None:
        err = ShutdownTimeoutError(timeout_seconds=2.5)
        assert "2.5" in err.message
        assert "shutdown_timeout" in err.suggestion


class TestStorageErrors:
    """Tests for storage errors."""

    def test_connection_error(self) -> None:
        err = StorageConnectionError(db_path="/nope/acl.db", operation="connect")
        assert err.code == ERROR_STORAGE_CONNECTION
        assert "/nope/acl.db" in str(err)
        assert err.context["operation"] == "connect"
        assert isinstance(err, StorageError)

    def test_rule_not_found(self) -> None:
        err = RuleNotFoundError(operation="find_rule", rule_id="r1")
        assert err.code == ERROR_RULE_NOT_FOUND
        assert err.message == "rule not found"
        assert err.context["rule_id"] == "r1"


class TestTargetResourceError:
    """Tests for kubernetes resource errors."""

    def test_default_message(self) -> None:
        err = TargetResourceError(kind="App", namespace="tsuru", name="app1", status=500)
        assert err.message == "App tsuru/app1: request failed (status 500)"
        assert err.context["status"] == 500
