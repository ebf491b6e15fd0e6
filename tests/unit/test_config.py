"""
Unit tests for configuration loading.

Tests cover:
- Defaults
- YAML loading from strings and files
- Dotted-key overrides
- Validation failures
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from aclapi.config import AclConfig, apply_overrides, load_config, load_config_from_string


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self) -> None:
        config = AclConfig()
        assert config.storage.path == "acl.db"
        assert config.sync.interval == 60
        assert config.sync.lock_expire == 300
        assert config.sync.keepalive_interval == 20
        assert config.sync.disabled is False
        assert config.engines == ["acl-operator"]
        assert config.kubernetes.namespace == "tsuru"
        assert config.http.timeout == 60
        assert config.metrics.port == 0

    def test_log_level(self) -> None:
        assert AclConfig().log_level == "info"

    def test_debug_forces_debug_level(self) -> None:
        config = load_config_from_string("debug: true\nlog:\n  level: warning\n")
        assert config.log_level == "debug"

    def test_load_none_returns_defaults(self) -> None:
        assert load_config(None) == AclConfig()


class TestLoading:
    """Tests for YAML loading."""

    def test_from_string(self) -> None:
        config = load_config_from_string(
            """
engines: [acl-operator, acl-operator-job]
sync:
  interval: 30
tsuru:
  host: https://tsuru.example.com
  token: secret
log:
  json: true
"""
        )
        assert config.engines == ["acl-operator", "acl-operator-job"]
        assert config.sync.interval == 30
        assert config.tsuru.host == "https://tsuru.example.com"
        assert config.log.json_output is True

    def test_empty_document(self) -> None:
        assert load_config_from_string("") == AclConfig()

    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "acl.yaml"
        path.write_text("storage:\n  path: /var/lib/acl.db\n")
        assert load_config(path).storage.path == "/var/lib/acl.db"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_unknown_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            load_config_from_string("sync:\n  intervall: 30\n")

    def test_non_positive_interval_rejected(self) -> None:
        with pytest.raises(ValidationError):
            load_config_from_string("sync:\n  interval: 0\n")


class TestOverrides:
    """Tests for apply_overrides()."""

    def test_override_nested(self) -> None:
        config = apply_overrides(AclConfig(), {"sync.interval": 5, "tsuru.host": "http://t"})
        assert config.sync.interval == 5
        assert config.tsuru.host == "http://t"

    def test_none_keeps_value(self) -> None:
        base = load_config_from_string("storage:\n  path: file.db\n")
        config = apply_overrides(base, {"storage.path": None})
        assert config.storage.path == "file.db"

    def test_override_top_level(self) -> None:
        assert apply_overrides(AclConfig(), {"debug": True}).debug is True

    def test_override_aliased_field(self) -> None:
        assert apply_overrides(AclConfig(), {"log.json": True}).log.json_output is True

    def test_invalid_override(self) -> None:
        with pytest.raises(ValidationError):
            apply_overrides(AclConfig(), {"metrics.port": -1})

    def test_original_unchanged(self) -> None:
        base = AclConfig()
        apply_overrides(base, {"sync.interval": 5})
        assert base.sync.interval == 60
