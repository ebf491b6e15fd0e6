"""
Configuration for aclapi.

Configuration is a YAML document validated into frozen Pydantic models.
The CLI layers command-line options and ACL_* environment variables on top
of the file through apply_overrides(), using the same dotted keys the file
uses (e.g. "sync.interval", "tsuru.host").

Example:
    storage:
      path: /var/lib/aclapi/acl.db
    sync:
      interval: 60
    tsuru:
      host: https://tsuru.example.com
      token: secret
    kubernetes:
      namespace: tsuru
    engines:
      - acl-operator
      - acl-operator-job
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field


DEFAULT_ENGINES = ("acl-operator",)


class StorageConfig(BaseModel):
    """Where rules and sync locks are persisted."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = Field(default="acl.db", description="SQLite database file")


class SyncConfig(BaseModel):
    """
    Periodic sync settings. All durations are in seconds.

    Attributes:
        interval: Minimum re-sync interval and pause between passes
        disabled: Skip the periodic loop entirely
        lock_expire: Age after which a running lock with no ping is reclaimable
        keepalive_interval: How often held locks are pinged
        shutdown_timeout: How long shutdown waits for the loop to stop
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    interval: float = Field(default=60, gt=0)
    disabled: bool = False
    lock_expire: float = Field(default=300, gt=0)
    keepalive_interval: float = Field(default=20, gt=0)
    shutdown_timeout: float = Field(default=120, gt=0)


class TsuruConfig(BaseModel):
    """Endpoint directory (tsuru API) connection."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = ""
    token: str = ""


class HttpConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    timeout: float = Field(default=60, gt=0)


class TLSConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    insecure: bool = False


class KubernetesConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    namespace: str = Field(default="tsuru", min_length=1)


class LogConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    level: str = "info"
    json_output: bool = Field(default=False, alias="json")


class MetricsConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    port: int = Field(default=0, ge=0, le=65535, description="0 disables the exporter")


class AclConfig(BaseModel):
    """Complete aclapi configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    debug: bool = False
    engines: list[str] = Field(default_factory=lambda: list(DEFAULT_ENGINES))
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    tsuru: TsuruConfig = Field(default_factory=TsuruConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    tls: TLSConfig = Field(default_factory=TLSConfig)
    kubernetes: KubernetesConfig = Field(default_factory=KubernetesConfig)
    log: LogConfig = Field(default_factory=LogConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @property
    def log_level(self) -> str:
        """Effective log level; debug forces "debug"."""
        return "debug" if self.debug else self.log.level


# =============================================================================
# Loading
# =============================================================================


def load_config(path: Path | str | None = None) -> AclConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the YAML file, or None for defaults

    Returns:
        Validated AclConfig

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the YAML doesn't match the schema
    """
    if path is None:
        return AclConfig()
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)
    return AclConfig.model_validate(data or {})


def load_config_from_string(content: str) -> AclConfig:
    """Load configuration from a YAML string."""
    data = yaml.safe_load(content)
    return AclConfig.model_validate(data or {})


def apply_overrides(config: AclConfig, overrides: dict[str, Any]) -> AclConfig:
    """
    Return a copy of config with dotted-key overrides applied.

    Keys whose value is None are ignored, so unset CLI options leave the
    file value in place.

    Args:
        config: Base configuration
        overrides: Mapping like {"sync.interval": 30, "tsuru.host": "..."}

    Returns:
        A new, re-validated AclConfig

    Raises:
        ValidationError: If an override produces an invalid configuration
    """
    data = config.model_dump(by_alias=True)
    for key, value in overrides.items():
        if value is None:
            continue
        *parents, leaf = key.split(".")
        target = data
        for part in parents:
            target = target.setdefault(part, {})
        target[leaf] = value
    return AclConfig.model_validate(data)
