"""Harness settings and loading."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ephemera.errors import ConfigurationError, ErrorCode, ErrorContext

MIN_PORT = 1
MAX_PORT = 65535


class HarnessSettings(BaseSettings):
    """Configuration for standing up ephemeral backend instances."""

    model_config = SettingsConfigDict(
        env_prefix="EPHEMERA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backend distribution holding conf/ templates
    root_dir: Path | None = None
    config_template: str = "server.conf.template"
    config_file_name: str = "server.conf"
    companion_templates: list[str] = Field(default_factory=lambda: ["server-env.sh.template"])

    # Template keys rewritten per instance
    host_key: str = "server.webserver.host"
    port_key: str = "server.webserver.httpPort"
    storage_path_key: str = "entry.kv.backend.path"
    auxiliary_port_keys: list[str] = Field(default_factory=list)

    default_host: str = "127.0.0.1"
    port_range: tuple[int, int] = (2000, 3000)
    auxiliary_port_range: tuple[int, int] = (3000, 4000)
    storage_root: str = Field(default_factory=tempfile.gettempdir)
    storage_prefix: str = "ephemera"

    health_path: str = "api/version"
    probe_timeout: float = 5.0
    poll_interval: float = 0.5
    startup_timeout: float = 180.0
    shutdown_timeout: float = 180.0
    stop_grace: float = 5.0

    # argv prefix of the backend; the config path is appended at launch
    service_command: list[str] = Field(default_factory=list)

    @field_validator("port_range", "auxiliary_port_range")
    @classmethod
    def validate_port_range(cls, v: tuple[int, int]) -> tuple[int, int]:
        low, high = v
        if not (MIN_PORT <= low <= high <= MAX_PORT):
            raise ConfigurationError(
                message=f"Invalid port range [{low}, {high}]",
                error_code=ErrorCode.INVALID_CONFIG,
                context=ErrorContext(extra={"valid_bounds": [MIN_PORT, MAX_PORT]}),
            )
        return v

    @field_validator("poll_interval", "startup_timeout", "shutdown_timeout", "probe_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ConfigurationError(message=f"Timing settings must be positive, got {v}")
        return v

    @field_validator("stop_grace")
    @classmethod
    def validate_grace(cls, v: float) -> float:
        if v < 0:
            raise ConfigurationError(message=f"stop_grace cannot be negative, got {v}")
        return v

    @model_validator(mode="after")
    def validate_distinct_keys(self) -> HarnessSettings:
        computed = [self.port_key, self.storage_path_key, *self.auxiliary_port_keys]
        if len(set(computed)) != len(computed):
            raise ConfigurationError(
                message="Port, storage path and auxiliary port keys must be distinct",
                error_code=ErrorCode.MERGE_CONFLICT,
                context=ErrorContext(extra={"keys": computed}),
            )
        return self

    def template_dir(self) -> Path:
        """Return ``<root_dir>/conf``, failing if the root directory is unusable."""
        if self.root_dir is None:
            raise ConfigurationError(
                message="EPHEMERA_ROOT_DIR is not set",
                error_code=ErrorCode.TEMPLATE_MISSING,
            )
        root = Path(self.root_dir)
        if not root.is_dir():
            raise ConfigurationError(
                message="EPHEMERA_ROOT_DIR does not point at a directory",
                path=str(root),
                error_code=ErrorCode.TEMPLATE_MISSING,
            )
        return root / "conf"

    def template_path(self) -> Path:
        return self.template_dir() / self.config_template

    def companion_paths(self) -> list[Path]:
        conf = self.template_dir()
        return [conf / name for name in self.companion_templates]


def load_settings(config_path: str | Path | None = None, **overrides: Any) -> HarnessSettings:
    """Load harness settings from a YAML file and the environment.

    Priority: keyword overrides > env vars > config file > defaults

    Raises:
        ConfigurationError: If the file is missing or malformed, or a value
            fails validation.
    """
    config_data: dict[str, Any] = {}

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigurationError(
                message="Settings file not found",
                path=str(config_path),
                error_code=ErrorCode.TEMPLATE_MISSING,
            )
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                message=f"Failed to parse settings file: {e}",
                path=str(config_path),
                cause=e,
            ) from e
        if not isinstance(config_data, dict):
            raise ConfigurationError(
                message=f"Settings must be a YAML mapping, got {type(config_data).__name__}",
                path=str(config_path),
            )

    # Init kwargs beat the environment in pydantic-settings, so drop file
    # values that an EPHEMERA_* variable already provides.
    prefix = HarnessSettings.model_config.get("env_prefix", "")
    config_data = {
        key: value
        for key, value in config_data.items()
        if f"{prefix}{key}".upper() not in os.environ
    }
    config_data.update(overrides)

    try:
        return HarnessSettings(**config_data)
    except ValidationError as e:
        raise ConfigurationError(
            message=f"Invalid settings: {e}",
            path=str(config_path) if config_path is not None else None,
            cause=e,
        ) from e
