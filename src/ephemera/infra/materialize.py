"""Per-instance runtime configuration.

The materializer merges three layers into one concrete config file:

1. template defaults read from ``<root_dir>/conf/<config_template>``;
2. computed values: a free server port, a fresh backend storage path and one
   free port per auxiliary service key;
3. the caller's InstanceContext overrides, written verbatim.

Later layers win.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from ephemera.config.settings import HarnessSettings
from ephemera.config.templates import (
    ConfigFormat,
    read_config,
    render_value,
    strip_template_suffix,
    write_config,
)
from ephemera.errors import ConfigurationError, ErrorCode
from ephemera.infra.ports import PortAllocator, default_allocator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstanceContext:
    """Caller-supplied configuration overrides for one instance."""

    custom_config: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "custom_config", MappingProxyType(dict(self.custom_config)))


@dataclass(frozen=True)
class RuntimeConfig:
    """The materialized configuration an instance is launched with."""

    host: str
    port: int
    storage_path: Path
    conf_dir: Path
    config_file: Path
    values: Mapping[str, Any]
    auxiliary_ports: Mapping[str, int] = field(default_factory=dict)
    allocated_ports: tuple[int, ...] = ()

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


class ConfigMaterializer:
    """Produces a RuntimeConfig and its files for a single instance."""

    def __init__(
        self,
        settings: HarnessSettings,
        allocator: PortAllocator | None = None,
    ) -> None:
        self.settings = settings
        self.allocator = allocator or default_allocator

    def materialize(self, conf_dir: str | Path, context: InstanceContext | None = None) -> RuntimeConfig:
        """Write the instance config into ``conf_dir`` and describe it.

        Template and output checks run before any port is allocated, so a
        missing root directory never consumes a port.

        Raises:
            ConfigurationError: Template missing, output not writable, or an
                override that cannot be rendered.
            NoAvailablePortError: No free port in a configured range.
        """
        settings = self.settings
        context = context or InstanceContext()
        conf_dir = Path(conf_dir)

        template_path = settings.template_path()
        template = read_config(template_path)
        companions = settings.companion_paths()
        for companion in companions:
            if not companion.is_file():
                raise ConfigurationError(
                    message="Companion template not found",
                    path=str(companion),
                    error_code=ErrorCode.TEMPLATE_MISSING,
                )
        self._check_writable(conf_dir)
        overrides = dict(context.custom_config)
        for key, value in overrides.items():
            render_value(key, value)

        allocated: list[int] = []
        try:
            computed = self._computed_values(overrides, allocated)
            merged: dict[str, Any] = {**template, **computed, **overrides}

            host = str(merged.get(settings.host_key) or settings.default_host)
            port = self._int_value(merged, settings.port_key)
            storage_path = Path(str(merged[settings.storage_path_key]))
            auxiliary = {key: self._int_value(merged, key) for key in settings.auxiliary_port_keys}

            config_file = conf_dir / settings.config_file_name
            write_config(config_file, merged, ConfigFormat.for_path(template_path))
            for companion in companions:
                self._copy(companion, conf_dir / strip_template_suffix(companion.name))
        except Exception:
            for allocated_port in allocated:
                self.allocator.release(allocated_port)
            raise

        if storage_path.exists():
            logger.debug(f"Removing stale backend storage at {storage_path}")
            shutil.rmtree(storage_path, ignore_errors=True)

        logger.info(f"Materialized {config_file} (host={host}, port={port}, storage={storage_path})")
        return RuntimeConfig(
            host=host,
            port=port,
            storage_path=storage_path,
            conf_dir=conf_dir,
            config_file=config_file.resolve(),
            values=MappingProxyType(merged),
            auxiliary_ports=MappingProxyType(auxiliary),
            allocated_ports=tuple(allocated),
        )

    def _computed_values(self, overrides: Mapping[str, Any], allocated: list[int]) -> dict[str, Any]:
        settings = self.settings
        computed: dict[str, Any] = {}

        if settings.port_key not in overrides:
            port = self.allocator.allocate(*settings.port_range)
            allocated.append(port)
            computed[settings.port_key] = port

        if settings.storage_path_key not in overrides:
            storage = Path(settings.storage_root) / f"{settings.storage_prefix}-{uuid.uuid4()}"
            computed[settings.storage_path_key] = str(storage)

        for key in settings.auxiliary_port_keys:
            if key in overrides:
                continue
            port = self.allocator.allocate(*settings.auxiliary_port_range)
            allocated.append(port)
            computed[key] = port

        return computed

    def _check_writable(self, conf_dir: Path) -> None:
        if not conf_dir.is_dir() or not os.access(conf_dir, os.W_OK):
            raise ConfigurationError(
                message="Output directory is not writable",
                path=str(conf_dir),
                error_code=ErrorCode.OUTPUT_NOT_WRITABLE,
            )

    def _copy(self, source: Path, target: Path) -> None:
        try:
            shutil.copyfile(source, target)
        except OSError as e:
            raise ConfigurationError(
                message=f"Cannot copy {source.name}: {e}",
                path=str(target),
                error_code=ErrorCode.OUTPUT_NOT_WRITABLE,
                cause=e,
            ) from e

    @staticmethod
    def _int_value(values: Mapping[str, Any], key: str) -> int:
        try:
            return int(str(values[key]).strip())
        except KeyError as e:
            raise ConfigurationError(
                message=f"Configuration has no value for '{key}'",
                key=key,
                error_code=ErrorCode.MERGE_CONFLICT,
            ) from e
        except ValueError as e:
            raise ConfigurationError(
                message=f"'{key}' must be a port number, got {values[key]!r}",
                key=key,
                error_code=ErrorCode.MERGE_CONFLICT,
            ) from e
