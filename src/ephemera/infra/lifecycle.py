"""Lifecycle orchestration for one ephemeral backend instance.

``EphemeralServer`` sequences materialize, launch, readiness wait, and later
shutdown, shutdown wait and cleanup. It holds the authoritative state::

    NEW -> STARTING -> RUNNING -> STOPPING -> STOPPED
               \\                     \\
                -> FAILED              -> FAILED

``start()`` and ``stop()`` block the caller until a terminal outcome is
reached. Calling them concurrently against the same instance is not
supported.

Example:
    >>> settings = HarnessSettings(root_dir="/opt/backend",
    ...                            service_command=["/opt/backend/bin/server"])
    >>> with EphemeralServer(settings, context={"server.auth.enabled": "false"}) as server:
    ...     httpx.get(f"{server.base_url}/api/version")
"""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from ephemera.config.settings import HarnessSettings
from ephemera.errors import (
    ConfigurationError,
    ErrorContext,
    LifecyclePreconditionError,
    ShutdownError,
    StartupError,
)
from ephemera.infra.base import BaseInfrastructureManager
from ephemera.infra.cleanup import CleanupReport, cleanup
from ephemera.infra.health import HealthProbe, HealthProbeResult
from ephemera.infra.materialize import ConfigMaterializer, InstanceContext, RuntimeConfig
from ephemera.infra.polling import PollOutcome, ReadinessPoller
from ephemera.infra.ports import PortAllocator, default_allocator
from ephemera.infra.supervisor import (
    ProcessSupervisor,
    ServiceSupervisor,
    SupervisedExecution,
)

logger = logging.getLogger(__name__)

LOG_TAIL_LINES = 50


class LifecycleState(Enum):
    """Lifecycle of one instance. FAILED is absorbing."""

    NEW = "new"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


class EphemeralServer(BaseInfrastructureManager):
    """Boots an isolated backend instance for a test session."""

    def __init__(
        self,
        settings: HarnessSettings | None = None,
        context: InstanceContext | Mapping[str, Any] | None = None,
        supervisor: ServiceSupervisor | None = None,
        allocator: PortAllocator | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(name=name or "EphemeralServer")
        self.settings = settings or HarnessSettings()
        if context is None or isinstance(context, InstanceContext):
            self.context = context or InstanceContext()
        else:
            self.context = InstanceContext(custom_config=context)
        self.allocator = allocator or default_allocator
        self._supervisor = supervisor
        self._materializer = ConfigMaterializer(self.settings, self.allocator)
        self._state = LifecycleState.NEW
        self._conf_dir: Path | None = None
        self._runtime_config: RuntimeConfig | None = None
        self._probe: HealthProbe | None = None
        self.cleanup_report: CleanupReport | None = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def runtime_config(self) -> RuntimeConfig | None:
        return self._runtime_config

    @property
    def base_url(self) -> str:
        if self._runtime_config is None:
            raise LifecyclePreconditionError(
                message="Instance has no runtime configuration yet",
                context=self._error_context("base_url"),
            )
        return self._runtime_config.base_url

    @property
    def supervisor(self) -> ServiceSupervisor | None:
        return self._supervisor

    @property
    def execution(self) -> SupervisedExecution | None:
        return self._supervisor.execution if self._supervisor else None

    def server_config(self) -> dict[str, Any]:
        """Return the merged configuration the service was launched with."""
        if self._runtime_config is None:
            return {}
        return dict(self._runtime_config.values)

    def start(self) -> None:
        """Materialize config, launch the service and wait until it is healthy.

        Raises:
            LifecyclePreconditionError: The instance is not NEW.
            ConfigurationError: The config could not be produced.
            NoAvailablePortError: No free port in a configured range.
            StartupError: The service exited or missed the readiness deadline.
        """
        if self._state is not LifecycleState.NEW:
            raise LifecyclePreconditionError(
                message=f"start() requires state NEW, not {self._state.name}",
                context=self._error_context("start"),
            )

        logger.info(f"Starting {self.name} up...")
        self._state = LifecycleState.STARTING
        try:
            supervisor = self._resolve_supervisor()
            self._conf_dir = Path(tempfile.mkdtemp(prefix="ephemera-"))
            runtime = self._materializer.materialize(self._conf_dir, self.context)
            self._runtime_config = runtime
            self._probe = HealthProbe(
                runtime.base_url,
                path=self.settings.health_path,
                timeout=self.settings.probe_timeout,
            )
            execution = supervisor.launch(runtime)
        except Exception:
            self._fail_start()
            raise

        poller = ReadinessPoller(self.settings.poll_interval, self.settings.startup_timeout)
        try:
            outcome = poller.wait_until(HealthProbeResult.HEALTHY, self._probe, execution.is_done)
        except BaseException:
            self._fail_start()
            raise

        if outcome.reached:
            self._state = LifecycleState.RUNNING
            self._running = True
            logger.info(f"{self.name} started at {runtime.base_url}")
            return

        log_tail = supervisor.logs(tail=LOG_TAIL_LINES)
        if outcome is PollOutcome.EXITED_EARLY:
            reason = "exited"
            message = f"Service exited before becoming ready ({execution.error or 'no error reported'})"
        else:
            reason = "timeout"
            message = f"Service did not become ready within {self.settings.startup_timeout}s"
        self._fail_start()
        raise StartupError(
            message=message,
            reason=reason,
            log_tail=log_tail,
            context=self._error_context("start"),
        )

    def stop(self) -> None:
        """Stop the service, wait until it stops answering and clean up.

        Cleanup runs whether or not shutdown succeeded.

        Raises:
            LifecyclePreconditionError: The instance is not RUNNING.
            ShutdownError: The service was still healthy at the deadline.
        """
        if self._state is not LifecycleState.RUNNING:
            raise LifecyclePreconditionError(
                message=f"stop() requires state RUNNING, not {self._state.name}",
                context=self._error_context("stop"),
            )

        logger.debug(f"{self.name} shutting down...")
        self._state = LifecycleState.STOPPING
        self._running = False
        outcome = PollOutcome.TIMED_OUT
        try:
            assert self._supervisor is not None and self._probe is not None
            self._supervisor.request_stop(self.settings.stop_grace)
            poller = ReadinessPoller(self.settings.poll_interval, self.settings.shutdown_timeout)
            outcome = poller.wait_until(HealthProbeResult.UNHEALTHY, self._probe)
        finally:
            self._cleanup()
            if not outcome.reached:
                self._state = LifecycleState.FAILED

        if not outcome.reached:
            raise ShutdownError(
                message=f"Service still healthy {self.settings.shutdown_timeout}s after stop",
                context=self._error_context("stop"),
            )

        self._state = LifecycleState.STOPPED
        logger.debug(f"{self.name} terminated.")

    def wait_healthy(self, timeout: float = 60.0) -> bool:
        self._ensure_running()
        assert self._probe is not None
        poller = ReadinessPoller(self.settings.poll_interval, timeout)
        return poller.wait_until(HealthProbeResult.HEALTHY, self._probe).reached

    def is_running(self) -> bool:
        if self._state is not LifecycleState.RUNNING or self._probe is None:
            return False
        return self._probe.probe() is HealthProbeResult.HEALTHY

    def logs(self, tail: int | None = None) -> str:
        if self._supervisor is None:
            return ""
        return self._supervisor.logs(tail=tail)

    def _resolve_supervisor(self) -> ServiceSupervisor:
        if self._supervisor is None:
            if not self.settings.service_command:
                raise ConfigurationError(
                    message="No supervisor given and EPHEMERA_SERVICE_COMMAND is empty",
                    key="service_command",
                )
            self._supervisor = ProcessSupervisor(self.settings.service_command)
        return self._supervisor

    def _fail_start(self) -> None:
        self._state = LifecycleState.FAILED
        try:
            if self._supervisor is not None:
                self._supervisor.request_stop(self.settings.stop_grace)
        except Exception:
            logger.exception(f"Could not stop {self.name} after a failed start")
        finally:
            self._cleanup()

    def _cleanup(self) -> None:
        if self._probe is not None:
            self._probe.close()
        runtime = self._runtime_config
        paths: list[Path | None] = [self._conf_dir]
        if runtime is not None:
            paths.append(runtime.storage_path)
            for port in runtime.allocated_ports:
                self.allocator.release(port)
        self.cleanup_report = cleanup(paths)

    def _error_context(self, operation: str) -> ErrorContext:
        instance = self._runtime_config.base_url if self._runtime_config else self.name
        return ErrorContext(instance=instance, operation=operation, state=self._state.name)

    def __enter__(self) -> EphemeralServer:
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._state is LifecycleState.RUNNING:
            self.stop()
