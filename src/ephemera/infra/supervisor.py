"""Background supervision of the backend's blocking entry point.

A supervisor owns a single execution slot. ``launch`` starts the service
with the absolute path of its generated config file as the only argument
and returns immediately; ``request_stop`` sends a cooperative stop signal
and reclaims the execution by force once the grace period has passed.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from pathlib import Path

from ephemera.errors import ErrorContext, LifecyclePreconditionError, StartupError
from ephemera.infra.materialize import RuntimeConfig

logger = logging.getLogger(__name__)

SERVICE_LOG = "service.log"

EntryPoint = Callable[[str, threading.Event], None]


class SupervisedExecution(ABC):
    """Handle to the unit of concurrency running the service."""

    def __init__(self) -> None:
        self.stop_requested = False

    @abstractmethod
    def is_done(self) -> bool:
        """Non-blocking check whether the execution has finished."""

    @abstractmethod
    def join(self, timeout: float | None = None) -> bool:
        """Wait up to ``timeout`` seconds; return True if finished."""

    @property
    @abstractmethod
    def error(self) -> str | None:
        """Description of the failure, or None if the execution did not fail."""

    @property
    def failed(self) -> bool:
        return self.error is not None


class ProcessExecution(SupervisedExecution):
    """A backend running as a child process."""

    def __init__(self, process: subprocess.Popen[bytes], log_path: Path) -> None:
        super().__init__()
        self.process = process
        self.log_path = log_path

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def exit_code(self) -> int | None:
        return self.process.poll()

    def is_done(self) -> bool:
        return self.process.poll() is not None

    def join(self, timeout: float | None = None) -> bool:
        try:
            self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return False
        return True

    @property
    def error(self) -> str | None:
        code = self.exit_code
        if code is None or code == 0 or self.stop_requested:
            return None
        return f"service process exited with code {code}"


class ThreadExecution(SupervisedExecution):
    """A backend running in-process on a daemon thread."""

    def __init__(self, entry_point: EntryPoint, config_file: str, name: str) -> None:
        super().__init__()
        self.stop_event = threading.Event()
        self.exception: BaseException | None = None
        self._entry_point = entry_point
        self._config_file = config_file
        self.thread = threading.Thread(target=self._run, name=name, daemon=True)

    def _run(self) -> None:
        try:
            self._entry_point(self._config_file, self.stop_event)
        except Exception as e:
            logger.exception(f"Exception in supervised service {self.thread.name}")
            self.exception = e

    def start(self) -> None:
        self.thread.start()

    def is_done(self) -> bool:
        return not self.thread.is_alive()

    def join(self, timeout: float | None = None) -> bool:
        self.thread.join(timeout)
        return not self.thread.is_alive()

    @property
    def error(self) -> str | None:
        if self.exception is None:
            return None
        return f"{type(self.exception).__name__}: {self.exception}"


class ServiceSupervisor(ABC):
    """Owns at most one active SupervisedExecution."""

    def __init__(self) -> None:
        self._execution: SupervisedExecution | None = None

    @property
    def execution(self) -> SupervisedExecution | None:
        return self._execution

    def is_done(self) -> bool:
        return self._execution is None or self._execution.is_done()

    def launch(self, runtime_config: RuntimeConfig) -> SupervisedExecution:
        """Start the service for ``runtime_config`` without blocking.

        Raises:
            LifecyclePreconditionError: An execution is already active.
        """
        if self._execution is not None and not self._execution.is_done():
            raise LifecyclePreconditionError(
                message="Supervisor already has an active execution",
                context=ErrorContext(operation="launch"),
            )
        self._execution = self._launch(runtime_config)
        return self._execution

    def request_stop(self, grace: float = 5.0) -> None:
        """Signal the execution to stop, then reclaim it after ``grace`` seconds."""
        execution = self._execution
        if execution is None or execution.is_done():
            return
        execution.stop_requested = True
        self._stop(execution, grace)

    def logs(self, tail: int | None = None) -> str:
        return ""

    @abstractmethod
    def _launch(self, runtime_config: RuntimeConfig) -> SupervisedExecution:
        pass

    @abstractmethod
    def _stop(self, execution: SupervisedExecution, grace: float) -> None:
        pass


class ProcessSupervisor(ServiceSupervisor):
    """Runs ``command + [config_file]`` as a child process.

    Output goes to ``service.log`` in the instance's config directory. The
    cooperative stop is SIGTERM, the forced one SIGKILL.
    """

    def __init__(self, command: Sequence[str], env: dict[str, str] | None = None) -> None:
        super().__init__()
        if not command:
            raise ValueError("ProcessSupervisor needs a non-empty command")
        self.command = list(command)
        self.env = env

    def _launch(self, runtime_config: RuntimeConfig) -> ProcessExecution:
        argv = [*self.command, str(runtime_config.config_file)]
        log_path = runtime_config.conf_dir / SERVICE_LOG
        env = {**os.environ, **(self.env or {}), "EPHEMERA_CONF_DIR": str(runtime_config.conf_dir)}

        logger.info(f"Launching service: {' '.join(argv)}")
        with open(log_path, "wb") as log_file:
            try:
                process = subprocess.Popen(
                    argv,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    stdin=subprocess.DEVNULL,
                    env=env,
                )
            except OSError as e:
                raise StartupError(
                    message=f"Could not launch service: {e}",
                    reason="launch_failed",
                    cause=e,
                    context=ErrorContext(instance=runtime_config.base_url, operation="launch"),
                ) from e
        logger.debug(f"Service process started with pid {process.pid}")
        return ProcessExecution(process, log_path)

    def _stop(self, execution: SupervisedExecution, grace: float) -> None:
        assert isinstance(execution, ProcessExecution)
        process = execution.process
        try:
            process.terminate()
        except ProcessLookupError:
            return
        if execution.join(grace):
            logger.debug(f"Service process {process.pid} exited with code {process.returncode}")
            return
        logger.warning(f"Service process {process.pid} ignored SIGTERM for {grace}s, killing it")
        try:
            process.kill()
        except ProcessLookupError:
            return
        execution.join(grace)

    def logs(self, tail: int | None = None) -> str:
        execution = self._execution
        if not isinstance(execution, ProcessExecution) or not execution.log_path.exists():
            return ""
        text = execution.log_path.read_text(encoding="utf-8", errors="replace")
        if tail is not None:
            text = "\n".join(text.splitlines()[-tail:])
        return text


class ThreadSupervisor(ServiceSupervisor):
    """Runs an in-process ``entry_point(config_file, stop_event)`` on a daemon thread.

    The cooperative stop sets ``stop_event``. A Python thread cannot be
    killed, so one that outlives the grace period is logged and left to die
    with the interpreter.
    """

    def __init__(self, entry_point: EntryPoint, name: str = "ephemera-service") -> None:
        super().__init__()
        self.entry_point = entry_point
        self.name = name

    def _launch(self, runtime_config: RuntimeConfig) -> ThreadExecution:
        execution = ThreadExecution(self.entry_point, str(runtime_config.config_file), self.name)
        logger.info(f"Launching in-process service {self.name} with {runtime_config.config_file}")
        execution.start()
        return execution

    def _stop(self, execution: SupervisedExecution, grace: float) -> None:
        assert isinstance(execution, ThreadExecution)
        execution.stop_event.set()
        if not execution.join(grace):
            logger.warning(
                f"Service thread {execution.thread.name} still running {grace}s after stop, abandoning it"
            )

    def logs(self, tail: int | None = None) -> str:
        execution = self._execution
        if isinstance(execution, ThreadExecution) and execution.exception is not None:
            return execution.error or ""
        return ""
