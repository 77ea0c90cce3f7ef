"""Lifecycle tests running the fake backend as a child process."""

from __future__ import annotations

import sys
from pathlib import Path

import httpx
import pytest

from ephemera.config import HarnessSettings
from ephemera.errors import StartupError
from ephemera.infra import EphemeralServer, LifecycleState, ProcessExecution, ProcessSupervisor

BACKEND_SCRIPT = Path(__file__).parent / "backend.py"
SRC_DIR = Path(__file__).parent.parent / "src"

pytestmark = [
    pytest.mark.live,
    pytest.mark.skipif(sys.platform == "win32", reason="relies on POSIX signals"),
]


@pytest.fixture
def process_settings(settings: HarnessSettings) -> HarnessSettings:
    return settings.model_copy(update={"startup_timeout": 20.0, "shutdown_timeout": 10.0})


def test_start_and_stop(process_settings: HarnessSettings, process_supervisor: ProcessSupervisor) -> None:
    server = EphemeralServer(process_settings, supervisor=process_supervisor)

    server.start()
    try:
        execution = server.execution
        assert isinstance(execution, ProcessExecution)
        assert not execution.is_done()
        response = httpx.get(f"{server.base_url}/api/version", trust_env=False)
        assert response.status_code == 200
    finally:
        server.stop()

    assert server.state is LifecycleState.STOPPED
    assert execution.is_done()
    assert not execution.failed


def test_bind_failure_reports_log_tail(process_settings: HarnessSettings) -> None:
    supervisor = ProcessSupervisor(
        [sys.executable, str(BACKEND_SCRIPT)],
        env={"PYTHONPATH": str(SRC_DIR)},
    )
    server = EphemeralServer(process_settings, context={"test.fail_bind": "true"}, supervisor=supervisor)

    with pytest.raises(StartupError) as exc_info:
        server.start()

    assert exc_info.value.reason == "exited"
    assert "bind failure" in exc_info.value.log_tail
    assert "exited with code 3" in exc_info.value.message
    assert server.state is LifecycleState.FAILED
    assert server.execution.is_done()
    assert server.execution.failed
    assert server.execution.exit_code == 3


def test_service_command_from_settings(process_settings: HarnessSettings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTHONPATH", str(SRC_DIR))
    settings = process_settings.model_copy(update={"service_command": [sys.executable, str(BACKEND_SCRIPT)]})

    with EphemeralServer(settings) as server:
        assert isinstance(server.supervisor, ProcessSupervisor)
        assert server.is_running()

    assert server.state is LifecycleState.STOPPED
