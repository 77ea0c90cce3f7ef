"""Pytest fixtures for ephemera tests."""

from __future__ import annotations

import os
import sys
from collections.abc import Generator
from pathlib import Path

import pytest

from ephemera.config import HarnessSettings
from ephemera.infra import PortAllocator, ProcessSupervisor, ThreadSupervisor
from tests.backend import FakeBackend

BACKEND_SCRIPT = Path(__file__).parent / "backend.py"
SRC_DIR = Path(__file__).parent.parent / "src"

CONF_TEMPLATE = """\
# Backend server configuration
server.webserver.host = 127.0.0.1
server.webserver.httpPort = 8090
server.webserver.minThreads = 4
entry.kv.backend.path = /tmp/placeholder
catalog.cache.enabled = true
"""

ENV_TEMPLATE = """\
# export JAVA_HOME=
export SERVER_OPTS="-Xmx512m"
"""


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep EPHEMERA_* variables from the outer shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("EPHEMERA_"):
            monkeypatch.delenv(key)


@pytest.fixture
def backend_root(tmp_path: Path) -> Path:
    """A fake backend distribution with conf/ templates."""
    root = tmp_path / "backend"
    conf = root / "conf"
    conf.mkdir(parents=True)
    (conf / "server.conf.template").write_text(CONF_TEMPLATE)
    (conf / "server-env.sh.template").write_text(ENV_TEMPLATE)
    return root


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    path = tmp_path / "storage"
    path.mkdir()
    return path


@pytest.fixture
def settings(backend_root: Path, storage_root: Path) -> HarnessSettings:
    """Settings with short timings so failure paths finish quickly."""
    return HarnessSettings(
        root_dir=backend_root,
        storage_root=str(storage_root),
        poll_interval=0.05,
        startup_timeout=5.0,
        shutdown_timeout=5.0,
        stop_grace=2.0,
    )


@pytest.fixture
def allocator() -> PortAllocator:
    return PortAllocator()


@pytest.fixture
def fake_backend() -> Generator[FakeBackend, None, None]:
    backend = FakeBackend()
    yield backend
    backend.kill.set()


@pytest.fixture
def thread_supervisor(fake_backend: FakeBackend) -> ThreadSupervisor:
    return ThreadSupervisor(fake_backend, name="fake-backend")


@pytest.fixture
def process_supervisor() -> ProcessSupervisor:
    return ProcessSupervisor(
        [sys.executable, str(BACKEND_SCRIPT)],
        env={"PYTHONPATH": str(SRC_DIR)},
    )
