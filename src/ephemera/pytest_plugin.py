"""pytest plugin exposing ephemeral instances as fixtures.

Enabled automatically through the ``pytest11`` entry point. Settings come
from the environment (``EPHEMERA_*``), so a suite only needs to export
``EPHEMERA_ROOT_DIR`` and ``EPHEMERA_SERVICE_COMMAND``.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest

from ephemera.config.settings import HarnessSettings
from ephemera.fixtures import ServerFactory
from ephemera.infra.lifecycle import EphemeralServer


@pytest.fixture(scope="session")
def ephemera_settings() -> HarnessSettings:
    return HarnessSettings()


@pytest.fixture
def ephemeral_server_factory(ephemera_settings: HarnessSettings) -> Generator[ServerFactory, None, None]:
    factory = ServerFactory(ephemera_settings)
    yield factory
    factory.close()


@pytest.fixture
def ephemeral_server(ephemeral_server_factory: ServerFactory) -> EphemeralServer:
    return ephemeral_server_factory()
