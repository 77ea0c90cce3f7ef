"""Helpers for using ephemeral instances from test suites."""

from __future__ import annotations

import logging
from collections.abc import Generator, Mapping
from contextlib import contextmanager
from typing import Any

from ephemera.config.settings import HarnessSettings
from ephemera.errors import ShutdownError
from ephemera.infra.lifecycle import EphemeralServer, LifecycleState
from ephemera.infra.supervisor import ServiceSupervisor

logger = logging.getLogger(__name__)


@contextmanager
def running_server(
    settings: HarnessSettings | None = None,
    context: Mapping[str, Any] | None = None,
    supervisor: ServiceSupervisor | None = None,
    raise_on_shutdown_error: bool = True,
) -> Generator[EphemeralServer, None, None]:
    """Start an instance for the duration of a ``with`` block.

    Shutdown failures are re-raised unless ``raise_on_shutdown_error`` is
    False, in which case they are only logged.
    """
    server = EphemeralServer(settings, context=context, supervisor=supervisor)
    server.start()
    try:
        yield server
    finally:
        if server.state is LifecycleState.RUNNING:
            try:
                server.stop()
            except ShutdownError:
                if raise_on_shutdown_error:
                    raise
                logger.warning(f"Ignoring shutdown failure of {server.name}", exc_info=True)


class ServerFactory:
    """Creates instances on demand and stops whatever is still running on close."""

    def __init__(self, settings: HarnessSettings | None = None) -> None:
        self.settings = settings
        self._servers: list[EphemeralServer] = []

    def __call__(
        self,
        context: Mapping[str, Any] | None = None,
        supervisor: ServiceSupervisor | None = None,
        settings: HarnessSettings | None = None,
    ) -> EphemeralServer:
        server = EphemeralServer(settings or self.settings, context=context, supervisor=supervisor)
        self._servers.append(server)
        server.start()
        return server

    def close(self) -> None:
        for server in reversed(self._servers):
            if server.state is LifecycleState.RUNNING:
                try:
                    server.stop()
                except ShutdownError:
                    logger.warning(f"Failed to stop {server.name}", exc_info=True)
        self._servers.clear()
