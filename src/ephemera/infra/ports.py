"""TCP port allocation for ephemeral instances."""

from __future__ import annotations

import logging
import random
import socket
import threading

from ephemera.errors import ConfigurationError, NoAvailablePortError

logger = logging.getLogger(__name__)

MAX_PROBE_ATTEMPTS = 1000


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    """Return True if a TCP socket can currently bind ``host:port``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


class PortAllocator:
    """Hands out free ports from a closed range.

    Ports handed out stay reserved inside this allocator until released, so
    two live instances in one process never receive the same port even if
    the first has not bound it yet. There is no reservation across
    processes: the port can still be taken between allocation and the
    service's own bind.
    """

    def __init__(self, host: str = "127.0.0.1", max_attempts: int = MAX_PROBE_ATTEMPTS) -> None:
        self.host = host
        self.max_attempts = max_attempts
        self._reserved: set[int] = set()
        self._lock = threading.Lock()

    def allocate(self, low: int, high: int) -> int:
        """Return a port in ``[low, high]`` that is not in use.

        Raises:
            ConfigurationError: If the range is empty or out of bounds.
            NoAvailablePortError: If no free port was found.
        """
        if not (1 <= low <= high <= 65535):
            raise ConfigurationError(message=f"Invalid port range [{low}, {high}]")

        candidates = list(range(low, high + 1))
        random.shuffle(candidates)
        attempts = 0

        with self._lock:
            for port in candidates[: self.max_attempts]:
                if port in self._reserved:
                    continue
                attempts += 1
                if is_port_free(port, self.host):
                    self._reserved.add(port)
                    logger.debug(f"Allocated port {port} from [{low}, {high}]")
                    return port

        raise NoAvailablePortError(low=low, high=high, attempts=attempts)

    def release(self, port: int) -> None:
        with self._lock:
            self._reserved.discard(port)

    def reserved(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._reserved)


default_allocator = PortAllocator()


def find_available_port(low: int, high: int) -> int:
    """Allocate a port from the process-wide default allocator."""
    return default_allocator.allocate(low, high)
