"""Abstract base class for managed service instances."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ephemera.errors import ErrorContext, LifecyclePreconditionError


class BaseInfrastructureManager(ABC):
    """Start/stop/health contract shared by managed service instances."""

    def __init__(self, name: str | None = None) -> None:
        self.name = name or self.__class__.__name__
        self._running = False

    @abstractmethod
    def start(self) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        pass

    @abstractmethod
    def wait_healthy(self, timeout: float = 60.0) -> bool:
        pass

    @abstractmethod
    def logs(self, tail: int | None = None) -> str:
        pass

    @abstractmethod
    def is_running(self) -> bool:
        pass

    def _ensure_running(self) -> None:
        if not self._running:
            raise LifecyclePreconditionError(
                message=f"{self.name} is not running. Call start() first.",
                context=ErrorContext(instance=self.name),
            )
