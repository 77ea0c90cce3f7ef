"""Custom exception hierarchy for ephemera.

Every error raised by the harness inherits from EphemeraError and carries:
- error_code: A unique ErrorCode enum for categorization
- context: ErrorContext with instance/operation details
- suggestions: List of actionable steps to resolve the issue

Example:
    try:
        server.start()
    except StartupError as e:
        print(f"Error: {e}")
        for suggestion in e.suggestions:
            print(f"  - {suggestion}")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ErrorCode(Enum):
    """Standardized error codes for ephemera.

    Error codes are organized by category:
    - E1xx: Resource allocation errors
    - E2xx: Configuration errors
    - E3xx: Lifecycle errors
    - E9xx: Unknown/internal errors
    """

    # Resource allocation errors (E1xx)
    NO_AVAILABLE_PORT = "E101"

    # Configuration errors (E2xx)
    INVALID_CONFIG = "E201"
    TEMPLATE_MISSING = "E202"
    OUTPUT_NOT_WRITABLE = "E203"
    MERGE_CONFLICT = "E204"

    # Lifecycle errors (E3xx)
    STARTUP_FAILED = "E301"
    SHUTDOWN_FAILED = "E302"
    PRECONDITION_VIOLATED = "E303"

    # Unknown/internal errors (E9xx)
    UNKNOWN = "E999"

    @property
    def category(self) -> str:
        """Get the error category name."""
        code_num = int(self.value[1:])
        if code_num < 200:
            return "allocation"
        elif code_num < 300:
            return "configuration"
        elif code_num < 400:
            return "lifecycle"
        else:
            return "unknown"


@dataclass
class ErrorContext:
    """Structured context for error logging and debugging.

    Attributes:
        instance: Identifier of the ephemeral instance (usually its base URL)
        operation: Lifecycle operation that failed (start, stop, materialize)
        state: Lifecycle state at the moment of failure
        extra: Additional context-specific information
        timestamp: When the error occurred
    """

    instance: str | None = None
    operation: str | None = None
    state: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for serialization."""
        result = {
            "instance": self.instance,
            "operation": self.operation,
            "state": self.state,
            "extra": self.extra,
            "timestamp": self.timestamp.isoformat(),
        }
        return {k: v for k, v in result.items() if v is not None}

    def format_location(self) -> str:
        """Format the error location as a readable string."""
        parts = []
        if self.instance:
            parts.append(f"instance={self.instance}")
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.state:
            parts.append(f"state={self.state}")
        return " > ".join(parts) if parts else "unknown location"


class EphemeraError(Exception):
    """Base exception for all ephemera errors.

    Attributes:
        error_code: Unique ErrorCode for this error type
        message: Human-readable error description
        context: ErrorContext with lifecycle details
        suggestions: List of actionable steps to resolve the issue
        recoverable: Whether rerunning the operation may succeed
        cause: The underlying exception (if any)
    """

    error_code: ErrorCode = ErrorCode.UNKNOWN
    default_message: str = "An unexpected error occurred"
    default_suggestions: list[str] = []
    recoverable: bool = True

    def __init__(
        self,
        message: str | None = None,
        error_code: ErrorCode | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
        recoverable: bool | None = None,
        suggestions: list[str] | None = None,
        **extra_context: Any,
    ) -> None:
        self.message = message or self.default_message
        self.error_code = error_code or self.error_code
        self.context = context or ErrorContext()
        self.cause = cause
        if recoverable is not None:
            self.recoverable = recoverable
        self._suggestions = suggestions

        if extra_context:
            self.context.extra.update(extra_context)

        super().__init__(self.message)

    @property
    def suggestions(self) -> list[str]:
        """Get actionable suggestions for resolving this error."""
        if self._suggestions is not None:
            return self._suggestions
        return self.default_suggestions.copy()

    def __str__(self) -> str:
        parts = [f"[{self.error_code.value}] {self.message}"]

        location = self.context.format_location()
        if location != "unknown location":
            parts.append(f"at {location}")

        return " | ".join(parts)

    def format_verbose(self) -> str:
        """Format error with full details including suggestions."""
        lines = [
            f"Error [{self.error_code.value}]: {self.message}",
            "",
        ]

        location = self.context.format_location()
        if location != "unknown location":
            lines.append(f"Location: {location}")

        for key, value in self.context.extra.items():
            lines.append(f"{key}: {value}")

        if self.suggestions:
            lines.append("")
            lines.append("Suggestions:")
            for suggestion in self.suggestions:
                lines.append(f"  - {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error_code": self.error_code.value,
            "error_type": self.__class__.__name__,
            "message": self.message,
            "recoverable": self.recoverable,
            "suggestions": self.suggestions,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(EphemeraError):
    """The runtime configuration could not be produced.

    Raised when the template is missing, the output location is not
    writable, an override cannot be merged, or harness settings are invalid.
    Never retried.
    """

    error_code = ErrorCode.INVALID_CONFIG
    default_message = "Invalid configuration"
    recoverable = False
    default_suggestions = [
        "Check that EPHEMERA_ROOT_DIR points at the backend distribution",
        "Verify the conf/ directory contains the configuration template",
        "Make sure the temporary directory is writable",
    ]

    def __init__(
        self,
        message: str | None = None,
        path: str | None = None,
        key: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.path = path
        self.key = key
        super().__init__(message=message, **kwargs)

    def __str__(self) -> str:
        base = super().__str__()
        if self.path:
            base = f"{base} (path: {self.path})"
        if self.key:
            base = f"{base} (key: {self.key})"
        return base

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["path"] = self.path
        result["key"] = self.key
        return result


class NoAvailablePortError(EphemeraError):
    """No free TCP port was found in the requested range."""

    error_code = ErrorCode.NO_AVAILABLE_PORT
    default_message = "No available port in range"
    recoverable = False
    default_suggestions = [
        "Widen the port range in the harness settings",
        "Check for leaked backend processes still holding ports",
    ]

    def __init__(
        self,
        message: str | None = None,
        low: int | None = None,
        high: int | None = None,
        attempts: int = 0,
        **kwargs: Any,
    ) -> None:
        self.low = low
        self.high = high
        self.attempts = attempts
        if message is None and low is not None and high is not None:
            message = f"No available port in [{low}, {high}] after {attempts} attempts"
        super().__init__(message=message, **kwargs)


class LifecycleError(EphemeraError):
    """Base class for errors raised while driving an instance's lifecycle."""


class StartupError(LifecycleError):
    """The service did not become ready.

    ``reason`` is ``"timeout"`` when the deadline elapsed and ``"exited"``
    when the supervised execution finished before readiness was reached.
    """

    error_code = ErrorCode.STARTUP_FAILED
    default_message = "Service did not become ready"
    default_suggestions = [
        "Inspect the service log captured in the error context",
        "Rerun the test: the assigned port may have been taken before bind",
        "Increase the readiness deadline if the service starts slowly",
    ]

    def __init__(
        self,
        message: str | None = None,
        reason: str = "timeout",
        log_tail: str = "",
        **kwargs: Any,
    ) -> None:
        self.reason = reason
        self.log_tail = log_tail
        super().__init__(message=message, **kwargs)


class ShutdownError(LifecycleError):
    """The service still reported healthy after the shutdown deadline."""

    error_code = ErrorCode.SHUTDOWN_FAILED
    default_message = "Service is still healthy after shutdown"
    default_suggestions = [
        "Check that the service honours SIGTERM or its stop event",
        "Look for another process answering on the same port",
    ]


class LifecyclePreconditionError(LifecycleError):
    """start()/stop()/launch() was called in a state that does not allow it."""

    error_code = ErrorCode.PRECONDITION_VIOLATED
    default_message = "Lifecycle operation called out of order"
    recoverable = False
    default_suggestions = [
        "Call start() exactly once on a new instance",
        "Only call stop() after start() returned successfully",
    ]
