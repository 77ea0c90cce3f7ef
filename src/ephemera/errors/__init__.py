"""ephemera error handling module.

Provides the exception hierarchy raised while materializing configuration,
allocating ports and driving an instance through its lifecycle.
"""

from ephemera.errors.base import (
    ConfigurationError,
    EphemeraError,
    ErrorCode,
    ErrorContext,
    LifecycleError,
    LifecyclePreconditionError,
    NoAvailablePortError,
    ShutdownError,
    StartupError,
)

__all__ = [
    # Base exceptions
    "EphemeraError",
    "ErrorCode",
    "ErrorContext",
    # Setup errors
    "ConfigurationError",
    "NoAvailablePortError",
    # Lifecycle errors
    "LifecycleError",
    "StartupError",
    "ShutdownError",
    "LifecyclePreconditionError",
]
