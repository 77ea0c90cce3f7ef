"""ephemera - ephemeral backend instances for integration tests.

Boots an isolated copy of a backend service with its own port and storage
path, waits until its version endpoint reports healthy, and tears it down
so the next run starts clean.

Quick Start:
    from ephemera import EphemeralServer, HarnessSettings

    settings = HarnessSettings(root_dir="/opt/backend",
                               service_command=["/opt/backend/bin/server"])
    with EphemeralServer(settings) as server:
        run_tests_against(server.base_url)
"""

from __future__ import annotations

from ephemera.config import HarnessSettings, load_settings
from ephemera.errors import (
    ConfigurationError,
    EphemeraError,
    LifecyclePreconditionError,
    NoAvailablePortError,
    ShutdownError,
    StartupError,
)
from ephemera.fixtures import ServerFactory, running_server
from ephemera.infra import (
    ConfigMaterializer,
    EphemeralServer,
    HealthProbe,
    HealthProbeResult,
    InstanceContext,
    LifecycleState,
    PollOutcome,
    PortAllocator,
    ProcessSupervisor,
    ReadinessPoller,
    RuntimeConfig,
    ThreadSupervisor,
    cleanup,
    find_available_port,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Settings
    "HarnessSettings",
    "load_settings",
    # Lifecycle
    "EphemeralServer",
    "LifecycleState",
    "InstanceContext",
    "RuntimeConfig",
    "ConfigMaterializer",
    "PortAllocator",
    "find_available_port",
    "ProcessSupervisor",
    "ThreadSupervisor",
    "HealthProbe",
    "HealthProbeResult",
    "PollOutcome",
    "ReadinessPoller",
    "cleanup",
    # Test helpers
    "running_server",
    "ServerFactory",
    # Errors
    "EphemeraError",
    "ConfigurationError",
    "NoAvailablePortError",
    "StartupError",
    "ShutdownError",
    "LifecyclePreconditionError",
]
