"""Infrastructure management module for ephemera."""

from ephemera.infra.base import BaseInfrastructureManager
from ephemera.infra.cleanup import CleanupReport, cleanup
from ephemera.infra.health import HealthProbe, HealthProbeResult
from ephemera.infra.lifecycle import EphemeralServer, LifecycleState
from ephemera.infra.materialize import ConfigMaterializer, InstanceContext, RuntimeConfig
from ephemera.infra.polling import PollOutcome, ReadinessPoller
from ephemera.infra.ports import PortAllocator, find_available_port, is_port_free
from ephemera.infra.supervisor import (
    ProcessExecution,
    ProcessSupervisor,
    ServiceSupervisor,
    SupervisedExecution,
    ThreadExecution,
    ThreadSupervisor,
)

__all__ = [
    # Base classes
    "BaseInfrastructureManager",
    # Lifecycle
    "EphemeralServer",
    "LifecycleState",
    # Configuration
    "ConfigMaterializer",
    "InstanceContext",
    "RuntimeConfig",
    # Ports
    "PortAllocator",
    "find_available_port",
    "is_port_free",
    # Supervision
    "ServiceSupervisor",
    "SupervisedExecution",
    "ProcessSupervisor",
    "ProcessExecution",
    "ThreadSupervisor",
    "ThreadExecution",
    # Readiness
    "HealthProbe",
    "HealthProbeResult",
    "PollOutcome",
    "ReadinessPoller",
    # Cleanup
    "CleanupReport",
    "cleanup",
]
