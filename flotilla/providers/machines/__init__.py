"""Machines platform provider."""

from __future__ import annotations

from flotilla.providers.machines.client import MachinesClient
from flotilla.providers.machines.models import (
    HealthCheckStatus,
    Lease,
    Machine,
    MachineEvent,
)

__all__ = [
    "MachinesClient",
    "Machine",
    "MachineEvent",
    "HealthCheckStatus",
    "Lease",
]
