"""Platform providers and their shared error types."""

from __future__ import annotations

from flotilla.providers.exceptions import (
    CleanupWarning,
    ConfigValidationError,
    FlotillaError,
    LeaseConflictError,
    MachineNotFoundError,
    ProviderAPIError,
    ProviderConnectionError,
    ProviderCredentialsError,
    ProviderError,
    SelectionCancelledError,
    UnexpectedTerminationError,
    WaitCancelledError,
    WaitError,
    WaitTimeoutError,
)

__all__ = [
    "FlotillaError",
    "ProviderError",
    "ProviderCredentialsError",
    "ProviderConnectionError",
    "ProviderAPIError",
    "MachineNotFoundError",
    "LeaseConflictError",
    "ConfigValidationError",
    "WaitError",
    "WaitTimeoutError",
    "UnexpectedTerminationError",
    "WaitCancelledError",
    "SelectionCancelledError",
    "CleanupWarning",
]
