"""Core flotilla functionality."""

from __future__ import annotations

from flotilla.core.signals import CancellationScope, signal_handlers

__all__ = [
    "CancellationScope",
    "signal_handlers",
]
