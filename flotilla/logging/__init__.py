"""Logging setup helpers for the flotilla CLI."""

from flotilla.logging.formatters import StreamFormatter, StreamRoutingFilter

__all__ = ["StreamFormatter", "StreamRoutingFilter"]
