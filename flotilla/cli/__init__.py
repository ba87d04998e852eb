"""CLI argument parsing and handling."""

from __future__ import annotations

from flotilla.cli.parsing import (
    build_update_delta,
    parse_env_parameter,
    parse_machine_ids,
)

__all__ = [
    "build_update_delta",
    "parse_env_parameter",
    "parse_machine_ids",
]
