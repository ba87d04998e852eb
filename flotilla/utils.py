"""Utility functions for flotilla."""

import logging
import sys
from datetime import datetime, timezone
from typing import Any

from flotilla.constants import DEFAULT_NAME_COLUMN_WIDTH

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400


def log_and_print_error(message: str, *args: Any) -> None:
    """Log error message and print to stderr.

    Parameters
    ----------
    message : str
        Error message with optional format placeholders
    *args : Any
        Format arguments for message
    """
    logging.error(message, *args)
    formatted_msg = message % args if args else message
    print(f"Error: {formatted_msg}", file=sys.stderr)


def truncate_name(name: str, max_width: int = DEFAULT_NAME_COLUMN_WIDTH) -> str:
    """Truncate name to fit in column width.

    Parameters
    ----------
    name : str
        Name to truncate
    max_width : int
        Maximum width for name (default: DEFAULT_NAME_COLUMN_WIDTH)

    Returns
    -------
    str
        Truncated name with ellipsis if exceeds max_width, otherwise original name
    """
    if len(name) > max_width:
        return name[: max_width - 3] + "..."

    return name


def format_time_ago(timestamp: str) -> str:
    """Format an ISO 8601 timestamp as human-readable time ago.

    Parameters
    ----------
    timestamp : str
        Timestamp as returned by the platform, empty when unknown

    Returns
    -------
    str
        Human-readable time string (e.g., "2h ago", "30m ago", "5d ago"),
        "-" when the timestamp is missing or cannot be parsed
    """
    if not timestamp:
        return "-"

    try:
        dt = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return "-"

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    seconds = (datetime.now(timezone.utc) - dt).total_seconds()

    if seconds < SECONDS_PER_MINUTE:
        return "just now"
    elif seconds < SECONDS_PER_HOUR:
        return f"{int(seconds / SECONDS_PER_MINUTE)}m ago"
    elif seconds < SECONDS_PER_DAY:
        return f"{int(seconds / SECONDS_PER_HOUR)}h ago"
    else:
        return f"{int(seconds / SECONDS_PER_DAY)}d ago"
