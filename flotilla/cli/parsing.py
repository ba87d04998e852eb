"""CLI argument parsing and parameter conversion utilities."""

from __future__ import annotations

import re
from typing import Any

ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def parse_env_parameter(env: str | list[str] | tuple[str, ...] | dict[str, Any]) -> dict[str, str]:
    """Parse env parameter into a mapping of variable names to values.

    Parameters
    ----------
    env : str | list[str] | tuple[str, ...] | dict[str, Any]
        Comma-separated ``KEY=VALUE`` pairs, a list of pairs, or a mapping
        (python-fire turns ``--env '{"A": 1}'`` into a dict)

    Returns
    -------
    dict[str, str]
        Environment variables to set

    Raises
    ------
    ValueError
        If a pair has no ``=`` or an invalid variable name
    """
    if isinstance(env, dict):
        pairs = [(str(k), str(v)) for k, v in env.items()]
    else:
        items = env if isinstance(env, (list, tuple)) else str(env).split(",")
        pairs = []
        for item in items:
            item = str(item).strip()
            if not item:
                continue
            if "=" not in item:
                raise ValueError(f"Invalid env value: '{item}' is not in KEY=VALUE form")
            key, value = item.split("=", 1)
            pairs.append((key.strip(), value))

    result: dict[str, str] = {}
    for key, value in pairs:
        if not ENV_NAME_PATTERN.match(key):
            raise ValueError(f"Invalid environment variable name: '{key}'")
        result[key] = value

    return result


def parse_machine_ids(machine_ids: tuple[Any, ...] | list[Any]) -> list[str]:
    """Normalize machine IDs given as arguments or comma-separated lists.

    Duplicates are dropped, the first occurrence keeps its position.
    """
    result: list[str] = []
    for raw in machine_ids:
        for machine_id in str(raw).split(","):
            machine_id = machine_id.strip()
            if machine_id and machine_id not in result:
                result.append(machine_id)
    return result


def build_update_delta(
    image: str | None,
    env: str | list[str] | tuple[str, ...] | dict[str, Any] | None,
) -> dict[str, Any]:
    """Build a machine configuration delta from update options.

    Raises
    ------
    ValueError
        If no option describes a change
    """
    delta: dict[str, Any] = {}

    if image is not None:
        if not str(image).strip():
            raise ValueError("image must not be empty")
        delta["image"] = str(image).strip()

    if env is not None:
        env_vars = parse_env_parameter(env)
        if env_vars:
            delta["env"] = env_vars

    if not delta:
        raise ValueError("Nothing to update: pass --image and/or --env")

    return delta


__all__ = [
    "parse_env_parameter",
    "parse_machine_ids",
    "build_update_delta",
]
