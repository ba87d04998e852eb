"""Encoding of commands for remote shell execution."""

from __future__ import annotations

from collections.abc import Mapping, Sequence


def shell_quote(token: str) -> str:
    """Quote a token for a POSIX shell using single quotes.

    Text between single quote characters is wrapped in single quotes and each
    literal single quote becomes an escaped quote outside of them. Empty text
    around a quote character is dropped rather than wrapped, so "'bash'"
    becomes \\''bash'\\'. A wholly empty token encodes as ''.

    Parameters
    ----------
    token : str
        Token to quote

    Returns
    -------
    str
        Shell-safe representation of the token
    """
    if token == "":
        return "''"

    parts = []
    remaining = token

    while True:
        index = remaining.find("'")

        if index == -1:
            if remaining:
                parts.append(f"'{remaining}'")
            return "".join(parts)

        if index > 0:
            parts.append(f"'{remaining[:index]}'")

        parts.append("\\'")
        remaining = remaining[index + 1 :]


def encode_command(aliases: Mapping[str, str] | None, args: Sequence[str]) -> str:
    """Encode a command and its arguments into one shell command string.

    The first argument is looked up in the alias table. A matching alias is
    substituted verbatim and not quoted; otherwise the first argument itself
    is quoted. Every further argument is quoted on its own.

    Parameters
    ----------
    aliases : Mapping[str, str] | None
        Alias name to literal command string
    args : Sequence[str]
        Command name followed by its arguments

    Returns
    -------
    str
        Base command and quoted arguments joined by single spaces

    Raises
    ------
    ValueError
        If args is empty
    """
    if not args:
        raise ValueError("A command is required")

    name = args[0]
    aliases = aliases or {}

    if name in aliases:
        base = aliases[name]
    else:
        base = shell_quote(name)

    return " ".join([base, *(shell_quote(arg) for arg in args[1:])])
