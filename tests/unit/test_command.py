"""Unit tests for remote command encoding."""

import shlex

import pytest

from flotilla.core.command import encode_command, shell_quote


@pytest.mark.parametrize(
    "token, expected",
    [
        ("bash", "'bash'"),
        ("bash -x", "'bash -x'"),
        ("'bash'", "\\''bash'\\'"),
        (
            "'multiple' 'single quotes'",
            "\\''multiple'\\'' '\\''single quotes'\\'",
        ),
        ("it's", "'it'\\''s'"),
        ("'", "\\'"),
        ("", "''"),
    ],
)
def test_shell_quote(token: str, expected: str) -> None:
    assert shell_quote(token) == expected


@pytest.mark.parametrize("token", ["ls", "a b  c", "$HOME", "`id`", "semi;colon", "tab\there"])
def test_shell_quote_without_quotes_wraps_once(token: str) -> None:
    quoted = shell_quote(token)

    assert quoted == f"'{token}'"
    assert quoted.count("'") == 2


@pytest.mark.parametrize(
    "token",
    ["bash", "'bash'", "it's a \"test\"", "''", "x'''y", "$(rm -rf /)", "", "new\nline"],
)
def test_shell_quote_survives_posix_shell_split(token: str) -> None:
    assert shlex.split(shell_quote(token)) == [token]


def test_encode_command_substitutes_alias_verbatim() -> None:
    aliases = {"deploy": "./deploy.sh --prod"}

    assert encode_command(aliases, ["deploy", "extra arg"]) == "./deploy.sh --prod 'extra arg'"


def test_encode_command_quotes_unknown_command() -> None:
    assert encode_command({"deploy": "./deploy.sh"}, ["bash", "-c", "echo hi"]) == (
        "'bash' '-c' 'echo hi'"
    )


def test_encode_command_without_aliases() -> None:
    assert encode_command(None, ["ls"]) == "'ls'"


def test_encode_command_keeps_empty_arguments() -> None:
    command = encode_command(None, ["printf", "%s|", "", "x"])

    assert shlex.split(command) == ["printf", "%s|", "", "x"]


def test_encode_command_only_looks_up_first_argument() -> None:
    aliases = {"deploy": "./deploy.sh"}

    assert encode_command(aliases, ["echo", "deploy"]) == "'echo' 'deploy'"


def test_encode_command_requires_arguments() -> None:
    with pytest.raises(ValueError, match="command is required"):
        encode_command({}, [])
