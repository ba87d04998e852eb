"""CLI entry point for Flotilla."""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Callable
from typing import Any

import fire
import paramiko

from flotilla.constants import EXIT_CANCELLED, EXIT_CONFIG_ERROR, EXIT_ERROR
from flotilla.logging import StreamFormatter, StreamRoutingFilter
from flotilla.providers import (
    ConfigValidationError,
    FlotillaError,
    LeaseConflictError,
    MachineNotFoundError,
    ProviderAPIError,
    ProviderConnectionError,
    ProviderCredentialsError,
    SelectionCancelledError,
    UnexpectedTerminationError,
    WaitCancelledError,
    WaitError,
    WaitTimeoutError,
)


def get_flotilla_base_class() -> type:
    """Get Flotilla base class on-demand to avoid circular imports.

    Returns
    -------
    type
        Flotilla base class
    """
    from flotilla.__main__ import Flotilla

    return Flotilla


class FlotillaCLI:
    """CLI wrapper that turns command results into process exit codes.

    This is defined as a factory that creates a subclass of Flotilla
    at runtime to avoid circular import issues.

    Parameters
    ----------
    client_factory : Callable[[dict[str, Any]], Any] | None
        Optional factory building the platform client from the app configuration
    ssh_manager_factory : Callable[..., Any] | None
        Optional factory for SSH sessions
    """

    _cached_class: type | None = None

    def __new__(
        cls,
        client_factory: Callable[[dict[str, Any]], Any] | None = None,
        ssh_manager_factory: Callable[..., Any] | None = None,
    ) -> Any:
        if cls._cached_class is None:
            Flotilla = get_flotilla_base_class()

            class FlotillaCLIImpl(Flotilla):
                """CLI wrapper implementation for Flotilla."""

                def run(
                    self,
                    *args: Any,
                    machine: str | None = None,
                    select: bool = False,
                    keep: bool = False,
                    user: str | None = None,
                    app: str | None = None,
                    verbose: bool = False,
                ) -> None:
                    """Run a command on a machine and exit with its exit code.

                    Parameters
                    ----------
                    *args : Any
                        Command name, or alias from the commands table, and its arguments
                    machine : str | None
                        Run on this existing machine
                    select : bool
                        Pick an existing machine interactively
                    keep : bool
                        Keep an ephemeral machine after the command
                    user : str | None
                        Unix user to run the command as
                    app : str | None
                        App name overriding the configuration
                    verbose : bool
                        Enable debug logging
                    """
                    sys.exit(
                        super().run(
                            *args,
                            machine=machine,
                            select=select,
                            keep=keep,
                            user=user,
                            app=app,
                            verbose=verbose,
                        )
                    )

                def update(
                    self,
                    *machine_ids: Any,
                    image: str | None = None,
                    env: Any = None,
                    all: bool = False,
                    app: str | None = None,
                    verbose: bool = False,
                ) -> None:
                    """Update machines one after another and exit non-zero on failures.

                    Parameters
                    ----------
                    *machine_ids : Any
                        Machines to update
                    image : str | None
                        New image reference
                    env : Any
                        Environment variables to set, as KEY=VALUE,KEY=VALUE
                    all : bool
                        Update every machine of the app
                    app : str | None
                        App name overriding the configuration
                    verbose : bool
                        Enable debug logging
                    """
                    sys.exit(
                        super().update(
                            *machine_ids,
                            image=image,
                            env=env,
                            all=all,
                            app=app,
                            verbose=verbose,
                        )
                    )

            cls._cached_class = FlotillaCLIImpl

        return cls._cached_class(
            client_factory=client_factory,
            ssh_manager_factory=ssh_manager_factory,
        )


def handle_credentials_error(error: ProviderCredentialsError, debug_mode: bool) -> None:
    """Handle missing or rejected API token.

    Parameters
    ----------
    error : ProviderCredentialsError
        The credentials error that was raised
    debug_mode : bool
        Whether debug mode is enabled

    Raises
    ------
    ProviderCredentialsError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise error

    print(f"Authentication failed: {error}\n", file=sys.stderr)
    print("Fix it:", file=sys.stderr)
    print("  export FLOTILLA_API_TOKEN=<token>", file=sys.stderr)
    print("  # or set api_token in flotilla.yaml", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def handle_value_error(error: ValueError, debug_mode: bool) -> None:
    """Handle invalid configuration or arguments.

    Raises
    ------
    ValueError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise error

    print(f"Configuration error: {error}", file=sys.stderr)
    sys.exit(EXIT_CONFIG_ERROR)


def handle_api_error(error: ProviderAPIError, debug_mode: bool) -> None:
    """Handle platform API error with context-specific messages.

    Parameters
    ----------
    error : ProviderAPIError
        The API error that was raised
    debug_mode : bool
        Whether debug mode is enabled

    Raises
    ------
    ProviderAPIError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise error

    if isinstance(error, ConfigValidationError):
        print(f"Machine configuration rejected: {error}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    if isinstance(error, LeaseConflictError):
        print(f"Machine is locked by another operation: {error}\n", file=sys.stderr)
        print("This usually means:", file=sys.stderr)
        print("  - A deploy or another flotilla command is updating it", file=sys.stderr)
        print("  - A previous command crashed; its lease expires on its own\n", file=sys.stderr)
        print("Try again once the other operation has finished.", file=sys.stderr)
    elif isinstance(error, MachineNotFoundError):
        print(f"Not found: {error}\n", file=sys.stderr)
        print("Check the machine ID with:", file=sys.stderr)
        print("  flotilla list", file=sys.stderr)
    else:
        print(f"Platform API error: {error}", file=sys.stderr)

    sys.exit(EXIT_ERROR)


def handle_wait_error(error: WaitError, debug_mode: bool) -> None:
    """Handle a machine that did not reach its expected state.

    Raises
    ------
    WaitError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise error

    if isinstance(error, UnexpectedTerminationError):
        print(f"Machine {error.machine_id}: {error}", file=sys.stderr)
    elif isinstance(error, WaitTimeoutError):
        print(f"Timed out: {error}\n", file=sys.stderr)
        print("Inspect the machine with:", file=sys.stderr)
        print(f"  flotilla status {error.machine_id}", file=sys.stderr)
    else:
        print(f"Error: {error}", file=sys.stderr)

    sys.exit(EXIT_ERROR)


def handle_cancelled(debug_mode: bool) -> None:
    """Handle an operation interrupted by the operator.

    Raises
    ------
    WaitCancelledError, SelectionCancelledError, KeyboardInterrupt
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    print("Cancelled", file=sys.stderr)
    sys.exit(EXIT_CANCELLED)


def handle_ssh_error(error: Exception, debug_mode: bool) -> None:
    """Handle SSH connectivity error.

    Raises
    ------
    OSError, paramiko.SSHException
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise error

    print(f"SSH connectivity error: {error}\n", file=sys.stderr)
    print("This usually means:", file=sys.stderr)
    print("  - The machine's SSH server is not listening yet", file=sys.stderr)
    print("  - The private network is not reachable from here", file=sys.stderr)
    print("  - The key is not authorized for the user\n", file=sys.stderr)
    print("Debugging steps:", file=sys.stderr)
    print("  1. Check the machine is started: flotilla list", file=sys.stderr)
    print("  2. Retry with --verbose", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def handle_runtime_error(error: Exception, debug_mode: bool) -> None:
    """Handle unexpected runtime or flotilla error.

    Raises
    ------
    RuntimeError, FlotillaError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise error

    print(f"Unexpected error: {error}", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def setup_logging() -> None:
    """Route log records to stdout and stderr by their stream tag."""
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(StreamFormatter("%(message)s"))
    stdout_handler.addFilter(StreamRoutingFilter("stdout"))

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(StreamFormatter("%(message)s"))
    stderr_handler.addFilter(StreamRoutingFilter("stderr"))

    logging.basicConfig(
        level=logging.INFO,
        handlers=[stdout_handler, stderr_handler],
    )

    for noisy_module in ["urllib3", "requests", "paramiko"]:
        logging.getLogger(noisy_module).setLevel(logging.WARNING)


def main() -> None:
    """Entry point for Fire CLI with graceful error handling.

    Fire maps the methods of FlotillaCLI to commands. Errors are turned into
    operator messages and exit codes; FLOTILLA_DEBUG=1 re-raises them instead.
    """
    setup_logging()

    debug_mode = os.environ.get("FLOTILLA_DEBUG") == "1"

    try:
        fire.Fire(FlotillaCLI())
    except ProviderCredentialsError as e:
        handle_credentials_error(e, debug_mode)
    except ValueError as e:
        handle_value_error(e, debug_mode)
    except ProviderAPIError as e:
        handle_api_error(e, debug_mode)
    except (WaitCancelledError, SelectionCancelledError, KeyboardInterrupt):
        handle_cancelled(debug_mode)
    except WaitError as e:
        handle_wait_error(e, debug_mode)
    except (OSError, paramiko.SSHException) as e:
        handle_ssh_error(e, debug_mode)
    except (ProviderConnectionError, FlotillaError, RuntimeError) as e:
        handle_runtime_error(e, debug_mode)
