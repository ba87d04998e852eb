from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from flotilla.constants import (
    EXIT_ERROR,
    START_WAIT_TIMEOUT_SECONDS,
    STOP_TIMEOUT_SECONDS,
    TERMINAL_STATES,
    MachineState,
)
from flotilla.core.command import encode_command
from flotilla.core.waiter import DESTROYED_UNEXPECTEDLY, StateWaiter, termination_error
from flotilla.providers.exceptions import (
    CleanupWarning,
    FlotillaError,
    MachineNotFoundError,
    ProviderError,
    SelectionCancelledError,
    UnexpectedTerminationError,
    WaitCancelledError,
    WaitTimeoutError,
)
from flotilla.providers.machines.models import Machine

logger = logging.getLogger(__name__)

Picker = Callable[[list[Machine]], Machine | None]
"""Lets the operator choose a machine; None asks for a new ephemeral machine."""


@dataclass(frozen=True)
class ExplicitMachine:
    """Run on an existing machine given by ID."""

    machine_id: str


@dataclass(frozen=True)
class InteractiveSelection:
    """Let the operator pick a running machine or a new ephemeral one."""


@dataclass(frozen=True)
class EphemeralMachine:
    """Run on a machine created for this command and destroyed afterwards."""


MachineSelection = ExplicitMachine | InteractiveSelection | EphemeralMachine


@dataclass
class RunResult:
    """Outcome of a remote command run.

    Attributes
    ----------
    exit_code : int
        Exit code of the remote command
    machine_id : str
        Machine the command ran on
    ephemeral : bool
        Whether the machine was created for this run
    cleanup_warnings : list[CleanupWarning]
        Teardown failures the operator has to act on
    """

    exit_code: int
    machine_id: str
    ephemeral: bool = False
    cleanup_warnings: list[CleanupWarning] = field(default_factory=list)


class RunExecutor:
    """Orchestrates the run command execution flow.

    Selects or provisions a machine, executes an encoded command on it over a
    remote session and tears down machines it created.

    Parameters
    ----------
    client : Any
        Platform client
    config_loader : Any
        Configuration loader building the ephemeral runner configuration
    waiter : StateWaiter
        State wait engine
    remote_executor : Any
        Remote execution collaborator exposing open_session, execute and close
    picker : Picker | None
        Interactive machine picker, required for InteractiveSelection
    start_wait_timeout : float
        Deadline for an ephemeral machine to start
    stop_timeout : float
        Budget shared by the stop request and the destroyed wait on teardown
    clock : Callable[[], float] | None
        Monotonic clock, time.monotonic if None
    """

    def __init__(
        self,
        client: Any,
        config_loader: Any,
        waiter: StateWaiter,
        remote_executor: Any,
        picker: Picker | None = None,
        start_wait_timeout: float = START_WAIT_TIMEOUT_SECONDS,
        stop_timeout: float = STOP_TIMEOUT_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.client = client
        self.config_loader = config_loader
        self.waiter = waiter
        self.remote_executor = remote_executor
        self.picker = picker
        self.start_wait_timeout = start_wait_timeout
        self.stop_timeout = stop_timeout
        self.clock = clock or time.monotonic
        self._active_session: Any = None

    def run_command(
        self,
        app_config: dict[str, Any],
        args: Sequence[str],
        selection: MachineSelection | None = None,
        keep: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> RunResult:
        """Run a command on a selected or freshly provisioned machine.

        Parameters
        ----------
        app_config : dict[str, Any]
            Merged app configuration, providing the alias table
        args : Sequence[str]
            Command name followed by its arguments
        selection : MachineSelection | None
            Machine selection strategy, EphemeralMachine if None
        keep : bool
            Leave a created machine running after the command
        cancel_event : threading.Event | None
            Aborts waits when set; a run interrupted this way raises
            WaitCancelledError after cleanup

        Returns
        -------
        RunResult
            Remote exit code and cleanup warnings

        Raises
        ------
        ValueError
            If no command was given or the selected machine cannot run it
        UnexpectedTerminationError
            If an ephemeral machine died before it started
        WaitTimeoutError
            If an ephemeral machine did not start
        WaitCancelledError
            If the run was cancelled while starting or while the command ran
        """
        command = encode_command(app_config.get("commands"), args)
        selection = selection or EphemeralMachine()

        machine, ephemeral = self.select_machine(app_config, selection)
        result = RunResult(exit_code=EXIT_ERROR, machine_id=machine.id, ephemeral=ephemeral)
        needs_teardown = ephemeral

        try:
            if ephemeral:
                try:
                    machine = self._wait_started(machine, cancel_event)
                except UnexpectedTerminationError:
                    needs_teardown = False
                    raise

            result.exit_code = self._execute(machine, command)
            if cancel_event is not None and cancel_event.is_set():
                raise WaitCancelledError(machine.id)
        finally:
            if needs_teardown and not keep:
                warning = self.teardown(machine.id)
                if warning is not None:
                    result.cleanup_warnings.append(warning)
            elif needs_teardown:
                logger.info("Keeping ephemeral machine %s", machine.id)

        return result

    def select_machine(
        self, app_config: dict[str, Any], selection: MachineSelection
    ) -> tuple[Machine, bool]:
        """Resolve a selection strategy to a machine.

        Returns
        -------
        tuple[Machine, bool]
            Selected machine and whether it was created for this run
        """
        if isinstance(selection, ExplicitMachine):
            return self._explicit_machine(selection.machine_id), False

        if isinstance(selection, InteractiveSelection):
            machine = self._pick_machine()
            if machine is not None:
                return machine, False

        return self.provision(app_config), True

    def _explicit_machine(self, machine_id: str) -> Machine:
        machine = self.client.get_machine(machine_id)

        if machine.is_release_command:
            raise ValueError(f"Machine {machine_id} is reserved for release commands")

        if not machine.in_state(MachineState.STARTED):
            raise ValueError(f"Machine {machine_id} is not running (state: {machine.state})")

        return machine

    def _pick_machine(self) -> Machine | None:
        if self.picker is None:
            raise RuntimeError("Interactive selection requires a machine picker")

        candidates = [
            m
            for m in self.client.list_machines()
            if m.in_state(MachineState.STARTED) and not m.is_release_command
        ]

        if not candidates:
            raise ValueError("No running machines to select from")

        choice = self.picker(candidates)
        if choice is None:
            logger.debug("Operator chose a new ephemeral machine")
        return choice

    def provision(self, app_config: dict[str, Any]) -> Machine:
        """Launch an ephemeral runner from the app's current release image.

        Raises
        ------
        FlotillaError
            If the app has never been released
        """
        image = self.client.get_current_release_image()
        if not image:
            raise FlotillaError(
                f"App {app_config.get('app')} has no release yet; deploy it before running commands"
            )

        config = self.config_loader.ephemeral_runner_config(app_config, image)
        machine = self.client.launch_machine(config, region=app_config.get("primary_region"))
        logger.info("Created ephemeral machine %s (image %s)", machine.id, image)
        return machine

    def _wait_started(
        self, machine: Machine, cancel_event: threading.Event | None
    ) -> Machine:
        logger.info("Waiting for machine %s to start...", machine.id)

        try:
            return self.waiter.wait_for(
                machine.id,
                MachineState.STARTED,
                timeout=self.start_wait_timeout,
                cancel_event=cancel_event,
            )
        except (WaitTimeoutError, MachineNotFoundError) as e:
            termination = self.check_destruction(machine.id)
            if termination is None:
                logger.warning(
                    "Machine %s did not start; it may need to be destroyed manually", machine.id
                )
                raise
            raise termination from e

    def check_destruction(self, machine_id: str) -> UnexpectedTerminationError | None:
        """Explain a failed start wait if the machine is gone.

        Returns
        -------
        UnexpectedTerminationError | None
            Error derived from the event log when the machine is destroyed or
            destroying, None when it still exists or could not be fetched
        """
        try:
            machine = self.client.get_machine(machine_id)
        except MachineNotFoundError:
            return UnexpectedTerminationError(
                machine_id, MachineState.DESTROYED.value, DESTROYED_UNEXPECTEDLY
            )
        except ProviderError as e:
            logger.debug("Could not check whether machine %s was destroyed: %s", machine_id, e)
            return None

        if machine.in_state(*TERMINAL_STATES):
            return termination_error(self.client, machine)
        return None

    def _execute(self, machine: Machine, command: str) -> int:
        logger.info("Connecting to machine %s...", machine.id)
        session = self.remote_executor.open_session(machine)
        self._active_session = session

        try:
            logger.debug("Running: %s", command)
            exit_code = self.remote_executor.execute(session, command, interactive=True)
        finally:
            self._active_session = None
            self.remote_executor.close(session)

        logger.debug("Command exited with code %s", exit_code)
        return exit_code

    def abort(self) -> None:
        """Close the active remote session, ending a running command."""
        session = self._active_session
        if session is not None:
            self.remote_executor.close(session)

    def teardown(self, machine_id: str) -> CleanupWarning | None:
        """Stop an ephemeral machine and wait for it to be destroyed.

        The stop request and the destroyed wait share one stop_timeout
        budget. The wait uses its own cancellation event so that a cancelled
        run still destroys its machine.

        Returns
        -------
        CleanupWarning | None
            Warning advising manual destruction, None once destroyed
        """
        deadline = self.clock() + self.stop_timeout
        logger.info("Destroying ephemeral machine %s...", machine_id)

        try:
            self.client.stop_machine(machine_id, timeout=self.stop_timeout)
            remaining = max(deadline - self.clock(), 0)
            self.waiter.wait_for(
                machine_id,
                MachineState.DESTROYED,
                timeout=remaining,
                cancel_event=threading.Event(),
            )
        except MachineNotFoundError:
            logger.debug("Machine %s is already gone", machine_id)
        except FlotillaError as e:
            warning = CleanupWarning(
                machine_id,
                f"failed to destroy ephemeral machine {machine_id}: {e}. "
                f"Destroy it manually with 'flotilla stop {machine_id}'",
            )
            logger.warning("%s", warning)
            return warning

        logger.info("Ephemeral machine %s destroyed", machine_id)
        return None
