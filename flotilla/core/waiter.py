"""Bounded polling for machine state transitions."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any

from flotilla.constants import (
    MAX_POLL_INTERVAL_SECONDS,
    POLL_BACKOFF_FACTOR,
    POLL_INTERVAL_SECONDS,
    TERMINAL_STATES,
    MachineState,
)
from flotilla.providers.exceptions import (
    MachineNotFoundError,
    ProviderError,
    UnexpectedTerminationError,
    WaitCancelledError,
    WaitTimeoutError,
)
from flotilla.providers.machines.models import Machine, MachineEvent

logger = logging.getLogger(__name__)

DESTROYED_UNEXPECTEDLY = "machine was destroyed unexpectedly"
EXITED_UNEXPECTEDLY = "machine exited unexpectedly"


def find_exit_event(events: Iterable[MachineEvent]) -> MachineEvent | None:
    """Return the most recent exit event of a newest-first event log."""
    for event in events:
        if event.type == "exit":
            return event
    return None


def describe_exit(events: Iterable[MachineEvent]) -> tuple[str, int | None]:
    """Describe why a machine terminated, based on its event log.

    Parameters
    ----------
    events : Iterable[MachineEvent]
        Event log, newest first

    Returns
    -------
    tuple[str, int | None]
        Operator facing message and the exit code, if one could be parsed
    """
    exit_event = find_exit_event(events)

    if exit_event is None or exit_event.request is None:
        return DESTROYED_UNEXPECTEDLY, None

    try:
        exit_code = exit_event.exit_code()
    except ValueError:
        return EXITED_UNEXPECTEDLY, None

    return f"{EXITED_UNEXPECTEDLY} with code {exit_code}", exit_code


def termination_error(client: Any, machine: Machine) -> UnexpectedTerminationError:
    """Build the error reported for a machine found in a terminal state.

    Uses the events embedded in the machine when present and falls back to
    fetching the event log. A failed fetch degrades to the generic message.
    """
    events = machine.events
    if not events:
        try:
            events = client.get_events(machine.id)
        except ProviderError as e:
            logger.debug("Could not fetch events of machine %s: %s", machine.id, e)
            events = []

    message, exit_code = describe_exit(events)
    return UnexpectedTerminationError(machine.id, machine.state, message, exit_code)


def _interruptible_sleep(delay: float, cancel_event: threading.Event | None) -> bool:
    """Sleep for delay seconds, returning True early if cancel_event is set."""
    if cancel_event is None:
        time.sleep(delay)
        return False
    return cancel_event.wait(delay)


class StateWaiter:
    """Poll a machine until it reaches one of the awaited states.

    Parameters
    ----------
    client : Any
        Platform client exposing get_machine and get_events
    poll_interval : float
        Delay before the second poll, in seconds
    max_poll_interval : float
        Upper bound for the delay between polls
    backoff_factor : float
        Growth factor of the delay after each poll
    clock : Callable[[], float] | None
        Monotonic clock, time.monotonic if None
    sleep : Callable[[float, threading.Event | None], bool] | None
        Interruptible sleep returning True when cancelled
    """

    def __init__(
        self,
        client: Any,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_poll_interval: float = MAX_POLL_INTERVAL_SECONDS,
        backoff_factor: float = POLL_BACKOFF_FACTOR,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float, threading.Event | None], bool] | None = None,
    ) -> None:
        self.client = client
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval
        self.backoff_factor = backoff_factor
        self.clock = clock or time.monotonic
        self.sleep = sleep or _interruptible_sleep

    def wait_for(
        self,
        machine_id: str,
        target: MachineState | str | Iterable[MachineState | str],
        timeout: float,
        cancel_event: threading.Event | None = None,
    ) -> Machine:
        """Wait until the machine reaches one of the target states.

        Parameters
        ----------
        machine_id : str
            Machine to poll
        target : MachineState | str | Iterable[MachineState | str]
            Awaited state, or several acceptable states
        timeout : float
            Deadline in seconds, measured from the call
        cancel_event : threading.Event | None
            Aborts the wait when set

        Returns
        -------
        Machine
            Machine as observed in the awaited state

        Raises
        ------
        WaitTimeoutError
            If the deadline elapsed first
        WaitCancelledError
            If cancel_event was set
        UnexpectedTerminationError
            If the machine reached a terminal state that was not awaited
        MachineNotFoundError
            If the machine vanished while a live state was awaited
        """
        if isinstance(target, (str, MachineState)):
            targets = (MachineState(target).value,)
        else:
            targets = tuple(MachineState(t).value for t in target)

        awaiting_terminal = any(MachineState(t) in TERMINAL_STATES for t in targets)
        deadline = self.clock() + timeout
        delay = self.poll_interval
        last_state: str | None = None
        polls = 0

        logger.debug("Waiting up to %ss for machine %s to reach %s", timeout, machine_id, targets)

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise WaitCancelledError(machine_id)

            try:
                machine = self.client.get_machine(machine_id)
            except MachineNotFoundError:
                if MachineState.DESTROYED.value in targets:
                    logger.debug("Machine %s is gone, treating it as destroyed", machine_id)
                    return Machine(id=machine_id, state=MachineState.DESTROYED.value)
                raise

            polls += 1
            if machine.state != last_state:
                logger.debug("Machine %s is %s", machine_id, machine.state)
            last_state = machine.state

            if machine.state in targets:
                logger.debug("Machine %s reached %s after %s polls", machine_id, machine.state, polls)
                return machine

            if not awaiting_terminal and machine.state in {s.value for s in TERMINAL_STATES}:
                raise termination_error(self.client, machine)

            remaining = deadline - self.clock()
            if remaining <= 0:
                raise WaitTimeoutError(machine_id, targets, last_state, timeout)

            if self.sleep(min(delay, remaining), cancel_event):
                raise WaitCancelledError(machine_id)

            delay = min(delay * self.backoff_factor, self.max_poll_interval)
