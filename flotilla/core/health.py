"""Health verification of machines after a configuration change."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from flotilla.constants import HEALTH_CHECK_TIMEOUT_SECONDS, POLL_INTERVAL_SECONDS
from flotilla.providers.exceptions import WaitCancelledError
from flotilla.providers.machines.models import Machine

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckFailure:
    """A health check that did not pass before the deadline."""

    machine_id: str
    check_name: str
    status: str
    output: str = ""

    def __str__(self) -> str:
        detail = f": {self.output}" if self.output else ""
        return f"machine {self.machine_id} check '{self.check_name}' is {self.status}{detail}"


class HealthVerifier(Protocol):
    """Runs the configured health checks against machines."""

    def verify(
        self,
        machines: list[Machine],
        cancel_event: threading.Event | None = None,
    ) -> list[HealthCheckFailure]:
        """Return the failing checks, an empty list when all machines are healthy."""
        ...


class MachineChecksVerifier:
    """Poll the platform until every check of every machine passes.

    Machines without configured checks are healthy as soon as they are seen.
    Setting the cancel event aborts the wait with WaitCancelledError instead
    of reporting the checks that were still failing.

    Parameters
    ----------
    client : Any
        Platform client exposing get_machine
    timeout : float
        Deadline in seconds for all checks to pass
    poll_interval : float
        Delay between polls in seconds
    clock : Callable[[], float] | None
        Monotonic clock, time.monotonic if None
    """

    def __init__(
        self,
        client: Any,
        timeout: float = HEALTH_CHECK_TIMEOUT_SECONDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.client = client
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.clock = clock or time.monotonic

    def verify(
        self,
        machines: list[Machine],
        cancel_event: threading.Event | None = None,
    ) -> list[HealthCheckFailure]:
        deadline = self.clock() + self.timeout
        pending = {m.id for m in machines if m.config.get("checks")}
        failures: dict[str, list[HealthCheckFailure]] = {}

        if not pending:
            return []

        logger.info("Waiting for health checks of %s machine(s) to pass...", len(pending))

        while pending:
            for machine_id in sorted(pending):
                if cancel_event is not None and cancel_event.is_set():
                    raise WaitCancelledError(machine_id)

                machine = self.client.get_machine(machine_id)
                expected = set(machine.config.get("checks") or {})
                reported = {c.name: c for c in machine.checks}

                failing = []
                for name in sorted(expected):
                    check = reported.get(name)
                    if check is None:
                        failing.append(HealthCheckFailure(machine_id, name, "unknown"))
                    elif not check.passing:
                        failing.append(
                            HealthCheckFailure(machine_id, name, check.status, check.output)
                        )

                if failing:
                    failures[machine_id] = failing
                else:
                    failures.pop(machine_id, None)
                    pending.discard(machine_id)
                    logger.debug("Health checks of machine %s are passing", machine_id)

            if not pending:
                break

            remaining = deadline - self.clock()
            if remaining <= 0:
                break

            delay = min(self.poll_interval, remaining)
            if cancel_event is not None:
                if cancel_event.wait(delay):
                    raise WaitCancelledError(min(pending))
            else:
                time.sleep(delay)

        return [f for machine_id in sorted(failures) for f in failures[machine_id]]
