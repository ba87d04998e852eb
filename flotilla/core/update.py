"""Configuration updates of single machines and rolling updates."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from flotilla.constants import UPDATE_WAIT_TIMEOUT_SECONDS, MachineState
from flotilla.core.config import apply_config_delta
from flotilla.core.health import HealthCheckFailure, HealthVerifier
from flotilla.core.leases import LeaseManager
from flotilla.core.waiter import StateWaiter
from flotilla.providers.exceptions import FlotillaError, WaitCancelledError
from flotilla.providers.machines.models import Lease, Machine

logger = logging.getLogger(__name__)


@dataclass
class UpdateOutcome:
    """Result of updating one machine.

    Attributes
    ----------
    machine_id : str
        Updated machine
    error : Exception | None
        Error that stopped the update, None if the configuration was applied
        and the machine reached its expected state
    health_failures : list[HealthCheckFailure]
        Checks that did not pass after the update; reported, never rolled back
    machine : Machine | None
        Machine as observed after the state wait
    """

    machine_id: str
    error: Exception | None = None
    health_failures: list[HealthCheckFailure] = field(default_factory=list)
    machine: Machine | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def healthy(self) -> bool:
        return self.succeeded and not self.health_failures


@dataclass
class RollingUpdateResult:
    """Per-machine outcomes of a rolling update, in update order."""

    outcomes: list[UpdateOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> list[UpdateOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> list[UpdateOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def ok(self) -> bool:
        return not self.failed


def expected_states(machine: Machine) -> tuple[MachineState, ...]:
    """States a machine settles in after reconfiguration.

    Scheduled machines go idle until their next run, on-demand machines
    resume running.
    """
    if machine.is_scheduled:
        return (MachineState.STOPPING, MachineState.STOPPED)
    return (MachineState.STARTED,)


class UpdateOrchestrator:
    """Apply configuration changes to leased machines.

    Parameters
    ----------
    client : Any
        Platform client exposing update_machine
    lease_manager : LeaseManager
        Lease manager used by rolling updates
    waiter : StateWaiter
        State wait engine
    health_verifier : HealthVerifier
        Runs health checks after each update
    wait_timeout : float
        Ceiling for the post-update state wait, in seconds
    """

    def __init__(
        self,
        client: Any,
        lease_manager: LeaseManager,
        waiter: StateWaiter,
        health_verifier: HealthVerifier,
        wait_timeout: float = UPDATE_WAIT_TIMEOUT_SECONDS,
    ) -> None:
        self.client = client
        self.lease_manager = lease_manager
        self.waiter = waiter
        self.health_verifier = health_verifier
        self.wait_timeout = wait_timeout

    def update(
        self,
        lease: Lease,
        machine: Machine,
        new_config: dict[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> UpdateOutcome:
        """Update one machine whose lease the caller holds.

        Parameters
        ----------
        lease : Lease
            Live lease on the machine
        machine : Machine
            Machine to update, as last fetched
        new_config : dict[str, Any]
            Complete configuration to push
        cancel_event : threading.Event | None
            Aborts the state wait when set

        Returns
        -------
        UpdateOutcome
            Outcome with health failures, if any

        Raises
        ------
        ValueError
            If the lease is not a live lease on this machine
        LeaseConflictError
            If the platform rejected the lease nonce
        ConfigValidationError
            If the platform rejected the configuration
        WaitTimeoutError, UnexpectedTerminationError, WaitCancelledError
            If the machine did not settle in its expected state
        """
        lease.require_live(machine.id)

        logger.info("Updating machine %s", machine.id)

        self.client.update_machine(machine.id, new_config, nonce=lease.nonce)

        targets = expected_states(machine)
        logger.info(
            "Waiting for machine %s to reach %s...",
            machine.id,
            " or ".join(t.value for t in targets),
        )
        updated = self.waiter.wait_for(
            machine.id, targets, timeout=self.wait_timeout, cancel_event=cancel_event
        )

        outcome = UpdateOutcome(machine_id=machine.id, machine=updated)
        outcome.health_failures = self.health_verifier.verify([updated], cancel_event=cancel_event)

        if outcome.health_failures:
            for failure in outcome.health_failures:
                logger.warning("Health check failed after update: %s", failure)
        else:
            logger.info("Machine %s updated successfully", machine.id)

        return outcome

    def rolling_update(
        self,
        machines: list[Machine],
        config_delta: dict[str, Any] | None = None,
        config_for: Callable[[Machine], dict[str, Any]] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RollingUpdateResult:
        """Update machines one after another under leases held for the batch.

        All leases are acquired before any machine is touched and all are
        released when the batch ends. A failed machine is recorded and the
        remaining machines are still updated.

        Parameters
        ----------
        machines : list[Machine]
            Machines to update, in update order
        config_delta : dict[str, Any] | None
            Changes merged into each machine's current configuration
        config_for : Callable[[Machine], dict[str, Any]] | None
            Builds the complete new configuration of a machine; takes
            precedence over config_delta
        cancel_event : threading.Event | None
            Aborts the batch when set

        Returns
        -------
        RollingUpdateResult
            Outcome of every machine

        Raises
        ------
        LeaseConflictError, MachineNotFoundError
            If a lease could not be acquired; no machine was modified
        WaitCancelledError
            If the batch was cancelled; leases are released first
        """
        delta = config_delta or {}
        build_config = config_for or (lambda m: apply_config_delta(m.config, delta))

        result = RollingUpdateResult()

        with self.lease_manager.held_all(m.id for m in machines) as leases:
            for machine, lease in zip(machines, leases):
                try:
                    outcome = self.update(lease, machine, build_config(machine), cancel_event)
                except WaitCancelledError:
                    logger.warning("Rolling update cancelled at machine %s", machine.id)
                    raise
                except (FlotillaError, ValueError) as e:
                    logger.error("Failed to update machine %s: %s", machine.id, e)
                    outcome = UpdateOutcome(machine_id=machine.id, error=e)

                result.outcomes.append(outcome)

        logger.info(
            "Rolling update finished: %s succeeded, %s failed",
            len(result.succeeded),
            len(result.failed),
        )
        return result
