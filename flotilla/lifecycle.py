from __future__ import annotations

import logging
import sys
from typing import Any

from flotilla.constants import STOP_TIMEOUT_SECONDS, UPDATE_WAIT_TIMEOUT_SECONDS, MachineState
from flotilla.core.leases import LeaseManager
from flotilla.core.waiter import StateWaiter, describe_exit
from flotilla.utils import format_time_ago

logger = logging.getLogger(__name__)


class LifecycleManager:
    """Manages operator commands on existing machines (list, status, stop).

    Parameters
    ----------
    client : Any
        Platform client
    lease_manager : LeaseManager
        Lease manager guarding the stop command
    waiter : StateWaiter
        State wait engine
    log_and_print_error : Any
        Function to log and print errors to stderr
    truncate_name : Any
        Function to truncate machine names for display
    stop_timeout : float
        Seconds the platform waits for the machine process before killing it
    wait_timeout : float
        Deadline for a stopped machine to reach the stopped state
    """

    def __init__(
        self,
        client: Any,
        lease_manager: LeaseManager,
        waiter: StateWaiter,
        log_and_print_error: Any,
        truncate_name: Any,
        stop_timeout: float = STOP_TIMEOUT_SECONDS,
        wait_timeout: float = UPDATE_WAIT_TIMEOUT_SECONDS,
    ) -> None:
        self.client = client
        self.lease_manager = lease_manager
        self.waiter = waiter
        self.log_and_print_error = log_and_print_error
        self.truncate_name = truncate_name
        self.stop_timeout = stop_timeout
        self.wait_timeout = wait_timeout

    def list(self, region: str | None = None) -> None:
        """List machines of the app.

        Parameters
        ----------
        region : str | None
            Optional region to filter results

        Raises
        ------
        ProviderCredentialsError
            If the API token is missing or rejected
        ProviderAPIError
            If the platform API call fails
        """
        machines = self.client.list_machines(region=region)

        if not machines:
            print("No machines found")
            return

        print(
            f"{'NAME':<20} {'MACHINE-ID':<16} {'STATE':<12} {'REGION':<8} {'IMAGE':<40} {'CREATED':<10}"
        )
        print("-" * 110)

        for machine in machines:
            name = self.truncate_name(machine.name or "-")
            image = machine.image or "-"
            if machine.is_release_command:
                name = self.truncate_name(f"{machine.name or '-'} (release)")
            print(
                f"{name:<20} {machine.id:<16} {machine.state:<12} {machine.region or '-':<8} "
                f"{image:<40} {format_time_ago(machine.created_at):<10}"
            )

    def status(self, machine_id: str) -> dict[str, Any]:
        """Show state, health checks and recent events of a machine.

        Parameters
        ----------
        machine_id : str
            Machine to inspect

        Returns
        -------
        dict[str, Any]
            Machine summary as printed

        Raises
        ------
        MachineNotFoundError
            If the machine does not exist
        """
        machine = self.client.get_machine(machine_id)
        events = machine.events or self.client.get_events(machine_id)

        summary: dict[str, Any] = {
            "id": machine.id,
            "name": machine.name,
            "state": machine.state,
            "region": machine.region,
            "image": machine.image,
            "private_ip": machine.private_ip,
            "checks": {c.name: c.status for c in machine.checks},
        }

        print(f"Machine {machine.id} ({machine.name or '-'})")
        print(f"  State:      {machine.state}")
        print(f"  Region:     {machine.region or '-'}")
        print(f"  Image:      {machine.image or '-'}")
        print(f"  Private IP: {machine.private_ip or '-'}")

        if machine.checks:
            print("  Checks:")
            for check in machine.checks:
                print(f"    {check.name}: {check.status}")

        if machine.in_state(MachineState.DESTROYING, MachineState.DESTROYED):
            message, exit_code = describe_exit(events)
            summary["exit"] = {"message": message, "exit_code": exit_code}
            print(f"  Exit:       {message}")

        if events:
            print("  Recent events:")
            for event in events[:5]:
                when = event.timestamp.isoformat() if event.timestamp else "-"
                print(f"    {when}  {event.type:<10} {event.status:<10} {event.source}")

        return summary

    def stop(self, machine_id: str, signal: str | None = None) -> None:
        """Stop a running machine while holding its lease.

        Parameters
        ----------
        machine_id : str
            Machine to stop
        signal : str | None
            Signal sent to the machine process, platform default if None

        Raises
        ------
        SystemExit
            Exits with code 1 if the machine cannot be stopped in its state
        LeaseConflictError
            If another holder owns the lease
        WaitTimeoutError
            If the machine did not reach the stopped state
        """
        machine = self.client.get_machine(machine_id)

        if machine.in_state(MachineState.STOPPED):
            print(f"Machine {machine_id} is already stopped")
            return

        if machine.in_state(MachineState.DESTROYING, MachineState.DESTROYED):
            self.log_and_print_error(
                "Cannot stop machine %s - it is %s.", machine_id, machine.state
            )
            sys.exit(1)

        logger.info("Stopping machine %s...", machine_id)

        with self.lease_manager.held(machine_id) as lease:
            self.client.stop_machine(
                machine_id, nonce=lease.nonce, timeout=self.stop_timeout, signal=signal
            )
            targets = (MachineState.STOPPED, MachineState.DESTROYED)
            if machine.config.get("auto_destroy"):
                targets = (MachineState.DESTROYED,)
            stopped = self.waiter.wait_for(machine_id, targets, timeout=self.wait_timeout)

        print(f"Machine {machine_id} is {stopped.state}")
