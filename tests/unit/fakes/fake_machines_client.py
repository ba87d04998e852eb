"""Fake MachinesClient for testing with dependency injection."""

from __future__ import annotations

import copy
import itertools
from typing import Any

from flotilla.constants import MachineState
from flotilla.providers.exceptions import LeaseConflictError, MachineNotFoundError
from flotilla.providers.machines.models import Lease, Machine, MachineEvent


class FakeMachinesClient:
    """In-memory platform that scripts machine states per poll.

    Each machine may carry a script of states. Every get_machine call consumes
    the next state; the last one repeats. A None entry in a script makes that
    poll answer 404.

    Parameters
    ----------
    machines : list[Machine] | None
        Machines known to the platform
    release_image : str | None
        Image reference of the current release
    """

    def __init__(
        self,
        machines: list[Machine] | None = None,
        release_image: str | None = "registry.example.com/app:v1",
    ) -> None:
        self.machines: dict[str, Machine] = {m.id: m for m in machines or []}
        self.state_scripts: dict[str, list[str | None]] = {}
        self.events: dict[str, list[MachineEvent]] = {}
        self.release_image = release_image
        self.held_leases: dict[str, str] = {}
        self.acquired: list[str] = []
        self.released: list[str] = []
        self.updates: list[tuple[str, dict[str, Any], str]] = []
        self.launched: list[dict[str, Any]] = []
        self.stopped: list[dict[str, Any]] = []
        self.get_calls: list[str] = []
        self.update_errors: dict[str, Exception] = {}
        self.release_errors: dict[str, Exception] = {}
        self.stop_error: Exception | None = None
        self.launch_state_script: list[str | None] | None = None
        self._nonces = itertools.count(1)
        self._ids = itertools.count(1)

    def script_states(self, machine_id: str, *states: str | None) -> None:
        self.state_scripts[machine_id] = list(states)

    def _next_state(self, machine_id: str) -> str | None:
        script = self.state_scripts.get(machine_id)
        if not script:
            machine = self.machines.get(machine_id)
            return machine.state if machine else None
        if len(script) > 1:
            return script.pop(0)
        return script[0]

    def get_machine(self, machine_id: str) -> Machine:
        self.get_calls.append(machine_id)

        if machine_id not in self.machines:
            raise MachineNotFoundError(f"machine {machine_id} not found", status_code=404)

        state = self._next_state(machine_id)
        if state is None:
            raise MachineNotFoundError(f"machine {machine_id} not found", status_code=404)

        machine = self.machines[machine_id]
        machine.state = state
        return copy.deepcopy(machine)

    def list_machines(
        self, include_deleted: bool = False, region: str | None = None
    ) -> list[Machine]:
        return [
            copy.deepcopy(m)
            for m in self.machines.values()
            if (include_deleted or m.state != MachineState.DESTROYED.value)
            and (region is None or m.region == region)
        ]

    def acquire_lease(self, machine_id: str, ttl: int = 30) -> Lease:
        if machine_id not in self.machines:
            raise MachineNotFoundError(f"machine {machine_id} not found", status_code=404)
        if machine_id in self.held_leases:
            raise LeaseConflictError(
                f"machine {machine_id} is leased by someone else", status_code=409
            )

        nonce = f"nonce-{next(self._nonces)}"
        self.held_leases[machine_id] = nonce
        self.acquired.append(machine_id)
        return Lease(machine_id=machine_id, nonce=nonce, holder="test@example.com")

    def release_lease(self, machine_id: str, nonce: str) -> None:
        self.released.append(machine_id)
        if machine_id in self.release_errors:
            raise self.release_errors[machine_id]
        if self.held_leases.get(machine_id) == nonce:
            del self.held_leases[machine_id]

    def update_machine(self, machine_id: str, config: dict[str, Any], nonce: str) -> Machine:
        if machine_id in self.update_errors:
            raise self.update_errors[machine_id]
        if self.held_leases.get(machine_id) != nonce:
            raise LeaseConflictError(f"invalid lease nonce for {machine_id}", status_code=409)

        self.updates.append((machine_id, config, nonce))
        self.machines[machine_id].config = copy.deepcopy(config)
        return copy.deepcopy(self.machines[machine_id])

    def launch_machine(
        self,
        config: dict[str, Any],
        region: str | None = None,
        name: str | None = None,
    ) -> Machine:
        machine_id = f"e{next(self._ids):04d}"
        machine = Machine(
            id=machine_id,
            state=MachineState.CREATED.value,
            name=name or f"ephemeral-{machine_id}",
            region=region or "",
            private_ip=f"fdaa:0:1::{machine_id}",
            config=copy.deepcopy(config),
        )
        self.machines[machine_id] = machine
        self.launched.append({"id": machine_id, "config": config, "region": region})
        if self.launch_state_script is not None:
            self.state_scripts[machine_id] = list(self.launch_state_script)
        return copy.deepcopy(machine)

    def stop_machine(
        self,
        machine_id: str,
        nonce: str = "",
        timeout: float | None = None,
        signal: str | None = None,
    ) -> None:
        self.stopped.append(
            {"id": machine_id, "nonce": nonce, "timeout": timeout, "signal": signal}
        )
        if self.stop_error is not None:
            raise self.stop_error
        if machine_id not in self.machines:
            raise MachineNotFoundError(f"machine {machine_id} not found", status_code=404)

    def get_events(self, machine_id: str) -> list[MachineEvent]:
        return list(self.events.get(machine_id, []))

    def get_current_release_image(self) -> str | None:
        return self.release_image


def make_machine(
    machine_id: str,
    state: str = MachineState.STARTED.value,
    **kwargs: Any,
) -> Machine:
    """Build a machine with sensible defaults for tests."""
    kwargs.setdefault("name", f"web-{machine_id}")
    kwargs.setdefault("region", "ams")
    kwargs.setdefault("private_ip", f"fdaa:0:1::{machine_id}")
    kwargs.setdefault("config", {"image": "registry.example.com/app:v1", "env": {}})
    return Machine(id=machine_id, state=state, **kwargs)


def exit_event(exit_code: Any) -> MachineEvent:
    """Build an exit event carrying the given exit code."""
    return MachineEvent(
        type="exit",
        status="stopped",
        source="platform",
        request={"exit_event": {"exit_code": exit_code, "oom_killed": False}},
    )
