"""Machine data types parsed from platform API responses."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from flotilla.constants import (
    METADATA_PROCESS_GROUP,
    PROCESS_GROUP_RELEASE_COMMAND,
    MachineState,
)

logger = logging.getLogger(__name__)


def parse_event_timestamp(value: Any) -> datetime | None:
    """Parse an event timestamp given as epoch milliseconds or ISO 8601.

    Values that cannot be parsed yield None.
    """
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        if isinstance(value, str):
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError):
        logger.debug("Ignoring unparseable event timestamp %r", value)
    return None


@dataclass
class MachineEvent:
    """Single entry of a machine event log.

    Attributes
    ----------
    type : str
        Event type tag, e.g. "launch", "start", "exit", "destroy"
    status : str
        Machine state reported with the event
    source : str
        Component that emitted the event ("user", "flotilla", "platform")
    timestamp : datetime | None
        When the event was recorded
    request : dict[str, Any] | None
        Structured payload, carrying ``exit_event`` for exit events
    """

    type: str
    status: str = ""
    source: str = ""
    timestamp: datetime | None = None
    request: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MachineEvent:
        return cls(
            type=data.get("type", ""),
            status=data.get("status", ""),
            source=data.get("source", ""),
            timestamp=parse_event_timestamp(data.get("timestamp")),
            request=data.get("request"),
        )

    def exit_code(self) -> int:
        """Extract the process exit code from an exit event payload.

        Returns
        -------
        int
            Exit code reported by the platform

        Raises
        ------
        ValueError
            If the payload carries no exit event or the code is not an integer
        """
        if not self.request:
            raise ValueError("event has no request payload")

        exit_event = self.request.get("exit_event")
        if not isinstance(exit_event, dict) or "exit_code" not in exit_event:
            raise ValueError("event payload has no exit code")

        code = exit_event["exit_code"]
        if isinstance(code, bool):
            raise ValueError(f"invalid exit code: {code!r}")

        try:
            return int(code)
        except (TypeError, ValueError) as e:
            raise ValueError(f"invalid exit code: {code!r}") from e


@dataclass
class HealthCheckStatus:
    """Status of one health check as reported by the platform."""

    name: str
    status: str
    output: str = ""

    @property
    def passing(self) -> bool:
        return self.status == "passing"


@dataclass
class Machine:
    """Local, possibly stale, copy of a platform machine.

    Attributes
    ----------
    id : str
        Machine identifier
    name : str
        Human readable machine name
    state : str
        Lifecycle state, one of MachineState values
    region : str
        Region the machine runs in
    private_ip : str
        Address on the app's private network
    config : dict[str, Any]
        Machine configuration as returned by the platform
    events : list[MachineEvent]
        Event log, newest first
    checks : list[HealthCheckStatus]
        Health check results
    """

    id: str
    state: str
    name: str = ""
    region: str = ""
    private_ip: str = ""
    config: dict[str, Any] = field(default_factory=dict)
    events: list[MachineEvent] = field(default_factory=list)
    checks: list[HealthCheckStatus] = field(default_factory=list)
    created_at: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Machine:
        return cls(
            id=data["id"],
            state=data.get("state", ""),
            name=data.get("name", ""),
            region=data.get("region", ""),
            private_ip=data.get("private_ip", ""),
            config=data.get("config") or {},
            events=[MachineEvent.from_dict(e) for e in data.get("events") or []],
            checks=[
                HealthCheckStatus(
                    name=c.get("name", ""),
                    status=c.get("status", ""),
                    output=c.get("output", ""),
                )
                for c in data.get("checks") or []
            ],
            created_at=data.get("created_at", ""),
        )

    @property
    def process_group(self) -> str:
        metadata = self.config.get("metadata") or {}
        return metadata.get(METADATA_PROCESS_GROUP, "")

    @property
    def is_release_command(self) -> bool:
        """Whether this is a reserved machine running a release command."""
        return self.process_group == PROCESS_GROUP_RELEASE_COMMAND

    @property
    def is_scheduled(self) -> bool:
        """Whether the machine runs on a schedule instead of on demand."""
        return bool(self.config.get("schedule"))

    @property
    def image(self) -> str:
        return self.config.get("image", "")

    def in_state(self, *states: MachineState | str) -> bool:
        return self.state in {MachineState(s).value for s in states}


@dataclass
class Lease:
    """Advisory exclusive-mutation token on a machine.

    A lease is bound to one machine and becomes unusable once released.
    """

    machine_id: str
    nonce: str
    holder: str = ""
    expires_at: int | None = None
    released: bool = False

    def require_live(self, machine_id: str) -> None:
        """Ensure the lease may be used to mutate the given machine.

        Raises
        ------
        ValueError
            If the lease belongs to another machine or was already released
        """
        if self.machine_id != machine_id:
            raise ValueError(
                f"lease for machine {self.machine_id} cannot be used for machine {machine_id}"
            )
        if self.released:
            raise ValueError(f"lease for machine {machine_id} has already been released")
