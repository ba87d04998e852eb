"""Global constants for flotilla.

This module contains application-wide constants shared by the orchestration
core, the platform client and the CLI layer.
"""

from enum import Enum

DEFAULT_API_URL = "https://api.machines.example.com"
"""Default base URL of the machines platform API.

Overridden by ``api_url`` in flotilla.yaml or the FLOTILLA_API_URL variable.
"""

HTTP_REQUEST_TIMEOUT_SECONDS = 30
"""Timeout in seconds for a single platform API round trip."""

LEASE_TTL_SECONDS = 30
"""Lifetime requested for machine leases.

The platform expires a lease on its own after this many seconds, which bounds
the damage of a lease that could not be released.
"""

UPDATE_WAIT_TIMEOUT_SECONDS = 300
"""Ceiling for the post-update state wait of a single machine.

Five minutes covers image pulls and slow boots of large guests.
"""

START_WAIT_TIMEOUT_SECONDS = 15
"""Deadline for an ephemeral runner machine to reach the started state."""

STOP_TIMEOUT_SECONDS = 5
"""Budget shared by the stop request and the destroyed wait during teardown."""

HEALTH_CHECK_TIMEOUT_SECONDS = 120
"""Deadline for health checks of an updated machine to pass."""

POLL_INTERVAL_SECONDS = 0.5
"""Initial delay between two machine state polls."""

MAX_POLL_INTERVAL_SECONDS = 5.0
"""Upper bound for the growing delay between machine state polls."""

POLL_BACKOFF_FACTOR = 1.5
"""Growth factor applied to the poll delay after every unsuccessful poll."""

SSH_CONNECT_MAX_RETRIES = 10
"""Maximum number of SSH connection attempts to a machine."""

MAX_COMMAND_LENGTH = 10000
"""Maximum length in characters for commands sent to a machine."""

DEFAULT_SSH_USERNAME = "root"
"""Unix user used for remote command execution."""

DEFAULT_NAME_COLUMN_WIDTH = 19
"""Default width in characters for the machine name column of listings."""

EPHEMERAL_GUEST_PRESET = "shared-cpu-1x"
"""Guest preset used for ephemeral runner machines."""

GUEST_PRESETS = {
    "shared-cpu-1x": {"cpu_kind": "shared", "cpus": 1, "memory_mb": 256},
    "shared-cpu-2x": {"cpu_kind": "shared", "cpus": 2, "memory_mb": 512},
    "shared-cpu-4x": {"cpu_kind": "shared", "cpus": 4, "memory_mb": 1024},
    "performance-1x": {"cpu_kind": "performance", "cpus": 1, "memory_mb": 2048},
    "performance-2x": {"cpu_kind": "performance", "cpus": 2, "memory_mb": 4096},
}
"""Guest resource presets accepted by the platform."""

METADATA_PROCESS_GROUP = "process_group"
"""Machine metadata key holding the process group name."""

PROCESS_GROUP_RELEASE_COMMAND = "release_command"
"""Process group of reserved machines that run release commands."""

PROCESS_GROUP_EPHEMERAL_RUNNER = "ephemeral_runner"
"""Process group tagged on machines created to run a single command."""

EPHEMERAL_ENTRYPOINT = ["/.flotilla/hallpass"]
"""Entrypoint that keeps an ephemeral runner machine alive and reachable."""

LEASE_NONCE_HEADER = "X-Machine-Lease-Nonce"
"""HTTP header carrying the lease nonce on mutating calls."""

EXIT_SUCCESS = 0
"""Exit code indicating successful program completion."""

EXIT_ERROR = 1
"""Exit code indicating a general application error."""

EXIT_CONFIG_ERROR = 2
"""Exit code indicating a configuration or validation error."""

EXIT_CANCELLED = 130
"""Exit code used when the operator interrupts an operation."""


class MachineState(str, Enum):
    """Machine lifecycle states reported by the platform."""

    CREATED = "created"
    STARTING = "starting"
    STARTED = "started"
    STOPPING = "stopping"
    STOPPED = "stopped"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"


TERMINAL_STATES = frozenset({MachineState.DESTROYING, MachineState.DESTROYED})
"""States a machine never leaves once it has entered them."""


class RestartPolicy(str, Enum):
    """Restart policies understood by the platform."""

    NO = "no"
    ON_FAILURE = "on-failure"
    ALWAYS = "always"
