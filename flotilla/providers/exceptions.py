"""Error taxonomy shared by the platform client and the orchestration core."""

from __future__ import annotations


class FlotillaError(Exception):
    """Base class for all flotilla errors."""


class ProviderError(FlotillaError):
    """Base class for errors raised while talking to the machines platform."""


class ProviderCredentialsError(ProviderError):
    """Platform rejected or did not receive an API token."""


class ProviderConnectionError(ProviderError):
    """Platform API could not be reached."""


class ProviderAPIError(ProviderError):
    """Platform API returned an error response.

    Parameters
    ----------
    message : str
        Human readable error message
    error_code : str | None
        Machine readable error code from the response body
    status_code : int | None
        HTTP status code of the response
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code


class MachineNotFoundError(ProviderAPIError):
    """Machine or app no longer exists."""


class LeaseConflictError(ProviderAPIError):
    """Another holder owns the lease on the machine."""


class ConfigValidationError(ProviderAPIError):
    """Platform rejected a machine configuration."""


class WaitError(FlotillaError):
    """Base class for state wait failures.

    Parameters
    ----------
    machine_id : str
        Machine that was being waited on
    message : str
        Human readable error message
    """

    def __init__(self, machine_id: str, message: str) -> None:
        super().__init__(message)
        self.machine_id = machine_id


class WaitTimeoutError(WaitError):
    """Machine did not reach the awaited state before the deadline.

    Parameters
    ----------
    machine_id : str
        Machine that was being waited on
    target : tuple[str, ...]
        States that were awaited
    last_state : str | None
        Last state observed before the deadline, None if never observed
    timeout : float
        Deadline in seconds
    """

    def __init__(
        self,
        machine_id: str,
        target: tuple[str, ...],
        last_state: str | None,
        timeout: float,
    ) -> None:
        self.target = target
        self.last_state = last_state
        self.timeout = timeout
        super().__init__(
            machine_id,
            f"timed out after {timeout:g}s waiting for machine {machine_id} "
            f"to reach {' or '.join(target)} (last observed state: {last_state or 'unknown'})",
        )


class UnexpectedTerminationError(WaitError):
    """Machine reached a terminal state other than the awaited one.

    Parameters
    ----------
    machine_id : str
        Machine that terminated
    state : str
        Terminal state that was observed
    message : str
        Exit cause derived from the machine event log
    exit_code : int | None
        Exit code of the machine process, when one could be parsed
    """

    def __init__(
        self,
        machine_id: str,
        state: str,
        message: str,
        exit_code: int | None = None,
    ) -> None:
        self.state = state
        self.exit_code = exit_code
        super().__init__(machine_id, message)


class WaitCancelledError(WaitError):
    """Wait was aborted by the caller."""

    def __init__(self, machine_id: str) -> None:
        super().__init__(machine_id, f"wait for machine {machine_id} was cancelled")


class SelectionCancelledError(FlotillaError):
    """Operator dismissed the interactive machine picker."""


class CleanupWarning(UserWarning):
    """Lease release or machine teardown failed after the main operation.

    Cleanup warnings are collected and logged, never raised, so that they do
    not mask the outcome of the operation they follow.

    Parameters
    ----------
    machine_id : str
        Machine whose cleanup failed
    message : str
        Description of what failed and what the operator should do
    """

    def __init__(self, machine_id: str, message: str) -> None:
        super().__init__(message)
        self.machine_id = machine_id
        self.message = message

    def __str__(self) -> str:
        return self.message
