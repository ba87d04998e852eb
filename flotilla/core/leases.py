"""Machine lease acquisition and guaranteed release."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import ExitStack, contextmanager
from typing import Any

from flotilla.constants import LEASE_TTL_SECONDS
from flotilla.providers.exceptions import CleanupWarning, MachineNotFoundError, ProviderError
from flotilla.providers.machines.models import Lease

logger = logging.getLogger(__name__)


class LeaseManager:
    """Acquire and release per-machine leases.

    Acquisition errors propagate to the caller. Release is best-effort: the
    platform expires stale leases on its own, so a failed release is logged
    and reported as a CleanupWarning instead of being raised.

    Parameters
    ----------
    client : Any
        Platform client exposing acquire_lease and release_lease
    ttl : int
        Lease lifetime requested from the platform, in seconds
    """

    def __init__(self, client: Any, ttl: int = LEASE_TTL_SECONDS) -> None:
        self.client = client
        self.ttl = ttl
        self.warnings: list[CleanupWarning] = []

    def acquire(self, machine_id: str) -> Lease:
        """Acquire the lease on a machine.

        Parameters
        ----------
        machine_id : str
            Machine to lease

        Returns
        -------
        Lease
            Lease carrying the nonce to thread through mutating calls

        Raises
        ------
        LeaseConflictError
            If another holder owns the lease
        MachineNotFoundError
            If the machine no longer exists
        """
        logger.debug("Acquiring lease on machine %s", machine_id)
        lease = self.client.acquire_lease(machine_id, ttl=self.ttl)
        logger.debug("Acquired lease on machine %s (nonce %s)", machine_id, lease.nonce)
        return lease

    def release(self, lease: Lease) -> CleanupWarning | None:
        """Release a lease, downgrading failures to a warning.

        Releasing an already released lease is a no-op.

        Parameters
        ----------
        lease : Lease
            Lease to release

        Returns
        -------
        CleanupWarning | None
            Warning describing the failure, None if the lease was released
        """
        if lease.released:
            return None

        lease.released = True

        try:
            self.client.release_lease(lease.machine_id, lease.nonce)
            logger.debug("Released lease on machine %s", lease.machine_id)
            return None
        except MachineNotFoundError:
            logger.debug("Machine %s is gone, its lease went with it", lease.machine_id)
            return None
        except ProviderError as e:
            warning = CleanupWarning(
                lease.machine_id,
                f"failed to release lease on machine {lease.machine_id}: {e}; "
                "it will expire on its own",
            )
            logger.warning("%s", warning)
            self.warnings.append(warning)
            return warning

    @contextmanager
    def held(self, machine_id: str) -> Iterator[Lease]:
        """Hold the lease on one machine for the duration of the block."""
        lease = self.acquire(machine_id)
        try:
            yield lease
        finally:
            self.release(lease)

    @contextmanager
    def held_all(self, machine_ids: Iterable[str]) -> Iterator[list[Lease]]:
        """Hold leases on all machines for the duration of the block.

        Every lease is acquired before the block runs. If one acquisition
        fails, the leases acquired so far are released and the error
        propagates.

        Parameters
        ----------
        machine_ids : Iterable[str]
            Machines to lease

        Yields
        ------
        list[Lease]
            Leases in the order of machine_ids
        """
        with ExitStack() as stack:
            leases = []
            for machine_id in machine_ids:
                lease = self.acquire(machine_id)
                stack.callback(self.release, lease)
                leases.append(lease)

            yield leases
