"""HTTP client for the machines platform API."""

from __future__ import annotations

import logging
from typing import Any

import requests

from flotilla.constants import (
    DEFAULT_API_URL,
    HTTP_REQUEST_TIMEOUT_SECONDS,
    LEASE_NONCE_HEADER,
    LEASE_TTL_SECONDS,
)
from flotilla.providers.exceptions import ProviderAPIError
from flotilla.providers.machines.errors import error_from_response, handle_api_errors
from flotilla.providers.machines.models import Lease, Machine, MachineEvent

logger = logging.getLogger(__name__)


class MachinesClient:
    """Manage machines of a single app through the platform HTTP API.

    Parameters
    ----------
    app_name : str
        App whose machines this client operates on
    api_token : str | None
        Bearer token sent with every request
    api_url : str
        Base URL of the platform API
    session : requests.Session | None
        Optional session, mainly for tests. A new session is created if None
    timeout : float
        Per-request timeout in seconds
    """

    def __init__(
        self,
        app_name: str,
        api_token: str | None = None,
        api_url: str = DEFAULT_API_URL,
        session: requests.Session | None = None,
        timeout: float = HTTP_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.app_name = app_name
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if api_token:
            self.session.headers.update({"Authorization": f"Bearer {api_token}"})

    @property
    def base_url(self) -> str:
        return f"{self.api_url}/v1/apps/{self.app_name}"

    def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        nonce: str | None = None,
    ) -> Any:
        """Send a request and decode the JSON response.

        Parameters
        ----------
        method : str
            HTTP method
        path : str
            Path relative to the app base URL
        json : dict[str, Any] | None
            Request body
        params : dict[str, Any] | None
            Query string parameters
        nonce : str | None
            Lease nonce to send with mutating calls

        Returns
        -------
        Any
            Decoded JSON body, or None for empty responses

        Raises
        ------
        ProviderAPIError
            If the platform answered with an error status
        ProviderCredentialsError
            If the platform rejected the API token
        ProviderConnectionError
            If the platform could not be reached
        """
        headers = {}
        if nonce:
            headers[LEASE_NONCE_HEADER] = nonce

        url = f"{self.base_url}{path}"
        logger.debug("%s %s", method, url)

        with handle_api_errors():
            response = self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )

        if response.status_code >= 400:
            raise error_from_response(response)

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise ProviderAPIError(
                f"invalid JSON in platform response for {method} {path}",
                status_code=response.status_code,
            ) from e

    def get_machine(self, machine_id: str) -> Machine:
        """Fetch the current state of a machine.

        Raises
        ------
        MachineNotFoundError
            If the machine does not exist
        """
        return Machine.from_dict(self._request("GET", f"/machines/{machine_id}"))

    def list_machines(
        self, include_deleted: bool = False, region: str | None = None
    ) -> list[Machine]:
        """List machines of the app.

        Parameters
        ----------
        include_deleted : bool
            Include destroyed machines
        region : str | None
            Only return machines in this region

        Returns
        -------
        list[Machine]
            Machines in the order returned by the platform
        """
        params: dict[str, Any] = {}
        if include_deleted:
            params["include_deleted"] = "true"
        if region:
            params["region"] = region

        data = self._request("GET", "/machines", params=params or None) or []
        return [Machine.from_dict(m) for m in data]

    def acquire_lease(self, machine_id: str, ttl: int = LEASE_TTL_SECONDS) -> Lease:
        """Acquire the lease on a machine.

        Raises
        ------
        LeaseConflictError
            If another holder owns the lease
        MachineNotFoundError
            If the machine does not exist
        """
        data = self._request("POST", f"/machines/{machine_id}/lease", json={"ttl": ttl}) or {}
        lease_data = data.get("data", data)
        nonce = lease_data.get("nonce")

        if not nonce:
            raise ProviderAPIError(f"platform returned no lease nonce for machine {machine_id}")

        return Lease(
            machine_id=machine_id,
            nonce=nonce,
            holder=lease_data.get("owner", ""),
            expires_at=lease_data.get("expires_at"),
        )

    def release_lease(self, machine_id: str, nonce: str) -> None:
        self._request("DELETE", f"/machines/{machine_id}/lease", nonce=nonce)

    def update_machine(
        self, machine_id: str, config: dict[str, Any], nonce: str
    ) -> Machine:
        """Push a new configuration to a leased machine.

        Raises
        ------
        LeaseConflictError
            If the nonce does not match the lease held on the machine
        ConfigValidationError
            If the platform rejected the configuration
        """
        data = self._request(
            "POST", f"/machines/{machine_id}", json={"config": config}, nonce=nonce
        )
        return Machine.from_dict(data)

    def launch_machine(
        self,
        config: dict[str, Any],
        region: str | None = None,
        name: str | None = None,
    ) -> Machine:
        body: dict[str, Any] = {"config": config}
        if region:
            body["region"] = region
        if name:
            body["name"] = name

        return Machine.from_dict(self._request("POST", "/machines", json=body))

    def stop_machine(
        self,
        machine_id: str,
        nonce: str = "",
        timeout: float | None = None,
        signal: str | None = None,
    ) -> None:
        """Ask the platform to stop a machine.

        Parameters
        ----------
        machine_id : str
            Machine to stop
        nonce : str
            Lease nonce, empty for machines not under lease
        timeout : float | None
            Seconds the platform waits for the process before killing it
        signal : str | None
            Signal sent to the machine process, platform default if None
        """
        body: dict[str, Any] = {}
        if timeout is not None:
            body["timeout"] = f"{timeout:g}s"
        if signal:
            body["signal"] = signal

        self._request("POST", f"/machines/{machine_id}/stop", json=body, nonce=nonce or None)

    def get_events(self, machine_id: str) -> list[MachineEvent]:
        """Fetch the event log of a machine, newest first."""
        data = self._request("GET", f"/machines/{machine_id}/events") or []
        return [MachineEvent.from_dict(e) for e in data]

    def get_current_release_image(self) -> str | None:
        """Return the image reference of the app's current release.

        Returns
        -------
        str | None
            Image reference, or None if the app has never been released
        """
        data = self._request("GET", "/releases/current")
        if not data:
            return None
        return data.get("image_ref") or None
