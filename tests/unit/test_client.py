"""Unit tests for MachinesClient and platform error translation."""

import json
from typing import Any
from unittest.mock import Mock

import pytest
import requests

from flotilla.constants import LEASE_NONCE_HEADER
from flotilla.providers.exceptions import (
    ConfigValidationError,
    LeaseConflictError,
    MachineNotFoundError,
    ProviderAPIError,
    ProviderConnectionError,
    ProviderCredentialsError,
)
from flotilla.providers.machines.client import MachinesClient
from flotilla.providers.machines.errors import error_from_response


def make_response(
    status_code: int = 200, body: Any = None, text: str | None = None
) -> requests.Response:
    """Build a real requests response with the given status and body."""
    response = requests.Response()
    response.status_code = status_code
    response.reason = "Reason"
    if text is not None:
        response._content = text.encode()
    elif body is not None:
        response._content = json.dumps(body).encode()
    else:
        response._content = b""
    return response


@pytest.fixture
def session() -> Mock:
    session = Mock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture
def client(session) -> MachinesClient:
    return MachinesClient(
        "shop-api",
        api_token="secret",
        api_url="https://api.test/",
        session=session,
        timeout=7,
    )


def machine_payload(machine_id: str = "m1", state: str = "started", **extra: Any) -> dict[str, Any]:
    payload = {
        "id": machine_id,
        "state": state,
        "name": f"web-{machine_id}",
        "region": "ams",
        "private_ip": "fdaa:0:1::2",
        "config": {"image": "app:v1"},
    }
    payload.update(extra)
    return payload


class TestRequests:
    def test_session_carries_token(self, client, session) -> None:
        assert session.headers["Authorization"] == "Bearer secret"
        assert session.headers["Accept"] == "application/json"

    def test_no_token_no_authorization_header(self, session) -> None:
        MachinesClient("shop-api", session=session)

        assert "Authorization" not in session.headers

    def test_get_machine(self, client, session) -> None:
        session.request.return_value = make_response(
            body=machine_payload(
                events=[
                    {
                        "type": "exit",
                        "status": "stopped",
                        "source": "platform",
                        "timestamp": 1700000000000,
                        "request": {"exit_event": {"exit_code": 137}},
                    }
                ],
                checks=[{"name": "http", "status": "passing"}],
            )
        )

        machine = client.get_machine("m1")

        session.request.assert_called_once_with(
            "GET",
            "https://api.test/v1/apps/shop-api/machines/m1",
            json=None,
            params=None,
            headers={},
            timeout=7,
        )
        assert machine.id == "m1"
        assert machine.state == "started"
        assert machine.image == "app:v1"
        assert machine.events[0].exit_code() == 137
        assert machine.events[0].timestamp.year == 2023
        assert machine.checks[0].passing

    def test_list_machines_with_filters(self, client, session) -> None:
        session.request.return_value = make_response(
            body=[machine_payload("m1"), machine_payload("m2", state="stopped")]
        )

        machines = client.list_machines(include_deleted=True, region="ams")

        assert [m.id for m in machines] == ["m1", "m2"]
        assert session.request.call_args.kwargs["params"] == {
            "include_deleted": "true",
            "region": "ams",
        }

    def test_list_machines_empty_body(self, client, session) -> None:
        session.request.return_value = make_response()

        assert client.list_machines() == []

    def test_acquire_lease(self, client, session) -> None:
        session.request.return_value = make_response(
            body={"data": {"nonce": "n-1", "owner": "ops@example.com", "expires_at": 1700000030}}
        )

        lease = client.acquire_lease("m1", ttl=45)

        args, kwargs = session.request.call_args
        assert args == ("POST", "https://api.test/v1/apps/shop-api/machines/m1/lease")
        assert kwargs["json"] == {"ttl": 45}
        assert lease.machine_id == "m1"
        assert lease.nonce == "n-1"
        assert lease.holder == "ops@example.com"
        assert lease.expires_at == 1700000030

    def test_acquire_lease_without_nonce(self, client, session) -> None:
        session.request.return_value = make_response(body={"data": {}})

        with pytest.raises(ProviderAPIError, match="no lease nonce"):
            client.acquire_lease("m1")

    def test_release_lease_sends_nonce(self, client, session) -> None:
        session.request.return_value = make_response()

        client.release_lease("m1", "n-1")

        args, kwargs = session.request.call_args
        assert args[0] == "DELETE"
        assert kwargs["headers"] == {LEASE_NONCE_HEADER: "n-1"}

    def test_update_machine_sends_config_and_nonce(self, client, session) -> None:
        session.request.return_value = make_response(body=machine_payload(state="replacing"))

        machine = client.update_machine("m1", {"image": "app:v2"}, "n-1")

        args, kwargs = session.request.call_args
        assert args == ("POST", "https://api.test/v1/apps/shop-api/machines/m1")
        assert kwargs["json"] == {"config": {"image": "app:v2"}}
        assert kwargs["headers"] == {LEASE_NONCE_HEADER: "n-1"}
        assert machine.state == "replacing"

    def test_launch_machine(self, client, session) -> None:
        session.request.return_value = make_response(body=machine_payload("e1", state="created"))

        machine = client.launch_machine({"image": "app:v1"}, region="ams")

        assert session.request.call_args.kwargs["json"] == {
            "config": {"image": "app:v1"},
            "region": "ams",
        }
        assert machine.id == "e1"

    def test_stop_machine_without_lease(self, client, session) -> None:
        session.request.return_value = make_response()

        client.stop_machine("m1", timeout=5, signal="SIGTERM")

        kwargs = session.request.call_args.kwargs
        assert kwargs["json"] == {"timeout": "5s", "signal": "SIGTERM"}
        assert kwargs["headers"] == {}

    def test_get_events(self, client, session) -> None:
        session.request.return_value = make_response(
            body=[{"type": "start", "status": "started", "timestamp": "2024-01-01T00:00:00Z"}]
        )

        events = client.get_events("m1")

        assert events[0].type == "start"
        assert events[0].timestamp.tzinfo is not None

    @pytest.mark.parametrize("timestamp", ["not-a-date", "2024-13-45T99:00:00Z", 10**20, None])
    def test_unparseable_event_timestamp_is_dropped(self, client, session, timestamp) -> None:
        session.request.return_value = make_response(
            body=machine_payload(
                events=[
                    {
                        "type": "exit",
                        "status": "stopped",
                        "timestamp": timestamp,
                        "request": {"exit_event": {"exit_code": 1}},
                    }
                ]
            )
        )

        machine = client.get_machine("m1")

        assert machine.events[0].timestamp is None
        assert machine.events[0].exit_code() == 1

    def test_current_release_image(self, client, session) -> None:
        session.request.return_value = make_response(body={"image_ref": "registry/app:v7"})

        assert client.get_current_release_image() == "registry/app:v7"

    def test_app_without_release(self, client, session) -> None:
        session.request.return_value = make_response(body={"image_ref": ""})

        assert client.get_current_release_image() is None

    def test_invalid_json_body(self, client, session) -> None:
        session.request.return_value = make_response(text="<html>")

        with pytest.raises(ProviderAPIError, match="invalid JSON"):
            client.get_machine("m1")


class TestErrors:
    @pytest.mark.parametrize(
        ("status", "error_type"),
        [
            (404, MachineNotFoundError),
            (409, LeaseConflictError),
            (400, ConfigValidationError),
            (422, ConfigValidationError),
            (500, ProviderAPIError),
        ],
    )
    def test_status_mapping(self, status, error_type) -> None:
        error = error_from_response(make_response(status, body={"error": "boom"}))

        assert type(error) is error_type
        assert str(error) == "boom"
        assert error.status_code == status

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_failures(self, status) -> None:
        error = error_from_response(make_response(status, body={"message": "bad token"}))

        assert isinstance(error, ProviderCredentialsError)

    def test_error_code_from_body(self) -> None:
        error = error_from_response(
            make_response(409, body={"error": "held", "code": "lease_held"})
        )

        assert error.error_code == "lease_held"

    def test_plain_text_body(self) -> None:
        error = error_from_response(make_response(502, text="upstream unavailable\n"))

        assert str(error) == "upstream unavailable"

    def test_empty_body_uses_reason(self) -> None:
        assert str(error_from_response(make_response(503))) == "Reason"

    def test_error_response_raises(self, client, session) -> None:
        session.request.return_value = make_response(404, body={"error": "machine not found"})

        with pytest.raises(MachineNotFoundError, match="machine not found"):
            client.get_machine("nope")

    def test_timeout_becomes_connection_error(self, client, session) -> None:
        session.request.side_effect = requests.exceptions.Timeout("read timed out")

        with pytest.raises(ProviderConnectionError, match="timed out"):
            client.get_machine("m1")

    def test_connection_failure(self, client, session) -> None:
        session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(ProviderConnectionError, match="could not reach"):
            client.list_machines()

    @pytest.mark.parametrize(
        "error",
        [
            requests.exceptions.ChunkedEncodingError("connection broken"),
            requests.exceptions.TooManyRedirects("exceeded 30 redirects"),
            requests.exceptions.InvalidURL("bad host"),
        ],
    )
    def test_other_transport_failures(self, client, session, error) -> None:
        session.request.side_effect = error

        with pytest.raises(ProviderConnectionError, match="request failed") as exc_info:
            client.get_machine("m1")

        assert exc_info.value.__cause__ is error
