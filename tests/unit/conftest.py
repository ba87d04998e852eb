"""Pytest configuration and fixtures for flotilla tests."""

from __future__ import annotations

import os
import threading
from collections.abc import Generator
from typing import Any

import pytest
import yaml

from flotilla.core.config import ConfigLoader
from flotilla.core.leases import LeaseManager
from flotilla.core.waiter import StateWaiter
from tests.unit.fakes.fake_machines_client import FakeMachinesClient


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, delay: float, cancel_event: threading.Event | None = None) -> bool:
        self.sleeps.append(delay)
        self.now += delay
        return cancel_event is not None and cancel_event.is_set()


@pytest.fixture(autouse=True)
def clean_flotilla_env() -> Generator[None, None, None]:
    """Ensure FLOTILLA_* variables from the shell do not leak into tests.

    Yields
    ------
    None
        Control back to test after cleaning the environment
    """
    saved = {k: v for k, v in os.environ.items() if k.startswith("FLOTILLA_")}
    for key in saved:
        del os.environ[key]

    yield

    for key in [k for k in os.environ if k.startswith("FLOTILLA_")]:
        del os.environ[key]
    os.environ.update(saved)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client() -> FakeMachinesClient:
    return FakeMachinesClient()


@pytest.fixture
def waiter(client: FakeMachinesClient, clock: FakeClock) -> StateWaiter:
    """State waiter polling the fake client on the fake clock."""
    return StateWaiter(
        client,
        poll_interval=0.5,
        max_poll_interval=5.0,
        backoff_factor=1.5,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def lease_manager(client: FakeMachinesClient) -> LeaseManager:
    return LeaseManager(client, ttl=30)


@pytest.fixture
def write_config(tmp_path, monkeypatch):
    """Write a flotilla.yaml and point FLOTILLA_CONFIG at it.

    Returns
    -------
    Callable[[dict[str, Any]], Path]
        Writer returning the path of the written file
    """

    def _write(data: dict[str, Any]):
        path = tmp_path / "flotilla.yaml"
        path.write_text(yaml.safe_dump(data))
        monkeypatch.setenv("FLOTILLA_CONFIG", str(path))
        return path

    return _write


@pytest.fixture
def app_config() -> dict[str, Any]:
    """Merged and validated app configuration."""
    loader = ConfigLoader()
    config = loader.get_app_config(
        {
            "app": "shop-api",
            "api_token": "test-token",
            "primary_region": "ams",
            "env": {"RAILS_ENV": "production"},
            "commands": {"deploy": "./deploy.sh --prod", "console": "bin/rails console"},
        }
    )
    loader.validate_config(config)
    return config
