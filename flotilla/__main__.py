#!/usr/bin/env python3
"""Flotilla - operator control surface for app machines."""

from __future__ import annotations

import logging
import sys
from typing import Any, Callable

from flotilla.cli.parsing import build_update_delta, parse_machine_ids
from flotilla.constants import EXIT_ERROR, EXIT_SUCCESS, POLL_INTERVAL_SECONDS, MachineState
from flotilla.core.config import ConfigLoader
from flotilla.core.health import MachineChecksVerifier
from flotilla.core.leases import LeaseManager
from flotilla.core.run_executor import (
    EphemeralMachine,
    ExplicitMachine,
    InteractiveSelection,
    MachineSelection,
    RunExecutor,
)
from flotilla.core.signals import CancellationScope, signal_handlers
from flotilla.core.update import UpdateOrchestrator
from flotilla.core.waiter import StateWaiter
from flotilla.lifecycle import LifecycleManager
from flotilla.providers.exceptions import ProviderCredentialsError
from flotilla.providers.machines.client import MachinesClient
from flotilla.services.ssh import SSHExecutor, SSHManager
from flotilla.tui.machine_picker import pick_machine
from flotilla.utils import log_and_print_error, truncate_name

for _noisy_module in ["urllib3", "requests", "paramiko"]:
    logging.getLogger(_noisy_module).setLevel(logging.WARNING)

from flotilla.cli.main import main  # noqa: E402

logger = logging.getLogger(__name__)


class Flotilla:
    """Main CLI interface for flotilla.

    Parameters
    ----------
    client_factory : Callable[[dict[str, Any]], Any] | None
        Builds the platform client from the app configuration
    ssh_manager_factory : Callable[..., SSHManager] | None
        Factory for SSH sessions
    picker : Callable | None
        Interactive machine picker
    config_path : str | None
        Path to flotilla.yaml, FLOTILLA_CONFIG or ./flotilla.yaml if None
    """

    def __init__(
        self,
        client_factory: Callable[[dict[str, Any]], Any] | None = None,
        ssh_manager_factory: Callable[..., SSHManager] | None = None,
        picker: Callable | None = None,
        config_path: str | None = None,
    ) -> None:
        self._config_loader = ConfigLoader()
        self._config_path = config_path
        self._client_factory = client_factory or self._create_client
        self._ssh_manager_factory = ssh_manager_factory or SSHManager
        self._picker = picker or pick_machine

    def _create_client(self, app_config: dict[str, Any]) -> MachinesClient:
        if not app_config.get("api_token"):
            raise ProviderCredentialsError(
                "No API token configured (set FLOTILLA_API_TOKEN or api_token in flotilla.yaml)"
            )

        return MachinesClient(
            app_name=app_config["app"],
            api_token=app_config["api_token"],
            api_url=app_config["api_url"],
        )

    def load_app_config(self, app: str | None = None) -> dict[str, Any]:
        """Load, merge and validate the app configuration."""
        config = self._config_loader.load_config(self._config_path)
        app_config = self._config_loader.get_app_config(config, app)
        self._config_loader.validate_config(app_config)
        return app_config

    def _components(self, app_config: dict[str, Any]) -> dict[str, Any]:
        client = self._client_factory(app_config)
        waiter = StateWaiter(client, poll_interval=POLL_INTERVAL_SECONDS)
        lease_manager = LeaseManager(client, ttl=app_config["lease_ttl"])
        return {"client": client, "waiter": waiter, "lease_manager": lease_manager}

    def _set_verbose(self, verbose: bool) -> None:
        if verbose:
            logging.getLogger().setLevel(logging.DEBUG)
            logging.debug("Verbose mode enabled")

    def run(
        self,
        *args: Any,
        machine: str | None = None,
        select: bool = False,
        keep: bool = False,
        user: str | None = None,
        app: str | None = None,
        verbose: bool = False,
    ) -> int:
        """Run a command on a machine of the app.

        By default a new ephemeral machine is created from the app's current
        release and destroyed once the command ends.

        Parameters
        ----------
        *args : Any
            Command name, or alias from the commands table, and its arguments
        machine : str | None
            Run on this existing machine instead
        select : bool
            Pick an existing machine interactively
        keep : bool
            Keep an ephemeral machine after the command
        user : str | None
            Unix user to run the command as
        app : str | None
            App name overriding the configuration
        verbose : bool
            Enable debug logging

        Returns
        -------
        int
            Exit code of the remote command
        """
        self._set_verbose(verbose)

        if machine and select:
            raise ValueError("--machine and --select cannot be combined")

        app_config = self.load_app_config(app)
        components = self._components(app_config)

        remote_executor = SSHExecutor(
            username=user or app_config["ssh_username"],
            port=app_config["ssh_port"],
            key_file=app_config.get("ssh_key_file"),
            ssh_manager_factory=self._ssh_manager_factory,
        )
        executor = RunExecutor(
            client=components["client"],
            config_loader=self._config_loader,
            waiter=components["waiter"],
            remote_executor=remote_executor,
            picker=self._picker,
            start_wait_timeout=app_config["start_wait_timeout"],
            stop_timeout=app_config["stop_timeout"],
        )

        selection: MachineSelection
        if machine:
            selection = ExplicitMachine(str(machine))
        elif select:
            selection = InteractiveSelection()
        else:
            selection = EphemeralMachine()

        scope = CancellationScope()
        scope.on_cancel(executor.abort)

        with signal_handlers(scope):
            result = executor.run_command(
                app_config,
                [str(a) for a in args],
                selection=selection,
                keep=keep,
                cancel_event=scope.cancel_event,
            )

        for warning in result.cleanup_warnings:
            print(f"Warning: {warning}", file=sys.stderr)

        if result.ephemeral and keep:
            print(f"Machine {result.machine_id} was kept running", file=sys.stderr)

        return result.exit_code

    def update(
        self,
        *machine_ids: Any,
        image: str | None = None,
        env: Any = None,
        all: bool = False,
        app: str | None = None,
        verbose: bool = False,
    ) -> int:
        """Apply a configuration change to machines, one after another.

        Parameters
        ----------
        *machine_ids : Any
            Machines to update, comma-separated lists allowed
        image : str | None
            New image reference
        env : Any
            Environment variables to set, as KEY=VALUE,KEY=VALUE
        all : bool
            Update every running or stopped machine of the app
        app : str | None
            App name overriding the configuration
        verbose : bool
            Enable debug logging

        Returns
        -------
        int
            0 when every machine was updated, 1 otherwise
        """
        self._set_verbose(verbose)

        ids = parse_machine_ids(machine_ids)
        if all and ids:
            raise ValueError("Pass machine IDs or --all, not both")
        if not all and not ids:
            raise ValueError("No machines given: pass machine IDs or --all")

        delta = build_update_delta(image, env)

        app_config = self.load_app_config(app)
        components = self._components(app_config)
        client = components["client"]

        if all:
            machines = [
                m
                for m in client.list_machines()
                if not m.is_release_command
                and not m.in_state(MachineState.DESTROYING, MachineState.DESTROYED)
            ]
        else:
            machines = [client.get_machine(machine_id) for machine_id in ids]

        if not machines:
            print("No machines to update")
            return EXIT_SUCCESS

        orchestrator = UpdateOrchestrator(
            client=client,
            lease_manager=components["lease_manager"],
            waiter=components["waiter"],
            health_verifier=MachineChecksVerifier(
                client, timeout=app_config["health_check_timeout"]
            ),
            wait_timeout=app_config["update_wait_timeout"],
        )

        scope = CancellationScope()
        with signal_handlers(scope):
            result = orchestrator.rolling_update(
                machines, config_delta=delta, cancel_event=scope.cancel_event
            )

        for outcome in result.outcomes:
            if not outcome.succeeded:
                print(f"  {outcome.machine_id}: failed: {outcome.error}")
            elif outcome.health_failures:
                print(f"  {outcome.machine_id}: updated, health checks failing")
                for failure in outcome.health_failures:
                    print(f"    {failure}")
            else:
                print(f"  {outcome.machine_id}: updated")

        for warning in components["lease_manager"].warnings:
            print(f"Warning: {warning}", file=sys.stderr)

        return EXIT_SUCCESS if result.ok else EXIT_ERROR

    def _lifecycle_manager(self, app: str | None) -> LifecycleManager:
        app_config = self.load_app_config(app)
        components = self._components(app_config)
        return LifecycleManager(
            client=components["client"],
            lease_manager=components["lease_manager"],
            waiter=components["waiter"],
            log_and_print_error=log_and_print_error,
            truncate_name=truncate_name,
            stop_timeout=app_config["stop_timeout"],
            wait_timeout=app_config["update_wait_timeout"],
        )

    def list(self, region: str | None = None, app: str | None = None) -> None:
        """List machines of the app."""
        return self._lifecycle_manager(app).list(region=region)

    def status(self, machine_id: str, app: str | None = None) -> None:
        """Show state, checks and recent events of a machine."""
        self._lifecycle_manager(app).status(str(machine_id))

    def stop(self, machine_id: str, signal: str | None = None, app: str | None = None) -> None:
        """Stop a machine while holding its lease."""
        return self._lifecycle_manager(app).stop(str(machine_id), signal=signal)


if __name__ == "__main__":
    main()
