"""SSH connection and command execution on machines."""

import logging
import os
import socket
import time
from collections.abc import Callable
from typing import Any

import paramiko
from paramiko.channel import Channel, ChannelFile

from flotilla.constants import (
    DEFAULT_SSH_USERNAME,
    MAX_COMMAND_LENGTH,
    SSH_CONNECT_MAX_RETRIES,
)
from flotilla.providers.machines.models import Machine

logger = logging.getLogger(__name__)

Dialer = Callable[[str, int], Any]
"""Opens a socket-like channel to (host, port) on the app's private network."""


class SSHManager:
    """Manages an SSH connection to one machine and runs commands on it.

    Parameters
    ----------
    host : str
        Private address of the machine
    username : str
        SSH username (default: root)
    port : int
        SSH port (default: 22)
    key_file : str | None
        Path to a private key file; the SSH agent and default keys are used
        when None
    dialer : Dialer | None
        Opens the transport to the private network. A direct TCP connection is
        made when None

    Attributes
    ----------
    client : paramiko.SSHClient | None
        SSH client instance (None when not connected)
    """

    def __init__(
        self,
        host: str,
        username: str = DEFAULT_SSH_USERNAME,
        port: int = 22,
        key_file: str | None = None,
        dialer: Dialer | None = None,
    ) -> None:
        self.host = host
        self.username = username
        self.port = port
        self.key_file = key_file
        self.dialer = dialer
        self.client: paramiko.SSHClient | None = None
        self._active_channel: Channel | None = None

    def connect(self, max_retries: int = SSH_CONNECT_MAX_RETRIES) -> None:
        """Establish SSH connection with retry logic.

        Implements exponential backoff with delays:
        1s, 2s, 4s, 8s, 16s, 30s, 30s, 30s, 30s, 30s

        Parameters
        ----------
        max_retries : int
            Maximum number of connection attempts (default: 10)

        Raises
        ------
        ConnectionError
            If connection fails after all retry attempts
        """
        delays = [1, 2, 4, 8, 16, 30, 30, 30, 30, 30]
        timeout_seconds = int(os.environ.get("FLOTILLA_SSH_TIMEOUT", "30"))

        for attempt in range(max_retries):
            try:
                logger.debug(
                    "Attempting SSH connection to %s (attempt %s/%s)...",
                    self.host,
                    attempt + 1,
                    max_retries,
                )

                self.client = paramiko.SSHClient()
                self.client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

                sock = self.dialer(self.host, self.port) if self.dialer else None

                self.client.connect(
                    hostname=self.host,
                    port=self.port,
                    username=self.username,
                    key_filename=self.key_file,
                    sock=sock,
                    timeout=timeout_seconds,
                    auth_timeout=30,
                    banner_timeout=timeout_seconds,
                )
                return

            except (
                paramiko.ssh_exception.NoValidConnectionsError,
                paramiko.ssh_exception.SSHException,
                TimeoutError,
                ConnectionRefusedError,
                ConnectionResetError,
                socket.timeout,
            ) as e:
                if attempt < max_retries - 1:
                    time.sleep(delays[min(attempt, len(delays) - 1)])
                    continue

                raise ConnectionError(
                    f"Failed to establish SSH connection to {self.host} after {max_retries} attempts"
                ) from e

    def stream_output_realtime(self, stdout: ChannelFile, stderr: ChannelFile) -> None:
        """Stream stdout and stderr until the command completes.

        Parameters
        ----------
        stdout : ChannelFile
            SSH channel stdout stream
        stderr : ChannelFile
            SSH channel stderr stream
        """
        while True:
            line = stdout.readline()

            if line:
                logger.info(line.rstrip("\n"), extra={"stream": "stdout"})

            if stderr.channel.recv_stderr_ready():
                err_line = stderr.readline()
                if err_line:
                    logger.info(err_line.rstrip("\n"), extra={"stream": "stderr"})

            if stdout.channel.exit_status_ready():
                break

        for line in stdout.readlines():
            logger.info(line.rstrip("\n"), extra={"stream": "stdout"})

        for line in stderr.readlines():
            logger.info(line.rstrip("\n"), extra={"stream": "stderr"})

    def execute_command(self, command: str, interactive: bool = False) -> int:
        """Run a shell command and stream its output.

        Parameters
        ----------
        command : str
            Encoded shell command
        interactive : bool
            Allocate a pseudo terminal for the command

        Returns
        -------
        int
            Command exit code

        Raises
        ------
        RuntimeError
            If SSH connection is not established
        ValueError
            If command is empty or exceeds maximum length
        KeyboardInterrupt
            If user presses Ctrl+C during command execution
        """
        if not command or not command.strip():
            raise ValueError("Command cannot be empty")

        if len(command) > MAX_COMMAND_LENGTH:
            raise ValueError(
                f"Command length ({len(command)}) exceeds maximum of {MAX_COMMAND_LENGTH} characters"
            )

        if not self.client:
            raise RuntimeError("SSH connection not established")

        stdin = None
        stdout = None
        stderr = None

        try:
            stdin, stdout, stderr = self.client.exec_command(command, get_pty=interactive)
            self._active_channel = stdout.channel

            self.stream_output_realtime(stdout, stderr)

            return stdout.channel.recv_exit_status()

        except KeyboardInterrupt:
            self.close()
            raise

        finally:
            for stream in (stdin, stdout, stderr):
                if stream:
                    stream.close()

            self._active_channel = None

    def close(self) -> None:
        """Close SSH connection and clean up resources."""
        self.abort_active_command()

        if self.client:
            self.client.close()
            self.client = None

    def abort_active_command(self) -> None:
        """Close the active channel so blocking output reads terminate."""
        if self._active_channel is None:
            return

        try:
            self._active_channel.close()
        except (OSError, EOFError, paramiko.SSHException) as exc:
            logger.debug("Failed to close active SSH channel: %s", exc)
        finally:
            self._active_channel = None


class SSHExecutor:
    """Remote execution over SSH to a machine's private address.

    Parameters
    ----------
    username : str
        SSH username
    port : int
        SSH port
    key_file : str | None
        Private key file, agent and default keys when None
    dialer : Dialer | None
        Transport to the private network, direct TCP when None
    ssh_manager_factory : Callable[..., SSHManager] | None
        Factory for SSHManager instances, mainly for tests
    """

    def __init__(
        self,
        username: str = DEFAULT_SSH_USERNAME,
        port: int = 22,
        key_file: str | None = None,
        dialer: Dialer | None = None,
        ssh_manager_factory: Callable[..., SSHManager] | None = None,
    ) -> None:
        self.username = username
        self.port = port
        self.key_file = key_file
        self.dialer = dialer
        self.ssh_manager_factory = ssh_manager_factory or SSHManager

    def open_session(self, machine: Machine) -> SSHManager:
        """Connect to a machine and return the connected session.

        Raises
        ------
        ValueError
            If the machine has no private address
        ConnectionError
            If the connection could not be established
        """
        if not machine.private_ip:
            raise ValueError(f"Machine {machine.id} has no private address")

        session = self.ssh_manager_factory(
            host=machine.private_ip,
            username=self.username,
            port=self.port,
            key_file=self.key_file,
            dialer=self.dialer,
        )
        session.connect()
        logger.debug("SSH session to machine %s established", machine.id)
        return session

    def execute(self, session: SSHManager, command: str, interactive: bool = True) -> int:
        return session.execute_command(command, interactive=interactive)

    def close(self, session: SSHManager) -> None:
        session.close()
