"""
Remote command execution over SSH.

A single authenticated channel to the managed host. Commands are synchronous
and bounded by a timeout; a timed-out command has an unknown outcome and is
reported as CommandTimeout rather than retried.
"""
import logging
import os
import socket
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import paramiko

from webapp_deploy.config.settings import Settings
from webapp_deploy.errors import AuthError, CommandTimeout, HostConnectionError
from webapp_deploy.models import CommandResult, ManagedHost

logger = logging.getLogger(__name__)


class RemoteExecutor(ABC):
    """Runs commands on one managed host."""

    call_count: int = 0

    @abstractmethod
    def execute(self, host: ManagedHost, command: str) -> CommandResult:
        """Run a single command and return its output and exit status

        Args:
            host: Host to run on
            command: Shell command line

        Returns:
            CommandResult with stdout, stderr and exit code
        """
        pass

    @abstractmethod
    def execute_script(self, host: ManagedHost, script: str) -> CommandResult:
        """Run a multi-line script as one remote invocation

        The script runs under ``bash -se`` so the first failing line stops it
        and its exit status is the one returned.
        """
        pass

    def check_connection(self, host: ManagedHost) -> None:
        """Raise unless a trivial command succeeds on the host."""
        result = self.execute(host, "echo 'SSH connection successful'")
        if not result.ok:
            raise HostConnectionError(
                f"Connectivity check exited {result.exit_code}: {result.stderr.strip()}",
                step="connect", host=host.label
            )

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class SSHRemoteExecutor(RemoteExecutor):
    """RemoteExecutor backed by paramiko."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.connect_timeout = settings.connect_timeout
        self.command_timeout = settings.command_timeout
        self.call_count = 0
        self._clients: Dict[Tuple[str, int], paramiko.SSHClient] = {}

    def _connect(self, host: ManagedHost) -> paramiko.SSHClient:
        key = (host.address, host.port)
        client = self._clients.get(key)
        if client is not None:
            transport = client.get_transport()
            if transport is not None and transport.is_active():
                return client
            self._clients.pop(key, None)

        key_file = os.path.expanduser(host.key_file)
        if not os.path.isfile(key_file):
            raise AuthError(f"Key file not found: {key_file}", step="connect", host=host.label)

        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=host.address,
                port=host.port,
                username=host.user,
                key_filename=key_file,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except paramiko.AuthenticationException as e:
            client.close()
            raise AuthError(f"SSH authentication rejected for {host.user}: {e}", step="connect", host=host.label)
        except (socket.timeout, paramiko.SSHException, OSError) as e:
            client.close()
            raise HostConnectionError(f"Cannot connect via SSH: {e}", step="connect", host=host.label)

        logger.debug(f"Opened SSH session to {host.label}")
        self._clients[key] = client
        return client

    def transport(self, host: ManagedHost) -> paramiko.Transport:
        """The live paramiko transport for ``host`` (used by SCP uploads)."""
        return self._connect(host).get_transport()

    def _run(self, host: ManagedHost, command: str, stdin_data: Optional[str] = None) -> CommandResult:
        self.call_count += 1
        client = self._connect(host)
        logger.debug(f"[{host.address}] $ {command}")
        try:
            stdin, stdout, stderr = client.exec_command(command, timeout=self.command_timeout)
            if stdin_data is not None:
                stdin.write(stdin_data)
                stdin.channel.shutdown_write()
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            exit_code = stdout.channel.recv_exit_status()
        except socket.timeout:
            raise CommandTimeout(
                f"Command did not finish within {self.command_timeout}s (outcome unknown): {command.splitlines()[0]}",
                host=host.label
            )
        except paramiko.SSHException as e:
            self._clients.pop((host.address, host.port), None)
            raise HostConnectionError(f"SSH channel failed: {e}", host=host.label)

        return CommandResult(stdout=out, stderr=err, exit_code=exit_code)

    def execute(self, host: ManagedHost, command: str) -> CommandResult:
        return self._run(host, command)

    def execute_script(self, host: ManagedHost, script: str) -> CommandResult:
        return self._run(host, "bash -se", stdin_data=script)

    def close(self) -> None:
        for client in self._clients.values():
            client.close()
        self._clients.clear()
