"""
Artifact upload to the managed host.

An upload only counts as done once the remote file's SHA-256 matches the
local one, so a truncated copy is never reported as success.
"""
import hashlib
import logging
import os
import shlex
import socket
from abc import ABC, abstractmethod

import paramiko
from scp import SCPClient, SCPException

from webapp_deploy.errors import NotFoundError, TransferError
from webapp_deploy.models import ManagedHost
from webapp_deploy.remote.executor import RemoteExecutor, SSHRemoteExecutor

logger = logging.getLogger(__name__)


def file_sha256(path: str) -> str:
    """Hex SHA-256 of a local file."""
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(65536), b''):
            digest.update(chunk)
    return digest.hexdigest()


class ArtifactTransfer(ABC):
    """Copies a local file onto the managed host."""

    def __init__(self, executor: RemoteExecutor):
        self.executor = executor

    @abstractmethod
    def _copy(self, host: ManagedHost, local_path: str, remote_path: str) -> None:
        pass

    def upload(self, host: ManagedHost, local_path: str, remote_temp_path: str) -> None:
        """Upload ``local_path`` to ``remote_temp_path`` and confirm it arrived intact

        Args:
            host: Destination host
            local_path: File on this machine
            remote_temp_path: Staging path on the host

        Raises:
            NotFoundError: local file does not exist
            TransferError: copy failed or the remote checksum differs
        """
        if not os.path.isfile(local_path):
            raise NotFoundError(f"Local file not found: {local_path}", step="upload", host=host.label)

        expected = file_sha256(local_path)
        logger.info(f"📦 Uploading {local_path} to {host.address}:{remote_temp_path}")
        self._copy(host, local_path, remote_temp_path)

        result = self.executor.execute(host, f"sha256sum {shlex.quote(remote_temp_path)}")
        if not result.ok:
            raise TransferError(
                f"Could not checksum uploaded file: {result.stderr.strip()}", step="upload", host=host.label
            )
        actual = result.stdout.split()[0] if result.stdout.split() else ""
        if actual != expected:
            raise TransferError(
                f"Checksum mismatch for {remote_temp_path} (expected {expected[:12]}, got {actual[:12] or 'nothing'})",
                step="upload", host=host.label
            )
        logger.info(f"✅ Upload verified ({expected[:12]})")


class SCPArtifactTransfer(ArtifactTransfer):
    """ArtifactTransfer using scp over the executor's SSH transport."""

    def __init__(self, executor: SSHRemoteExecutor):
        super().__init__(executor)

    def _copy(self, host: ManagedHost, local_path: str, remote_path: str) -> None:
        try:
            transport = self.executor.transport(host)
            with SCPClient(transport, socket_timeout=self.executor.command_timeout) as scp:
                scp.put(local_path, remote_path)
        except (SCPException, paramiko.SSHException, socket.timeout, OSError) as e:
            raise TransferError(f"scp failed: {e}", step="upload", host=host.label)
