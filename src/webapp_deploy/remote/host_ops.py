"""
Host-side operations.

Each operation is one short command sent through the RemoteExecutor, so the
orchestration code decides the order and every step can be tested on its own.
Mutating operations raise the error type of the step that calls them when the
command exits non-zero; queries return plain values.
"""
import logging
import shlex
from dataclasses import dataclass
from typing import List, Optional, Type

from webapp_deploy.errors import DeploymentError, InstallError, StoreError
from webapp_deploy.models import CommandResult, ManagedHost, ProbeResult
from webapp_deploy.remote.executor import RemoteExecutor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SystemStats:
    """Usage percentages; None when the command failed or printed nothing usable."""
    disk_used_percent: Optional[int]
    memory_used_percent: Optional[int]


@dataclass(frozen=True)
class FileInfo:
    size: int
    modified_epoch: int


def _q(value: str) -> str:
    return shlex.quote(value)


class HostOperations:
    """The fixed vocabulary of commands run on the managed host."""

    def __init__(self, executor: RemoteExecutor):
        self.executor = executor

    def _run(self, host: ManagedHost, command: str) -> CommandResult:
        return self.executor.execute(host, command)

    def _require(self, host: ManagedHost, command: str, error: Type[DeploymentError],
                 step: Optional[str], what: str) -> CommandResult:
        result = self._run(host, command)
        if not result.ok:
            detail = result.stderr.strip() or result.stdout.strip() or f"exit {result.exit_code}"
            raise error(f"{what} failed: {detail}", step=step, host=host.label)
        return result

    # Queries

    def file_exists(self, host: ManagedHost, path: str) -> bool:
        return self._run(host, f"test -f {_q(path)}").ok

    def dir_exists(self, host: ManagedHost, path: str) -> bool:
        return self._run(host, f"test -d {_q(path)}").ok

    def list_dir(self, host: ManagedHost, path: str) -> List[str]:
        """Names in ``path``; empty when the directory does not exist."""
        if not self.dir_exists(host, path):
            return []
        result = self._run(host, f"ls -1 {_q(path)}")
        if not result.ok:
            raise StoreError(f"Could not list {path}: {result.stderr.strip()}", step="list", host=host.label)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def checksum(self, host: ManagedHost, path: str) -> Optional[str]:
        result = self._run(host, f"sha256sum {_q(path)}")
        if not result.ok or not result.stdout.split():
            return None
        return result.stdout.split()[0]

    def read_file(self, host: ManagedHost, path: str) -> Optional[str]:
        result = self._run(host, f"cat {_q(path)}")
        return result.stdout if result.ok else None

    def file_info(self, host: ManagedHost, path: str) -> Optional[FileInfo]:
        result = self._run(host, f"stat -c '%s %Y' {_q(path)}")
        if not result.ok:
            return None
        size, mtime = result.stdout.split()[:2]
        return FileInfo(size=int(size), modified_epoch=int(mtime))

    def service_active(self, host: ManagedHost, service: str) -> bool:
        result = self._run(host, f"systemctl is-active {_q(service)}")
        return result.ok and result.stdout.strip() == "active"

    def service_enabled(self, host: ManagedHost, service: str) -> bool:
        result = self._run(host, f"systemctl is-enabled {_q(service)}")
        return result.ok and result.stdout.strip() == "enabled"

    def probe(self, host: ManagedHost, url: str) -> ProbeResult:
        """HTTP GET from the host itself; status 0 when nothing answered."""
        result = self._run(host, f"curl -s --max-time 10 -w '\\n%{{http_code}}' {_q(url)}")
        body, _, code = result.stdout.rpartition("\n")
        try:
            status = int(code.strip())
        except ValueError:
            status = 0
        return ProbeResult(status_code=status, body=body)

    def system_stats(self, host: ManagedHost) -> SystemStats:
        disk = self._run(host, "df -P /")
        mem = self._run(host, "free")
        return SystemStats(
            disk_used_percent=_parse_df(disk.stdout) if disk.ok else None,
            memory_used_percent=_parse_free(mem.stdout) if mem.ok else None,
        )

    # Mutations

    def ensure_dir(self, host: ManagedHost, path: str, step: Optional[str] = None) -> None:
        self._require(host, f"sudo mkdir -p {_q(path)}", StoreError, step, f"mkdir {path}")

    def copy(self, host: ManagedHost, src: str, dst: str, error: Type[DeploymentError] = StoreError,
             step: Optional[str] = None) -> None:
        self._require(host, f"sudo cp {_q(src)} {_q(dst)}", error, step, f"cp {src} -> {dst}")

    def move(self, host: ManagedHost, src: str, dst: str, error: Type[DeploymentError] = InstallError,
             step: Optional[str] = None) -> None:
        """Rename ``src`` over ``dst``; atomic when both are on one filesystem."""
        self._require(host, f"sudo mv -f {_q(src)} {_q(dst)}", error, step, f"mv {src} -> {dst}")

    def set_metadata(self, host: ManagedHost, path: str, owner: str, mode: str,
                     step: Optional[str] = None) -> None:
        self._require(host, f"sudo chown {_q(owner)} {_q(path)}", InstallError, step, f"chown {path}")
        self._require(host, f"sudo chmod {_q(mode)} {_q(path)}", InstallError, step, f"chmod {path}")

    def restart_service(self, host: ManagedHost, service: str, step: Optional[str] = None) -> None:
        self._require(host, f"sudo systemctl restart {_q(service)}", InstallError, step, f"restart {service}")


def _parse_df(output: str) -> Optional[int]:
    """Use% of the last line of ``df -P``."""
    lines = [line for line in output.splitlines() if line.strip()]
    if len(lines) < 2:
        return None
    for field in lines[-1].split():
        if field.endswith('%') and field[:-1].isdigit():
            return int(field[:-1])
    return None


def _parse_free(output: str) -> Optional[int]:
    """used / (used + free) of the ``Mem:`` row, as the health script computes it."""
    for line in output.splitlines():
        if line.startswith('Mem:'):
            fields = line.split()
            try:
                used, free = int(fields[2]), int(fields[3])
            except (IndexError, ValueError):
                return None
            if used + free == 0:
                return None
            return round(used / (used + free) * 100)
    return None
