"""
Advisory per-host lock.

Deploy and rollback assume they are the only mutating operation against a
host. This lock makes that explicit for operators sharing one machine; runs
from different machines still need external serialisation (one CI
concurrency group per host).
"""
import json
import logging
import os
import re
import socket
import time
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from webapp_deploy.errors import LockError

logger = logging.getLogger(__name__)


def _lock_name(host_key: str) -> str:
    return re.sub(r'[^A-Za-z0-9_.-]', '_', host_key) + ".lock"


class HostLock:
    """File-based mutex keyed by host tag, created with O_CREAT | O_EXCL."""

    def __init__(self, host_key: str, lock_dir: str, timeout_seconds: float = 0.0,
                 stale_threshold_seconds: int = 7200, poll_interval: float = 1.0):
        self.host_key = host_key
        self.lock_dir = Path(os.path.expanduser(lock_dir))
        self.lock_file = self.lock_dir / _lock_name(host_key)
        self.timeout_seconds = timeout_seconds
        self.stale_threshold_seconds = stale_threshold_seconds
        self.poll_interval = poll_interval
        self.lock_metadata: Optional[dict] = None

    def acquire(self, operation: str) -> None:
        """
        Acquire the lock for ``operation`` (e.g. "deploy").

        Raises:
            LockError: lock still held after the timeout
        """
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        start_time = time.monotonic()

        while True:
            if self._try_acquire(operation):
                logger.debug(f"Lock acquired for {operation} on {self.host_key}")
                return

            stale = self._stale_lock()
            if stale is not None:
                logger.warning(f"⚠️  Breaking stale lock on {self.host_key}: {stale}")
                self._break_stale(stale)
                continue

            if time.monotonic() - start_time >= self.timeout_seconds:
                holder = self._read_lock() or {}
                raise LockError(
                    f"Another {holder.get('operation', 'operation')} is running "
                    f"(pid {holder.get('pid', '?')} on {holder.get('hostname', '?')} since "
                    f"{holder.get('acquired_at', '?')})",
                    step="lock", host=self.host_key
                )
            time.sleep(self.poll_interval)

    def release(self) -> bool:
        """Release the lock if this instance holds it."""
        if self.lock_metadata is None:
            return False
        lock_data = self._read_lock()
        if lock_data and lock_data.get("pid") != self.lock_metadata.get("pid"):
            logger.error(f"Lock ownership mismatch for {self.host_key}: {lock_data}")
            return False
        try:
            self.lock_file.unlink()
        except FileNotFoundError:
            logger.warning(f"Lock file for {self.host_key} already removed")
        self.lock_metadata = None
        return True

    def is_locked(self) -> bool:
        return self.lock_file.exists()

    def __enter__(self):
        self.acquire("operation")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()

    def _try_acquire(self, operation: str) -> bool:
        try:
            fd = os.open(str(self.lock_file), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False

        metadata = {
            "host": self.host_key,
            "operation": operation,
            "acquired_at": datetime.now().isoformat(),
            "pid": os.getpid(),
            "hostname": socket.gethostname(),
        }
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(metadata, f, indent=2)
        self.lock_metadata = metadata
        return True

    def _read_lock(self, path: Optional[Path] = None) -> Optional[dict]:
        path = path or self.lock_file
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable lock file {path}: {e}")
            return {}

    def _stale_lock(self) -> Optional[dict]:
        """The current holder's metadata when the lock is stale, else None.

        Stale when the holder's process is gone (same machine) or the lock is too old.
        """
        lock_data = self._read_lock()
        if lock_data is None:
            return None

        if lock_data.get("hostname") == socket.gethostname() and lock_data.get("pid"):
            if not _process_alive(int(lock_data["pid"])):
                return lock_data

        try:
            acquired_at = datetime.fromisoformat(lock_data["acquired_at"])
        except (KeyError, ValueError):
            return None
        if datetime.now() - acquired_at > timedelta(seconds=self.stale_threshold_seconds):
            return lock_data
        return None

    def _break_stale(self, seen: dict) -> None:
        """Remove the lock only if it still holds ``seen``.

        The lock is renamed aside first, so a fresh lock taken by another
        process between the staleness check and here is put back untouched.
        """
        tombstone = self.lock_file.with_name(f"{self.lock_file.name}.{os.getpid()}.{uuid.uuid4().hex}.stale")
        try:
            os.rename(self.lock_file, tombstone)
        except FileNotFoundError:
            return

        try:
            if self._read_lock(tombstone) != seen:
                logger.info(f"Lock on {self.host_key} changed hands; leaving it in place")
                try:
                    # link fails rather than overwrite a lock created meanwhile
                    os.link(tombstone, self.lock_file)
                except FileExistsError:
                    logger.error(f"Lock on {self.host_key} was replaced while restoring it: {self._read_lock()}")
        finally:
            tombstone.unlink()


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
