"""
Backup store for the live artifact.

Snapshots are flat files in one directory on the managed host, named
``<label>.<YYYYmmdd_HHMMSS>`` with a ``-NNN`` suffix when an earlier snapshot
already holds the same second. The directory listing is the only index.
Snapshots are only ever added: nothing here renames, rewrites or deletes one.
"""
import logging
import os
import posixpath
import re
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from webapp_deploy.config.settings import Settings
from webapp_deploy.errors import NotFoundError, StoreError
from webapp_deploy.models import ManagedHost, SnapshotRef
from webapp_deploy.remote.host_ops import HostOperations

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
PRE_ROLLBACK_SUFFIX = "pre-rollback"
SNAPSHOT_PATTERN = re.compile(r'^(?P<label>.+)\.(?P<ts>\d{8}_\d{6})(?:-(?P<seq>\d+))?$')


def parse_snapshot_name(name: str, backup_dir: str) -> Optional[SnapshotRef]:
    """Parse a backup file name; None for names that are not snapshots."""
    match = SNAPSHOT_PATTERN.match(name)
    if not match:
        return None
    try:
        datetime.strptime(match.group('ts'), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return SnapshotRef(
        timestamp=match.group('ts'),
        sequence=int(match.group('seq') or 0),
        label=match.group('label'),
        snapshot_id=name,
        path=f"{backup_dir.rstrip('/')}/{name}",
    )


def next_snapshot_name(label: str, now: datetime, existing: Iterable[SnapshotRef]) -> Tuple[str, str, int]:
    """Pick a name that sorts after every existing snapshot.

    The sequence is shared by all labels, and a clock reading earlier than the
    newest snapshot reuses that snapshot's second, so names never collide and
    (timestamp, sequence) always follows creation order.

    Returns:
        (name, timestamp, sequence)
    """
    timestamp = now.strftime(TIMESTAMP_FORMAT)
    sequence = 0
    newest = max(existing, default=None)
    if newest is not None and newest.timestamp >= timestamp:
        timestamp = newest.timestamp
        sequence = newest.sequence + 1

    name = f"{label}.{timestamp}" if sequence == 0 else f"{label}.{timestamp}-{sequence:03d}"
    return name, timestamp, sequence


def select_snapshot(snapshots: Sequence[SnapshotRef], criterion: Optional[str]) -> SnapshotRef:
    """Choose one snapshot from a newest-first listing.

    ``criterion`` is a list index as shown by ``list-backups`` ("0" is the
    newest), an exact snapshot id or file path, or a prefix matching exactly
    one id. There is no default: an empty criterion is an error.

    Raises:
        NotFoundError: nothing, or more than one snapshot, matches
    """
    if criterion is None or not str(criterion).strip():
        raise NotFoundError("No snapshot selected; pass an index or snapshot id", step="select")
    criterion = str(criterion).strip()

    if criterion.isdigit():
        index = int(criterion)
        if index < len(snapshots):
            return snapshots[index]
        raise NotFoundError(f"Index {index} out of range (0-{len(snapshots) - 1})", step="select")

    name = os.path.basename(criterion)
    for snapshot in snapshots:
        if snapshot.snapshot_id == name:
            return snapshot

    matches = [s for s in snapshots if s.snapshot_id.startswith(name)]
    if len(matches) == 1:
        return matches[0]
    if matches:
        raise NotFoundError(f"'{criterion}' matches {len(matches)} snapshots", step="select")
    raise NotFoundError(f"Backup file not found: {criterion}", step="select")


class BackupStore:
    """Snapshots of the live artifact in the host's backup directory."""

    def __init__(self, host_ops: HostOperations, backup_dir: str, artifact_name: str,
                 clock: Optional[Callable[[], datetime]] = None):
        self.host_ops = host_ops
        self.backup_dir = backup_dir.rstrip('/')
        self.artifact_name = artifact_name
        self.clock = clock or datetime.now

    @classmethod
    def from_settings(cls, settings: Settings, host_ops: HostOperations,
                      clock: Optional[Callable[[], datetime]] = None) -> "BackupStore":
        return cls(
            host_ops,
            backup_dir=settings.backup_dir,
            artifact_name=settings.artifact_name,
            clock=clock,
        )

    @property
    def pre_rollback_label(self) -> str:
        return f"{self.artifact_name}.{PRE_ROLLBACK_SUFFIX}"

    def list_snapshots(self, host: ManagedHost) -> List[SnapshotRef]:
        """All snapshots of this artifact, newest first."""
        snapshots = []
        for name in self.host_ops.list_dir(host, self.backup_dir):
            ref = parse_snapshot_name(name, self.backup_dir)
            if ref is None:
                continue
            if ref.label != self.artifact_name and ref.label != self.pre_rollback_label:
                continue
            snapshots.append(ref)
        return sorted(snapshots, reverse=True)

    def get_snapshot(self, host: ManagedHost, snapshot_id: str) -> SnapshotRef:
        for ref in self.list_snapshots(host):
            if ref.snapshot_id == snapshot_id:
                return ref
        raise NotFoundError(f"Backup file not found: {self.backup_dir}/{snapshot_id}", step="lookup", host=host.label)

    def exists(self, host: ManagedHost, snapshot: SnapshotRef) -> bool:
        return self.host_ops.file_exists(host, snapshot.path)

    def read_snapshot(self, host: ManagedHost, snapshot: SnapshotRef) -> str:
        content = self.host_ops.read_file(host, snapshot.path)
        if content is None:
            raise NotFoundError(f"Backup file not found: {snapshot.path}", step="read", host=host.label)
        return content

    def create_snapshot(self, host: ManagedHost, current_artifact_path: str, label: str) -> Optional[SnapshotRef]:
        """Copy the live artifact into the backup directory

        Args:
            host: Managed host
            current_artifact_path: Path of the live artifact
            label: Name prefix, e.g. ``index.html`` or ``index.html.pre-rollback``

        Returns:
            The new snapshot, or None when nothing is live yet

        Raises:
            StoreError: the directory or the copy could not be made, or the
                copy does not match the live file
        """
        if not self.host_ops.file_exists(host, current_artifact_path):
            logger.info("No existing deployment to backup")
            return None

        self.host_ops.ensure_dir(host, self.backup_dir, step="backup")
        name, timestamp, sequence = next_snapshot_name(label, self.clock(), self.list_snapshots(host))
        ref = SnapshotRef(
            timestamp=timestamp,
            sequence=sequence,
            label=label,
            snapshot_id=name,
            path=f"{self.backup_dir}/{name}",
        )

        if self.host_ops.file_exists(host, ref.path):
            raise StoreError(f"Snapshot {name} already exists; another operation is running", step="backup",
                             host=host.label)

        self.host_ops.copy(host, current_artifact_path, ref.path, error=StoreError, step="backup")

        source_sum = self.host_ops.checksum(host, current_artifact_path)
        copy_sum = self.host_ops.checksum(host, ref.path)
        if source_sum is None or source_sum != copy_sum:
            raise StoreError(f"Snapshot {name} does not match {current_artifact_path}", step="backup",
                             host=host.label)

        logger.info(f"Backup created: {ref.path}")
        return ref

    def restore_snapshot(self, host: ManagedHost, snapshot: SnapshotRef, target_path: str) -> None:
        """Replace ``target_path`` with the snapshot's content

        The snapshot is copied to a hidden staging file in the target's
        directory and then renamed over the target, so the live path never
        holds a half-written file.

        Raises:
            NotFoundError: the snapshot is gone (e.g. removed by hand since listing)
            StoreError: the staging copy failed
            InstallError: the final move failed
        """
        if not self.host_ops.file_exists(host, snapshot.path):
            raise NotFoundError(f"Backup file not found: {snapshot.path}", step="restore", host=host.label)

        staging = f"{posixpath.dirname(target_path)}/.{self.artifact_name}.restore"
        self.host_ops.copy(host, snapshot.path, staging, error=StoreError, step="restore")
        self.host_ops.move(host, staging, target_path, step="restore")
        logger.info(f"Restored {snapshot.snapshot_id} to {target_path}")
