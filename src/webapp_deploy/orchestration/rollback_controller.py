"""
Rollback controller.

Restores a chosen snapshot as the live artifact. The version being replaced
is snapshotted first under the ``pre-rollback`` label, so every rollback can
itself be undone. The controller never picks a snapshot on its own.
"""
import logging
from typing import Optional, Union

from webapp_deploy.config.settings import Settings
from webapp_deploy.errors import DeploymentError, NotFoundError, VerificationError
from webapp_deploy.models import RollbackResult, RollbackState, SnapshotRef
from webapp_deploy.orchestration.state_machine import OperationStateMachine
from webapp_deploy.orchestration.steps import LivenessProbe, activate_artifact
from webapp_deploy.remote.executor import RemoteExecutor
from webapp_deploy.remote.host_ops import HostOperations
from webapp_deploy.state.backup_store import BackupStore
from webapp_deploy.utils.decorators import log_execution_time

logger = logging.getLogger(__name__)

ROLLBACK_TRANSITIONS = {
    RollbackState.IDLE: {RollbackState.CONNECTED},
    RollbackState.CONNECTED: {RollbackState.SNAPSHOT_CONFIRMED},
    RollbackState.SNAPSHOT_CONFIRMED: {RollbackState.BACKED_UP},
    RollbackState.BACKED_UP: {RollbackState.RESTORED},
    RollbackState.RESTORED: {RollbackState.INSTALLED},
    RollbackState.INSTALLED: {RollbackState.VERIFIED},
    RollbackState.VERIFIED: set(),
}

# States in which the live file already holds restored content
RESTORED_STATES = {RollbackState.RESTORED, RollbackState.INSTALLED}


class RollbackController:
    """Restores a previous snapshot on the managed host."""

    def __init__(self, settings: Settings, resolver, executor: RemoteExecutor,
                 store: Optional[BackupStore] = None, host_ops: Optional[HostOperations] = None):
        self.settings = settings
        self.resolver = resolver
        self.executor = executor
        self.host_ops = host_ops or HostOperations(executor)
        self.store = store or BackupStore.from_settings(settings, self.host_ops)
        self.probe = LivenessProbe(self.host_ops, settings)

    def list_backups(self, tag: Optional[str] = None):
        """Snapshots on the host, newest first."""
        host = self.resolver.resolve(tag)
        return self.store.list_snapshots(host)

    @log_execution_time
    def rollback(self, snapshot: Union[SnapshotRef, str, None], tag: Optional[str] = None,
                 expected_content: Optional[str] = None) -> RollbackResult:
        """Make ``snapshot`` the live artifact again

        Args:
            snapshot: SnapshotRef or snapshot id. When None, the available
                snapshots are returned in ``available`` and nothing changes.
            tag: Host Name tag (defaults to the configured tag)
            expected_content: Substring the served page must contain

        Returns:
            RollbackResult; ``partially_restored`` is True when the live file
            was already replaced before the failure
        """
        machine = OperationStateMachine("rollback", ROLLBACK_TRANSITIONS, RollbackState.IDLE, RollbackState.FAILED)
        result = RollbackResult(success=False, host=None)
        live_path = self.settings.live_path

        try:
            host = self.resolver.resolve(tag)
            result.host = host.label
            self.executor.check_connection(host)
            machine.transition(RollbackState.CONNECTED)

            if snapshot is None:
                result.available = self.store.list_snapshots(host)
                raise NotFoundError(
                    f"No snapshot selected; {len(result.available)} backups available", step="select",
                    host=host.label
                )

            # Confirm the snapshot still exists; it may have been removed out-of-band
            if isinstance(snapshot, str):
                ref = self.store.get_snapshot(host, snapshot)
            else:
                ref = snapshot
                if not self.store.exists(host, ref):
                    raise NotFoundError(f"Backup file not found: {ref.path}", step="select", host=host.label)
            result.restored = ref
            logger.info(f"Rolling back {host.label} to: {ref.snapshot_id}")
            machine.transition(RollbackState.SNAPSHOT_CONFIRMED)

            result.pre_rollback_snapshot = self.store.create_snapshot(host, live_path, self.store.pre_rollback_label)
            if result.pre_rollback_snapshot:
                logger.info(f"✓ Current version backed up as: {result.pre_rollback_snapshot.snapshot_id}")
            machine.transition(RollbackState.BACKED_UP)

            self.store.restore_snapshot(host, ref, live_path)
            machine.transition(RollbackState.RESTORED)

            activate_artifact(self.host_ops, self.settings, host, step="install")
            machine.transition(RollbackState.INSTALLED)

            self.probe.verify(host, expected_content=expected_content)
            live_sum = self.host_ops.checksum(host, live_path)
            snapshot_sum = self.host_ops.checksum(host, ref.path)
            if live_sum is None or snapshot_sum is None:
                raise VerificationError(f"Could not checksum {live_path} or {ref.snapshot_id}", step="verify",
                                        host=host.label)
            if live_sum != snapshot_sum:
                raise VerificationError(f"{live_path} does not match {ref.snapshot_id}", step="verify",
                                        host=host.label)
            machine.transition(RollbackState.VERIFIED)

            result.success = True
            result.reason = f"Rolled back {host.label} to {ref.snapshot_id}"
            logger.info(f"✅ {result.reason}")

        except DeploymentError as e:
            last_state = machine.current_state
            result.partially_restored = last_state in RESTORED_STATES
            machine.fail(str(e))
            result.error = type(e).__name__
            result.reason = str(e)
            if result.partially_restored:
                result.reason += " (live file already restored; re-run rollback or deploy)"
            logger.error(f"❌ Rollback failed after {last_state.value}: {e}")

        result.state = machine.current_state
        result.history = list(machine.history)
        return result
