"""
Deployment controller.

Backs up the live artifact, uploads the new one to a staging path, moves it
into place, restarts the web server and probes it:

    idle -> preflight_checked -> connected -> backed_up -> uploaded
         -> installed -> verified

Any step can end the attempt in ``failed``. The backup always happens before
the live path is touched, so the outgoing version is preserved whenever the
install step started. A failed attempt is reported, never retried and never
rolled back automatically.
"""
import logging
import os
from typing import Optional

from webapp_deploy.config.settings import Settings
from webapp_deploy.errors import DeploymentError, LocalArtifactMissing, VerificationError
from webapp_deploy.models import DeploymentResult, DeploymentState
from webapp_deploy.orchestration.state_machine import OperationStateMachine
from webapp_deploy.orchestration.steps import LivenessProbe, activate_artifact
from webapp_deploy.remote.executor import RemoteExecutor
from webapp_deploy.remote.host_ops import HostOperations
from webapp_deploy.remote.transfer import ArtifactTransfer, file_sha256
from webapp_deploy.state.backup_store import BackupStore
from webapp_deploy.utils.decorators import log_execution_time

logger = logging.getLogger(__name__)

DEPLOY_TRANSITIONS = {
    DeploymentState.IDLE: {DeploymentState.PREFLIGHT_CHECKED},
    DeploymentState.PREFLIGHT_CHECKED: {DeploymentState.CONNECTED},
    DeploymentState.CONNECTED: {DeploymentState.BACKED_UP},
    DeploymentState.BACKED_UP: {DeploymentState.UPLOADED},
    DeploymentState.UPLOADED: {DeploymentState.INSTALLED},
    DeploymentState.INSTALLED: {DeploymentState.VERIFIED},
    DeploymentState.VERIFIED: set(),
}


class DeploymentController:
    """Deploys one artifact to the managed host."""

    def __init__(self, settings: Settings, resolver, executor: RemoteExecutor, transfer: ArtifactTransfer,
                 store: Optional[BackupStore] = None, host_ops: Optional[HostOperations] = None):
        self.settings = settings
        self.resolver = resolver
        self.executor = executor
        self.transfer = transfer
        self.host_ops = host_ops or HostOperations(executor)
        self.store = store or BackupStore.from_settings(settings, self.host_ops)
        self.probe = LivenessProbe(self.host_ops, settings)

    @log_execution_time
    def deploy(self, local_artifact_path: str, tag: Optional[str] = None,
               expected_content: Optional[str] = None) -> DeploymentResult:
        """Deploy ``local_artifact_path`` as the live artifact

        Args:
            local_artifact_path: File to publish
            tag: Host Name tag (defaults to the configured tag)
            expected_content: Substring the served page must contain

        Returns:
            DeploymentResult; ``success`` is False with ``error`` and
            ``reason`` set when any step failed
        """
        machine = OperationStateMachine("deploy", DEPLOY_TRANSITIONS, DeploymentState.IDLE, DeploymentState.FAILED)
        result = DeploymentResult(success=False, host=None)
        live_path = self.settings.live_path

        try:
            # Preflight, before any network call
            if not os.path.isfile(local_artifact_path):
                raise LocalArtifactMissing(f"Local artifact not found: {local_artifact_path}", step="preflight")
            try:
                local_sum = file_sha256(local_artifact_path)
            except OSError as e:
                raise LocalArtifactMissing(f"Local artifact not readable: {local_artifact_path} ({e})",
                                           step="preflight")
            machine.transition(DeploymentState.PREFLIGHT_CHECKED)

            # Connect
            host = self.resolver.resolve(tag)
            result.host = host.label
            logger.info(f"🚀 Deploying {local_artifact_path} to {host.label}")
            self.executor.check_connection(host)
            machine.transition(DeploymentState.CONNECTED)

            # Backup the outgoing version; nothing live yet is not an error
            result.snapshot = self.store.create_snapshot(host, live_path, self.settings.artifact_name)
            machine.transition(DeploymentState.BACKED_UP)

            # Upload to staging; the live file is still untouched
            staging_path = self.settings.staging_path
            self.transfer.upload(host, local_artifact_path, staging_path)
            machine.transition(DeploymentState.UPLOADED)

            # Install: bring the upload beside the live file, then rename within that directory
            install_path = self.settings.install_staging_path
            self.host_ops.move(host, staging_path, install_path, step="install")
            self.host_ops.move(host, install_path, live_path, step="install")
            activate_artifact(self.host_ops, self.settings, host, step="install")
            machine.transition(DeploymentState.INSTALLED)

            # Verify
            self.probe.verify(host, expected_content=expected_content)
            if self.host_ops.checksum(host, live_path) != local_sum:
                raise VerificationError(f"{live_path} does not match {local_artifact_path}", step="verify",
                                        host=host.label)
            machine.transition(DeploymentState.VERIFIED)

            result.success = True
            result.reason = f"Deployed {os.path.basename(local_artifact_path)} to {host.label}"
            logger.info(f"✅ {result.reason}")

        except DeploymentError as e:
            last_state = machine.current_state
            machine.fail(str(e))
            result.error = type(e).__name__
            result.reason = str(e)
            logger.error(f"❌ Deployment failed after {last_state.value}: {e}")

        result.state = machine.current_state
        result.history = list(machine.history)
        return result
