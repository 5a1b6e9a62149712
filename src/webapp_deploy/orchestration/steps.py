"""
Install and verify steps shared by deploy and rollback.
"""
import logging
from typing import Optional

from webapp_deploy.config.settings import Settings
from webapp_deploy.errors import InstallError, VerificationError
from webapp_deploy.models import ManagedHost, ProbeResult
from webapp_deploy.remote.host_ops import HostOperations

logger = logging.getLogger(__name__)


def activate_artifact(host_ops: HostOperations, settings: Settings, host: ManagedHost, step: str) -> None:
    """Set ownership and mode on the live file, restart the service, confirm it is active.

    Raises:
        InstallError: any of the commands failed or the service is not active
    """
    host_ops.set_metadata(host, settings.live_path, settings.file_owner, settings.file_mode, step=step)
    host_ops.restart_service(host, settings.service_name, step=step)
    if not host_ops.service_active(host, settings.service_name):
        raise InstallError(f"{settings.service_name} failed to start", step=step, host=host.label)
    logger.info(f"✅ {settings.service_name} is running")


class LivenessProbe:
    """HTTP check run on the host against its loopback endpoint."""

    def __init__(self, host_ops: HostOperations, settings: Settings):
        self.host_ops = host_ops
        self.url = settings.probe_url
        self.expected_status = settings.probe_expected_status
        self.expected_content = settings.probe_expected_content

    def check(self, host: ManagedHost) -> ProbeResult:
        return self.host_ops.probe(host, self.url)

    def verify(self, host: ManagedHost, expected_content: Optional[str] = None, step: str = "verify") -> ProbeResult:
        """Require the expected status and, when given, a substring of the body.

        Raises:
            VerificationError: status or content did not match
        """
        expected_content = expected_content if expected_content is not None else self.expected_content
        result = self.check(host)
        if result.status_code != self.expected_status:
            raise VerificationError(
                f"HTTP test failed (Status: {result.status_code:03d}, expected {self.expected_status})",
                step=step, host=host.label
            )
        logger.info(f"✅ HTTP test passed (Status: {result.status_code})")

        if expected_content and expected_content not in result.body:
            raise VerificationError(
                f"Content verification failed: '{expected_content}' not served", step=step, host=host.label
            )
        if expected_content:
            logger.info("✅ Content verification passed")
        return result
