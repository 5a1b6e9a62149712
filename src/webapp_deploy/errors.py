"""
Error taxonomy for deploy and rollback operations.

Every error is terminal for the operation that raised it. Nothing in this
package retries; the operator decides between re-deploying and rolling back.
"""

from typing import Optional


class DeploymentError(Exception):
    """Base error carrying the step and host it happened on."""

    def __init__(self, message: str, step: Optional[str] = None, host: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step = step
        self.host = host

    def __str__(self) -> str:
        parts = []
        if self.step:
            parts.append(f"[{self.step}]")
        if self.host:
            parts.append(f"{self.host}:")
        parts.append(self.message)
        return " ".join(parts)


class LocalArtifactMissing(DeploymentError):
    """The local artifact to deploy does not exist."""


class HostResolutionError(DeploymentError):
    """No running instance matches the host tag."""


class HostConnectionError(DeploymentError):
    """Host unreachable within the connect timeout."""


class AuthError(DeploymentError):
    """Credentials rejected by the host."""


class CommandTimeout(DeploymentError):
    """A remote command did not finish in time; its outcome is unknown."""


class TransferError(DeploymentError):
    """Upload failed or the remote copy does not match the local file."""


class StoreError(DeploymentError):
    """A snapshot could not be written to the backup directory."""


class NotFoundError(DeploymentError):
    """A local file or snapshot that was referenced does not exist."""


class InstallError(DeploymentError):
    """Moving the artifact into place or restarting the service failed."""


class VerificationError(DeploymentError):
    """Liveness probe failed after install."""


class LockError(DeploymentError):
    """Another operation holds the advisory lock for this host."""


class InvalidTransition(Exception):
    """Raised for a state machine transition that is not allowed."""
