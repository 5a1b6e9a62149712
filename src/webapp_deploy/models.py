"""
Records passed between the resolver, the remote layer and the controllers.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ManagedHost:
    """A resolved EC2 instance. Resolved fresh for every operation."""
    tag: str
    address: str
    user: str
    key_file: str
    instance_id: Optional[str] = None
    private_address: Optional[str] = None
    state: Optional[str] = None
    instance_type: Optional[str] = None
    launch_time: Optional[datetime] = None
    port: int = 22

    @property
    def label(self) -> str:
        return f"{self.tag} ({self.address})"

    @property
    def ssh_command(self) -> str:
        return f"ssh -i {self.key_file} {self.user}@{self.address}"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one remote invocation."""
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class ProbeResult:
    status_code: int
    body: str = ""


@dataclass(frozen=True, order=True)
class SnapshotRef:
    """Reference to one backup file in the host's backup directory.

    Ordering compares (timestamp, sequence), which is creation order.
    """
    timestamp: str
    sequence: int
    label: str = field(compare=False)
    snapshot_id: str = field(compare=False)
    path: str = field(compare=False)

    @property
    def is_pre_rollback(self) -> bool:
        return self.label.endswith(".pre-rollback")

    @property
    def created_at(self) -> datetime:
        return datetime.strptime(self.timestamp, "%Y%m%d_%H%M%S")


class DeploymentState(str, Enum):
    """States of a deploy attempt."""
    IDLE = "idle"
    PREFLIGHT_CHECKED = "preflight_checked"
    CONNECTED = "connected"
    BACKED_UP = "backed_up"
    UPLOADED = "uploaded"
    INSTALLED = "installed"
    VERIFIED = "verified"
    FAILED = "failed"


class RollbackState(str, Enum):
    """States of a rollback attempt."""
    IDLE = "idle"
    CONNECTED = "connected"
    SNAPSHOT_CONFIRMED = "snapshot_confirmed"
    BACKED_UP = "backed_up"
    RESTORED = "restored"
    INSTALLED = "installed"
    VERIFIED = "verified"
    FAILED = "failed"


@dataclass
class DeploymentResult:
    success: bool
    host: Optional[str]
    snapshot: Optional[SnapshotRef] = None
    reason: str = ""
    error: Optional[str] = None
    state: DeploymentState = DeploymentState.IDLE
    history: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass
class RollbackResult:
    success: bool
    host: Optional[str]
    restored: Optional[SnapshotRef] = None
    pre_rollback_snapshot: Optional[SnapshotRef] = None
    reason: str = ""
    error: Optional[str] = None
    state: RollbackState = RollbackState.IDLE
    history: List[str] = field(default_factory=list)
    partially_restored: bool = False
    available: List[SnapshotRef] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data
