import logging
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from webapp_deploy.errors import InvalidTransition

logger = logging.getLogger(__name__)


class OperationStateMachine:
    """Linear state machine for one deploy or rollback attempt.

    Every state may move to the failed state; otherwise only the transitions
    in ``transitions`` are allowed. Failed and the final state are terminal.
    """

    def __init__(self, name: str, transitions: Dict[Enum, Set[Enum]], initial: Enum, failed: Enum):
        self.name = name
        self.transitions = transitions
        self.current_state = initial
        self.failed_state = failed
        self.reason: Optional[str] = None
        self.history: List[str] = [f"{datetime.now().isoformat(timespec='seconds')} {initial.value}"]

    @property
    def is_terminal(self) -> bool:
        return self.current_state == self.failed_state or not self.transitions.get(self.current_state)

    def transition(self, new_state: Enum) -> None:
        allowed = self.transitions.get(self.current_state, set())
        if new_state not in allowed:
            raise InvalidTransition(
                f"{self.name}: invalid state transition from {self.current_state.value} to {new_state.value}"
            )
        logger.debug(f"{self.name}: {self.current_state.value} -> {new_state.value}")
        self.current_state = new_state
        self._record(new_state.value)

    def fail(self, reason: str) -> None:
        if self.current_state == self.failed_state:
            return
        logger.debug(f"{self.name}: {self.current_state.value} -> {self.failed_state.value} ({reason})")
        self.reason = reason
        self.current_state = self.failed_state
        self._record(f"{self.failed_state.value}: {reason}")

    def _record(self, entry: str) -> None:
        self.history.append(f"{datetime.now().isoformat(timespec='seconds')} {entry}")
