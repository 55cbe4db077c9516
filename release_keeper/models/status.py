"""Updater status model and state enum"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List


class UpdaterState(Enum):
    """State of the updater as seen by status-polling callers."""
    IDLE = "idle"
    CHECKING = "checking"
    UPDATING = "updating"
    BUILDING = "building"
    ROLLBACK = "rollback"
    CHERRY_PICK = "cherry-pick"
    REVERT = "revert"
    DONE = "done"
    ERROR = "error"


@dataclass
class UpdaterStatus:
    """Progress snapshot of the active (or last) operation."""
    state: UpdaterState = UpdaterState.IDLE
    progress: int = 0  # 0-100
    current_step: str = ""
    logs: List[str] = field(default_factory=list)
    error: str = ""

    def copy(self) -> "UpdaterStatus":
        """Detached copy safe to hand to another thread."""
        return replace(self, logs=list(self.logs))

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "progress": self.progress,
            "current_step": self.current_step,
            "logs": list(self.logs),
            "error": self.error,
        }
