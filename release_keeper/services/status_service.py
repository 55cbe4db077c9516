"""Operation guard and status tracking for long-running operations"""
from threading import Lock
from typing import Callable, List, Optional, Union

from release_keeper.constants import MAX_STATUS_LOG_LINES
from release_keeper.logging_config import get_logger
from release_keeper.models.status import UpdaterState, UpdaterStatus

logger = get_logger(__name__)

LogCallback = Callable[[str], None]


class OperationGuard:
    """Single exclusive slot shared by update, build, rollback, cherry-pick and revert.

    Not reentrant and not a queue: a second request while the slot is held
    is rejected, never blocked.
    """

    def __init__(self):
        self._lock = Lock()
        self._running = False
        self._name = ""

    def try_start(self, name: str) -> bool:
        """Take the slot for ``name``. Returns False if any operation holds it."""
        with self._lock:
            if self._running:
                logger.debug(f"Rejected '{name}': '{self._name}' is running")
                return False
            self._running = True
            self._name = name
            return True

    def end(self) -> None:
        """Release the slot unconditionally."""
        with self._lock:
            self._running = False
            self._name = ""

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    def current(self) -> Optional[str]:
        """Name of the operation holding the slot, or None."""
        with self._lock:
            return self._name if self._running else None


class StatusTracker:
    """Owns the UpdaterStatus record; every access goes through one lock.

    Written by the single active operation, read concurrently by pollers.
    Log lines are also forwarded to the module logger and to any listeners,
    outside the lock.
    """

    def __init__(self, max_log_lines: int = MAX_STATUS_LOG_LINES):
        self._lock = Lock()
        self._status = UpdaterStatus()
        self._max_log_lines = max_log_lines
        self._callback_lock = Lock()
        self._log_callback: Optional[LogCallback] = None
        self._listeners: List[LogCallback] = []

    def snapshot(self) -> UpdaterStatus:
        """Return a detached copy of the current status."""
        with self._lock:
            return self._status.copy()

    def set_log_callback(self, callback: Optional[LogCallback]) -> None:
        """Set (or clear) the streaming log callback used by the UI layer."""
        with self._callback_lock:
            self._log_callback = callback

    def add_listener(self, listener: LogCallback) -> None:
        with self._callback_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: LogCallback) -> None:
        with self._callback_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def subscribe(self, listener: LogCallback) -> Callable[[], None]:
        """Add a listener; returns a function that removes it again."""
        self.add_listener(listener)
        return lambda: self.remove_listener(listener)

    def reset(self, state: Union[UpdaterState, str]) -> None:
        """Start a fresh status record for a new operation."""
        with self._lock:
            self._status = UpdaterStatus(state=UpdaterState(state))

    def log(self, message: str) -> None:
        """Append a line to the bounded log and forward it to listeners."""
        with self._lock:
            self._status.logs.append(message)
            if len(self._status.logs) > self._max_log_lines:
                del self._status.logs[:-self._max_log_lines]

        logger.info(message)

        with self._callback_lock:
            targets = list(self._listeners)
            if self._log_callback is not None:
                targets.insert(0, self._log_callback)
        for target in targets:
            try:
                target(message)
            except Exception as e:
                logger.debug(f"Log listener failed: {e}")

    def update_progress(self, state: Union[UpdaterState, str], progress: int, step: str) -> None:
        """Move to ``state`` at ``progress`` percent and log the step description."""
        with self._lock:
            self._status.state = UpdaterState(state)
            self._status.progress = max(0, min(100, progress))
            self._status.current_step = step
        self.log(step)

    def set_error(self, error: Exception) -> None:
        """Record an operation-level error."""
        with self._lock:
            self._status.state = UpdaterState.ERROR
            self._status.error = str(error)
        logger.error(f"Updater error: {error}")
        self.log(f"Error: {error}")
