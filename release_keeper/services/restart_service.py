"""Restart and rollback: hand the executable swap to a relaunch script and exit"""
import os
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import TYPE_CHECKING, Callable, Optional, Union

from release_keeper.constants import (
    BACKUP_PREFIXES,
    BACKUP_TIMESTAMP_FORMAT,
    DEFAULT_BACKUP_PREFIX,
    ROLLBACK_BACKUP_PREFIX,
)
from release_keeper.exceptions import EnvironmentProblem, MissingFileError, ValidationError
from release_keeper.logging_config import get_logger
from release_keeper.services.launchers import (
    LauncherScript,
    RelaunchDescriptor,
    default_launcher,
    script_directories,
    script_prefix,
)
from release_keeper.utils.files import files_same_content, is_path_within_dir, write_script

if TYPE_CHECKING:
    from release_keeper.config import Config
    from release_keeper.services.backup_service import BackupManager

logger = get_logger(__name__)

LogCallback = Callable[[str], None]
PreRestartCallback = Callable[[], None]


def backup_prefix(tag: str) -> str:
    """``pre_PR_`` / ``pre_build_`` / ``pre_update_`` for a backup tag."""
    return BACKUP_PREFIXES.get((tag or "").strip().lower(), DEFAULT_BACKUP_PREFIX)


def timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime(BACKUP_TIMESTAMP_FORMAT)


class RestartOrchestrator:
    """Swaps the running executable for a new build or a backup.

    ``restart`` and ``rollback_to`` end the process through ``exit_func``
    once the relaunch script is running; they only return when
    ``exit_func`` does (tests) or when rollback is a no-op.
    """

    def __init__(self, config: Union["Config", dict], backups: "BackupManager",
                 current_executable: Optional[str] = None,
                 launcher: Optional[LauncherScript] = None,
                 log: Optional[LogCallback] = None,
                 exit_func: Callable[[int], None] = os._exit,
                 pid: Optional[int] = None):
        self.config = config
        self.backups = backups
        self.current_executable = current_executable
        self.launcher = launcher or default_launcher()
        self.exit_func = exit_func
        self.pid = pid if pid is not None else os.getpid()
        self._log = log

        self._pre_restart_lock = Lock()
        self._pre_restart: Optional[PreRestartCallback] = None
        self._last_built_lock = Lock()
        self._last_built: Optional[str] = None

    def log(self, message: str) -> None:
        if self._log:
            self._log(message)
        else:
            logger.info(message)

    def set_pre_restart_callback(self, callback: Optional[PreRestartCallback]) -> None:
        """Graceful-shutdown hook run before a relaunch script is started."""
        with self._pre_restart_lock:
            self._pre_restart = callback

    def run_pre_restart(self) -> None:
        with self._pre_restart_lock:
            callback = self._pre_restart
        if callback is None:
            return
        self.log("Requesting graceful shutdown before restart...")
        try:
            callback()
        except Exception as e:
            self.log(f"Graceful shutdown failed: {e}")
        else:
            self.log("Graceful shutdown completed.")

    @property
    def last_built_executable(self) -> Optional[str]:
        with self._last_built_lock:
            return self._last_built

    @last_built_executable.setter
    def last_built_executable(self, path: Optional[str]) -> None:
        with self._last_built_lock:
            self._last_built = path

    def _backup_dest(self, backup_dir: Path, tag: str) -> Optional[str]:
        if not self.current_executable:
            return None
        name = f"{backup_prefix(tag)}{timestamp()}_{os.path.basename(self.current_executable)}"
        return str(backup_dir / name)

    def _start_script(self, kind: str, descriptor: RelaunchDescriptor) -> Path:
        content = self.launcher.render(descriptor)
        script = write_script(
            script_directories(descriptor.install_dir),
            script_prefix(kind),
            self.launcher.suffix,
            content,
        )
        logger.debug(f"Wrote {kind} script {script}")
        try:
            self.launcher.launch(str(script))
        except OSError as e:
            raise EnvironmentProblem(f"failed to start {kind} script: {e}") from e
        return script

    def _new_executable(self, install_dir: Path) -> str:
        built = self.last_built_executable
        if built:
            built = os.path.abspath(built)
            if os.path.isfile(built):
                return built

        newest = self.backups.newest_executable(install_dir)
        if newest is None:
            raise MissingFileError(str(install_dir), "executable after build")
        return str(newest)

    def restart(self, install_dir: Union[str, Path], tag: str) -> None:
        """Relaunch into the newest build and exit this process.

        Raises:
            MissingFileError: If no executable is found to start
            EnvironmentProblem: If the relaunch script cannot be started
        """
        self.run_pre_restart()

        install_dir = Path(install_dir)
        backup_dir = self.backups.backup_dir(install_dir)
        new_exe = self._new_executable(install_dir)
        self.log(f"Restarting with: {new_exe}")

        descriptor = RelaunchDescriptor(
            install_dir=str(install_dir),
            backup_dir=str(backup_dir),
            pid=self.pid,
            port=self.config.get("service_port", 8087),
            old_executable=self.current_executable,
            backup_dest=self._backup_dest(backup_dir, tag),
            new_executable=new_exe,
            port_wait_seconds=self.config.get("port_wait_seconds", 60),
            start_delay=3,
        )
        self._start_script("restart", descriptor)
        self.exit_func(0)

    def schedule_move_on_exit(self, install_dir: Union[str, Path], tag: str) -> Optional[Path]:
        """Move the running executable to the backup directory once it exits.

        Returns:
            Path of the helper script, or None when not running from an executable
        """
        if not self.current_executable:
            return None

        install_dir = Path(install_dir)
        backup_dir = self.backups.backup_dir(install_dir)
        descriptor = RelaunchDescriptor(
            install_dir=str(install_dir),
            backup_dir=str(backup_dir),
            pid=self.pid,
            port=self.config.get("service_port", 8087),
            old_executable=self.current_executable,
            backup_dest=self._backup_dest(backup_dir, tag),
        )
        script = self._start_script("move", descriptor)
        self.log(f"{os.path.basename(self.current_executable)} will be moved to {backup_dir.name}/ on exit")
        return script

    def rollback_to(self, install_dir: Union[str, Path], backup_path: Union[str, Path]) -> bool:
        """Restore a backup executable and exit this process.

        Returns:
            False if the backup is identical to the running executable (nothing done)

        Raises:
            ValidationError: If the path is not inside the backup directory
            MissingFileError: If the backup does not exist
            EnvironmentProblem: If the relaunch script cannot be started
        """
        install_dir = Path(install_dir)
        backup_dir = self.backups.backup_dir(install_dir)
        self.log(f"Starting rollback to: {os.path.basename(str(backup_path))}")

        backup = os.path.abspath(backup_path)
        if not is_path_within_dir(backup_dir, backup):
            raise ValidationError(f"backup file must be inside {backup_dir}")
        if not os.path.isfile(backup):
            raise MissingFileError(str(backup_path), "backup file")

        if self.current_executable and os.path.isfile(self.current_executable):
            try:
                if files_same_content(self.current_executable, backup):
                    self.log("Selected version matches current executable; rollback skipped.")
                    return False
            except OSError as e:
                logger.debug(f"Content comparison failed: {e}")

        backup_dir.mkdir(parents=True, exist_ok=True)
        dest = install_dir / os.path.basename(backup)
        self.log(f"Restoring backup to: {dest}")
        self.log("Preparing to restart application...")

        backup_dest = None
        if self.current_executable:
            suffix = self.config.get("executable_suffix", ".exe")
            backup_dest = str(backup_dir / f"{ROLLBACK_BACKUP_PREFIX}{timestamp()}{suffix}")

        descriptor = RelaunchDescriptor(
            install_dir=str(install_dir),
            backup_dir=str(backup_dir),
            pid=self.pid,
            port=self.config.get("service_port", 8087),
            old_executable=self.current_executable,
            backup_dest=backup_dest,
            new_executable=str(dest),
            install_from=backup,
            port_wait_seconds=self.config.get("port_wait_seconds", 60),
        )
        self.run_pre_restart()
        self._start_script("rollback", descriptor)
        self.exit_func(0)
        return True
