"""Backup directory management for superseded executables"""
import os
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional, Set, Union

from release_keeper.exceptions import EnvironmentProblem, MissingFileError
from release_keeper.logging_config import get_logger
from release_keeper.models.backup import BackupVersion
from release_keeper.utils.files import copy_file, file_hash

if TYPE_CHECKING:
    from release_keeper.config import Config

logger = get_logger(__name__)

LogCallback = Callable[[str], None]


def _same_path(a: Union[str, Path], b: Union[str, Path]) -> bool:
    return os.path.normcase(os.path.abspath(a)) == os.path.normcase(os.path.abspath(b))


class BackupManager:
    """Moves old executables into the backup directory and keeps it bounded.

    The running executable is never moved here; the restart orchestrator
    moves it once the process has exited.
    """

    def __init__(self, config: Union["Config", dict], current_executable: Optional[str] = None,
                 log: Optional[LogCallback] = None):
        self.config = config
        self.running_executable = current_executable
        self.suffix = config.get("executable_suffix", ".exe").lower()
        self.max_backups = config.get("max_backups", 20)
        self._log = log

    def log(self, message: str) -> None:
        if self._log:
            self._log(message)
        else:
            logger.info(message)

    def backup_dir(self, install_dir: Union[str, Path]) -> Path:
        return Path(install_dir) / self.config.get("backup_dir_name", "old_versions")

    def _is_executable(self, path: Path) -> bool:
        return path.is_file() and path.name.lower().endswith(self.suffix)

    def executables(self, directory: Union[str, Path]) -> List[Path]:
        """Executables directly inside ``directory``."""
        directory = Path(directory)
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.iterdir() if self._is_executable(p))

    def is_running_executable(self, path: Union[str, Path]) -> bool:
        return bool(self.running_executable) and _same_path(path, self.running_executable)

    def newest_executable(self, install_dir: Union[str, Path]) -> Optional[Path]:
        """Most recently modified executable in the install directory."""
        newest = None
        newest_mtime = None
        for path in self.executables(install_dir):
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            if newest_mtime is None or mtime > newest_mtime:
                newest, newest_mtime = path, mtime
        return newest.resolve() if newest else None

    def backup(self, install_dir: Union[str, Path], tag: str) -> int:
        """Move every executable except the running one into the backup directory.

        Falls back to copying when a file cannot be moved. Prunes afterwards.

        Returns:
            Number of executables backed up

        Raises:
            EnvironmentProblem: If an executable can be neither moved nor copied
        """
        self.log(f"Backing up old executables ({tag})")
        install_dir = Path(install_dir)
        if not install_dir.exists():
            self.log("No install directory found, skipping backup")
            return 0

        files = self.executables(install_dir)
        if not files:
            self.log("No old executables found, skipping backup")
            return 0

        backup_dir = self.backup_dir(install_dir)
        backup_dir.mkdir(parents=True, exist_ok=True)

        backed_up = 0
        skipped = 0
        for path in files:
            if self.is_running_executable(path):
                self.log(f"Skipping running executable: {path.name}")
                skipped += 1
                continue

            dest = backup_dir / path.name
            self.log(f"Moving {path.name} to {backup_dir.name}/")
            try:
                os.replace(path, dest)
            except OSError as move_error:
                try:
                    copy_file(path, dest)
                except OSError as e:
                    raise EnvironmentProblem(f"failed to move {path.name}: {move_error}") from e
                self.log(f"Copied {path.name} to {backup_dir.name}/ (file in use)")
            backed_up += 1

        if backed_up == 0:
            self.log("Running executable will be moved after exit")
            return 0

        if skipped:
            self.log(f"Backed up {backed_up} old executable(s); running executable will be moved after exit")
        else:
            self.log(f"Backed up {backed_up} old executable(s)")
        self._prune_quietly(backup_dir)
        return backed_up

    def _prune_quietly(self, backup_dir: Path) -> None:
        try:
            self.prune(backup_dir)
        except OSError as e:
            self.log(f"Backup cleanup skipped: {e}")

    def prune(self, backup_dir: Union[str, Path], max_keep: Optional[int] = None) -> List[Path]:
        """Remove content duplicates, then everything beyond the newest ``max_keep``.

        Among duplicates the most recently modified copy is kept. Files that
        cannot be hashed are kept.

        Returns:
            Paths that were removed
        """
        max_keep = self.max_backups if max_keep is None else max_keep
        if max_keep <= 0:
            return []

        entries = []
        for path in self.executables(backup_dir):
            try:
                entries.append((path, path.stat().st_mtime))
            except OSError:
                continue
        if len(entries) <= 1:
            return []

        entries.sort(key=lambda entry: entry[1], reverse=True)

        removed: List[Path] = []
        kept: List[Path] = []
        seen: Set[str] = set()
        for path, _mtime in entries:
            try:
                digest = file_hash(path)
            except OSError as e:
                logger.debug(f"Cannot hash {path}: {e}")
                kept.append(path)
                continue
            if digest in seen:
                self.log(f"Removing duplicate backup: {path.name}")
                self._remove(path, removed)
                continue
            seen.add(digest)
            kept.append(path)

        for path in kept[max_keep:]:
            self.log(f"Removing old backup: {path.name}")
            self._remove(path, removed)
        return removed

    @staticmethod
    def _remove(path: Path, removed: List[Path]) -> None:
        try:
            path.unlink()
            removed.append(path)
        except OSError as e:
            logger.warning(f"Could not remove backup {path}: {e}")

    def _describe(self, path: Path, is_current: bool) -> BackupVersion:
        stat = path.stat()
        return BackupVersion(
            filename=path.name,
            file_path=str(path),
            created_at=datetime.fromtimestamp(stat.st_mtime),
            size=stat.st_size,
            is_current=is_current,
        )

    def list_backups(self, install_dir: Union[str, Path], limit: int = 0) -> List[BackupVersion]:
        """Backups newest first, after a prune pass. ``limit`` <= 0 means all."""
        backup_dir = self.backup_dir(install_dir)
        if not backup_dir.is_dir():
            return []

        self._prune_quietly(backup_dir)

        versions = []
        for path in self.executables(backup_dir):
            try:
                versions.append(self._describe(path, self.is_running_executable(path)))
            except OSError:
                continue
        versions.sort(key=lambda v: v.created_at, reverse=True)
        if limit > 0:
            versions = versions[:limit]
        return versions

    def current_executable(self, install_dir: Union[str, Path]) -> BackupVersion:
        """Describe the running executable, else the newest one in the install directory.

        Raises:
            MissingFileError: If neither exists
        """
        if self.running_executable and os.path.isfile(self.running_executable):
            return self._describe(Path(self.running_executable).resolve(), True)

        newest = self.newest_executable(install_dir)
        if newest is None:
            raise MissingFileError(str(install_dir), "executable")
        return self._describe(newest, True)
