"""Locates (or provisions) the source tree behind the running installation"""
import os
import shutil
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

import git

from release_keeper.exceptions import GitNotInstalledError, GitOperationError, NotInstalledError
from release_keeper.logging_config import get_logger
from release_keeper.models.repository import RepositoryContext
from release_keeper.services.git.operations import check_git_installed

if TYPE_CHECKING:
    from release_keeper.config import Config

logger = get_logger(__name__)


def resolve_current_executable() -> Optional[str]:
    """Absolute path of the running executable image.

    Only frozen builds run from a swappable executable; a source checkout
    run by an interpreter has none.
    """
    if getattr(sys, "frozen", False):
        return os.path.abspath(sys.executable)
    return None


def resolve_install_dir(current_executable: Optional[str] = None) -> str:
    """Directory holding the running executable, else the working directory."""
    if current_executable:
        return os.path.dirname(os.path.abspath(current_executable))
    return os.getcwd()


def find_git_root(start_dir: Union[str, Path]) -> Optional[str]:
    """Walk from ``start_dir`` up to the filesystem root looking for ``.git``."""
    directory = Path(start_dir).resolve()
    for candidate in (directory, *directory.parents):
        if (candidate / ".git").exists():
            return str(candidate)
    return None


def is_git_repo(repo_dir: Union[str, Path]) -> bool:
    """True if ``repo_dir`` has a ``.git`` entry (directory or worktree file)."""
    return (Path(repo_dir) / ".git").exists()


def ensure_clone_dir_available(repo_dir: Union[str, Path]) -> None:
    """Refuse to clone into anything but an empty or absent directory.

    Raises:
        NotInstalledError: If the path is a file or a non-empty directory
    """
    path = Path(repo_dir)
    if not path.exists():
        return
    if not path.is_dir():
        raise NotInstalledError(str(path), "source path exists and is not a directory")
    if any(path.iterdir()):
        raise NotInstalledError(str(path), "source directory is not empty")


class RepositoryLocator:
    """Finds the version-controlled source tree for the running installation.

    Lookup order:
        1. A git root at or above the working directory ("run from source").
        2. The managed clone in ``<work dir>/<source_dir_name>``.
        3. A fresh clone into that directory (first run only).
    """

    def __init__(self, config: Union["Config", dict], current_executable: Optional[str] = None,
                 work_dir: Optional[str] = None, install_dir: Optional[str] = None):
        self.config = config
        self.current_executable = current_executable
        self._work_dir = work_dir
        self._install_dir = install_dir

    @property
    def work_dir(self) -> str:
        return self._work_dir or os.getcwd()

    @property
    def install_dir(self) -> str:
        return self._install_dir or resolve_install_dir(self.current_executable)

    def managed_clone_dir(self) -> str:
        return os.path.join(self.work_dir, self.config.get("source_dir_name", ".keeper-src"))

    def _context(self, repo_dir: str) -> RepositoryContext:
        return RepositoryContext(
            repo_dir=repo_dir,
            install_dir=self.install_dir,
            work_dir=self.work_dir,
        )

    def find_existing(self) -> Optional[RepositoryContext]:
        """Locate an existing source tree without side effects."""
        root = find_git_root(self.work_dir)
        if root:
            return self._context(root)

        repo_dir = self.managed_clone_dir()
        if is_git_repo(repo_dir):
            return self._context(repo_dir)
        return None

    def resolve(self) -> RepositoryContext:
        """Resolve the repository context, cloning upstream on first use.

        Raises:
            NotInstalledError: If the clone target is occupied or git is missing
            GitOperationError: If the clone itself fails
        """
        existing = self.find_existing()
        if existing:
            logger.debug(f"Using source tree at {existing.repo_dir}")
            return existing

        repo_dir = self.managed_clone_dir()
        ensure_clone_dir_available(repo_dir)

        try:
            check_git_installed()
        except GitNotInstalledError as e:
            raise NotInstalledError(repo_dir, str(e)) from e

        clone_url = self.config.get("clone_url")
        logger.info(f"Cloning {clone_url} into {repo_dir}")
        try:
            repo = git.Repo.clone_from(clone_url, repo_dir)
            repo.close()
        except git.exc.GitCommandError as e:
            # Target was empty or absent before the clone; leave no partial tree
            shutil.rmtree(repo_dir, ignore_errors=True)
            raise GitOperationError(
                "clone", "failed to clone upstream repository", str(e.stderr or e)
            ) from e

        return self._context(repo_dir)
