"""Git plumbing shared by the update, cherry-pick and revert flows"""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Tuple, Union

import git

from release_keeper.config import parse_repo_slug
from release_keeper.constants import (
    CONFLICT_MARKERS,
    GIT_DATE_FORMAT,
    LOG_FORMAT,
    NO_LOCAL_CHANGES_MARKER,
)
from release_keeper.exceptions import GitNotInstalledError, GitOperationError
from release_keeper.logging_config import get_logger
from release_keeper.models.version import CommitInfo, short_hash

if TYPE_CHECKING:
    from release_keeper.config import Config

logger = get_logger(__name__)


def check_git_installed() -> str:
    """Verify git can be executed.

    Returns:
        The ``git --version`` output

    Raises:
        GitNotInstalledError: If git is missing or unusable
    """
    try:
        return git.Git().execute(["git", "--version"])
    except (git.exc.GitCommandNotFound, git.exc.GitCommandError, OSError) as e:
        logger.debug(f"git --version failed: {e}")
        raise GitNotInstalledError() from e


def parse_git_date(value: str) -> Optional[datetime]:
    """Parse a ``%ci`` timestamp; None when it is not in that format."""
    try:
        return datetime.strptime(value.strip(), GIT_DATE_FORMAT)
    except ValueError:
        return None


def parse_log_lines(output: str) -> List[CommitInfo]:
    """Parse ``<hash>|<date>|<subject>`` lines into CommitInfo values."""
    commits = []
    for line in output.strip().split("\n"):
        if not line:
            continue
        parts = line.split("|", 2)
        if len(parts) != 3:
            continue
        commits.append(CommitInfo(
            hash=short_hash(parts[0]),
            date=parse_git_date(parts[1]),
            message=parts[2],
        ))
    return commits


class GitOperations:
    """Service for Git operations against one repository."""

    def __init__(self, repo_dir: str, config: Union["Config", dict]):
        """Initialize the service.

        Args:
            repo_dir: Path to the git repository (string path, not repo object)
            config: Configuration dictionary or Config object
        """
        self.repo_dir = repo_dir
        self.config = config
        self.remote_name = config.get("upstream_remote", "upstream")
        self.upstream_branch = config.get("upstream_branch", "main")

    @property
    def upstream_ref(self) -> str:
        return f"{self.remote_name}/{self.upstream_branch}"

    def _get_repo(self) -> git.Repo:
        """Get a fresh git.Repo instance.

        A new instance per call keeps worker threads from sharing
        GitPython state.
        """
        return git.Repo(self.repo_dir)

    def _execute(self, args: Tuple[str, ...]) -> Tuple[int, str, str]:
        repo = self._get_repo()
        try:
            status, stdout, stderr = repo.git.execute(
                ["git", *args], with_extended_output=True, with_exceptions=False
            )
        except git.exc.GitCommandNotFound as e:
            raise GitNotInstalledError() from e
        finally:
            repo.close()
        logger.debug(f"git {' '.join(args)} -> {status}")
        return status, stdout, stderr

    def run(self, *args: str) -> Tuple[int, str]:
        """Run a git command without raising on a non-zero exit.

        Returns:
            (exit status, stdout and stderr combined)
        """
        status, stdout, stderr = self._execute(args)
        return status, "\n".join(part for part in (stdout, stderr) if part)

    def query(self, *args: str) -> str:
        """Run a git command and return its stdout.

        Raises:
            GitOperationError: If the command exits non-zero
        """
        status, stdout, stderr = self._execute(args)
        if status != 0:
            output = "\n".join(part for part in (stdout, stderr) if part)
            raise GitOperationError(args[0] if args else "git", f"exit {status}", output)
        return stdout.strip()

    def ensure_upstream_remote(self) -> None:
        """Add the upstream remote, or repoint it when it targets another repository."""
        expected_url = self.config.get("upstream_url")
        status, current_url = self.run("remote", "get-url", self.remote_name)

        if status != 0:
            logger.info(f"Adding remote {self.remote_name} -> {expected_url}")
            status, output = self.run("remote", "add", self.remote_name, expected_url)
            if status != 0:
                raise GitOperationError("remote add", f"failed to add {self.remote_name} remote", output)
            return

        if not self._same_remote(current_url.strip(), expected_url):
            logger.info(f"Updating remote {self.remote_name}: {current_url.strip()} -> {expected_url}")
            status, output = self.run("remote", "set-url", self.remote_name, expected_url)
            if status != 0:
                raise GitOperationError("remote set-url", f"failed to update {self.remote_name} URL", output)

    @staticmethod
    def _same_remote(current_url: str, expected_url: str) -> bool:
        def normalize(url: str) -> str:
            url = url.strip().rstrip("/")
            if url.endswith(".git"):
                url = url[:-4]
            return url.lower()

        if normalize(current_url) == normalize(expected_url):
            return True

        slug = parse_repo_slug(expected_url)
        return bool(slug) and slug.lower() in current_url.lower()

    def fetch(self, *refs: str) -> None:
        """Fetch from the upstream remote.

        Raises:
            GitOperationError: On network or ref errors
        """
        status, output = self.run("fetch", self.remote_name, *refs)
        if status != 0:
            target = " ".join((self.remote_name,) + refs)
            raise GitOperationError("fetch", f"git fetch {target} failed", output)

    def current_branch(self) -> str:
        """Name of the checked-out branch, ``HEAD`` when detached."""
        branch = self.query("rev-parse", "--abbrev-ref", "HEAD")
        return branch or "HEAD"

    def rev_parse(self, ref: str) -> Optional[str]:
        """Resolve a ref to a full commit hash, None if it does not resolve."""
        status, output = self.run("rev-parse", "--verify", "--quiet", ref)
        if status != 0:
            return None
        return output.strip().split("\n")[0] or None

    def commit_exists(self, ref: str) -> bool:
        status, _ = self.run("cat-file", "-e", f"{ref}^{{commit}}")
        return status == 0

    def is_dirty(self) -> bool:
        """True when ``status --porcelain`` reports anything, untracked files included."""
        return bool(self.query("status", "--porcelain"))

    def stash(self, label: str) -> bool:
        """Stash local changes including untracked files.

        Returns:
            bool: True if a stash entry was created, False if nothing to stash
        """
        status, output = self.run("stash", "push", "-u", "-m", label)
        if status != 0:
            raise GitOperationError("stash", "git stash failed", output)
        created = NO_LOCAL_CHANGES_MARKER not in output.lower()
        if created:
            logger.debug(f"Stashed local changes as '{label}'")
        return created

    def pop_stash(self) -> Tuple[bool, str]:
        """Restore the most recent stash entry.

        Returns:
            (success, combined output)
        """
        status, output = self.run("stash", "pop")
        return status == 0, output

    def drop_stash(self) -> None:
        status, output = self.run("stash", "drop")
        if status != 0:
            logger.warning(f"Could not drop stash entry: {output.strip()}")

    def has_unmerged_paths(self) -> bool:
        """True when the index still holds unmerged entries."""
        status, output = self.run("ls-files", "-u")
        return status == 0 and bool(output.strip())

    def is_conflict(self, output: str) -> bool:
        """Conflict if the output says so, or the index has unmerged entries."""
        if any(marker in output for marker in CONFLICT_MARKERS):
            return True
        return self.has_unmerged_paths()

    def log(self, revision: str, limit: int) -> List[CommitInfo]:
        """Most recent commits of ``revision`` (a ref or range), newest first."""
        output = self.query("log", LOG_FORMAT, revision, "-n", str(limit))
        return parse_log_lines(output)

    def show_commit(self, ref: str, fmt: str) -> str:
        """``git show -s --format=<fmt> <ref>`` output."""
        return self.query("show", "-s", f"--format={fmt}", ref)
