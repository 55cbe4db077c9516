"""Resolves the identity of the running build"""
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Union

from release_keeper.__version__ import BUILD_COMMIT_HASH, BUILD_COMMIT_TIME
from release_keeper.logging_config import get_logger
from release_keeper.models.version import VersionInfo, short_hash
from release_keeper.services.git.operations import GitOperations, parse_git_date

if TYPE_CHECKING:
    from release_keeper.config import Config
    from release_keeper.services.repository_service import RepositoryLocator

logger = get_logger(__name__)


def parse_iso_time(value: str) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp such as ``2024-05-01T10:00:00Z``."""
    value = value.strip()
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class BuildCommitInfo:
    """Source commit identity handed to the compiler as link-time constants."""
    hash: str = ""
    time: str = ""

    def ldflags(self, variable_prefix: str) -> str:
        if not self.hash:
            return ""
        flags = f" -X '{variable_prefix}.buildCommitHash={self.hash}'"
        if self.time:
            flags += f" -X '{variable_prefix}.buildCommitTime={self.time}'"
        return flags


class VersionResolver:
    """Determines which commit the running build corresponds to.

    Identity embedded at build time wins; otherwise the local repository's
    HEAD is used, falling back to ``main`` and then ``origin/main``.
    """

    FALLBACK_REFS = ("HEAD", "main", "origin/main")

    def __init__(self, config: Union["Config", dict], locator: "RepositoryLocator",
                 embedded_hash: Optional[str] = None, embedded_time: Optional[str] = None):
        self.config = config
        self.locator = locator
        self.embedded_hash = BUILD_COMMIT_HASH if embedded_hash is None else embedded_hash
        self.embedded_time = BUILD_COMMIT_TIME if embedded_time is None else embedded_time

    def embedded_version(self) -> Optional[VersionInfo]:
        """Identity baked in at build time, or None for source runs."""
        commit_hash = (self.embedded_hash or "").strip()
        if not commit_hash:
            return None
        return VersionInfo(
            commit_hash=short_hash(commit_hash),
            commit_date=parse_iso_time(self.embedded_time or ""),
            commit_msg="",
            branch="unknown",
            full_hash=commit_hash,
            embedded=True,
        )

    def current_version(self) -> Optional[VersionInfo]:
        """Current build identity; may provision the source tree on first use."""
        embedded = self.embedded_version()
        if embedded:
            return embedded
        ctx = self.locator.resolve()
        return self.repository_version(ctx.repo_dir)

    def current_version_no_clone(self) -> Optional[VersionInfo]:
        """Current build identity without any side effects.

        Returns None when no source tree exists yet.
        """
        embedded = self.embedded_version()
        if embedded:
            return embedded
        ctx = self.locator.find_existing()
        if ctx is None:
            return None
        return self.repository_version(ctx.repo_dir)

    def repository_version(self, repo_dir: str) -> Optional[VersionInfo]:
        """Read HEAD (or a fallback ref) of the repository at ``repo_dir``.

        Returns None when none of the fallback refs resolve (empty or
        broken shallow clone).
        """
        ops = GitOperations(repo_dir, self.config)

        commit_hash = None
        for ref in self.FALLBACK_REFS:
            commit_hash = ops.rev_parse(ref)
            if commit_hash:
                break
        if not commit_hash:
            logger.debug(f"No resolvable commit in {repo_dir}")
            return None

        details = ops.show_commit(commit_hash, "%ci|%s|%cI")
        head, _, _iso = details.rpartition("|")
        date_text, _, subject = head.partition("|")

        branch = ops.current_branch()

        return VersionInfo(
            commit_hash=short_hash(commit_hash),
            commit_date=parse_git_date(date_text),
            commit_msg=subject.strip(),
            branch=branch,
            full_hash=commit_hash,
        )

    def build_commit_info(self, repo_dir: str) -> BuildCommitInfo:
        """Commit identity of the tree about to be built; empty on failure."""
        ops = GitOperations(repo_dir, self.config)
        commit_hash = ops.rev_parse("HEAD")
        if not commit_hash:
            return BuildCommitInfo()
        try:
            commit_time = ops.show_commit(commit_hash, "%cI")
        except Exception as e:
            logger.debug(f"Could not read commit time for {commit_hash}: {e}")
            commit_time = ""
        return BuildCommitInfo(hash=commit_hash, time=commit_time)
