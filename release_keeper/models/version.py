"""Version and commit models"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from release_keeper.constants import SHORT_HASH_LENGTH


def short_hash(commit_hash: str) -> str:
    """Abbreviate a commit hash to the display length."""
    return commit_hash[:SHORT_HASH_LENGTH]


@dataclass(frozen=True)
class VersionInfo:
    """Identity of the running build."""
    commit_hash: str  # short form
    commit_date: Optional[datetime]
    commit_msg: str
    branch: str
    full_hash: str = field(default="", repr=False)
    embedded: bool = False  # True when read from build-time constants

    @property
    def comparison_hash(self) -> str:
        """Longest known form of the commit hash."""
        return self.full_hash or self.commit_hash


@dataclass(frozen=True)
class CommitInfo:
    """A single line of version-control history."""
    hash: str
    date: Optional[datetime]
    message: str


@dataclass(frozen=True)
class UpdateCheckResult:
    """Result of comparing the running build against upstream."""
    has_updates: bool
    commits_ahead: int
    commits_behind: int
    ahead_commits: List[CommitInfo] = field(default_factory=list)
    new_commits: List[CommitInfo] = field(default_factory=list)
    current_version: Optional[VersionInfo] = None
