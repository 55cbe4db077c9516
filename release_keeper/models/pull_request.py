"""Pull request models and per-operation results"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from release_keeper.exceptions import ReleaseKeeperError


@dataclass
class PullRequest:
    """Upstream pull request metadata.

    Everything except ``applied`` and ``can_revert`` comes from the remote
    API; those two are joined in from the applied-PR ledger.
    """
    number: int
    title: str
    state: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    author: str
    head_sha: str
    commits: int = 0
    applied: bool = False
    can_revert: bool = False


@dataclass(frozen=True)
class PRCommit:
    """A commit belonging to a pull request, in PR order."""
    sha: str
    message: str

    @property
    def first_line(self) -> str:
        return self.message.split("\n", 1)[0]


@dataclass
class CherryPickResult:
    """Outcome of applying one pull request."""
    pr_number: int
    success: bool = False
    error: Optional[ReleaseKeeperError] = None
    applied: List[str] = field(default_factory=list)  # short hashes
    conflicted: List[str] = field(default_factory=list)

    @property
    def error_text(self) -> str:
        return str(self.error) if self.error else ""


@dataclass
class RevertResult:
    """Outcome of reverting one pull request."""
    pr_number: int
    success: bool = False
    error: Optional[ReleaseKeeperError] = None
    reverted: List[str] = field(default_factory=list)
    conflicted: List[str] = field(default_factory=list)

    @property
    def error_text(self) -> str:
        return str(self.error) if self.error else ""
