"""Data models for release-keeper."""

from .version import VersionInfo, CommitInfo, UpdateCheckResult
from .repository import RepositoryContext
from .pull_request import PullRequest, PRCommit, CherryPickResult, RevertResult
from .backup import BackupVersion
from .status import UpdaterState, UpdaterStatus

__all__ = [
    "VersionInfo",
    "CommitInfo",
    "UpdateCheckResult",
    "RepositoryContext",
    "PullRequest",
    "PRCommit",
    "CherryPickResult",
    "RevertResult",
    "BackupVersion",
    "UpdaterState",
    "UpdaterStatus",
]
