"""Shared constants for release-keeper."""

from typing import Dict, Tuple


# Commit listings
SHORT_HASH_LENGTH = 7
MAX_LISTED_COMMITS = 10
LOG_FORMAT = "--pretty=format:%H|%ci|%s"
GIT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S %z"

# Status log ring buffer
MAX_STATUS_LOG_LINES = 100

# Pull request listing
DEFAULT_PR_LIMIT = 30
MAX_PR_LIMIT = 100

# Recent commit listing
DEFAULT_COMMIT_LIMIT = 10
MAX_COMMIT_LIMIT = 50


# Substrings of git output that select a policy branch
CONFLICT_MARKERS: Tuple[str, ...] = ("CONFLICT", "Automatic merge failed")
CHERRY_PICK_CONFLICT_MARKERS: Tuple[str, ...] = ("conflict", "CONFLICT")
MERGE_COMMIT_MARKER = "merge but no -m option was given"
CHERRY_PICK_EMPTY_MARKERS: Tuple[str, ...] = (
    "nothing to commit",
    "empty commit",
    "The previous cherry-pick is now empty",
)
REVERT_EMPTY_MARKERS: Tuple[str, ...] = (
    "nothing to commit",
    "The previous cherry-pick is now empty",
    "The previous cherry-pick is empty",
    "nothing added to commit but untracked files present",
)
NO_LOCAL_CHANGES_MARKER = "no local changes"


# Backup naming
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
BACKUP_PREFIXES: Dict[str, str] = {
    "pr": "pre_PR_",
    "build": "pre_build_",
    "update": "pre_update_",
}
DEFAULT_BACKUP_PREFIX = "pre_update_"
ROLLBACK_BACKUP_PREFIX = "pre_rollback_"


class OperationName:
    """Names of the mutually-exclusive long-running operations."""

    UPDATE = "update"
    BUILD = "build"
    ROLLBACK = "rollback"
    CHERRY_PICK = "cherry-pick"
    REVERT = "revert"


ALL_OPERATIONS = (
    OperationName.UPDATE,
    OperationName.BUILD,
    OperationName.ROLLBACK,
    OperationName.CHERRY_PICK,
    OperationName.REVERT,
)
