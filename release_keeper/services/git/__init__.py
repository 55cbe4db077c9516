"""Git-related services for release-keeper."""

from .operations import GitOperations
from .sync import UpdateSync
from .patches import PatchService
from .github import GitHubService

__all__ = [
    "GitOperations",
    "UpdateSync",
    "PatchService",
    "GitHubService",
]
