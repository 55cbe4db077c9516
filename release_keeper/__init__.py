"""
release-keeper - Self-update and release management for a locally built service
"""

from .__version__ import __version__
from .core import UpdaterService, OperationHandle

__all__ = ["UpdaterService", "OperationHandle", "__version__"]
