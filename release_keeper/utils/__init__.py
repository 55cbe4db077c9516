"""Utility functions for release-keeper.

This package provides utility modules:
- files: hashing, containment checks, non-destructive copies and helper script writing
"""

from .files import (
    file_hash,
    files_same_content,
    is_path_within_dir,
    copy_file,
    copy_missing,
    write_script,
)

__all__ = [
    "file_hash",
    "files_same_content",
    "is_path_within_dir",
    "copy_file",
    "copy_missing",
    "write_script",
]
