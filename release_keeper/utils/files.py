"""Filesystem helpers shared by the backup, build and restart services."""

import hashlib
import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional, Union

from release_keeper.logging_config import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]

_HASH_CHUNK_SIZE = 1024 * 1024


def file_hash(path: PathLike) -> str:
    """Return the SHA-256 hex digest of a file's content."""
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_HASH_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def files_same_content(a: PathLike, b: PathLike) -> bool:
    """Compare two files by size first, then by content hash.

    Raises:
        OSError: If either file cannot be read
    """
    if os.path.getsize(a) != os.path.getsize(b):
        return False
    return file_hash(a) == file_hash(b)


def is_path_within_dir(base_dir: PathLike, target_path: PathLike) -> bool:
    """Check that ``target_path`` lies strictly inside ``base_dir``.

    Both paths are resolved first, so ``..`` segments and symlinks cannot
    escape the base directory. Comparison is case-insensitive where the
    platform's filesystem is.
    """
    if not str(base_dir) or not str(target_path):
        return False
    base = os.path.normcase(os.path.realpath(base_dir))
    target = os.path.normcase(os.path.realpath(target_path))
    if base == target:
        return False
    try:
        return os.path.commonpath([base, target]) == base
    except ValueError:
        # Different drives on Windows
        return False


def copy_file(src: PathLike, dst: PathLike) -> None:
    """Copy a file, creating the destination directory when needed."""
    Path(dst).parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dst)


def copy_missing(src: PathLike, dst: PathLike) -> List[Path]:
    """Copy a file or directory tree, only adding files that don't exist yet.

    Existing destination files are never overwritten, so local edits survive.

    Returns:
        Destination paths that were created
    """
    src_path = Path(src)
    dst_path = Path(dst)
    created: List[Path] = []

    if src_path.is_file():
        if not dst_path.exists():
            copy_file(src_path, dst_path)
            created.append(dst_path)
        return created

    for root, _dirs, files in os.walk(src_path):
        rel = Path(root).relative_to(src_path)
        target_dir = dst_path / rel
        target_dir.mkdir(parents=True, exist_ok=True)
        for name in files:
            target = target_dir / name
            if target.exists():
                continue
            shutil.copy2(Path(root) / name, target)
            created.append(target)
    return created


def write_script(directories: Iterable[Optional[PathLike]], prefix: str, suffix: str, content: str) -> Path:
    """Write a helper script into the first directory that accepts it.

    Args:
        directories: Candidate directories in order of preference; None entries are skipped
        prefix: File name prefix
        suffix: File name suffix including the dot
        content: Script text

    Returns:
        Path of the written script

    Raises:
        OSError: If no candidate directory is writable
    """
    last_error: Optional[OSError] = None
    for directory in list(directories) + [tempfile.gettempdir()]:
        if not directory:
            continue
        try:
            fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=str(directory))
        except OSError as e:
            last_error = e
            logger.debug(f"Cannot create script in {directory}: {e}")
            continue
        try:
            # newline="" keeps the line endings the launcher rendered
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
        except OSError as e:
            last_error = e
            logger.debug(f"Cannot write script {name}: {e}")
            try:
                os.remove(name)
            except OSError:
                pass
            continue
        return Path(name)

    raise OSError(f"failed to create helper script: {last_error}")
