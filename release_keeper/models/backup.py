"""Backup executable model."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class BackupVersion:
    """An executable kept in the backup directory (or the running one)."""

    filename: str
    file_path: str
    created_at: datetime
    size: int
    is_current: bool = False

    def __str__(self) -> str:
        marker = " (current)" if self.is_current else ""
        return f"{self.filename}{marker} [{self.size} bytes, {self.created_at:%Y-%m-%d %H:%M}]"
