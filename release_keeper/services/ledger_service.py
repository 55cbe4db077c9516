"""Applied-PR ledger: which upstream PRs were applied, and via which local commits."""
import json
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Union

from release_keeper.exceptions import ValidationError
from release_keeper.logging_config import get_logger

# Import fcntl for POSIX file locking (Unix/Linux/macOS)
try:
    import fcntl
    HAS_FCNTL = True
except ImportError:
    HAS_FCNTL = False

logger = get_logger(__name__)


class AppliedPRLedger:
    """Durable record of applied pull requests.

    File layout::

        {"applied": [12, 34], "prs": {"12": {"commits": ["<sha>", ...]}}}

    Readers fall back to the flat ``applied`` list (with empty commit sets)
    when ``prs`` is absent, so ledgers written by older releases still load.
    """

    def __init__(self, path: Union[str, Path]):
        """Initialize the ledger.

        Args:
            path: Location of applied_prs.json (normally in the install directory)
        """
        self.path = Path(path)

    @classmethod
    def for_install_dir(cls, install_dir: Union[str, Path], filename: str = "applied_prs.json") -> "AppliedPRLedger":
        return cls(Path(install_dir) / filename)

    @contextmanager
    def _acquire_lock(self, file_handle, operation: str = "read"):
        """Acquire a file lock for ledger reads/writes.

        Args:
            file_handle: Open file handle to lock
            operation: Type of operation ("read" or "write")
        """
        if not HAS_FCNTL:
            yield
            return

        lock_type = fcntl.LOCK_EX if operation == "write" else fcntl.LOCK_SH
        fcntl.flock(file_handle.fileno(), lock_type)
        try:
            yield
        finally:
            try:
                fcntl.flock(file_handle.fileno(), fcntl.LOCK_UN)
            except OSError as e:
                logger.debug(f"Error releasing ledger lock: {e}")

    def load(self) -> Dict[int, List[str]]:
        """Load applied PRs with the commit SHAs recorded for each.

        Returns:
            Mapping of PR number to its ordered list of applied commit SHAs

        Raises:
            ValueError: If the file is not valid ledger JSON
        """
        if not self.path.exists():
            return {}

        with open(self.path, "r", encoding="utf-8") as f:
            with self._acquire_lock(f, operation="read"):
                state = json.load(f)

        if not isinstance(state, dict):
            raise ValueError(f"Invalid ledger file {self.path}: expected an object")

        result: Dict[int, List[str]] = {}
        for key, record in (state.get("prs") or {}).items():
            try:
                number = int(key)
            except (TypeError, ValueError):
                continue
            if number <= 0:
                continue
            commits = record.get("commits") if isinstance(record, dict) else None
            result[number] = [str(sha) for sha in (commits or [])]

        if not result:
            for number in state.get("applied") or []:
                if isinstance(number, int) and number > 0:
                    result[number] = []

        logger.debug(f"Loaded ledger with {len(result)} PR(s)")
        return result

    def mark_applied(self, pr_number: int, commits: List[str]) -> None:
        """Record a PR as applied with the commit SHAs it produced.

        An empty ``commits`` list keeps whatever commits were recorded before.
        """
        if pr_number <= 0:
            raise ValidationError(f"invalid PR number: {pr_number}")
        prs = self.load()
        existing = prs.get(pr_number, [])
        prs[pr_number] = list(commits) if commits else existing
        self._save(prs)

    def remove(self, pr_number: int) -> None:
        """Delete a PR's entry. Missing entries are not an error."""
        if pr_number <= 0:
            raise ValidationError(f"invalid PR number: {pr_number}")
        prs = self.load()
        if pr_number not in prs:
            return
        del prs[pr_number]
        self._save(prs)

    def get(self, pr_number: int) -> List[str]:
        """Commits recorded for a PR, empty when it is not in the ledger."""
        return list(self.load().get(pr_number, []))

    def _save(self, prs: Dict[int, List[str]]) -> None:
        """Write the ledger atomically: temp file first, then rename over."""
        numbers = sorted(prs)
        state = {
            "applied": numbers,
            "prs": {str(n): {"commits": prs[n]} for n in numbers},
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                with self._acquire_lock(f, operation="write"):
                    json.dump(state, f)
                    f.flush()
            temp_file.replace(self.path)
            logger.debug(f"Saved ledger with {len(numbers)} PR(s)")
        finally:
            if temp_file.exists():
                try:
                    temp_file.unlink()
                except OSError:
                    pass
