"""Fetch/merge synchronisation with the upstream mainline"""
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple, Union

from release_keeper.constants import DEFAULT_COMMIT_LIMIT, MAX_COMMIT_LIMIT, MAX_LISTED_COMMITS
from release_keeper.exceptions import DetachedHeadError, GitOperationError
from release_keeper.logging_config import get_logger
from release_keeper.models.repository import RepositoryContext
from release_keeper.models.version import CommitInfo, UpdateCheckResult, VersionInfo
from release_keeper.services.git.operations import GitOperations, check_git_installed

if TYPE_CHECKING:
    from release_keeper.config import Config
    from release_keeper.services.repository_service import RepositoryLocator
    from release_keeper.services.version_service import VersionResolver

logger = get_logger(__name__)

ProgressCallback = Callable[[str, str], None]


def _no_progress(step: str, message: str) -> None:
    pass


class UpdateSync:
    """Compares against and merges the upstream mainline.

    Conflicts while merging are resolved in favour of upstream: the merge is
    aborted, the tree is hard-reset to the upstream ref and local
    modifications are discarded. The running build always lands on a known
    upstream state.
    """

    def __init__(self, config: Union["Config", dict], locator: "RepositoryLocator",
                 resolver: "VersionResolver"):
        self.config = config
        self.locator = locator
        self.resolver = resolver

    def _ops(self, repo_dir: str) -> GitOperations:
        return GitOperations(repo_dir, self.config)

    def _comparison_base(self, ops: GitOperations, current: Optional[VersionInfo]) -> str:
        """Embedded commit when it is still in local history, else HEAD."""
        if current is None or not current.comparison_hash:
            return "HEAD"
        if not ops.commit_exists(current.comparison_hash):
            logger.debug(f"Commit {current.commit_hash} not in local history, comparing from HEAD")
            return "HEAD"
        return current.comparison_hash

    @staticmethod
    def _parse_counts(output: str) -> Tuple[int, int]:
        parts = output.split()
        if len(parts) != 2:
            raise GitOperationError("rev-list", "unexpected ahead/behind output", output)
        return int(parts[0]), int(parts[1])

    def check_for_updates(self, ctx: Optional[RepositoryContext] = None) -> UpdateCheckResult:
        """Fetch upstream and report how far the running build is behind it.

        Does not touch the working tree.

        Raises:
            GitNotInstalledError: If git cannot be executed
            GitOperationError: If the fetch or comparison fails
        """
        check_git_installed()
        if ctx is None:
            ctx = self.locator.resolve()

        current = self.resolver.embedded_version() or self.resolver.repository_version(ctx.repo_dir)

        ops = self._ops(ctx.repo_dir)
        ops.ensure_upstream_remote()
        ops.fetch(ops.upstream_branch)

        base = self._comparison_base(ops, current)
        upstream = ops.upstream_ref
        ahead, behind = self._parse_counts(
            ops.query("rev-list", "--left-right", "--count", f"{base}...{upstream}")
        )
        logger.debug(f"{base[:12]} is {ahead} ahead, {behind} behind {upstream}")

        ahead_commits: List[CommitInfo] = []
        if ahead > 0:
            try:
                ahead_commits = ops.log(f"{upstream}..{base}", MAX_LISTED_COMMITS)
            except GitOperationError as e:
                logger.debug(f"Could not list local commits: {e}")

        new_commits: List[CommitInfo] = []
        if behind > 0:
            try:
                new_commits = ops.log(f"{base}..{upstream}", MAX_LISTED_COMMITS)
            except GitOperationError as e:
                logger.debug(f"Could not list upstream commits: {e}")

        return UpdateCheckResult(
            has_updates=behind > 0,
            commits_ahead=ahead,
            commits_behind=behind,
            ahead_commits=ahead_commits,
            new_commits=new_commits,
            current_version=current,
        )

    def get_current_commits(self, limit: int = DEFAULT_COMMIT_LIMIT,
                            ctx: Optional[RepositoryContext] = None) -> List[CommitInfo]:
        """Most recent commits on HEAD; out-of-range limits fall back to the default."""
        if limit <= 0 or limit > MAX_COMMIT_LIMIT:
            limit = DEFAULT_COMMIT_LIMIT
        check_git_installed()
        if ctx is None:
            ctx = self.locator.resolve()
        return self._ops(ctx.repo_dir).log("HEAD", limit)

    def perform_update(self, ctx: RepositoryContext, progress: Optional[ProgressCallback] = None) -> None:
        """Merge the upstream mainline into the checked-out branch.

        Local changes are stashed first and restored afterwards. If the merge
        or the restore conflicts, local changes are discarded and the tree is
        left at the upstream state.

        Args:
            ctx: Repository to update
            progress: Optional ``(step, message)`` callback

        Raises:
            GitNotInstalledError: If git cannot be executed
            DetachedHeadError: If no branch is checked out
            GitOperationError: If a git step fails for a reason other than a conflict
        """
        progress = progress or _no_progress

        progress("check", "Checking Git installation...")
        check_git_installed()

        ops = self._ops(ctx.repo_dir)
        ops.ensure_upstream_remote()

        progress("branch", "Verifying current branch...")
        branch = ops.current_branch()
        if not branch or branch == "HEAD":
            raise DetachedHeadError()
        if branch != ops.upstream_branch:
            progress("branch", f"Current branch is '{branch}'; updating against {ops.upstream_ref}...")

        progress("status", "Checking local changes...")
        stashed = False
        if ops.is_dirty():
            progress("stash", "Stashing local changes...")
            stashed = ops.stash(self.config.get("stash_label", "release-keeper"))

        progress("fetch", f"Fetching latest changes from {ops.upstream_ref}...")
        ops.fetch(ops.upstream_branch)

        progress("merge", f"Merging {ops.upstream_ref}...")
        status, output = ops.run("merge", "--no-edit", ops.upstream_ref)
        if status != 0:
            if not ops.is_conflict(output):
                raise GitOperationError("merge", f"git merge {ops.upstream_ref} failed", output)

            progress("conflict", "Merge conflict detected; discarding local changes and keeping upstream updates...")
            ops.run("merge", "--abort")
            self._discard_local(ops, ops.upstream_ref)
            if stashed:
                ops.drop_stash()
            progress("complete", "Git update completed (local changes discarded due to conflicts)")
            return

        if stashed:
            progress("stash", "Restoring local changes...")
            restored, output = ops.pop_stash()
            if not restored:
                if not ops.is_conflict(output):
                    raise GitOperationError("stash pop", "failed to restore local changes", output)

                progress("conflict", "Conflicts restoring local changes; discarding them and keeping upstream updates...")
                ops.run("reset", "--hard", "HEAD")
                ops.run("clean", "-fd")
                ops.drop_stash()
                progress("complete", "Git update completed (local changes discarded due to conflicts)")
                return

        progress("complete", "Git update completed successfully")

    @staticmethod
    def _discard_local(ops: GitOperations, ref: str) -> None:
        status, output = ops.run("reset", "--hard", ref)
        if status != 0:
            raise GitOperationError("reset", f"git reset --hard {ref} failed after conflict", output)
        status, output = ops.run("clean", "-fd")
        if status != 0:
            raise GitOperationError("clean", "git clean -fd failed after conflict", output)
