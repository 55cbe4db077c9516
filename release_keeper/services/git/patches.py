"""Cherry-picking upstream pull requests and reverting them again"""
from typing import TYPE_CHECKING, Callable, List, Optional, Union

from release_keeper.constants import (
    CHERRY_PICK_CONFLICT_MARKERS,
    CHERRY_PICK_EMPTY_MARKERS,
    MERGE_COMMIT_MARKER,
    REVERT_EMPTY_MARKERS,
)
from release_keeper.exceptions import (
    ConflictError,
    GitOperationError,
    ReleaseKeeperError,
    ValidationError,
)
from release_keeper.logging_config import get_logger
from release_keeper.models.pull_request import CherryPickResult, RevertResult
from release_keeper.models.repository import RepositoryContext
from release_keeper.models.version import short_hash
from release_keeper.services.git.operations import GitOperations
from release_keeper.services.ledger_service import AppliedPRLedger

if TYPE_CHECKING:
    from release_keeper.config import Config
    from release_keeper.services.git.github import GitHubService
    from release_keeper.services.repository_service import RepositoryLocator

logger = get_logger(__name__)

LogCallback = Callable[[str], None]

_MAX_SUBJECT_LENGTH = 60


def _no_log(message: str) -> None:
    pass


def _has_marker(output: str, markers) -> bool:
    return any(marker in output for marker in markers)


class PatchService:
    """Applies and reverts upstream pull requests on the local branch.

    Applied PRs are tracked in the ledger next to the installation, keyed by
    PR number, with the local commit SHAs each PR produced.
    """

    def __init__(self, config: Union["Config", dict], github: "GitHubService",
                 locator: "RepositoryLocator"):
        self.config = config
        self.github = github
        self.locator = locator

    def ledger(self, ctx: RepositoryContext) -> AppliedPRLedger:
        return AppliedPRLedger.for_install_dir(
            ctx.install_dir, self.config.get("ledger_filename", "applied_prs.json")
        )

    def cherry_pick_pr(self, pr_number: int, progress: Optional[LogCallback] = None,
                       ctx: Optional[RepositoryContext] = None) -> CherryPickResult:
        """Apply every commit of an upstream PR onto the current branch.

        Merge commits and commits that are already present are skipped. The
        first conflicting commit stops the PR; its short hash is reported and
        the ledger is left untouched.

        Returns:
            CherryPickResult; on conflict ``error`` holds a ConflictError

        Raises:
            ValidationError: If the PR number is invalid or the PR has no commits
            GitOperationError: If fetching fails or a commit fails for a reason
                other than a conflict
            GitHubAPIError: If the commit list cannot be retrieved
        """
        log = progress or _no_log
        if pr_number <= 0:
            raise ValidationError(f"invalid PR number: {pr_number}")
        if ctx is None:
            ctx = self.locator.resolve()

        ops = GitOperations(ctx.repo_dir, self.config)
        ops.ensure_upstream_remote()

        if ops.is_dirty():
            log("Working tree has local changes; proceeding with cherry-pick")
        log("Using current branch for cherry-pick...")

        log(f"Fetching PR #{pr_number} from upstream...")
        ops.fetch()
        log(f"Fetching PR #{pr_number} head ref...")
        ops.fetch(f"pull/{pr_number}/head")

        log(f"Getting commit list for PR #{pr_number}...")
        commits = self.github.get_pr_commits(pr_number)
        if not commits:
            raise ValidationError(f"no commits found in PR #{pr_number}")
        log(f"Found {len(commits)} commit(s) to apply")

        result = CherryPickResult(pr_number=pr_number)
        applied_shas: List[str] = []

        for index, commit in enumerate(commits, start=1):
            short = short_hash(commit.sha)
            subject = commit.message[:_MAX_SUBJECT_LENGTH]
            if len(commit.message) > _MAX_SUBJECT_LENGTH:
                subject += "..."
            subject = subject.split("\n", 1)[0]

            log(f"[{index}/{len(commits)}] Cherry-picking {short}: {subject}")
            status, output = ops.run("cherry-pick", commit.sha)

            if status != 0:
                if MERGE_COMMIT_MARKER in output:
                    ops.run("cherry-pick", "--abort")
                    log(f"Skipped merge commit {short}")
                    continue

                if _has_marker(output, CHERRY_PICK_EMPTY_MARKERS):
                    ops.run("cherry-pick", "--skip")
                    log(f"Skipped {short} (already applied)")
                    continue

                if _has_marker(output, CHERRY_PICK_CONFLICT_MARKERS) or ops.has_unmerged_paths():
                    log(f"Conflict detected on {short}, aborting...")
                    ops.run("cherry-pick", "--abort")
                    result.conflicted.append(short)
                    result.error = ConflictError(
                        "cherry-pick", [short], f"Conflict on commit {short}: {subject}"
                    )
                    return result

                ops.run("cherry-pick", "--abort")
                raise GitOperationError("cherry-pick", f"failed to cherry-pick {short}", output)

            applied_sha = ops.rev_parse("HEAD")
            if not applied_sha:
                log(f"Warning: unable to resolve applied commit for {short}")
                applied_sha = commit.sha
            applied_shas.append(applied_sha)
            result.applied.append(short)
            log(f"Applied {short}")

        result.success = True
        if applied_shas:
            log(f"Successfully applied {len(applied_shas)} of {len(commits)} commit(s) from PR #{pr_number}")
            self.ledger(ctx).mark_applied(pr_number, applied_shas)
        else:
            log(f"Nothing to apply from PR #{pr_number}")
        return result

    def cherry_pick_multiple_prs(self, pr_numbers: List[int], progress: Optional[LogCallback] = None,
                                 ctx: Optional[RepositoryContext] = None) -> List[CherryPickResult]:
        """Apply several PRs strictly in the order given.

        A conflict on one PR does not stop the batch. Any other error stops it
        immediately; that PR's result carries the error and later PRs are not
        attempted.
        """
        log = progress or _no_log
        if ctx is None:
            ctx = self.locator.resolve()

        results: List[CherryPickResult] = []
        for index, pr_number in enumerate(pr_numbers, start=1):
            log(f"=== Processing PR #{pr_number} ({index}/{len(pr_numbers)}) ===")
            try:
                result = self.cherry_pick_pr(pr_number, log, ctx)
            except ReleaseKeeperError as e:
                logger.error(f"Cherry-pick of PR #{pr_number} failed: {e}")
                log(f"Stopping: PR #{pr_number} failed: {e}")
                results.append(CherryPickResult(pr_number=pr_number, error=e))
                break

            results.append(result)
            if not result.success:
                log(f"Skipping PR #{pr_number} due to conflicts")
        return results

    def revert_pr(self, pr_number: int, progress: Optional[LogCallback] = None,
                  ctx: Optional[RepositoryContext] = None) -> RevertResult:
        """Revert the commits a PR produced, most recent first.

        Local changes are stashed for the duration and always restored. On
        success the PR's ledger entry is deleted; on conflict the revert is
        aborted and the entry is kept.

        Returns:
            RevertResult; on conflict ``error`` holds a ConflictError

        Raises:
            ValidationError: If the PR number is invalid or has no recorded commits
            GitOperationError: If a revert fails for a reason other than a
                conflict, or local changes cannot be restored
        """
        log = progress or _no_log
        if pr_number <= 0:
            raise ValidationError(f"invalid PR number: {pr_number}")
        if ctx is None:
            ctx = self.locator.resolve()

        ledger = self.ledger(ctx)
        commits = ledger.get(pr_number)
        if not commits:
            raise ValidationError(f"no applied commits recorded for PR #{pr_number}")

        ops = GitOperations(ctx.repo_dir, self.config)
        stashed = False
        if ops.is_dirty():
            log("Working tree has local changes; stashing before revert")
            stashed = ops.stash(f"{self.config.get('stash_label', 'release-keeper')}-revert")

        restore_error: Optional[GitOperationError] = None
        failure: Optional[Exception] = None
        try:
            result = self._revert_commits(ops, pr_number, commits, log)
            if result.success:
                ledger.remove(pr_number)
                log(f"Successfully reverted PR #{pr_number}")
        except Exception as e:
            failure = e
            raise
        finally:
            if stashed:
                restore_error = self._restore_stash(ops, log)
                if restore_error and failure is not None:
                    raise restore_error from failure

        if restore_error:
            raise restore_error from result.error
        return result

    def _revert_commits(self, ops: GitOperations, pr_number: int, commits: List[str],
                        log: LogCallback) -> RevertResult:
        result = RevertResult(pr_number=pr_number)
        log(f"Reverting PR #{pr_number}...")

        for sha in reversed(commits):
            short = short_hash(sha)
            log(f"Reverting {short}...")
            status, output = ops.run("revert", "--no-edit", sha)
            if status == 0:
                result.reverted.append(short)
                log(f"Reverted {short}")
                continue

            if MERGE_COMMIT_MARKER in output:
                ops.run("revert", "--abort")
                log(f"Skipped merge commit {short}")
                continue

            if _has_marker(output, REVERT_EMPTY_MARKERS):
                ops.run("revert", "--skip")
                log(f"Skipped {short} (already reverted)")
                continue

            if _has_marker(output, CHERRY_PICK_CONFLICT_MARKERS) or ops.has_unmerged_paths():
                ops.run("revert", "--abort")
                result.conflicted.append(short)
                result.error = ConflictError("revert", [short], f"Conflict while reverting {short}")
                log(str(result.error))
                return result

            ops.run("revert", "--abort")
            raise GitOperationError("revert", f"failed to revert {short}", output)

        result.success = True
        return result

    @staticmethod
    def _restore_stash(ops: GitOperations, log: LogCallback) -> Optional[GitOperationError]:
        restored, output = ops.pop_stash()
        if restored:
            log("Restored local changes")
            return None
        error = GitOperationError("stash pop", "failed to restore local changes", output)
        logger.error(str(error))
        log(f"Warning: {error}")
        return error
