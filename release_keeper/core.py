"""Core functionality for release-keeper"""

import os
import queue
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Iterator, List, Optional, Union

from release_keeper.config import Config
from release_keeper.constants import DEFAULT_COMMIT_LIMIT, DEFAULT_PR_LIMIT, OperationName
from release_keeper.exceptions import ConflictError, OperationBusyError
from release_keeper.logging_config import get_logger
from release_keeper.models import (
    BackupVersion,
    CherryPickResult,
    CommitInfo,
    PullRequest,
    RepositoryContext,
    RevertResult,
    UpdateCheckResult,
    UpdaterState,
    UpdaterStatus,
    VersionInfo,
)
from release_keeper.services.backup_service import BackupManager
from release_keeper.services.build_service import BuildPipeline
from release_keeper.services.git.github import GitHubService
from release_keeper.services.git.patches import PatchService
from release_keeper.services.git.sync import UpdateSync
from release_keeper.services.launchers import LauncherScript
from release_keeper.services.ledger_service import AppliedPRLedger
from release_keeper.services.repository_service import RepositoryLocator, resolve_current_executable
from release_keeper.services.restart_service import RestartOrchestrator
from release_keeper.services.status_service import OperationGuard, StatusTracker
from release_keeper.services.version_service import VersionResolver

logger = get_logger(__name__)

_STREAM_END = object()


class OperationHandle:
    """A running operation: its future plus the ordered stream of its log lines."""

    def __init__(self, name: str, future: Future, events: "queue.Queue"):
        self.name = name
        self.future = future
        self._events = events
        future.add_done_callback(self._finish)

    def _finish(self, _future: Future) -> None:
        self._events.put(_STREAM_END)

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: Optional[float] = None):
        """Wait for the operation and return its result (or raise its error)."""
        return self.future.result(timeout)

    def events(self) -> Iterator[str]:
        """Yield log lines as they are produced until the operation finishes."""
        while True:
            item = self._events.get()
            if item is _STREAM_END:
                return
            yield item


class UpdaterService:
    """Owns the status record and operation guard; entry point for every operation.

    Long-running operations (update, build, rollback, cherry-pick, revert)
    are mutually exclusive. ``execute_*`` runs one on the calling thread;
    ``start_*`` runs it on a worker thread and returns an OperationHandle.
    Both raise OperationBusyError straight away if another operation holds
    the slot.
    """

    def __init__(self, config: Optional[Union[Config, dict]] = None,
                 current_executable: Optional[str] = None,
                 work_dir: Optional[str] = None,
                 install_dir: Optional[str] = None,
                 github_client=None,
                 launcher: Optional[LauncherScript] = None,
                 exit_func: Callable[[int], None] = os._exit,
                 sleep: Callable[[float], None] = time.sleep,
                 embedded_hash: Optional[str] = None,
                 embedded_time: Optional[str] = None):
        if config is None:
            config = Config()
        elif isinstance(config, dict):
            config = Config.from_dict(config)
        self.config = config
        self.current_executable = current_executable or resolve_current_executable()
        self._sleep = sleep

        self.status = StatusTracker()
        self.guard = OperationGuard()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="release-keeper")

        log = self.status.log
        self.locator = RepositoryLocator(config, self.current_executable, work_dir, install_dir)
        self.resolver = VersionResolver(config, self.locator, embedded_hash, embedded_time)
        self.sync = UpdateSync(config, self.locator, self.resolver)
        self.github = GitHubService(config, github_client)
        self.patches = PatchService(config, self.github, self.locator)
        self.backups = BackupManager(config, self.current_executable, log=log)
        self.builder = BuildPipeline(config, self.resolver, log=log)
        self.restarter = RestartOrchestrator(
            config, self.backups, self.current_executable, launcher, log=log, exit_func=exit_func
        )

    # Guard and status

    def try_start_operation(self, name: str) -> bool:
        return self.guard.try_start(name)

    def end_operation(self) -> None:
        self.guard.end()

    def get_status(self) -> UpdaterStatus:
        return self.status.snapshot()

    def set_log_callback(self, callback: Optional[Callable[[str], None]]) -> None:
        self.status.set_log_callback(callback)

    def set_pre_restart_callback(self, callback: Optional[Callable[[], None]]) -> None:
        self.restarter.set_pre_restart_callback(callback)

    def _acquire(self, name: str) -> None:
        if not self.guard.try_start(name):
            raise OperationBusyError(name, self.guard.current())

    def _run_locked(self, state: UpdaterState, body: Callable, *args,
                    unsubscribe: Optional[Callable[[], None]] = None):
        """Run an operation body whose guard slot is already held.

        ``unsubscribe`` detaches the caller's event stream before the slot is
        released.
        """
        try:
            self.status.reset(state)
            return body(*args)
        except Exception as e:
            self.status.set_error(e)
            raise
        finally:
            if unsubscribe is not None:
                unsubscribe()
            self.guard.end()

    def _execute(self, name: str, state: UpdaterState, body: Callable, *args):
        self._acquire(name)
        return self._run_locked(state, body, *args)

    def _start(self, name: str, state: UpdaterState, body: Callable, *args) -> OperationHandle:
        self._acquire(name)
        events: "queue.Queue" = queue.Queue()
        unsubscribe = self.status.subscribe(events.put)
        try:
            future = self._executor.submit(self._run_locked, state, body, *args, unsubscribe=unsubscribe)
        except Exception:
            unsubscribe()
            self.guard.end()
            raise
        return OperationHandle(name, future, events)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # Read-only queries

    @property
    def install_dir(self) -> str:
        return self.locator.install_dir

    def ledger(self) -> AppliedPRLedger:
        return AppliedPRLedger.for_install_dir(self.install_dir, self.config.ledger_filename)

    def current_version(self, allow_clone: bool = True) -> Optional[VersionInfo]:
        if allow_clone:
            return self.resolver.current_version()
        return self.resolver.current_version_no_clone()

    def check_for_updates(self) -> UpdateCheckResult:
        return self.sync.check_for_updates()

    def get_current_commits(self, limit: int = DEFAULT_COMMIT_LIMIT) -> List[CommitInfo]:
        return self.sync.get_current_commits(limit)

    def get_upstream_prs(self, state: str = "open", limit: int = DEFAULT_PR_LIMIT) -> List[PullRequest]:
        return self.github.get_upstream_prs(state, limit, applied=self.ledger().load())

    def applied_prs(self) -> Dict[int, List[str]]:
        return self.ledger().load()

    def list_backups(self, limit: int = 0) -> List[BackupVersion]:
        return self.backups.list_backups(self.install_dir, limit)

    def current_executable_info(self) -> BackupVersion:
        return self.backups.current_executable(self.install_dir)

    # Operation bodies

    def _build(self, ctx: RepositoryContext) -> str:
        self.restarter.last_built_executable = None
        path = self.builder.build(ctx)
        self.restarter.last_built_executable = path
        return path

    def _finish(self, ctx: RepositoryContext, tag: str, auto_restart: bool) -> None:
        if auto_restart:
            self.status.update_progress(UpdaterState.DONE, 95, "Preparing to restart...")
            self._sleep(self.config.restart_delay)
            self.restarter.restart(ctx.install_dir, tag)
        else:
            self.restarter.schedule_move_on_exit(ctx.install_dir, tag)

    def _update(self, auto_restart: bool) -> None:
        self.status.update_progress(UpdaterState.UPDATING, 10, "[1/5] Preparing update...")
        ctx = self.locator.resolve()

        self.status.update_progress(UpdaterState.UPDATING, 20, "[2/5] Updating repository...")
        self.sync.perform_update(ctx, lambda step, message: self.status.log(message))

        self.status.update_progress(UpdaterState.UPDATING, 40, "[3/5] Backing up old executables...")
        self.backups.backup(ctx.install_dir, "update")

        self.status.update_progress(
            UpdaterState.BUILDING, 50, "[4/5] Building new version (this may take 1-2 minutes)..."
        )
        self._build(ctx)

        self.status.update_progress(UpdaterState.DONE, 90, "[5/5] Update completed successfully!")
        self._finish(ctx, "update", auto_restart)
        self.status.update_progress(UpdaterState.DONE, 100, "Update complete! Please restart the application.")

    def _rebuild(self, auto_restart: bool, tag: str, ctx: Optional[RepositoryContext] = None) -> None:
        self.status.update_progress(UpdaterState.BUILDING, 10, "[1/3] Preparing build...")
        if ctx is None:
            ctx = self.locator.resolve()

        self.status.update_progress(UpdaterState.BUILDING, 35, "[2/3] Backing up old executables...")
        self.backups.backup(ctx.install_dir, tag)

        self.status.update_progress(
            UpdaterState.BUILDING, 60, "[3/3] Building new version (this may take 1-2 minutes)..."
        )
        self._build(ctx)

        self.status.update_progress(UpdaterState.DONE, 90, "Build completed successfully!")
        self._finish(ctx, tag, auto_restart)
        self.status.update_progress(UpdaterState.DONE, 100, "Build complete! Please restart the application.")

    def _rollback(self, backup_path: str) -> bool:
        swapped = self.restarter.rollback_to(self.install_dir, backup_path)
        if not swapped:
            self.status.update_progress(UpdaterState.DONE, 100, "Rollback skipped: already running that version")
        return swapped

    def _cherry_pick(self, pr_numbers: List[int], rebuild: bool, auto_restart: bool) -> List[CherryPickResult]:
        ctx = self.locator.resolve()
        self.status.update_progress(UpdaterState.CHERRY_PICK, 10, f"Applying {len(pr_numbers)} PR(s)...")
        results = self.patches.cherry_pick_multiple_prs(pr_numbers, self.status.log, ctx)

        fatal = next((r.error for r in results if r.error and not isinstance(r.error, ConflictError)), None)
        if fatal:
            self.status.set_error(fatal)
            return results

        applied = sum(len(r.applied) for r in results)
        conflicted = [r.pr_number for r in results if not r.success]
        summary = f"Applied {applied} commit(s) from {len(results) - len(conflicted)} PR(s)"
        if conflicted:
            summary += f"; skipped PR(s) with conflicts: {', '.join(f'#{n}' for n in conflicted)}"

        if rebuild and applied:
            self.status.log(summary)
            self._rebuild(auto_restart, "pr", ctx)
        else:
            self.status.update_progress(UpdaterState.DONE, 100, summary)
        return results

    def _revert(self, pr_number: int, rebuild: bool, auto_restart: bool) -> RevertResult:
        ctx = self.locator.resolve()
        self.status.update_progress(UpdaterState.REVERT, 10, f"Reverting PR #{pr_number}...")
        result = self.patches.revert_pr(pr_number, self.status.log, ctx)
        if not result.success:
            self.status.set_error(result.error)
            return result

        if rebuild:
            self._rebuild(auto_restart, "pr", ctx)
        else:
            self.status.update_progress(UpdaterState.DONE, 100, f"Reverted PR #{pr_number}")
        return result

    # Synchronous entry points

    def execute_update(self, auto_restart: bool = True) -> None:
        """Pull upstream, back up, rebuild, then restart (or schedule the swap)."""
        self._execute(OperationName.UPDATE, UpdaterState.UPDATING, self._update, auto_restart)

    def execute_build(self, auto_restart: bool = True, tag: str = "build") -> None:
        """Rebuild from the current tree without pulling."""
        self._execute(OperationName.BUILD, UpdaterState.BUILDING, self._rebuild, auto_restart, tag)

    def execute_rollback(self, backup_path: str) -> bool:
        """Swap back to a backup; False when it is the running executable."""
        return self._execute(OperationName.ROLLBACK, UpdaterState.ROLLBACK, self._rollback, backup_path)

    def execute_cherry_pick(self, pr_numbers: List[int], rebuild: bool = False,
                            auto_restart: bool = False) -> List[CherryPickResult]:
        """Apply upstream PRs in order; optionally rebuild when anything was applied."""
        return self._execute(OperationName.CHERRY_PICK, UpdaterState.CHERRY_PICK, self._cherry_pick,
                             list(pr_numbers), rebuild, auto_restart)

    def execute_revert(self, pr_number: int, rebuild: bool = False, auto_restart: bool = False) -> RevertResult:
        """Revert an applied PR; optionally rebuild afterwards."""
        return self._execute(OperationName.REVERT, UpdaterState.REVERT, self._revert,
                             pr_number, rebuild, auto_restart)

    # Background entry points

    def start_update(self, auto_restart: bool = True) -> OperationHandle:
        return self._start(OperationName.UPDATE, UpdaterState.UPDATING, self._update, auto_restart)

    def start_build(self, auto_restart: bool = True, tag: str = "build") -> OperationHandle:
        return self._start(OperationName.BUILD, UpdaterState.BUILDING, self._rebuild, auto_restart, tag)

    def start_rollback(self, backup_path: str) -> OperationHandle:
        return self._start(OperationName.ROLLBACK, UpdaterState.ROLLBACK, self._rollback, backup_path)

    def start_cherry_pick(self, pr_numbers: List[int], rebuild: bool = False,
                          auto_restart: bool = False) -> OperationHandle:
        return self._start(OperationName.CHERRY_PICK, UpdaterState.CHERRY_PICK, self._cherry_pick,
                           list(pr_numbers), rebuild, auto_restart)

    def start_revert(self, pr_number: int, rebuild: bool = False, auto_restart: bool = False) -> OperationHandle:
        return self._start(OperationName.REVERT, UpdaterState.REVERT, self._revert,
                           pr_number, rebuild, auto_restart)
