"""Tests for OperationGuard and StatusTracker"""
import threading

from release_keeper.models import UpdaterState
from release_keeper.services.status_service import OperationGuard, StatusTracker


class TestOperationGuard:
    """Test the single exclusive operation slot."""

    def test_second_start_rejected(self):
        guard = OperationGuard()
        assert guard.try_start("update") is True
        assert guard.try_start("build") is False
        assert guard.current() == "update"

    def test_end_releases_slot(self):
        guard = OperationGuard()
        guard.try_start("update")
        guard.end()
        assert guard.running is False
        assert guard.current() is None
        assert guard.try_start("build") is True

    def test_end_without_start_is_harmless(self):
        guard = OperationGuard()
        guard.end()
        assert guard.try_start("revert") is True

    def test_only_one_thread_wins(self):
        guard = OperationGuard()
        barrier = threading.Barrier(8)
        wins = []

        def contender(i):
            barrier.wait()
            if guard.try_start(f"op-{i}"):
                wins.append(i)

        threads = [threading.Thread(target=contender, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(wins) == 1
        assert guard.current() == f"op-{wins[0]}"


class TestStatusTracker:
    """Test status updates, the bounded log and log forwarding."""

    def test_initial_status_is_idle(self):
        status = StatusTracker().snapshot()
        assert status.state == UpdaterState.IDLE
        assert status.progress == 0
        assert status.logs == []

    def test_reset_starts_fresh(self):
        tracker = StatusTracker()
        tracker.update_progress(UpdaterState.BUILDING, 60, "Building")
        tracker.set_error(RuntimeError("boom"))

        tracker.reset(UpdaterState.UPDATING)
        status = tracker.snapshot()
        assert status.state == UpdaterState.UPDATING
        assert status.progress == 0
        assert status.error == ""
        assert status.logs == []

    def test_reset_accepts_state_name(self):
        tracker = StatusTracker()
        tracker.reset("cherry-pick")
        assert tracker.snapshot().state == UpdaterState.CHERRY_PICK

    def test_update_progress_logs_step(self):
        tracker = StatusTracker()
        tracker.update_progress(UpdaterState.UPDATING, 20, "[2/5] Updating repository...")
        status = tracker.snapshot()
        assert status.progress == 20
        assert status.current_step == "[2/5] Updating repository..."
        assert status.logs == ["[2/5] Updating repository..."]

    def test_progress_is_clamped(self):
        tracker = StatusTracker()
        tracker.update_progress(UpdaterState.DONE, 150, "done")
        assert tracker.snapshot().progress == 100

    def test_log_keeps_last_100_lines(self):
        tracker = StatusTracker()
        for i in range(150):
            tracker.log(f"line {i}")
        logs = tracker.snapshot().logs
        assert len(logs) == 100
        assert logs[0] == "line 50"
        assert logs[-1] == "line 149"

    def test_snapshot_is_detached(self):
        tracker = StatusTracker()
        tracker.log("one")
        snapshot = tracker.snapshot()
        tracker.log("two")
        assert snapshot.logs == ["one"]

    def test_set_error(self):
        tracker = StatusTracker()
        tracker.set_error(ValueError("bad input"))
        status = tracker.snapshot()
        assert status.state == UpdaterState.ERROR
        assert status.error == "bad input"
        assert status.logs[-1] == "Error: bad input"

    def test_callback_and_listeners_receive_lines(self):
        tracker = StatusTracker()
        from_callback, from_listener = [], []
        tracker.set_log_callback(from_callback.append)
        tracker.add_listener(from_listener.append)

        tracker.log("hello")

        assert from_callback == ["hello"]
        assert from_listener == ["hello"]

    def test_failing_listener_does_not_break_logging(self):
        tracker = StatusTracker()
        received = []

        def broken(message):
            raise RuntimeError("listener down")

        tracker.add_listener(broken)
        tracker.add_listener(received.append)
        tracker.log("still logged")

        assert received == ["still logged"]
        assert tracker.snapshot().logs == ["still logged"]

    def test_subscribe_returns_unsubscribe(self):
        tracker = StatusTracker()
        received = []
        unsubscribe = tracker.subscribe(received.append)
        tracker.log("first")
        unsubscribe()
        tracker.log("second")
        assert received == ["first"]

    def test_to_dict(self):
        tracker = StatusTracker()
        tracker.update_progress(UpdaterState.REVERT, 10, "Reverting")
        assert tracker.snapshot().to_dict() == {
            "state": "revert",
            "progress": 10,
            "current_step": "Reverting",
            "logs": ["Reverting"],
            "error": "",
        }
