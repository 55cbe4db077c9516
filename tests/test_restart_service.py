"""Tests for restart, move-on-exit and rollback"""
import os
from datetime import datetime
from unittest.mock import Mock

import pytest

from release_keeper.config import Config
from release_keeper.exceptions import MissingFileError, ValidationError
from release_keeper.services.backup_service import BackupManager
from release_keeper.services.restart_service import RestartOrchestrator, backup_prefix, timestamp


@pytest.fixture
def running(install_dir):
    exe = install_dir / "koolo.exe"
    exe.write_bytes(b"running build")
    return exe


@pytest.fixture
def orchestrator(running, recording_launcher):
    config = Config(service_port=9000, port_wait_seconds=7)
    backups = BackupManager(config, current_executable=str(running), log=lambda m: None)
    return RestartOrchestrator(
        config,
        backups,
        current_executable=str(running),
        launcher=recording_launcher,
        log=lambda m: None,
        exit_func=Mock(),
        pid=1234,
    )


class TestHelpers:

    @pytest.mark.parametrize("tag,prefix", [
        ("pr", "pre_PR_"),
        ("build", "pre_build_"),
        ("update", "pre_update_"),
        ("", "pre_update_"),
        ("other", "pre_update_"),
    ])
    def test_backup_prefix(self, tag, prefix):
        assert backup_prefix(tag) == prefix

    def test_timestamp_format(self):
        assert timestamp(datetime(2024, 5, 1, 10, 2, 3)) == "20240501_100203"


class TestRestart:
    """Test relaunching into a fresh build."""

    def test_prefers_last_built(self, orchestrator, install_dir, recording_launcher):
        built = install_dir / "abc123.exe"
        built.write_bytes(b"new build")
        newer = install_dir / "zzz.exe"
        newer.write_bytes(b"newer but not built here")
        orchestrator.last_built_executable = str(built)

        orchestrator.restart(install_dir, "build")

        d = recording_launcher.rendered[-1]
        assert d.new_executable == str(built)
        assert d.pid == 1234
        assert d.port == 9000
        assert d.port_wait_seconds == 7
        assert d.start_delay == 3
        assert os.path.basename(d.backup_dest).startswith("pre_build_")
        assert d.backup_dest.endswith("_koolo.exe")
        assert len(recording_launcher.launched) == 1
        orchestrator.exit_func.assert_called_once_with(0)

    def test_falls_back_to_newest(self, orchestrator, install_dir, recording_launcher, running):
        orchestrator.restart(install_dir, "update")
        assert recording_launcher.rendered[-1].new_executable == str(running.resolve())

    def test_no_executable(self, install_dir, recording_launcher):
        config = Config()
        orchestrator = RestartOrchestrator(config, BackupManager(config), launcher=recording_launcher,
                                           exit_func=Mock())
        with pytest.raises(MissingFileError):
            orchestrator.restart(install_dir, "update")
        orchestrator.exit_func.assert_not_called()

    def test_pre_restart_callback_failure_tolerated(self, orchestrator, install_dir):
        lines = []
        orchestrator._log = lines.append
        orchestrator.set_pre_restart_callback(Mock(side_effect=RuntimeError("server stuck")))

        orchestrator.restart(install_dir, "update")

        assert "Graceful shutdown failed: server stuck" in lines
        orchestrator.exit_func.assert_called_once_with(0)

    def test_script_written_beside_install(self, orchestrator, install_dir, recording_launcher):
        orchestrator.restart(install_dir, "update")
        script = recording_launcher.launched[0]
        assert os.path.dirname(script) == str(install_dir)
        assert os.path.basename(script).startswith("release_keeper_restart_")


class TestScheduleMove:

    def test_schedules_move(self, orchestrator, install_dir, recording_launcher, running):
        script = orchestrator.schedule_move_on_exit(install_dir, "pr")

        d = recording_launcher.rendered[-1]
        assert script is not None
        assert d.old_executable == str(running)
        assert os.path.basename(d.backup_dest).startswith("pre_PR_")
        assert d.starts_new is False
        orchestrator.exit_func.assert_not_called()

    def test_source_run_has_nothing_to_move(self, install_dir, recording_launcher):
        config = Config()
        orchestrator = RestartOrchestrator(config, BackupManager(config), launcher=recording_launcher)
        assert orchestrator.schedule_move_on_exit(install_dir, "update") is None
        assert recording_launcher.launched == []


class TestRollback:
    """Test restoring a backup executable."""

    def test_traversal_rejected(self, orchestrator, install_dir, recording_launcher, temp_dir):
        outside = temp_dir / "evil.exe"
        outside.write_bytes(b"evil")

        with pytest.raises(ValidationError):
            orchestrator.rollback_to(install_dir, install_dir / "old_versions" / ".." / ".." / "evil.exe")

        assert recording_launcher.launched == []
        assert outside.exists()
        assert not (install_dir / "old_versions").exists()
        orchestrator.exit_func.assert_not_called()

    def test_missing_backup(self, orchestrator, install_dir):
        with pytest.raises(MissingFileError):
            orchestrator.rollback_to(install_dir, install_dir / "old_versions" / "gone.exe")

    def test_identical_content_is_noop(self, orchestrator, install_dir, recording_launcher):
        backup = install_dir / "old_versions" / "pre_update_20240101_000000_koolo.exe"
        backup.parent.mkdir()
        backup.write_bytes(b"running build")

        assert orchestrator.rollback_to(install_dir, backup) is False
        assert recording_launcher.launched == []
        orchestrator.exit_func.assert_not_called()

    def test_valid_rollback(self, orchestrator, install_dir, recording_launcher, running):
        backup = install_dir / "old_versions" / "pre_update_20240101_000000_old.exe"
        backup.parent.mkdir()
        backup.write_bytes(b"previous build")
        callback = Mock()
        orchestrator.set_pre_restart_callback(callback)

        assert orchestrator.rollback_to(install_dir, backup) is True

        d = recording_launcher.rendered[-1]
        assert d.install_from == str(backup)
        assert d.new_executable == str(install_dir / backup.name)
        assert d.old_executable == str(running)
        assert os.path.basename(d.backup_dest).startswith("pre_rollback_")
        assert d.backup_dest.endswith(".exe")
        assert backup.exists()
        callback.assert_called_once()
        orchestrator.exit_func.assert_called_once_with(0)
