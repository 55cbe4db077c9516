"""Tests for relaunch script rendering"""
import os
import shutil
import subprocess

import pytest

from release_keeper.services.launchers import (
    PosixShellLauncher,
    RelaunchDescriptor,
    WindowsBatchLauncher,
    default_launcher,
    script_directories,
    script_prefix,
)
from release_keeper.utils.files import write_script


def descriptor(**overrides):
    values = dict(
        install_dir="/opt/koolo bin",
        backup_dir="/opt/koolo bin/old_versions",
        pid=4242,
        port=8087,
        old_executable="/opt/koolo bin/koolo.exe",
        backup_dest="/opt/koolo bin/old_versions/pre_update_20240501_100000_koolo.exe",
        new_executable="/opt/koolo bin/new.exe",
        port_wait_seconds=60,
    )
    values.update(overrides)
    return RelaunchDescriptor(**values)


class TestDescriptor:

    def test_flags(self):
        assert descriptor().starts_new and descriptor().moves_old
        assert not descriptor(new_executable=None).starts_new
        assert not descriptor(backup_dest=None).moves_old


class TestWindowsBatch:
    """Test the cmd.exe script."""

    def test_crlf_and_self_delete(self):
        script = WindowsBatchLauncher().render(descriptor())
        assert "\r\n" in script
        assert script.rstrip().endswith('del "%~f0"')

    def test_waits_then_starts(self):
        script = WindowsBatchLauncher().render(descriptor())
        assert 'move /y "/opt/koolo bin/koolo.exe"' in script
        assert ':{0} .*LISTENING'.format(8087) in script
        assert "GEQ 60 goto WAIT_PID" in script
        assert 'PID eq 4242' in script
        assert 'start "" /D "/opt/koolo bin" "/opt/koolo bin/new.exe"' in script
        assert script.index(":WAIT_PORT") < script.index(":WAIT_PID") < script.index("start ")

    def test_rollback_copies_before_start(self):
        script = WindowsBatchLauncher().render(descriptor(install_from="/opt/koolo bin/old_versions/a.exe"))
        assert script.index("copy /y") < script.index("start ")

    def test_move_only(self):
        script = WindowsBatchLauncher().render(descriptor(new_executable=None))
        assert "WAIT_LOOP" in script
        assert "start " not in script
        assert "WAIT_PORT" not in script

    def test_detached_command(self):
        launcher = WindowsBatchLauncher()
        assert launcher.command("x.bat") == ["cmd", "/c", "x.bat"]
        assert "creationflags" in launcher.popen_kwargs()


class TestPosixShell:
    """Test the bash script."""

    def test_quotes_paths(self):
        script = PosixShellLauncher().render(descriptor())
        assert script.startswith("#!/usr/bin/env bash\n")
        assert "mv -f '/opt/koolo bin/koolo.exe'" in script
        assert "nohup '/opt/koolo bin/new.exe'" in script

    def test_port_wait_is_bounded(self):
        script = PosixShellLauncher().render(descriptor(port_wait_seconds=5))
        assert "/dev/tcp/127.0.0.1/8087" in script
        assert '-ge 5 ] && break' in script
        assert script.index("/dev/tcp") < script.index("kill -0 4242")

    def test_start_delay(self):
        assert "sleep 3" in PosixShellLauncher().render(descriptor(start_delay=3))

    @pytest.mark.skipif(os.name == "nt" or shutil.which("bash") is None, reason="requires bash")
    def test_move_only_script_runs(self, temp_dir):
        """The move-only script moves the old executable and removes itself."""
        old = temp_dir / "koolo.exe"
        old.write_bytes(b"old build")
        backup_dir = temp_dir / "old_versions"
        dest = backup_dir / "pre_build_20240501_100000_koolo.exe"
        d = RelaunchDescriptor(
            install_dir=str(temp_dir),
            backup_dir=str(backup_dir),
            pid=os.getpid(),
            port=8087,
            old_executable=str(old),
            backup_dest=str(dest),
        )
        launcher = PosixShellLauncher()
        script = write_script([str(temp_dir)], script_prefix("move"), launcher.suffix, launcher.render(d))

        subprocess.run(launcher.command(str(script)), check=True, timeout=30)

        assert not old.exists()
        assert dest.read_bytes() == b"old build"
        assert not script.exists()


class TestHelpers:

    def test_default_launcher(self):
        expected = WindowsBatchLauncher if os.name == "nt" else PosixShellLauncher
        assert isinstance(default_launcher(), expected)

    def test_script_directories(self, temp_dir):
        assert script_directories(str(temp_dir)) == [str(temp_dir)]
        assert script_directories(str(temp_dir / "missing")) == [None]
        assert script_prefix("restart") == "release_keeper_restart_"
