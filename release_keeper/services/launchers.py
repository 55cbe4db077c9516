"""Relaunch helper scripts that swap the executable once this process exits.

The running program cannot replace its own executable, so restart and
rollback hand the swap to a small script that outlives the process:

    1. wait until the old executable can be moved, then move it to the backup directory
    2. wait for the service port to stop listening (bounded) and for the PID to exit
    3. optionally copy the selected backup into place
    4. start the new executable and delete itself

``RelaunchDescriptor`` carries the parameters; a ``LauncherScript`` renders
and starts them for one platform.
"""
import os
import shlex
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional


@dataclass(frozen=True)
class RelaunchDescriptor:
    """Everything a relaunch script needs to know."""
    install_dir: str
    backup_dir: str
    pid: int
    port: int
    old_executable: Optional[str] = None  # running image to move aside
    backup_dest: Optional[str] = None
    new_executable: Optional[str] = None  # started at the end; None only moves
    install_from: Optional[str] = None  # copied to new_executable first (rollback)
    port_wait_seconds: int = 60
    start_delay: int = 0

    @property
    def starts_new(self) -> bool:
        return bool(self.new_executable)

    @property
    def moves_old(self) -> bool:
        return bool(self.old_executable and self.backup_dest)


class LauncherScript(ABC):
    """Platform strategy for rendering and starting relaunch scripts."""

    suffix = ""

    @abstractmethod
    def render(self, descriptor: RelaunchDescriptor) -> str:
        """Return the script text."""

    @abstractmethod
    def command(self, script_path: str) -> List[str]:
        """Command line that runs the script."""

    def popen_kwargs(self) -> dict:
        return {}

    def launch(self, script_path: str) -> subprocess.Popen:
        """Start the script detached from this process."""
        return subprocess.Popen(
            self.command(script_path),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            close_fds=True,
            **self.popen_kwargs(),
        )


class WindowsBatchLauncher(LauncherScript):
    """``cmd.exe`` batch script; ``netstat`` and ``tasklist`` do the waiting."""

    suffix = ".bat"

    def command(self, script_path: str) -> List[str]:
        return ["cmd", "/c", script_path]

    def popen_kwargs(self) -> dict:
        flags = getattr(subprocess, "DETACHED_PROCESS", 0) | getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        return {"creationflags": flags}

    def render(self, d: RelaunchDescriptor) -> str:
        lines = [
            "@echo off",
            "setlocal enabledelayedexpansion",
            f'cd /d "{d.install_dir}"',
            f'if not exist "{d.backup_dir}" mkdir "{d.backup_dir}"',
        ]
        if d.moves_old:
            lines += [
                ":WAIT_LOOP",
                "timeout /t 1 /nobreak >nul",
                f'if exist "{d.old_executable}" (',
                f'    move /y "{d.old_executable}" "{d.backup_dest}" >nul',
                f'    if exist "{d.old_executable}" goto WAIT_LOOP',
                ")",
            ]
        if d.starts_new:
            lines += [
                "set /a PORT_WAIT=0",
                ":WAIT_PORT",
                f'netstat -ano | findstr /R /C:":{d.port} .*LISTENING" >nul',
                "if %ERRORLEVEL%==0 (",
                "    set /a PORT_WAIT+=1",
                f"    if !PORT_WAIT! GEQ {d.port_wait_seconds} goto WAIT_PID",
                "    timeout /t 1 /nobreak >nul",
                "    goto WAIT_PORT",
                ")",
                ":WAIT_PID",
                f'tasklist /FI "PID eq {d.pid}" 2>nul | findstr /R /C:" {d.pid} " >nul',
                "if %ERRORLEVEL%==0 (",
                "    timeout /t 1 /nobreak >nul",
                "    goto WAIT_PID",
                ")",
            ]
            if d.start_delay > 0:
                lines.append(f"timeout /t {d.start_delay} /nobreak >nul")
            if d.install_from:
                lines.append(f'copy /y "{d.install_from}" "{d.new_executable}" >nul')
            new_dir = os.path.dirname(d.new_executable)
            lines.append(f'start "" /D "{new_dir}" "{d.new_executable}"')
        lines.append('del "%~f0"')
        return "\r\n".join(lines) + "\r\n"


class PosixShellLauncher(LauncherScript):
    """bash script; ``/dev/tcp`` probes the port and ``kill -0`` the PID."""

    suffix = ".sh"

    def command(self, script_path: str) -> List[str]:
        return ["bash", script_path]

    def popen_kwargs(self) -> dict:
        return {"start_new_session": True}

    def render(self, d: RelaunchDescriptor) -> str:
        q = shlex.quote
        lines = [
            "#!/usr/bin/env bash",
            f"cd {q(d.install_dir)} || exit 1",
            f"mkdir -p {q(d.backup_dir)}",
        ]
        if d.moves_old:
            lines += [
                f"while [ -e {q(d.old_executable)} ]; do",
                "    sleep 1",
                f"    mv -f {q(d.old_executable)} {q(d.backup_dest)} 2>/dev/null",
                "done",
            ]
        if d.starts_new:
            lines += [
                "port_wait=0",
                f"while (exec 3<>/dev/tcp/127.0.0.1/{d.port}) 2>/dev/null; do",
                "    port_wait=$((port_wait + 1))",
                f"    [ \"$port_wait\" -ge {d.port_wait_seconds} ] && break",
                "    sleep 1",
                "done",
                f"while kill -0 {d.pid} 2>/dev/null; do",
                "    sleep 1",
                "done",
            ]
            if d.start_delay > 0:
                lines.append(f"sleep {d.start_delay}")
            if d.install_from:
                lines.append(f"cp -f {q(d.install_from)} {q(d.new_executable)}")
            lines += [
                f"chmod +x {q(d.new_executable)}",
                f"cd {q(os.path.dirname(d.new_executable))}",
                f"nohup {q(d.new_executable)} >/dev/null 2>&1 &",
            ]
        lines.append('rm -f -- "$0"')
        return "\n".join(lines) + "\n"


def default_launcher() -> LauncherScript:
    """Launcher for the host platform."""
    if os.name == "nt":
        return WindowsBatchLauncher()
    return PosixShellLauncher()


def script_prefix(kind: str) -> str:
    return f"release_keeper_{kind}_"


def script_directories(install_dir: Optional[str]) -> List[Optional[str]]:
    """Where relaunch scripts go: beside the installation when writable."""
    return [install_dir if install_dir and Path(install_dir).is_dir() else None]
