"""Build pipeline: compile an obfuscated executable and stage its runtime assets"""
import os
import shutil
import subprocess
import uuid
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, Union

from release_keeper.exceptions import BuildError, MissingFileError, ToolNotFoundError
from release_keeper.logging_config import get_logger
from release_keeper.models.repository import RepositoryContext
from release_keeper.utils.files import copy_missing

if TYPE_CHECKING:
    from release_keeper.config import AssetRule, Config
    from release_keeper.services.version_service import VersionResolver

logger = get_logger(__name__)

LogCallback = Callable[[str], None]

OBFUSCATOR_INSTALL_HINT = "Please install with: go install mvdan.cc/garble@v0.14.2"


def run_tool(cmd: Sequence[str], cwd: Optional[str] = None,
             env: Optional[Dict[str, str]] = None) -> Optional[subprocess.CompletedProcess]:
    """Run a command and capture its output; None if the program does not exist."""
    try:
        return subprocess.run(list(cmd), cwd=cwd, env=env, capture_output=True, text=True, check=False)
    except FileNotFoundError:
        return None


def _combined(proc: subprocess.CompletedProcess) -> str:
    return "\n".join(part for part in (proc.stdout, proc.stderr) if part).strip()


class BuildPipeline:
    """Builds the service executable from the resolved source tree.

    The executable lands in the install directory as ``<build id><suffix>``
    so a restart can pick it up directly. Compiler caches and temp files go
    to ``<repo>/build/tmp``, which is removed after every build.
    """

    def __init__(self, config: Union["Config", dict], resolver: "VersionResolver",
                 log: Optional[LogCallback] = None):
        self.config = config
        self.resolver = resolver
        self.compiler = config.get("compiler", "go")
        self.obfuscator = config.get("obfuscator", "garble")
        self._log = log

    def log(self, message: str) -> None:
        if self._log:
            self._log(message)
        else:
            logger.info(message)

    def _tool_version(self, tool: str, hint: Optional[str] = None) -> str:
        self.log(f"Checking {tool} installation...")
        proc = run_tool([tool, "version"])
        if proc is None or proc.returncode != 0:
            if proc is not None:
                logger.debug(f"{tool} version failed: {_combined(proc)}")
            raise ToolNotFoundError(tool, hint)
        version = _combined(proc)
        self.log(f"{tool} version: {version}")
        return version

    def check_tools(self) -> None:
        """Verify the compiler and obfuscator run; logs their versions.

        Raises:
            ToolNotFoundError: If either is missing
        """
        self._tool_version(self.compiler)
        self._tool_version(self.obfuscator, OBFUSCATOR_INSTALL_HINT)

    @staticmethod
    def scratch_dir(ctx: RepositoryContext) -> Path:
        return Path(ctx.repo_dir) / "build" / "tmp"

    def build_env(self, scratch: Path) -> Dict[str, str]:
        """Environment for the compiler; the parent process environment is not touched."""
        env = dict(os.environ)
        env["GOGARBLE"] = self.config.get("obfuscation_scope", "")
        env["GOCACHE"] = str(scratch / "gocache")
        env["GOTMPDIR"] = str(scratch)
        return env

    def ldflags(self, build_id: str, build_time: str, repo_dir: str) -> str:
        flags = ["-s", "-w"]
        if self.config.get("windowed", True):
            flags += ["-H", "windowsgui"]
        flags += [f"-X 'main.buildID={build_id}'", f"-X 'main.buildTime={build_time}'"]
        extra = self.config.get("extra_ldflags", "")
        if extra:
            flags.append(extra)
        commit = self.resolver.build_commit_info(repo_dir)
        return " ".join(flags) + commit.ldflags(self.config.get("version_variable_prefix", ""))

    def build_command(self, output: str, ldflags: str) -> List[str]:
        cmd = [self.obfuscator, "-literals=false", "-seed=random", "build", "-a", "-trimpath"]
        tags = self.config.get("build_tags", "")
        if tags:
            cmd += ["-tags", tags]
        cmd += ["--ldflags", ldflags, "-o", output, self.config.get("build_package", ".")]
        return cmd

    def build(self, ctx: RepositoryContext) -> str:
        """Compile a new executable into the install directory and stage assets.

        Returns:
            Absolute path of the new executable

        Raises:
            ToolNotFoundError: If the compiler or obfuscator is missing
            BuildError: If compilation fails or produces no executable
            MissingFileError: If a required asset is missing from the source tree
        """
        self.check_tools()

        install_dir = Path(ctx.install_dir)
        install_dir.mkdir(parents=True, exist_ok=True)

        build_id = str(uuid.uuid4())
        build_time = datetime.now().astimezone().isoformat(timespec="seconds")
        output = install_dir / f"{build_id}{self.config.get('executable_suffix', '.exe')}"

        self.log("Starting build...")
        self.log(f"Build ID: {build_id}")

        scratch = self.scratch_dir(ctx)
        scratch.mkdir(parents=True, exist_ok=True)
        self.log(f"Using build folder: {scratch}")
        try:
            cmd = self.build_command(str(output), self.ldflags(build_id, build_time, ctx.repo_dir))
            logger.debug(f"Build command: {' '.join(cmd)}")
            proc = run_tool(cmd, cwd=ctx.repo_dir, env=self.build_env(scratch))
            if proc is None:
                raise ToolNotFoundError(self.obfuscator, OBFUSCATOR_INSTALL_HINT)
            if proc.returncode != 0:
                self.log(f"Build failed: {_combined(proc)}")
                raise BuildError(f"{self.obfuscator} build failed (exit {proc.returncode})", _combined(proc))
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        if not output.is_file():
            raise BuildError(f"executable was not created at {output}")
        self.log(f"Build successful: {output.name}")

        self.log("Copying configuration files...")
        self.stage_assets(ctx)
        self.log("Build process completed successfully!")
        return str(output.resolve())

    def _asset_destination(self, ctx: RepositoryContext, rule: "AssetRule") -> Path:
        root = Path(ctx.install_dir)
        if rule.to_parent and root.parent != root:
            root = root.parent
        return root / rule.target

    def stage_assets(self, ctx: RepositoryContext) -> List[Path]:
        """Copy runtime assets next to the executable without overwriting anything.

        Returns:
            Files that were created

        Raises:
            MissingFileError: If a required asset source does not exist
            BuildError: If a required asset cannot be copied
        """
        created: List[Path] = []
        for rule in self.config.get("assets", []):
            source = Path(ctx.repo_dir) / rule.source
            dest = self._asset_destination(ctx, rule)
            if not source.exists():
                if rule.optional:
                    self.log(f"Warning: {rule.source} not found, skipping")
                    continue
                raise MissingFileError(str(source), "asset")

            self.log(f"Copying {rule.source} -> {dest}")
            try:
                created += copy_missing(source, dest)
            except OSError as e:
                if rule.optional:
                    self.log(f"Warning: failed to copy {rule.source}: {e}")
                    continue
                raise BuildError(f"failed to copy {rule.source}: {e}") from e
        logger.debug(f"Staged {len(created)} new asset file(s)")
        return created
