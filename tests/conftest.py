"""Pytest fixtures for release-keeper tests"""
import tempfile
from pathlib import Path
from typing import List
from unittest.mock import Mock

import git
import pytest

from release_keeper.config import Config
from release_keeper.models import PRCommit, RepositoryContext
from release_keeper.services.git.github import GitHubService
from release_keeper.services.launchers import LauncherScript, PosixShellLauncher
from release_keeper.services.repository_service import RepositoryLocator
from release_keeper.services.version_service import VersionResolver


def _configure_user(repo: git.Repo) -> None:
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()


def write_and_commit(repo: git.Repo, name: str, content: str, message: str) -> str:
    """Write a file, commit it and return the new commit's SHA."""
    path = Path(repo.working_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    repo.index.add([name])
    return repo.index.commit(message).hexsha


class RecordingLauncher(LauncherScript):
    """Renders like the POSIX launcher but records launches instead of running them."""

    suffix = ".sh"

    def __init__(self):
        self.rendered = []
        self.launched: List[str] = []

    def render(self, descriptor):
        self.rendered.append(descriptor)
        return PosixShellLauncher().render(descriptor)

    def command(self, script_path):
        return ["bash", script_path]

    def launch(self, script_path):
        self.launched.append(script_path)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def commit_file():
    return write_and_commit


@pytest.fixture
def upstream_repo(temp_dir):
    """A real repository standing in for the upstream project."""
    repo_path = temp_dir / "upstream"
    repo_path.mkdir()
    repo = git.Repo.init(repo_path)
    _configure_user(repo)

    write_and_commit(repo, "README.md", "# Upstream\n", "Initial commit")
    write_and_commit(repo, "app.txt", "line one\nline two\n", "Add app")

    try:
        repo.git.branch("-M", "main")
    except git.exc.GitCommandError:
        pass

    yield repo
    repo.close()


@pytest.fixture
def local_repo(upstream_repo, temp_dir):
    """A clone of the upstream repository, as the installation's source tree."""
    repo = git.Repo.clone_from(upstream_repo.working_dir, temp_dir / "local")
    _configure_user(repo)
    yield repo
    repo.close()


@pytest.fixture
def install_dir(temp_dir):
    path = temp_dir / "install" / "bin"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def config(upstream_repo):
    return Config(
        clone_url=upstream_repo.working_dir,
        upstream_url=upstream_repo.working_dir,
        github_token=None,
        restart_delay=0,
        assets=[],
    )


@pytest.fixture
def ctx(local_repo, install_dir):
    return RepositoryContext(
        repo_dir=local_repo.working_dir,
        install_dir=str(install_dir),
        work_dir=local_repo.working_dir,
    )


@pytest.fixture
def locator(config, local_repo, install_dir):
    return RepositoryLocator(config, work_dir=local_repo.working_dir, install_dir=str(install_dir))


@pytest.fixture
def resolver(config, locator):
    """Version resolver for a source run (no embedded build identity)."""
    return VersionResolver(config, locator, embedded_hash="", embedded_time="")


@pytest.fixture
def mock_github_service():
    """GitHubService double whose PR commit lists are set per test."""
    service = Mock(spec=GitHubService)
    commits_by_pr = {}
    service.commits_by_pr = commits_by_pr
    service.get_pr_commits.side_effect = lambda number: commits_by_pr.get(number, [])
    return service


@pytest.fixture
def publish_pr(upstream_repo, mock_github_service):
    """Expose upstream commits as ``refs/pull/<n>/head`` and register them with the API double."""

    def publish(number: int, shas: List[str], messages: List[str] = None) -> None:
        upstream_repo.git.update_ref(f"refs/pull/{number}/head", shas[-1])
        messages = messages or [f"commit {i}" for i in range(len(shas))]
        mock_github_service.commits_by_pr[number] = [
            PRCommit(sha=sha, message=message) for sha, message in zip(shas, messages)
        ]

    return publish


@pytest.fixture
def recording_launcher():
    return RecordingLauncher()
