"""Tests for locating and provisioning the source tree"""
import os

import pytest

from release_keeper.config import Config
from release_keeper.exceptions import GitOperationError, NotInstalledError
from release_keeper.services.repository_service import (
    RepositoryLocator,
    ensure_clone_dir_available,
    find_git_root,
    resolve_install_dir,
)


class TestHelpers:
    """Test path helpers."""

    def test_find_git_root_from_subdirectory(self, local_repo):
        nested = os.path.join(local_repo.working_dir, "deep", "er")
        os.makedirs(nested)
        assert find_git_root(nested) == os.path.realpath(local_repo.working_dir)

    def test_install_dir_defaults_to_cwd(self, temp_dir, monkeypatch):
        monkeypatch.chdir(temp_dir)
        assert os.path.realpath(resolve_install_dir()) == os.path.realpath(temp_dir)

    def test_install_dir_from_executable(self, temp_dir):
        exe = temp_dir / "bin" / "koolo.exe"
        assert resolve_install_dir(str(exe)) == str(temp_dir / "bin")

    def test_clone_dir_must_be_empty(self, temp_dir):
        ensure_clone_dir_available(temp_dir / "absent")
        (temp_dir / "occupied").mkdir()
        (temp_dir / "occupied" / "file").write_text("x")
        with pytest.raises(NotInstalledError):
            ensure_clone_dir_available(temp_dir / "occupied")

    def test_clone_dir_cannot_be_file(self, temp_dir):
        (temp_dir / "file").write_text("x")
        with pytest.raises(NotInstalledError):
            ensure_clone_dir_available(temp_dir / "file")


class TestRepositoryLocator:
    """Test the lookup order: enclosing checkout, managed clone, fresh clone."""

    @pytest.fixture
    def work_dir(self, temp_dir):
        path = temp_dir / "work"
        path.mkdir()
        return path

    def test_prefers_enclosing_checkout(self, locator, local_repo):
        ctx = locator.find_existing()
        assert ctx.repo_dir == os.path.realpath(local_repo.working_dir)

    def test_nothing_found_without_side_effects(self, config, work_dir):
        locator = RepositoryLocator(config, work_dir=str(work_dir))
        assert locator.find_existing() is None
        assert list(work_dir.iterdir()) == []

    def test_resolve_clones_once(self, config, work_dir, upstream_repo):
        locator = RepositoryLocator(config, work_dir=str(work_dir), install_dir=str(work_dir))

        ctx = locator.resolve()

        assert ctx.repo_dir == str(work_dir / ".keeper-src")
        assert (work_dir / ".keeper-src" / "app.txt").exists()
        assert ctx.install_dir == str(work_dir)

        again = locator.resolve()
        assert again.repo_dir == ctx.repo_dir

    def test_resolve_refuses_occupied_directory(self, config, work_dir):
        occupied = work_dir / ".keeper-src"
        occupied.mkdir()
        (occupied / "stray.txt").write_text("x")

        locator = RepositoryLocator(config, work_dir=str(work_dir))
        with pytest.raises(NotInstalledError):
            locator.resolve()
        assert (occupied / "stray.txt").exists()

    def test_failed_clone_leaves_nothing(self, work_dir, temp_dir):
        config = Config(clone_url=str(temp_dir / "missing-repo"), upstream_url=str(temp_dir / "missing-repo"))
        locator = RepositoryLocator(config, work_dir=str(work_dir))

        with pytest.raises(GitOperationError):
            locator.resolve()
        assert not (work_dir / ".keeper-src").exists()
