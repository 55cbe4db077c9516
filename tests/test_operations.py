"""Tests for GitOperations"""
from datetime import datetime

import pytest

from release_keeper.exceptions import GitOperationError
from release_keeper.services.git.operations import (
    GitOperations,
    check_git_installed,
    parse_git_date,
    parse_log_lines,
)


@pytest.fixture
def ops(local_repo, config):
    return GitOperations(local_repo.working_dir, config)


class TestHelpers:
    """Test module-level parsing helpers."""

    def test_git_installed(self):
        assert check_git_installed().startswith("git version")

    def test_parse_git_date(self):
        parsed = parse_git_date("2024-05-01 10:00:00 +0200")
        assert isinstance(parsed, datetime)
        assert parsed.utcoffset().total_seconds() == 7200
        assert parse_git_date("yesterday") is None

    def test_parse_log_lines_skips_malformed(self):
        output = (
            "0123456789abcdef|2024-05-01 10:00:00 +0000|Fix a|b\n"
            "\n"
            "garbage line\n"
        )
        commits = parse_log_lines(output)
        assert len(commits) == 1
        assert commits[0].hash == "0123456"
        assert commits[0].message == "Fix a|b"


class TestRunAndQuery:
    """Test command execution helpers."""

    def test_run_does_not_raise(self, ops):
        status, output = ops.run("rev-parse", "--verify", "no-such-ref")
        assert status != 0
        assert output

    def test_query_raises(self, ops):
        with pytest.raises(GitOperationError) as exc_info:
            ops.query("checkout", "no-such-branch")
        assert exc_info.value.operation == "checkout"

    def test_rev_parse(self, ops, local_repo):
        assert ops.rev_parse("HEAD") == local_repo.head.commit.hexsha
        assert ops.rev_parse("no-such-ref") is None

    def test_commit_exists(self, ops, local_repo):
        assert ops.commit_exists(local_repo.head.commit.hexsha)
        assert not ops.commit_exists("0" * 40)

    def test_current_branch(self, ops, local_repo):
        assert ops.current_branch() == "main"
        local_repo.git.checkout("--detach")
        assert ops.current_branch() == "HEAD"


class TestUpstreamRemote:
    """Test adding and repairing the upstream remote."""

    def test_adds_missing_remote(self, ops, local_repo, upstream_repo):
        ops.ensure_upstream_remote()
        assert local_repo.remote("upstream").url == upstream_repo.working_dir

    def test_repoints_wrong_url(self, ops, local_repo, upstream_repo, temp_dir):
        local_repo.create_remote("upstream", str(temp_dir / "elsewhere"))
        ops.ensure_upstream_remote()
        assert local_repo.remote("upstream").url == upstream_repo.working_dir

    def test_fetch_makes_upstream_ref(self, ops):
        ops.ensure_upstream_remote()
        ops.fetch("main")
        assert ops.rev_parse("upstream/main") is not None

    def test_fetch_failure(self, ops):
        ops.ensure_upstream_remote()
        with pytest.raises(GitOperationError):
            ops.fetch("no-such-branch")


class TestWorkingTree:
    """Test dirty detection, stashing and conflict detection."""

    def test_clean_tree(self, ops):
        assert ops.is_dirty() is False
        assert ops.stash("label") is False

    def test_untracked_files_count_as_dirty(self, ops, local_repo):
        with open(f"{local_repo.working_dir}/new.txt", "w") as f:
            f.write("untracked\n")
        assert ops.is_dirty() is True

    def test_stash_and_pop(self, ops, local_repo):
        path = f"{local_repo.working_dir}/app.txt"
        with open(path, "w") as f:
            f.write("changed\n")

        assert ops.stash("release-keeper") is True
        assert ops.is_dirty() is False

        ok, _ = ops.pop_stash()
        assert ok
        with open(path) as f:
            assert f.read() == "changed\n"

    def test_conflict_marker(self, ops):
        assert ops.is_conflict("CONFLICT (content): Merge conflict in app.txt")
        assert not ops.is_conflict("fatal: something else")

    def test_log_newest_first(self, ops, local_repo, commit_file):
        commit_file(local_repo, "a.txt", "a", "First local")
        commit_file(local_repo, "b.txt", "b", "Second local")

        commits = ops.log("HEAD", 2)

        assert [c.message for c in commits] == ["Second local", "First local"]
        assert commits[0].hash == local_repo.head.commit.hexsha[:7]
