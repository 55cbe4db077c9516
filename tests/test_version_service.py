"""Tests for resolving the running build's identity"""
from datetime import timezone

import git

from release_keeper.services.repository_service import RepositoryLocator
from release_keeper.services.version_service import BuildCommitInfo, VersionResolver, parse_iso_time

EMBEDDED = "0123456789abcdef0123456789abcdef01234567"


class TestParseIsoTime:

    def test_zulu_suffix(self):
        parsed = parse_iso_time("2024-05-01T10:00:00Z")
        assert parsed.tzinfo is not None
        assert parsed.utcoffset() == timezone.utc.utcoffset(None)

    def test_invalid_and_empty(self):
        assert parse_iso_time("") is None
        assert parse_iso_time("not a time") is None


class TestEmbeddedVersion:
    """Build identity baked in at build time takes precedence."""

    def test_embedded_wins_without_touching_git(self, config, temp_dir):
        locator = RepositoryLocator(config, work_dir=str(temp_dir / "nowhere"))
        resolver = VersionResolver(config, locator, embedded_hash=EMBEDDED, embedded_time="2024-05-01T10:00:00Z")

        version = resolver.current_version()

        assert version.embedded is True
        assert version.commit_hash == "0123456"
        assert version.full_hash == EMBEDDED
        assert version.branch == "unknown"
        assert version.commit_date.year == 2024
        assert not (temp_dir / "nowhere").exists()

    def test_source_run_has_no_embedded_identity(self, resolver):
        assert resolver.embedded_version() is None


class TestRepositoryVersion:
    """Identity read from the local repository."""

    def test_reads_head(self, resolver, local_repo):
        version = resolver.current_version()

        assert version.embedded is False
        assert version.full_hash == local_repo.head.commit.hexsha
        assert version.commit_hash == local_repo.head.commit.hexsha[:7]
        assert version.commit_msg == "Add app"
        assert version.branch == "main"
        assert version.commit_date is not None

    def test_subject_with_separator(self, resolver, local_repo, commit_file):
        commit_file(local_repo, "x.txt", "x", "Fix a|b parsing")
        version = resolver.repository_version(local_repo.working_dir)
        assert version.commit_msg == "Fix a|b parsing"

    def test_no_clone_returns_none_without_source(self, config, temp_dir):
        work = temp_dir / "empty-work"
        work.mkdir()
        resolver = VersionResolver(config, RepositoryLocator(config, work_dir=str(work)),
                                   embedded_hash="", embedded_time="")

        assert resolver.current_version_no_clone() is None
        assert list(work.iterdir()) == []

    def test_repository_without_commits(self, resolver, temp_dir):
        empty = temp_dir / "empty-repo"
        git.Repo.init(empty).close()
        assert resolver.repository_version(str(empty)) is None


class TestBuildCommitInfo:
    """Commit identity handed to the compiler."""

    def test_reads_head(self, resolver, local_repo):
        info = resolver.build_commit_info(local_repo.working_dir)
        assert info.hash == local_repo.head.commit.hexsha
        assert "T" in info.time

    def test_ldflags(self):
        info = BuildCommitInfo(hash="abc", time="2024-05-01T10:00:00Z")
        flags = info.ldflags("example.com/app/updater")
        assert "-X 'example.com/app/updater.buildCommitHash=abc'" in flags
        assert "-X 'example.com/app/updater.buildCommitTime=2024-05-01T10:00:00Z'" in flags

    def test_ldflags_empty_without_hash(self):
        assert BuildCommitInfo().ldflags("x") == ""

    def test_empty_repository(self, resolver, temp_dir):
        empty = temp_dir / "empty-repo"
        git.Repo.init(empty).close()
        assert resolver.build_commit_info(str(empty)) == BuildCommitInfo()
