"""
Tests for worker module

Copyright 2025 HyperSec

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from bundle_backup.bundle_store import BundleStore
from bundle_backup.errors import CloneError, PruneError
from bundle_backup.worker import (
    BackupWorker,
    DiffMode,
    backup_dir_for,
    working_dir_for,
)


class TickingClock:
    """Advances one minute per call so every snapshot gets its own name"""

    def __init__(self):
        self.moment = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.moment += timedelta(minutes=1)
        return self.moment


def bundles_for(backup_root, repo):
    return BundleStore(backup_dir_for(backup_root, repo)).bundles()


class TestDiffMode:
    """Tests for compare mode parsing"""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("clone", DiffMode.CLONE),
            ("refs", DiffMode.REFS),
            ("REFS", DiffMode.REFS),
            (" Clone ", DiffMode.CLONE),
            ("", DiffMode.CLONE),
            (None, DiffMode.CLONE),
        ],
    )
    def test_parse(self, value, expected):
        assert DiffMode.parse(value) is expected

    def test_parse_invalid(self):
        with pytest.raises(ValueError) as exc_info:
            DiffMode.parse("fetch")
        assert "clone" in str(exc_info.value)


class TestBackupWorker:
    """Integration tests for backing up local repositories"""

    def test_negative_retain_rejected(self, backup_root):
        with pytest.raises(ValueError):
            BackupWorker(backup_root, retain=-1)

    @pytest.mark.parametrize("mode", [DiffMode.CLONE, DiffMode.REFS])
    def test_cold_start_creates_one_bundle(self, local_git_repo, git_repos, backup_root, mode):
        """Test a repository without backups is always cloned"""
        repo = git_repos.repository(local_git_repo)
        result = BackupWorker(backup_root, diff_mode=mode).backup(repo)

        assert result.ok
        assert result.skipped is False
        bundles = bundles_for(backup_root, repo)
        assert len(bundles) == 1
        assert bundles[0].path.parent == backup_root / "local.test" / "local" / "test-repo"

    def test_scenario_refs_mode_names_bundle_after_repo(self, git_repos, backup_root):
        """Test soba/test in refs mode yields test.<timestamp>.bundle"""
        repo_path = git_repos.create("test")
        repo = git_repos.repository(repo_path, owner="soba")

        result = BackupWorker(backup_root, diff_mode=DiffMode.REFS).backup(repo)

        assert result.ok
        bundles = bundles_for(backup_root, repo)
        assert len(bundles) == 1
        assert bundles[0].name.startswith("test.")
        assert bundles[0].name.endswith(".bundle")
        assert bundles[0].path.parent.parts[-2:] == ("soba", "test")

    def test_refs_mode_skips_unchanged(self, local_git_repo, git_repos, backup_root):
        """Test matching refs skip the clone and leave bundles untouched"""
        repo = git_repos.repository(local_git_repo)
        worker = BackupWorker(backup_root, diff_mode=DiffMode.REFS, retain=2)
        worker.backup(repo)
        before = [b.name for b in bundles_for(backup_root, repo)]

        with patch.object(worker, "clone", wraps=worker.clone) as clone:
            result = worker.backup(repo)

        assert result.ok
        assert result.skipped is True
        clone.assert_not_called()
        assert [b.name for b in bundles_for(backup_root, repo)] == before

    def test_refs_mode_clones_after_change(self, local_git_repo, git_repos, backup_root):
        repo = git_repos.repository(local_git_repo)
        worker = BackupWorker(
            backup_root, diff_mode=DiffMode.REFS, retain=2, clock=TickingClock()
        )
        worker.backup(repo)
        git_repos.commit(local_git_repo, "NEW.md", "new\n")

        result = worker.backup(repo)

        assert result.ok
        assert result.skipped is False
        assert len(bundles_for(backup_root, repo)) == 2

    def test_refs_mode_with_non_utf8_ref(self, git_repos, backup_root):
        """Test a ref name that is not valid UTF-8 still gets a fresh bundle"""
        repo_path = git_repos.create("latin1")
        git_repos.raw_ref(repo_path, b"refs/heads/caf\xe9")
        repo = git_repos.repository(repo_path)
        worker = BackupWorker(
            backup_root, diff_mode=DiffMode.REFS, retain=5, clock=TickingClock()
        )
        assert worker.backup(repo).ok
        git_repos.commit(repo_path, "NEW.md", "new\n")

        result = worker.backup(repo)

        assert result.ok
        assert result.skipped is False
        assert len(bundles_for(backup_root, repo)) == 2
        assert worker.backup(repo).skipped is True

    def test_clone_mode_deduplicates_unchanged(self, local_git_repo, git_repos, backup_root):
        """Test two clone-mode runs without changes leave a single bundle"""
        repo = git_repos.repository(local_git_repo)
        worker = BackupWorker(backup_root, diff_mode=DiffMode.CLONE, retain=0)

        assert worker.backup(repo).ok
        first = [b.name for b in bundles_for(backup_root, repo)]
        assert worker.backup(repo).ok

        assert [b.name for b in bundles_for(backup_root, repo)] == first

    def test_retention_keeps_newest(self, local_git_repo, git_repos, backup_root):
        repo = git_repos.repository(local_git_repo)
        worker = BackupWorker(backup_root, retain=2, clock=TickingClock())

        for i in range(4):
            git_repos.commit(local_git_repo, "README.md", f"revision {i}\n")
            assert worker.backup(repo).ok

        bundles = bundles_for(backup_root, repo)
        assert len(bundles) == 2
        assert [b.created.minute for b in bundles] == [3, 4]

    def test_corrupt_latest_bundle_recovered(self, git_repos, backup_root):
        """Test a corrupt newest bundle is set aside and a fresh bundle replaces it"""
        repo_path = git_repos.create("repo0")
        repo = git_repos.repository(repo_path)
        backup_path = backup_dir_for(backup_root, repo)

        BackupWorker(backup_root, clock=lambda: datetime(2020, 1, 1, tzinfo=timezone.utc)).backup(
            repo
        )
        git_repos.commit(repo_path, "README.md", "changed since the old bundle\n")
        (backup_path / "repo0.20200401111111.bundle").write_bytes(b"")

        result = BackupWorker(backup_root, diff_mode=DiffMode.REFS, retain=1).backup(repo)

        assert result.ok
        assert (backup_path / "repo0.20200401111111.bundle.invalid").exists()
        bundles = BundleStore(backup_path).bundles()
        assert len(bundles) == 1
        assert bundles[0].created > datetime(2020, 4, 1, 11, 11, 11)
        assert BundleStore(backup_path).read_heads(bundles[0])

    def test_empty_repository(self, git_repos, backup_root):
        """Test an empty remote is a successful backup without a bundle"""
        repo = git_repos.repository(git_repos.create_empty())

        result = BackupWorker(backup_root).backup(repo)

        assert result.ok
        assert result.skipped is True
        assert bundles_for(backup_root, repo) == []

    def test_clone_failure(self, git_repos, backup_root):
        repo = git_repos.repository(backup_root / "does-not-exist")

        result = BackupWorker(backup_root).backup(repo)

        assert not result.ok
        assert isinstance(result.error, CloneError)
        assert bundles_for(backup_root, repo) == []

    def test_clone_failure_masks_credentials(self, backup_root):
        from bundle_backup.base import Repository

        repo = Repository(
            name="r",
            owner="o",
            domain="127.0.0.1",
            path_with_namespace="o/r",
            https_url="http://127.0.0.1:9/o/r.git",
            platform="test",
            url_with_token="http://secret-token@127.0.0.1:9/o/r.git",
        )

        result = BackupWorker(backup_root).backup(repo)

        assert not result.ok
        assert "secret-token" not in result.to_dict()["error"]

    def test_working_directory_removed(self, local_git_repo, git_repos, backup_root):
        repo = git_repos.repository(local_git_repo)
        BackupWorker(backup_root).backup(repo)
        assert not working_dir_for(backup_root, repo).exists()

    def test_stale_working_directory_replaced(self, local_git_repo, git_repos, backup_root):
        repo = git_repos.repository(local_git_repo)
        stale = working_dir_for(backup_root, repo)
        stale.mkdir(parents=True)
        (stale / "leftover").write_text("from a crashed run")

        result = BackupWorker(backup_root).backup(repo)

        assert result.ok
        assert len(bundles_for(backup_root, repo)) == 1

    def test_prune_failure_does_not_fail_backup(self, local_git_repo, git_repos, backup_root):
        repo = git_repos.repository(local_git_repo)
        with patch.object(BundleStore, "prune", side_effect=PruneError("disk says no")):
            result = BackupWorker(backup_root, retain=1).backup(repo)

        assert result.ok
        assert len(bundles_for(backup_root, repo)) == 1

    def test_unexpected_error_becomes_failed_result(self, local_git_repo, git_repos, backup_root):
        repo = git_repos.repository(local_git_repo)
        with patch.object(BundleStore, "create_snapshot", side_effect=RuntimeError("boom")):
            result = BackupWorker(backup_root).backup(repo)

        assert not result.ok
        assert isinstance(result.error, RuntimeError)
