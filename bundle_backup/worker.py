"""
Per-repository backup pipeline: clone, snapshot, deduplicate, retain

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

import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .base import RepoBackupResult, Repository, mask_credentials
from .bundle_store import BundleStore, robust_rmtree
from .errors import (
    BackupError,
    CloneError,
    GitTimeoutError,
    HousekeepingError,
    WorkingDirectoryError,
)
from .git import run_git
from .remote_diff import RemoteDiff

WORKING_DIR_NAME = ".working"


class DiffMode(Enum):
    CLONE = "clone"
    REFS = "refs"

    @classmethod
    def parse(cls, value: Optional[str]) -> "DiffMode":
        if value is None or not str(value).strip():
            return cls.CLONE
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"invalid compare mode {value!r}, expected one of: "
                + ", ".join(m.value for m in cls)
            ) from None


def backup_dir_for(backup_root, repo: Repository) -> Path:
    return Path(backup_root) / repo.domain / repo.path_with_namespace


def working_dir_for(backup_root, repo: Repository) -> Path:
    return Path(backup_root) / WORKING_DIR_NAME / repo.domain / repo.path_with_namespace


class BackupWorker:
    def __init__(
        self,
        backup_root,
        diff_mode: DiffMode = DiffMode.CLONE,
        retain: int = 0,
        logger=None,
        git_timeout: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Back up single repositories into <backup_root>/<domain>/<owner>/<repo>
        Args:
            backup_root: Root of the bundle tree
            diff_mode: REFS skips the clone when remote refs match the last bundle
            retain: Bundles to keep per repository (0 keeps all)
            logger: Provider-bound logger from the coordinator
            git_timeout: Seconds allowed for each git invocation
            clock: Time source for bundle names
        """
        if retain < 0:
            raise ValueError(f"retain must be >= 0, got {retain}")
        self.backup_root = Path(backup_root)
        self.diff_mode = diff_mode
        self.retain = retain
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.git_timeout = git_timeout
        self.clock = clock
        self.diff = RemoteDiff(logger=self.logger, git_timeout=git_timeout)

    def backup(self, repo: Repository) -> RepoBackupResult:
        """Run the pipeline for one repository; always returns a result"""
        working_path = working_dir_for(self.backup_root, repo)
        try:
            return self._backup(repo, working_path)
        except BackupError as e:
            self.logger.error(f"[ERROR] Backup failed for {repo}: {mask_credentials(str(e))}")
            return RepoBackupResult.failure(repo, e)
        except Exception as e:
            self.logger.exception(f"[ERROR] Unexpected error backing up {repo}: {e}")
            return RepoBackupResult.failure(repo, e)
        finally:
            robust_rmtree(working_path, self.logger)

    def _backup(self, repo: Repository, working_path: Path) -> RepoBackupResult:
        backup_path = backup_dir_for(self.backup_root, repo)

        if not robust_rmtree(working_path, self.logger):
            raise WorkingDirectoryError(f"failed to clean working directory {working_path}")

        if self.diff_mode is DiffMode.REFS:
            if self.diff.remote_matches_local(repo.clone_url, backup_path):
                self.logger.info(f"[SKIP] {repo} unchanged since last bundle")
                return RepoBackupResult.success(repo, skipped=True)

        self.clone(repo, working_path)

        store = BundleStore(
            backup_path, logger=self.logger, clock=self.clock, git_timeout=self.git_timeout
        )
        bundle = store.create_snapshot(working_path, repo.name)
        if bundle is None:
            return RepoBackupResult.success(repo, skipped=True)

        self.post_process(store)
        return RepoBackupResult.success(repo)

    def clone(self, repo: Repository, working_path: Path) -> None:
        self.logger.info(f"[CLONE] Cloning {repo}...")
        working_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            result = run_git(
                ["clone", "--mirror", repo.clone_url, str(working_path)],
                timeout=self.git_timeout,
                capture_stdout=False,
            )
        except GitTimeoutError as e:
            raise CloneError(f"clone of {repo} timed out: {e}") from e

        if not result.ok:
            raise CloneError(f"clone of {repo} failed: {result.error_text()}")

    def post_process(self, store: BundleStore) -> None:
        """Dedup then prune; housekeeping failures never fail the backup"""
        try:
            store.deduplicate()
        except HousekeepingError as e:
            self.logger.warning(f"[DEDUP] {e}")

        if self.retain > 0:
            try:
                store.prune(self.retain)
            except HousekeepingError as e:
                self.logger.warning(f"[PRUNE] {e}")
