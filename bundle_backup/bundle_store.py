"""
Filesystem-backed store of git bundle snapshots for one repository

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

import hashlib
import logging
import re
import shutil
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional

from .base import GitRefs
from .errors import (
    DedupError,
    DiffComparisonError,
    GitTimeoutError,
    InvalidBundleError,
    PruneError,
    SnapshotError,
)
from .git import INVALID_BUNDLE_SIGNAL, parse_refs, run_git

BUNDLE_EXTENSION = ".bundle"
INVALID_SUFFIX = ".invalid"
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

# <repo-name>.<YYYYMMDDHHMMSS>.bundle; the name itself may contain dots
BUNDLE_NAME_PATTERN = re.compile(r"^(?P<repo>.+)\.(?P<timestamp>\d{14})\.bundle$")

HASH_CHUNK_SIZE = 1024 * 1024


def robust_rmtree(path: Path, logger, max_retries: int = 3) -> bool:
    """
    Robustly remove a directory tree with retries.
    Handles race conditions where files may still be written during removal.

    Args:
        path: Path to remove
        logger: Logger for messages
        max_retries: Maximum number of retry attempts

    Returns:
        True if successfully removed, False otherwise
    """
    if not path.exists():
        return True

    for attempt in range(max_retries):
        try:
            shutil.rmtree(path)
            return True
        except OSError as e:
            if attempt < max_retries - 1:
                time.sleep(0.5 * (attempt + 1))
                logger.debug(
                    f"[CLEANUP] Retry {attempt + 1}/{max_retries} removing {path}: {e}"
                )
            else:
                logger.warning(
                    f"[CLEANUP] Failed to remove {path} after {max_retries} attempts: {e}"
                )
                return False
    return False


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(TIMESTAMP_FORMAT)


def parse_bundle_name(name: str) -> Optional[datetime]:
    """Return the embedded timestamp, or None if name is not a bundle name"""
    match = BUNDLE_NAME_PATTERN.match(name)
    if not match:
        return None
    try:
        return datetime.strptime(match.group("timestamp"), TIMESTAMP_FORMAT)
    except ValueError:
        return None


@dataclass(frozen=True)
class BundleFile:
    path: Path
    created: datetime

    @classmethod
    def from_path(cls, path: Path) -> Optional["BundleFile"]:
        created = parse_bundle_name(path.name)
        if created is None:
            return None
        return cls(path=path, created=created)

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def repo_name(self) -> str:
        return BUNDLE_NAME_PATTERN.match(self.name).group("repo")

    @property
    def size_bytes(self) -> int:
        return self.path.stat().st_size

    def content_hash(self) -> str:
        digest = hashlib.sha256()
        with open(self.path, "rb") as f:
            for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
                digest.update(chunk)
        return digest.hexdigest()


class BundleStore:
    def __init__(
        self,
        backup_path,
        logger=None,
        clock: Optional[Callable[[], datetime]] = None,
        git_timeout: Optional[float] = None,
    ):
        """
        Manage the bundle files of a single repository
        Args:
            backup_path: Directory holding <repo>.<timestamp>.bundle files
            logger: Logger threaded through from the worker
            clock: Returns the current time (UTC by default)
            git_timeout: Seconds allowed for each git invocation
        """
        self.backup_path = Path(backup_path)
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.git_timeout = git_timeout

    def bundles(self) -> List[BundleFile]:
        """All bundle files, oldest first by embedded timestamp"""
        if not self.backup_path.is_dir():
            return []

        found = []
        for entry in self.backup_path.iterdir():
            if not entry.is_file():
                continue
            bundle = BundleFile.from_path(entry)
            if bundle is None:
                if entry.name.endswith(BUNDLE_EXTENSION):
                    self.logger.debug(
                        f"[BUNDLE] Ignoring file with invalid bundle name: {entry.name}"
                    )
                continue
            found.append(bundle)

        return sorted(found, key=lambda b: (b.created, b.name))

    def latest_bundle(self) -> Optional[BundleFile]:
        bundles = self.bundles()
        return bundles[-1] if bundles else None

    def read_heads(self, bundle: BundleFile) -> GitRefs:
        try:
            result = run_git(
                ["bundle", "list-heads", str(bundle.path)], timeout=self.git_timeout
            )
        except GitTimeoutError as e:
            raise DiffComparisonError(str(e)) from e

        if not result.ok:
            output = result.stderr + result.stdout
            if INVALID_BUNDLE_SIGNAL in output:
                raise InvalidBundleError(bundle.path, result.error_text())
            raise DiffComparisonError(
                f"failed to list heads of {bundle.name}: {result.error_text()}"
            )

        return parse_refs(result.stdout)

    def mark_invalid(self, bundle: BundleFile) -> Path:
        """Rename a corrupt bundle out of the way; it is never deleted"""
        target = bundle.path.with_name(bundle.name + INVALID_SUFFIX)
        self.logger.warning(f"[INVALID] Renaming invalid bundle to {target.name}")
        bundle.path.rename(target)
        return target

    def is_empty_clone(self, working_clone_path: Path) -> bool:
        """True when the mirror has neither loose nor packed objects"""
        try:
            result = run_git(
                ["count-objects", "-v"], cwd=working_clone_path, timeout=self.git_timeout
            )
        except GitTimeoutError as e:
            raise SnapshotError(str(e)) from e

        if not result.ok:
            raise SnapshotError(
                f"failed to count objects in {working_clone_path}: {result.error_text()}"
            )

        counts = {}
        for line in result.stdout.splitlines():
            fields = line.split()
            if len(fields) >= 2 and fields[0] in ("count:", "in-pack:"):
                counts[fields[0]] = fields[1]

        if len(counts) != 2:
            raise SnapshotError(f"failed to get object counts from {working_clone_path}")

        return counts["count:"] == "0" and counts["in-pack:"] == "0"

    def _next_bundle_path(self, repo_name: str) -> Path:
        # Names stay unique and strictly newer than the latest bundle, even
        # when that bundle is dated ahead of the clock
        moment = self.clock().replace(tzinfo=None, microsecond=0)
        latest = self.latest_bundle()
        if latest is not None and moment <= latest.created:
            moment = latest.created + timedelta(seconds=1)

        candidate = self.backup_path / (
            f"{repo_name}.{format_timestamp(moment)}{BUNDLE_EXTENSION}"
        )
        while candidate.exists():
            moment += timedelta(seconds=1)
            candidate = self.backup_path / (
                f"{repo_name}.{format_timestamp(moment)}{BUNDLE_EXTENSION}"
            )
        return candidate

    def create_snapshot(
        self, working_clone_path, repo_name: Optional[str] = None
    ) -> Optional[BundleFile]:
        """
        Write a new bundle of the mirror clone at working_clone_path.

        Returns:
            The new BundleFile, or None when the repository has no objects
        """
        working_clone_path = Path(working_clone_path)
        repo_name = repo_name or self.backup_path.name

        if self.is_empty_clone(working_clone_path):
            self.logger.info(f"[SKIP] {repo_name} is empty, not creating bundle")
            return None

        try:
            self.backup_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SnapshotError(f"failed to create backup path {self.backup_path}: {e}") from e

        bundle_path = self._next_bundle_path(repo_name)
        tmp_path = bundle_path.with_name(bundle_path.name + ".tmp")

        self.logger.info(f"[BUNDLE] Creating bundle for {repo_name}...")
        started = time.monotonic()
        try:
            result = run_git(
                ["bundle", "create", str(tmp_path), "--all"],
                cwd=working_clone_path,
                timeout=self.git_timeout,
                capture_stdout=False,
            )
        except GitTimeoutError as e:
            tmp_path.unlink(missing_ok=True)
            raise SnapshotError(str(e)) from e

        if not result.ok:
            tmp_path.unlink(missing_ok=True)
            raise SnapshotError(
                f"failed to create bundle for {repo_name}: {result.error_text()}"
            )

        try:
            tmp_path.rename(bundle_path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise SnapshotError(f"failed to move bundle into place: {e}") from e

        bundle = BundleFile.from_path(bundle_path)
        self.logger.info(
            f"[BUNDLE] Created {bundle.name} ({bundle.size_bytes / 1024 / 1024:.2f} MB) "
            f"in {time.monotonic() - started:.1f}s"
        )
        return bundle

    def deduplicate(self) -> Optional[BundleFile]:
        """
        Delete the newest bundle if it is identical to the one before it.

        Returns:
            The removed bundle, or None if nothing was removed
        """
        bundles = self.bundles()
        if len(bundles) < 2:
            return None

        previous, latest = bundles[-2], bundles[-1]
        try:
            if latest.size_bytes != previous.size_bytes:
                return None
            if latest.content_hash() != previous.content_hash():
                return None

            self.logger.info(f"[DEDUP] No change since previous bundle: {previous.name}")
            self.logger.info(f"[DEDUP] Deleting duplicate bundle: {latest.name}")
            latest.path.unlink()
        except OSError as e:
            raise DedupError(f"failed to deduplicate {self.backup_path}: {e}") from e

        return latest

    def prune(self, retain: int) -> List[BundleFile]:
        """
        Keep only the `retain` newest bundles; 0 keeps everything.

        Returns:
            The removed bundles, oldest first
        """
        if retain < 0:
            raise ValueError(f"retain must be >= 0, got {retain}")
        if retain == 0:
            return []

        bundles = self.bundles()
        to_delete = bundles[: max(len(bundles) - retain, 0)]
        if not to_delete:
            return []

        self.logger.info(f"[PRUNE] Pruning {self.backup_path} to keep {retain} newest only")
        for bundle in to_delete:
            try:
                bundle.path.unlink()
            except OSError as e:
                raise PruneError(f"failed to remove {bundle.name}: {e}") from e
            self.logger.debug(f"[PRUNE] Removed {bundle.name}")

        return to_delete

    def list_backups(self) -> List[dict]:
        """Bundle summaries, newest first"""
        return [
            {
                "path": str(bundle.path),
                "size_mb": bundle.size_bytes / 1024 / 1024,
                "created": bundle.created.isoformat(),
            }
            for bundle in reversed(self.bundles())
        ]
