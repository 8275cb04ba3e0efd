"""
Detect whether a remote repository changed since its last bundle

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
from pathlib import Path
from typing import Optional

from .base import GitRefs, mask_credentials
from .bundle_store import BundleStore
from .errors import DiffComparisonError, GitTimeoutError, InvalidBundleError
from .git import parse_refs, run_git


class RemoteDiff:
    """
    Compares the refs advertised by a remote with the heads recorded in the
    newest local bundle. Any doubt resolves to "no match" so that the caller
    falls back to a full clone.
    """

    def __init__(self, logger=None, git_timeout: Optional[float] = None):
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.git_timeout = git_timeout

    def local_refs(self, backup_path) -> Optional[GitRefs]:
        """
        Heads of the newest readable bundle under backup_path.

        Invalid bundles are renamed out of the way and the next newest is
        tried. Returns None when no usable bundle remains.
        """
        store = BundleStore(backup_path, logger=self.logger, git_timeout=self.git_timeout)
        while True:
            bundle = store.latest_bundle()
            if bundle is None:
                return None
            try:
                return store.read_heads(bundle)
            except InvalidBundleError:
                store.mark_invalid(bundle)

    def remote_refs(self, clone_url: str) -> GitRefs:
        try:
            result = run_git(["ls-remote", clone_url], timeout=self.git_timeout)
        except GitTimeoutError as e:
            raise DiffComparisonError(str(e)) from e

        if not result.ok:
            raise DiffComparisonError(
                f"failed to list remote refs of {mask_credentials(clone_url)}: "
                f"{result.error_text()}"
            )
        return parse_refs(result.stdout)

    def remote_matches_local(self, clone_url: str, backup_path) -> bool:
        backup_path = Path(backup_path)
        if not backup_path.is_dir():
            self.logger.debug(f"[DIFF] No backup directory at {backup_path}")
            return False

        try:
            local = self.local_refs(backup_path)
            if local is None:
                self.logger.debug(f"[DIFF] No usable bundle in {backup_path}")
                return False
            remote = self.remote_refs(clone_url)
        except (DiffComparisonError, OSError, ValueError) as e:
            self.logger.warning(
                f"[DIFF] Unable to compare refs, falling back to clone: "
                f"{mask_credentials(str(e))}"
            )
            return False

        if local != remote:
            changed = sorted(set(local.items()) ^ set(remote.items()))
            self.logger.debug(
                f"[DIFF] {len(changed)} ref difference(s) for {mask_credentials(clone_url)}"
            )
            return False
        return True
