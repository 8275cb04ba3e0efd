"""
Thin wrapper around the git executable

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

import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .base import PSEUDO_REFS, GitRefs, mask_credentials
from .errors import GitTimeoutError

# Portion of git's "does not look like a v2 or v3 bundle file" message
INVALID_BUNDLE_SIGNAL = "does not look like"

STDERR_LIMIT = 500


@dataclass(frozen=True)
class GitResult:
    args: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def error_text(self) -> str:
        """Credential-masked, truncated stderr (falls back to stdout)"""
        text = (self.stderr or self.stdout or "").strip()
        # Escaped raw bytes become U+FFFD before reaching logs or payloads
        text = text.encode("utf-8", "replace").decode("utf-8")
        return mask_credentials(text)[:STDERR_LIMIT]


def _git_env() -> dict:
    # Never block a worker on an interactive credential prompt
    return {**os.environ, "GIT_TERMINAL_PROMPT": "0"}


def git_executable() -> Optional[str]:
    return shutil.which("git")


def run_git(
    args: List[str],
    cwd: Optional[Union[str, Path]] = None,
    timeout: Optional[float] = None,
    capture_stdout: bool = True,
) -> GitResult:
    """
    Run a git command synchronously.

    A non-zero exit status is returned in the result, not raised. The only
    exception is a timeout, which raises GitTimeoutError.

    Args:
        args: Arguments after "git"
        cwd: Working directory for the command
        timeout: Seconds before the process is killed (None or 0 waits forever)
        capture_stdout: Set False for chatty commands such as clone so their
            progress output is not buffered in memory
    """
    cmd = ["git"] + [str(a) for a in args]
    try:
        result = subprocess.run(
            cmd,
            stdout=subprocess.PIPE if capture_stdout else subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            encoding="utf-8",
            # Ref names are arbitrary bytes; keep them round-trippable
            errors="surrogateescape",
            cwd=str(cwd) if cwd else None,
            env=_git_env(),
            timeout=timeout or None,
        )
    except subprocess.TimeoutExpired as e:
        raise GitTimeoutError(
            f"git {mask_credentials(' '.join(cmd[1:3]))} timed out after {e.timeout}s"
        ) from e

    return GitResult(
        args=cmd,
        returncode=result.returncode,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
    )


def parse_refs(output: str) -> GitRefs:
    """
    Parse "<sha> <ref>" lines as printed by `git bundle list-heads` (space)
    or `git ls-remote` (tab) into a ref map.

    Pseudo-refs and peeled tag entries ("^{}") are dropped so that a bundle
    and a live remote listing produce comparable maps.
    """
    refs: GitRefs = {}
    for line in output.splitlines():
        fields = line.split()
        if len(fields) != 2:
            continue
        sha, ref = fields
        if ref in PSEUDO_REFS or ref.endswith("^{}"):
            continue
        refs[ref] = sha
    return refs
