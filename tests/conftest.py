"""
Shared fixtures: throwaway git repositories used as clone sources

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

import subprocess
import tempfile
from pathlib import Path

import pytest

from bundle_backup.base import Repository, RepositoryLister


def git(*args, cwd=None):
    return subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )


class GitRepos:
    """Creates local repositories and the Repository records pointing at them"""

    def __init__(self, root: Path):
        self.root = root

    def create(self, name: str = "test-repo", commits: int = 1) -> Path:
        repo_path = self.root / name
        repo_path.mkdir(parents=True)
        git("-c", "init.defaultBranch=main", "init", cwd=repo_path)
        git("config", "user.email", "test@test.com", cwd=repo_path)
        git("config", "user.name", "Test User", cwd=repo_path)
        git("config", "commit.gpgsign", "false", cwd=repo_path)
        for i in range(commits):
            self.commit(repo_path, "README.md", f"# Test Repository\n\nRevision {i}\n")
        return repo_path

    def create_empty(self, name: str = "empty-repo") -> Path:
        repo_path = self.root / name
        repo_path.mkdir(parents=True)
        git("init", "--bare", cwd=repo_path)
        return repo_path

    def commit(self, repo_path: Path, filename: str, content: str, message: str = None):
        (repo_path / filename).write_text(content)
        git("add", filename, cwd=repo_path)
        git("commit", "-m", message or f"Update {filename}", cwd=repo_path)

    def tag(self, repo_path: Path, name: str, annotated: bool = True):
        if annotated:
            git("tag", "-a", name, "-m", f"Release {name}", cwd=repo_path)
        else:
            git("tag", name, cwd=repo_path)

    def raw_ref(self, repo_path: Path, ref: bytes):
        """Point a ref whose name is arbitrary bytes at HEAD"""
        subprocess.run(
            [b"git", b"update-ref", ref, b"HEAD"], cwd=repo_path, capture_output=True, check=True
        )

    @staticmethod
    def repository(
        repo_path, name: str = None, owner: str = "local", domain: str = "local.test"
    ) -> Repository:
        name = name or Path(repo_path).name
        return Repository(
            name=name,
            owner=owner,
            domain=domain,
            path_with_namespace=f"{owner}/{name}",
            https_url=str(repo_path),
            platform="local",
        )


@pytest.fixture
def git_repos():
    """Factory for local git repositories, removed after the test"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield GitRepos(Path(tmpdir))


@pytest.fixture
def local_git_repo(git_repos):
    """A local git repository with one commit"""
    return git_repos.create("test-repo")


@pytest.fixture
def backup_root():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mirror_clone(local_git_repo, backup_root):
    """A `git clone --mirror` of local_git_repo"""
    mirror_path = backup_root / "mirror.git"
    git("clone", "--mirror", str(local_git_repo), str(mirror_path))
    return mirror_path


class StaticLister(RepositoryLister):
    """Lister over a fixed repository list, or one that fails to enumerate"""

    provider_name = "Static"

    def __init__(self, repos=None, error=None, workers=None, domain="local.test"):
        super().__init__(domain, workers)
        self.repos = repos or []
        self.error = error

    def list_repositories(self):
        if self.error is not None:
            raise self.error
        return list(self.repos)

    def credentialed_clone_url(self, https_url):
        return https_url
