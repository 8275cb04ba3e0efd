"""
Base classes for repository listing and backup results

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
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

STATUS_OK = "ok"
STATUS_FAILED = "failed"

# Ref name -> commit SHA
GitRefs = Dict[str, str]

PSEUDO_REFS = frozenset(
    ["HEAD", "FETCH_HEAD", "ORIG_HEAD", "MERGE_HEAD", "CHERRY_PICK_HEAD"]
)

_URL_CREDENTIALS = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s]+@")


def url_with_token(https_url: str, token: str) -> str:
    """Embed a token as the userinfo part of an HTTPS URL"""
    scheme, sep, rest = https_url.partition("//")
    if not sep:
        return https_url
    return f"{scheme}//{token.strip()}@{rest}"


def url_with_basic_auth(https_url: str, user: str, password: str) -> str:
    """Embed user and password as the userinfo part of an HTTPS URL"""
    scheme, sep, rest = https_url.partition("//")
    if not sep:
        return https_url
    return f"{scheme}//{user}:{password.strip()}@{rest}"


def mask_credentials(text: str) -> str:
    """Replace any userinfo embedded in URLs with asterisks"""
    if not text:
        return text
    return _URL_CREDENTIALS.sub(r"\g<scheme>***@", text)


@dataclass(frozen=True)
class Repository:
    name: str
    owner: str
    domain: str
    path_with_namespace: str
    https_url: str
    platform: str
    url_with_token: Optional[str] = None
    url_with_basic_auth: Optional[str] = None

    @property
    def clone_url(self) -> str:
        """URL used for the actual clone, credentials included when available"""
        return self.url_with_token or self.url_with_basic_auth or self.https_url

    def __str__(self) -> str:
        return f"{self.domain}/{self.path_with_namespace}"


@dataclass(frozen=True)
class RepoBackupResult:
    repo: str
    status: str
    error: Optional[BaseException] = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    @classmethod
    def success(cls, repo: Repository, skipped: bool = False) -> "RepoBackupResult":
        return cls(repo=repo.path_with_namespace, status=STATUS_OK, skipped=skipped)

    @classmethod
    def failure(cls, repo: Repository, error: BaseException) -> "RepoBackupResult":
        return cls(repo=repo.path_with_namespace, status=STATUS_FAILED, error=error)

    def to_dict(self) -> dict:
        data = {"repo": self.repo, "status": self.status}
        if self.error is not None:
            data["error"] = mask_credentials(str(self.error))
        return data


@dataclass
class ProviderBackupResult:
    provider: str
    results: List[RepoBackupResult] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.ok and r.skipped)

    def to_dict(self) -> dict:
        data = {
            "provider": self.provider,
            "results": [r.to_dict() for r in self.results],
        }
        if self.error is not None:
            data["error"] = mask_credentials(str(self.error))
        return data


class RepositoryLister(ABC):
    """
    One hosting provider: enumerates repositories and knows how to build
    the credential-embedded clone URL for them.
    """

    provider_name: str = ""
    default_workers: int = 5
    # True when credentialed_clone_url embeds user:password rather than a token
    basic_auth: bool = False

    def __init__(self, domain: str, workers: Optional[int] = None):
        self.domain = domain
        self.workers = workers if workers and workers > 0 else self.default_workers
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def list_repositories(self) -> List[Repository]:
        pass

    @abstractmethod
    def credentialed_clone_url(self, https_url: str) -> str:
        pass

    def make_repository(
        self, name: str, owner: str, path_with_namespace: str, https_url: str
    ) -> Repository:
        clone_url = self.credentialed_clone_url(https_url)
        if clone_url == https_url:
            clone_url = None
        return Repository(
            name=name,
            owner=owner,
            domain=self.domain,
            path_with_namespace=path_with_namespace,
            https_url=https_url,
            platform=self.provider_name.lower(),
            url_with_token=None if self.basic_auth else clone_url,
            url_with_basic_auth=clone_url if self.basic_auth else None,
        )

    @staticmethod
    def remove_duplicates(repos: List[Repository]) -> List[Repository]:
        seen = set()
        unique_repos = []
        for repo in repos:
            if repo.path_with_namespace not in seen:
                seen.add(repo.path_with_namespace)
                unique_repos.append(repo)
        return unique_repos
