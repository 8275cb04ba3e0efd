"""
GitLab repository lister

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

from typing import List, Optional
from urllib.parse import urlparse

import gitlab

from .base import Repository, RepositoryLister, url_with_basic_auth
from .errors import EnumerationError

DEFAULT_URL = "https://gitlab.com"
# Reporter
DEFAULT_MIN_ACCESS_LEVEL = 20


class GitLabLister(RepositoryLister):
    provider_name = "GitLab"
    default_workers = 5
    basic_auth = True

    def __init__(
        self,
        token: str,
        url: Optional[str] = None,
        min_access_level: int = DEFAULT_MIN_ACCESS_LEVEL,
        workers: Optional[int] = None,
        request_timeout: int = 300,
        session=None,
        client=None,
    ):
        self.url = (url or DEFAULT_URL).rstrip("/")
        # GITLAB_APIURL may point at /api/v4; python-gitlab wants the instance root
        if self.url.endswith("/api/v4"):
            self.url = self.url[: -len("/api/v4")]
        super().__init__(urlparse(self.url).hostname or "gitlab.com", workers)
        self.token = token
        self.min_access_level = min_access_level
        self.client = client or gitlab.Gitlab(
            self.url, private_token=token, timeout=request_timeout, session=session
        )

    def credentialed_clone_url(self, https_url: str) -> str:
        return url_with_basic_auth(https_url, "oauth2", self.token)

    def list_repositories(self) -> List[Repository]:
        self.logger.info(
            f"[DISCOVER] Discovering GitLab projects with access level >= {self.min_access_level}"
        )
        try:
            projects = self.client.projects.list(
                min_access_level=self.min_access_level, iterator=True
            )
            repos = [
                self.make_repository(
                    name=project.path,
                    owner=project.namespace["full_path"],
                    path_with_namespace=project.path_with_namespace,
                    https_url=project.http_url_to_repo,
                )
                for project in projects
            ]
        except gitlab.exceptions.GitlabError as e:
            raise EnumerationError(self.provider_name, e) from e

        return self.remove_duplicates(repos)
