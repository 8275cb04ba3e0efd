"""
Bitbucket repository lister

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

import re
from typing import List, Optional
from urllib.parse import urlparse

import requests
from atlassian import Bitbucket

from .base import Repository, RepositoryLister, url_with_basic_auth
from .errors import EnumerationError
from .http_client import build_session

CLOUD_API_URL = "https://api.bitbucket.org/2.0"

_EMBEDDED_USER = re.compile(r"^(https?://)[^@/]+@")


class BitbucketLister(RepositoryLister):
    """
    Bitbucket Cloud through its 2.0 REST API, or Bitbucket Server / Data
    Center through atlassian-python-api when api_url points elsewhere.

    Cloud API tokens authenticate API calls with the account email (when
    given) and git clones with the Bitbucket username.
    """

    provider_name = "Bitbucket"
    default_workers = 5
    basic_auth = True

    def __init__(
        self,
        user: str,
        api_token: str,
        email: Optional[str] = None,
        api_url: Optional[str] = None,
        workspaces: Optional[List[str]] = None,
        workers: Optional[int] = None,
        request_timeout: int = 300,
        session: Optional[requests.Session] = None,
        server_client=None,
    ):
        self.api_url = (api_url or CLOUD_API_URL).rstrip("/")
        self.is_cloud = "bitbucket.org" in self.api_url
        domain = "bitbucket.org" if self.is_cloud else urlparse(self.api_url).hostname
        super().__init__(domain, workers)
        self.user = user
        self.api_token = api_token
        self.email = email
        self.workspaces = [w for w in (workspaces or []) if w]
        self.request_timeout = request_timeout
        self.session = session or build_session()
        self.session.auth = (email or user, api_token)
        self.server_client = server_client

    def credentialed_clone_url(self, https_url: str) -> str:
        return url_with_basic_auth(https_url, self.user, self.api_token)

    def list_repositories(self) -> List[Repository]:
        try:
            if self.is_cloud:
                repos = self._list_cloud_repositories()
            else:
                repos = self._list_server_repositories()
        except (requests.RequestException, ValueError) as e:
            raise EnumerationError(self.provider_name, e) from e

        return self.remove_duplicates(repos)

    def _get_paginated(self, url: str, params: Optional[dict] = None) -> List[dict]:
        values = []
        while url:
            response = self.session.get(url, params=params, timeout=self.request_timeout)
            if response.status_code == 401:
                self.logger.error(
                    "[ERROR] Bitbucket authentication failed, check BITBUCKET_USER "
                    "and BITBUCKET_API_TOKEN (API token needs Repositories: Read)"
                )
            response.raise_for_status()
            data = response.json()
            values.extend(data.get("values", []))
            # "next" already carries the query string
            url = data.get("next")
            params = None
        return values

    def _workspace_slugs(self) -> List[str]:
        if self.workspaces:
            return self.workspaces
        self.logger.info("[DISCOVER] Discovering all accessible Bitbucket workspaces")
        permissions = self._get_paginated(
            f"{self.api_url}/user/permissions/workspaces", {"pagelen": 100}
        )
        return [p["workspace"]["slug"] for p in permissions if p.get("workspace")]

    @staticmethod
    def _https_clone_link(links: dict, name: str = "https") -> Optional[str]:
        for link in links.get("clone", []):
            if link.get("name") == name:
                # Cloud embeds the requesting user; replaced by our own credentials
                return _EMBEDDED_USER.sub(r"\1", link["href"])
        return None

    def _list_cloud_repositories(self) -> List[Repository]:
        repos = []
        for slug in self._workspace_slugs():
            workspace_repos = self._get_paginated(
                f"{self.api_url}/repositories/{slug}", {"pagelen": 100}
            )
            self.logger.info(
                f"[DISCOVER] Found {len(workspace_repos)} repositories in workspace {slug}"
            )
            for repo in workspace_repos:
                https_url = self._https_clone_link(repo.get("links", {}))
                if not https_url:
                    self.logger.debug(f"[SKIP] No HTTPS clone link for {repo.get('full_name')}")
                    continue
                repos.append(
                    self.make_repository(
                        name=repo["slug"],
                        owner=slug,
                        path_with_namespace=repo["full_name"],
                        https_url=https_url,
                    )
                )
        return repos

    def _list_server_repositories(self) -> List[Repository]:
        client = self.server_client or Bitbucket(
            url=self.api_url,
            username=self.user,
            password=self.api_token,
            timeout=self.request_timeout,
        )
        repos = []
        for project in client.project_list():
            for repo in client.repo_list(project["key"]):
                https_url = self._https_clone_link(repo.get("links", {}), name="http")
                if not https_url:
                    https_url = f"{self.api_url}/scm/{project['key'].lower()}/{repo['slug']}.git"
                repos.append(
                    self.make_repository(
                        name=repo["slug"],
                        owner=project["key"],
                        path_with_namespace=f"{project['key']}/{repo['slug']}",
                        https_url=https_url,
                    )
                )
        return repos
