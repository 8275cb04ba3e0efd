"""
GitHub repository lister

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

from github import Auth, Github, GithubException

from .base import Repository, RepositoryLister, url_with_token
from .errors import EnumerationError

DEFAULT_API_URL = "https://api.github.com"


def domain_from_api_url(api_url: str) -> str:
    """github.com for the public API, otherwise the Enterprise host"""
    host = urlparse(api_url).hostname or "github.com"
    if host == "api.github.com":
        return "github.com"
    return host


class GitHubLister(RepositoryLister):
    provider_name = "GitHub"
    default_workers = 10

    def __init__(
        self,
        token: str,
        api_url: Optional[str] = None,
        orgs: Optional[List[str]] = None,
        skip_user_repos: bool = False,
        workers: Optional[int] = None,
        request_timeout: int = 300,
        client=None,
    ):
        """
        Args:
            token: Personal access token
            api_url: API endpoint, for GitHub Enterprise
            orgs: Organisations to include; "*" means every organisation the
                user belongs to
            skip_user_repos: Do not include the user's own repositories
            client: Preconfigured PyGithub client (used by tests)
        """
        self.api_url = (api_url or DEFAULT_API_URL).rstrip("/")
        super().__init__(domain_from_api_url(self.api_url), workers)
        self.token = token
        self.orgs = [o for o in (orgs or []) if o]
        self.skip_user_repos = skip_user_repos
        self.client = client or Github(
            auth=Auth.Token(token), base_url=self.api_url, timeout=request_timeout
        )

        if self.orgs:
            self.logger.info(f"[CONFIG] GitHub organizations: {', '.join(self.orgs)}")

    def credentialed_clone_url(self, https_url: str) -> str:
        return url_with_token(https_url, self.token)

    def _to_repository(self, repo) -> Repository:
        return self.make_repository(
            name=repo.name,
            owner=repo.owner.login,
            path_with_namespace=repo.full_name,
            https_url=repo.clone_url,
        )

    def list_repositories(self) -> List[Repository]:
        repos = []
        try:
            user = self.client.get_user()

            if not self.skip_user_repos:
                self.logger.info("[DISCOVER] Fetching user's own GitHub repositories")
                for repo in user.get_repos(affiliation="owner"):
                    repos.append(self._to_repository(repo))

            if "*" in self.orgs:
                org_names = [org.login for org in user.get_orgs()]
            else:
                org_names = self.orgs
        except GithubException as e:
            raise EnumerationError(self.provider_name, e) from e

        for org_name in org_names:
            try:
                org = self.client.get_organization(org_name)
                self.logger.info(
                    f"[DISCOVER] Fetching repositories from GitHub organization: {org.login}"
                )
                for repo in org.get_repos():
                    repos.append(self._to_repository(repo))
            except GithubException as e:
                self.logger.warning(f"[WARN] Could not access organization {org_name}: {e}")

        return self.remove_duplicates(repos)
