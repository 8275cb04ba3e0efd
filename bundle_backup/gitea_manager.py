"""
Gitea repository lister

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

import requests

from .base import Repository, RepositoryLister, url_with_token
from .errors import EnumerationError
from .http_client import build_session

PAGE_LIMIT = 50


class GiteaLister(RepositoryLister):
    """
    Lists the authenticated user's repositories plus those of the configured
    organisations ("*" for every organisation visible to the token).
    """

    provider_name = "Gitea"
    default_workers = 5

    def __init__(
        self,
        api_url: str,
        token: str,
        orgs: Optional[List[str]] = None,
        workers: Optional[int] = None,
        request_timeout: int = 300,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url.rstrip("/")
        super().__init__(urlparse(self.api_url).hostname or "", workers)
        self.token = token
        self.orgs = [o for o in (orgs or []) if o]
        self.request_timeout = request_timeout
        self.session = session or build_session()
        self.session.headers.update({"Authorization": f"token {token}"})

    def credentialed_clone_url(self, https_url: str) -> str:
        return url_with_token(https_url, self.token)

    def _get_paginated(self, url: str) -> List[dict]:
        items = []
        params = {"limit": PAGE_LIMIT}
        while url:
            response = self.session.get(url, params=params, timeout=self.request_timeout)
            if response.status_code in (401, 403):
                self.logger.error(
                    f"[ERROR] Gitea rejected the token (HTTP {response.status_code})"
                )
            response.raise_for_status()
            items.extend(response.json())
            # Link header carries the full next-page URL
            url = response.links.get("next", {}).get("url")
            params = None
        return items

    def _org_names(self) -> List[str]:
        if "*" in self.orgs:
            self.logger.info("[DISCOVER] Discovering all accessible Gitea organizations")
            return [org["username"] for org in self._get_paginated(f"{self.api_url}/orgs")]
        return self.orgs

    def _to_repository(self, repo: dict) -> Repository:
        return self.make_repository(
            name=repo["name"],
            owner=repo["owner"]["login"],
            path_with_namespace=repo["full_name"],
            https_url=repo["clone_url"],
        )

    def list_repositories(self) -> List[Repository]:
        try:
            self.logger.info("[DISCOVER] Fetching user's own Gitea repositories")
            raw = self._get_paginated(f"{self.api_url}/user/repos")
            for org_name in self._org_names():
                self.logger.info(
                    f"[DISCOVER] Fetching repositories from Gitea organization: {org_name}"
                )
                raw.extend(self._get_paginated(f"{self.api_url}/orgs/{org_name}/repos"))
        except (requests.RequestException, ValueError) as e:
            raise EnumerationError(self.provider_name, e) from e

        return self.remove_duplicates([self._to_repository(r) for r in raw])
