"""
Sourcehut repository lister

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

from .base import Repository, RepositoryLister, url_with_basic_auth
from .errors import EnumerationError
from .http_client import build_session

DEFAULT_API_URL = "https://git.sr.ht/query"

REPOSITORIES_QUERY = """
query repositories($cursor: Cursor) {
  me {
    canonicalName
    repositories(cursor: $cursor) {
      cursor
      results {
        name
        owner { canonicalName }
      }
    }
  }
}
"""


class SourcehutLister(RepositoryLister):
    """
    Lists the repositories owned by the token's account through the
    git.sr.ht GraphQL API. Clones authenticate with the token as password.
    """

    provider_name = "Sourcehut"
    default_workers = 5
    basic_auth = True

    def __init__(
        self,
        token: str,
        api_url: Optional[str] = None,
        workers: Optional[int] = None,
        request_timeout: int = 300,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url or DEFAULT_API_URL
        super().__init__(urlparse(self.api_url).hostname or "", workers)
        self.token = token
        self.user = ""
        self.request_timeout = request_timeout
        self.session = session or build_session()
        self.session.headers.update({"Authorization": f"Bearer {token}"})

    def credentialed_clone_url(self, https_url: str) -> str:
        return url_with_basic_auth(https_url, self.user or "git", self.token)

    def _query(self, cursor: Optional[str]) -> dict:
        response = self.session.post(
            self.api_url,
            json={"query": REPOSITORIES_QUERY, "variables": {"cursor": cursor}},
            timeout=self.request_timeout,
        )
        if response.status_code in (401, 403):
            self.logger.error(
                f"[ERROR] Sourcehut rejected the token (HTTP {response.status_code})"
            )
        response.raise_for_status()
        payload = response.json()
        if payload.get("errors"):
            messages = "; ".join(e.get("message", "") for e in payload["errors"])
            raise ValueError(f"GraphQL query failed: {messages}")
        return payload["data"]["me"]

    def _to_repository(self, repo: dict) -> Repository:
        owner = repo["owner"]["canonicalName"]
        return self.make_repository(
            name=repo["name"],
            owner=owner,
            path_with_namespace=f"{owner}/{repo['name']}",
            https_url=f"https://{self.domain}/{owner}/{repo['name']}",
        )

    def list_repositories(self) -> List[Repository]:
        raw = []
        cursor = None
        try:
            self.logger.info("[DISCOVER] Fetching Sourcehut repositories")
            while True:
                me = self._query(cursor)
                self.user = me["canonicalName"].lstrip("~")
                page = me["repositories"]
                raw.extend(page["results"])
                cursor = page.get("cursor")
                if not cursor:
                    break
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            raise EnumerationError(self.provider_name, e) from e

        return self.remove_duplicates([self._to_repository(r) for r in raw])
