"""
Azure DevOps repository lister

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
from urllib.parse import quote

import requests

from .base import Repository, RepositoryLister, url_with_basic_auth
from .errors import EnumerationError
from .http_client import build_session

AZURE_DEVOPS_DOMAIN = "dev.azure.com"
API_VERSION = "7.1"
CONTINUATION_HEADER = "x-ms-continuationtoken"

_EMBEDDED_USER = re.compile(r"^(https?://)[^@/]+@")


class AzureDevOpsLister(RepositoryLister):
    """
    Lists every repository of every project in the configured Azure DevOps
    organisations. A personal access token authenticates both the REST calls
    and the clones, paired with the account username.
    """

    provider_name = "AzureDevOps"
    default_workers = 5
    basic_auth = True

    def __init__(
        self,
        user: str,
        pat: str,
        orgs: List[str],
        workers: Optional[int] = None,
        request_timeout: int = 300,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(AZURE_DEVOPS_DOMAIN, workers)
        self.user = user
        self.pat = pat
        self.orgs = [o for o in (orgs or []) if o]
        self.request_timeout = request_timeout
        self.session = session or build_session()
        self.session.auth = (user, pat)
        self.session.headers.update({"Accept": "application/json"})

    def credentialed_clone_url(self, https_url: str) -> str:
        return url_with_basic_auth(https_url, self.user, self.pat)

    def _get(self, url: str, params: dict) -> requests.Response:
        response = self.session.get(url, params=params, timeout=self.request_timeout)
        if response.status_code in (401, 203):
            # An unauthenticated call is redirected to a sign-in page (203)
            self.logger.error(
                f"[ERROR] Azure DevOps rejected the credentials (HTTP {response.status_code})"
            )
            raise requests.HTTPError(
                f"authentication failed (HTTP {response.status_code})", response=response
            )
        response.raise_for_status()
        return response

    def _project_names(self, org: str) -> List[str]:
        names = []
        params = {"api-version": API_VERSION}
        while True:
            response = self._get(
                f"https://{AZURE_DEVOPS_DOMAIN}/{quote(org)}/_apis/projects", params
            )
            names.extend(p["name"] for p in response.json().get("value", []))
            token = response.headers.get(CONTINUATION_HEADER)
            if not token:
                return names
            params = {"api-version": API_VERSION, "continuationToken": token}

    def _project_repositories(self, org: str, project: str) -> List[dict]:
        response = self._get(
            f"https://{AZURE_DEVOPS_DOMAIN}/{quote(org)}/{quote(project)}"
            "/_apis/git/repositories",
            {"api-version": API_VERSION},
        )
        return response.json().get("value", [])

    def _to_repository(self, org: str, repo: dict) -> Repository:
        project = repo["project"]["name"]
        # remoteUrl embeds the organisation as a username
        https_url = _EMBEDDED_USER.sub(r"\1", repo["remoteUrl"])
        return self.make_repository(
            name=repo["name"],
            owner=org,
            path_with_namespace=f"{org}/{project}/{repo['name']}",
            https_url=https_url,
        )

    def list_repositories(self) -> List[Repository]:
        repos = []
        try:
            for org in self.orgs:
                for project in self._project_names(org):
                    self.logger.info(
                        f"[DISCOVER] Listing Azure DevOps organization {org} project {project}"
                    )
                    raw = self._project_repositories(org, project)
                    if not raw:
                        self.logger.debug(f"[DISCOVER] No repositories in project {project}")
                    repos.extend(self._to_repository(org, r) for r in raw)
        except (requests.RequestException, ValueError, KeyError) as e:
            raise EnumerationError(self.provider_name, e) from e

        return self.remove_duplicates(repos)
