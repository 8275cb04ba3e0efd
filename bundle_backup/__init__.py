"""
repo-bundle-backup - Multi-provider git repository backup tool

Backs up repositories from GitHub, GitLab, Bitbucket, Gitea, Azure DevOps
and Sourcehut into timestamped git bundle files, skipping unchanged
repositories and keeping a bounded number of snapshots per repository.

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

__version__ = "1.0.0"
__license__ = "Apache-2.0"
__description__ = "Back up hosted git repositories as timestamped, deduplicated git bundles"

from .azure_devops_manager import AzureDevOpsLister
from .base import ProviderBackupResult, RepoBackupResult, Repository, RepositoryLister
from .bitbucket_manager import BitbucketLister
from .bundle_store import BundleFile, BundleStore
from .gitea_manager import GiteaLister
from .github_manager import GitHubLister
from .gitlab_manager import GitLabLister
from .main import RunCoordinator, main
from .orchestrator import ProviderOrchestrator
from .remote_diff import RemoteDiff
from .sourcehut_manager import SourcehutLister
from .worker import BackupWorker, DiffMode

__all__ = [
    "Repository",
    "RepositoryLister",
    "RepoBackupResult",
    "ProviderBackupResult",
    "BundleFile",
    "BundleStore",
    "RemoteDiff",
    "BackupWorker",
    "DiffMode",
    "ProviderOrchestrator",
    "RunCoordinator",
    "GitHubLister",
    "GitLabLister",
    "BitbucketLister",
    "GiteaLister",
    "AzureDevOpsLister",
    "SourcehutLister",
    "main",
]
