"""
Bounded worker pool that backs up every repository of one provider

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
import queue
import threading
from typing import Callable, Optional

from tqdm import tqdm

from .base import ProviderBackupResult, RepoBackupResult, RepositoryLister
from .errors import EnumerationError

# Tells a pool thread there are no more jobs
_STOP = object()


class ProviderOrchestrator:
    def __init__(
        self,
        lister: RepositoryLister,
        worker_factory: Callable,
        workers: Optional[int] = None,
        logger=None,
        progress: bool = True,
    ):
        """
        Args:
            lister: Enumerates the provider's repositories
            worker_factory: Returns an object with backup(repo) -> RepoBackupResult
            workers: Pool size, defaults to the lister's own pool size
            logger: Provider-bound logger
            progress: Show a tqdm progress bar
        """
        self.lister = lister
        self.worker_factory = worker_factory
        self.workers = workers if workers and workers > 0 else lister.workers
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.progress = progress

    @property
    def provider(self) -> str:
        return self.lister.provider_name

    def backup(self) -> ProviderBackupResult:
        try:
            repos = self.lister.list_repositories()
        except Exception as e:
            error = e if isinstance(e, EnumerationError) else EnumerationError(self.provider, e)
            self.logger.error(f"[ERROR] {error}")
            return ProviderBackupResult(provider=self.provider, error=error)

        if not repos:
            self.logger.warning(f"[WARN] No {self.provider} repositories found to backup")
            return ProviderBackupResult(provider=self.provider)

        total = len(repos)
        self.logger.info(
            f"[PROCESS] Backing up {total} {self.provider} repositories "
            f"with {self.workers} workers"
        )

        jobs = queue.Queue(maxsize=total)
        results = queue.Queue(maxsize=self.workers)

        threads = [
            threading.Thread(
                target=self._work,
                args=(jobs, results),
                name=f"{self.provider}-worker-{i}",
                daemon=True,
            )
            for i in range(self.workers)
        ]
        for thread in threads:
            thread.start()

        for repo in repos:
            jobs.put(repo)
        for _ in threads:
            jobs.put(_STOP)

        outcome = ProviderBackupResult(provider=self.provider)
        successful = 0
        failed = 0
        with tqdm(
            total=total,
            desc=f"Backing up {self.provider}",
            unit="repo",
            disable=not self.progress,
        ) as pbar:
            for _ in range(total):
                result = results.get()
                outcome.results.append(result)
                if result.ok:
                    successful += 1
                else:
                    failed += 1
                pbar.update(1)
                pbar.set_postfix({"OK": successful, "FAIL": failed})

        for thread in threads:
            thread.join()

        return outcome

    def _work(self, jobs: queue.Queue, results: queue.Queue) -> None:
        worker = None
        while True:
            repo = jobs.get()
            if repo is _STOP:
                return
            try:
                if worker is None:
                    worker = self.worker_factory()
                result = worker.backup(repo)
            except Exception as e:
                self.logger.exception(f"[ERROR] Worker crashed on {repo}: {e}")
                result = RepoBackupResult.failure(repo, e)
            results.put(result)
