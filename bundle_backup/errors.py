"""
Error kinds raised by the backup pipeline

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


class BackupError(Exception):
    """Base class for all backup pipeline errors"""


class EnumerationError(BackupError):
    """A provider's repository list could not be obtained at all"""

    def __init__(self, provider: str, cause: BaseException):
        super().__init__(f"failed to list {provider} repositories: {cause}")
        self.provider = provider
        self.cause = cause


class WorkingDirectoryError(BackupError):
    """A stale scratch clone could not be removed"""


class CloneError(BackupError):
    """git clone --mirror failed"""


class SnapshotError(BackupError):
    """A bundle could not be written"""


class InvalidBundleError(BackupError):
    """git does not recognise a file as a bundle"""

    def __init__(self, path, detail: str = ""):
        super().__init__(f"{path} is not a valid bundle: {detail}".rstrip(": "))
        self.path = path


class DiffComparisonError(BackupError):
    """Local or remote refs could not be read for comparison"""


class GitTimeoutError(BackupError):
    """A git subprocess exceeded its timeout"""


class HousekeepingError(BackupError):
    """Dedup or prune failed; never fails the backup itself"""


class DedupError(HousekeepingError):
    pass


class PruneError(HousekeepingError):
    pass


class ConfigurationError(BackupError):
    """Invalid or missing configuration"""
