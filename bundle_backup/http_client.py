"""
Shared HTTP session for provider APIs and notifications

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

import os

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import ConfigurationError

DEFAULT_REQUEST_TIMEOUT = 300
DEFAULT_RETRIES = 3
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


def request_timeout() -> int:
    """Seconds allowed per HTTP request, from GIT_REQUEST_TIMEOUT"""
    value = os.getenv("GIT_REQUEST_TIMEOUT", "").strip()
    if not value:
        return DEFAULT_REQUEST_TIMEOUT
    try:
        timeout = int(value)
    except ValueError:
        raise ConfigurationError(
            f"GIT_REQUEST_TIMEOUT must be an integer number of seconds, got {value!r}"
        ) from None
    if timeout <= 0:
        raise ConfigurationError(f"GIT_REQUEST_TIMEOUT must be positive, got {timeout}")
    return timeout


def build_session(
    retries: int = DEFAULT_RETRIES, backoff_factor: float = 1.0
) -> requests.Session:
    """
    requests.Session that retries idempotent calls on connection errors,
    rate limiting and server errors with exponential backoff.
    """
    retry = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUS_CODES,
        allowed_methods=frozenset(["GET", "HEAD", "POST"]),
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)

    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": "repo-bundle-backup"})
    return session
