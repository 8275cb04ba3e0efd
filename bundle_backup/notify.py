"""
Run summaries and webhook notifications

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
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

import requests

from .base import ProviderBackupResult, mask_credentials
from .http_client import build_session

APP_NAME = "repo-bundle-backup"
EVENT_TYPE = "backups.complete"
FORMAT_SHORT = "short"


@dataclass
class RunSummary:
    providers: List[ProviderBackupResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(p.succeeded for p in self.providers)

    @property
    def failed(self) -> int:
        return sum(p.failed for p in self.providers)

    @property
    def skipped(self) -> int:
        return sum(p.skipped for p in self.providers)

    @property
    def provider_errors(self) -> List[ProviderBackupResult]:
        return [p for p in self.providers if p.error is not None]

    @property
    def has_failures(self) -> bool:
        return self.failed > 0 or bool(self.provider_errors)

    def to_dict(self) -> dict:
        return {"results": [p.to_dict() for p in self.providers]}


class WebhookNotifier:
    def __init__(
        self,
        url: str,
        session: Optional[requests.Session] = None,
        format: Optional[str] = None,
        request_timeout: int = 300,
        logger=None,
    ):
        self.url = url
        self.session = session or build_session()
        self.format = (format or "").strip().lower()
        self.request_timeout = request_timeout
        self.logger = logger or logging.getLogger(self.__class__.__name__)

    def build_payload(self, summary: RunSummary, sent_at: Optional[datetime] = None) -> dict:
        sent_at = sent_at or datetime.now(timezone.utc)
        payload = {
            "app": APP_NAME,
            "type": EVENT_TYPE,
            "timestamp": sent_at.isoformat(timespec="seconds"),
            "stats": {"succeeded": summary.succeeded, "failed": summary.failed},
        }
        if self.format != FORMAT_SHORT:
            payload["data"] = summary.to_dict()
        return payload

    def send(self, summary: RunSummary, sent_at: Optional[datetime] = None) -> bool:
        """Post the summary; delivery problems are logged, never raised"""
        payload = self.build_payload(summary, sent_at)
        try:
            response = self.session.post(
                self.url, json=payload, timeout=self.request_timeout
            )
        except requests.RequestException as e:
            self.logger.error(f"[NOTIFY] Webhook delivery failed: {mask_credentials(str(e))}")
            return False

        if not response.ok:
            self.logger.error(
                f"[NOTIFY] Webhook returned HTTP {response.status_code}: {response.text[:200]}"
            )
            return False

        self.logger.info("[NOTIFY] Webhook notification sent")
        return True
