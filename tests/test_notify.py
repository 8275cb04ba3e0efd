"""
Tests for notify module

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

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from bundle_backup.base import ProviderBackupResult, RepoBackupResult, Repository
from bundle_backup.errors import CloneError, EnumerationError
from bundle_backup.notify import RunSummary, WebhookNotifier

SENT_AT = datetime(2025, 6, 1, 8, 30, 0, tzinfo=timezone.utc)


def repo(name):
    return Repository(
        name=name,
        owner="org",
        domain="github.com",
        path_with_namespace=f"org/{name}",
        https_url=f"https://github.com/org/{name}.git",
        platform="github",
    )


@pytest.fixture
def summary():
    github = ProviderBackupResult(
        provider="GitHub",
        results=[
            RepoBackupResult.success(repo("a")),
            RepoBackupResult.success(repo("b"), skipped=True),
            RepoBackupResult.failure(
                repo("c"),
                CloneError("clone of https://ghp_secret@github.com/org/c.git failed"),
            ),
        ],
    )
    gitlab = ProviderBackupResult(
        provider="GitLab", error=EnumerationError("GitLab", RuntimeError("401"))
    )
    return RunSummary([github, gitlab])


def ok_session():
    session = MagicMock()
    session.post.return_value = MagicMock(ok=True, status_code=200)
    return session


class TestRunSummary:
    """Tests for aggregating provider results"""

    def test_counts(self, summary):
        assert summary.succeeded == 2
        assert summary.failed == 1
        assert summary.skipped == 1
        assert [p.provider for p in summary.provider_errors] == ["GitLab"]
        assert summary.has_failures

    def test_clean_run(self):
        clean = RunSummary(
            [ProviderBackupResult("GitHub", [RepoBackupResult.success(repo("a"))])]
        )
        assert not clean.has_failures

    def test_provider_error_alone_is_failure(self):
        broken = RunSummary(
            [ProviderBackupResult("Gitea", error=EnumerationError("Gitea", OSError()))]
        )
        assert broken.failed == 0
        assert broken.has_failures

    def test_empty(self):
        assert RunSummary().to_dict() == {"results": []}
        assert not RunSummary().has_failures


class TestWebhookNotifier:
    """Tests for the completion webhook"""

    def test_full_payload(self, summary):
        notifier = WebhookNotifier("https://hooks.example/x", session=ok_session())
        payload = notifier.build_payload(summary, SENT_AT)

        assert payload["app"] == "repo-bundle-backup"
        assert payload["type"] == "backups.complete"
        assert payload["timestamp"] == "2025-06-01T08:30:00+00:00"
        assert payload["stats"] == {"succeeded": 2, "failed": 1}
        results = payload["data"]["results"]
        assert results[0]["provider"] == "GitHub"
        assert results[0]["results"][2] == {
            "repo": "org/c",
            "status": "failed",
            "error": "clone of https://***@github.com/org/c.git failed",
        }
        assert "error" in results[1]

    def test_short_payload_omits_data(self, summary):
        notifier = WebhookNotifier(
            "https://hooks.example/x", session=ok_session(), format="Short"
        )
        payload = notifier.build_payload(summary, SENT_AT)
        assert "data" not in payload
        assert payload["stats"] == {"succeeded": 2, "failed": 1}

    def test_send_posts_json(self, summary):
        session = ok_session()
        notifier = WebhookNotifier(
            "https://hooks.example/x", session=session, request_timeout=30
        )

        assert notifier.send(summary, SENT_AT) is True

        session.post.assert_called_once()
        args, kwargs = session.post.call_args
        assert args[0] == "https://hooks.example/x"
        assert kwargs["timeout"] == 30
        assert kwargs["json"]["type"] == "backups.complete"

    def test_http_error_status(self, summary):
        session = MagicMock()
        session.post.return_value = MagicMock(ok=False, status_code=500, text="oops")
        notifier = WebhookNotifier("https://hooks.example/x", session=session)
        assert notifier.send(summary) is False

    def test_connection_error_not_raised(self, summary):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")
        notifier = WebhookNotifier("https://hooks.example/x", session=session)
        assert notifier.send(summary) is False
