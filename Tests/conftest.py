"""Shared fakes: no test talks to a real Calendly, Shopify or Sendy."""

import json
from typing import Dict, List, Optional
from unittest.mock import Mock

import pytest
from requests.structures import CaseInsensitiveDict

from sendy_sync.models import DRY_RUN_MESSAGE, SubscriptionStatus, SyncResult


def make_response(status_code: int = 200, json_data=None, text: Optional[str] = None,
                  headers: Optional[Dict[str, str]] = None, reason: str = "OK") -> Mock:
    response = Mock()
    response.status_code = status_code
    response.reason = reason
    response.headers = CaseInsensitiveDict(headers or {})
    if json_data is not None:
        response.json.return_value = json_data
        response.text = json.dumps(json_data) if text is None else text
    else:
        response.json.side_effect = ValueError("No JSON object could be decoded")
        response.text = text or ""
    return response


class FakeSession:
    """Stands in for requests.Session; replays queued responses in order"""

    def __init__(self, responses: Optional[List] = None):
        self.headers = CaseInsensitiveDict()
        self.responses = list(responses or [])
        self.calls: List[Dict] = []

    def _next(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"unexpected {method} {url}")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, params=None, timeout=None):
        return self._next("GET", url, params=params, timeout=timeout)

    def post(self, url, data=None, timeout=None):
        return self._next("POST", url, data=data, timeout=timeout)


class FakeSendy:
    """In-memory Sendy: per-email statuses, optional failing addresses"""

    def __init__(self, statuses=None, failures=()):
        self.statuses = statuses or {}
        self.failures = set(failures)
        self.status_checks: List[str] = []
        self.subscribed: List[str] = []

    def get_subscriber_status(self, email, list_id):
        self.status_checks.append(email)
        return self.statuses.get(email, SubscriptionStatus.NOT_IN_LIST)

    def subscribe(self, email, list_id, name=""):
        self.subscribed.append(email)
        if email in self.failures:
            return SyncResult(email=email, success=False, message="Invalid email address.", status_code=200)
        return SyncResult(email=email, success=True, message="true", status_code=200)

    def bulk_subscribe(self, list_id, records, dry_run=False, batch_size=20, throttle_ms=250):
        if dry_run:
            return [SyncResult(email=r.email, success=False, message=DRY_RUN_MESSAGE, dry_run=True)
                    for r in records]
        return [self.subscribe(r.email, list_id, r.name) for r in records]


@pytest.fixture
def sleeps():
    """Collects requested sleep durations instead of sleeping"""
    return []


@pytest.fixture
def fake_sendy():
    return FakeSendy()
