#!/usr/bin/env python3
"""
sendy_client.py

Sendy API client: subscriber status checks, single and bulk subscribe, and the
best-effort list / brand / subscriber-count endpoints used by the diagnostics.

Sendy answers in plain text, and some installs drop form bodies ("No data
passed"), so every call walks a small fallback chain before giving up. Each
request in that chain is repeated on 429 and 5xx like the REST clients do.
"""

import json
import time
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests

from . import config
from .api_client import log_retry, retry_delay
from .models import (DRY_RUN_MESSAGE, CandidateRecord, SubscribeOutcome,
                     SubscriptionStatus, SyncResult)

logger = logging.getLogger(__name__)

NO_DATA_PASSED = "No data passed"

# Phrases Sendy uses in /subscribe responses
ERROR_INDICATORS = (
    "invalid email",
    "some fields are missing",
    "invalid api key",
    "invalid list id",
    "bounced",
    "complained",
)
ALREADY_SUBSCRIBED_INDICATOR = "already subscribed"
# "1" is what older installs send when boolean=true is ignored
TRUTHY_RESPONSES = ("true", "1")


def classify_subscribe_response(text: Optional[str]) -> SubscribeOutcome:
    """
    Classify a /subscribe response body.

    Known error phrases win; otherwise "true", a bare "1" or "Already
    subscribed." count as success. Anything else is UNRECOGNIZED and must be
    treated as a failure.
    """
    lower = (text or "").strip().lower()
    if not lower:
        return SubscribeOutcome.UNRECOGNIZED
    if any(phrase in lower for phrase in ERROR_INDICATORS):
        return SubscribeOutcome.FAILED
    if ALREADY_SUBSCRIBED_INDICATOR in lower:
        return SubscribeOutcome.ALREADY_SUBSCRIBED
    if lower in TRUTHY_RESPONSES:
        return SubscribeOutcome.SUBSCRIBED
    return SubscribeOutcome.UNRECOGNIZED


def _parse_structured(raw: str) -> Tuple[bool, Any, str]:
    """(ok, parsed, message) for list/brand style responses"""
    trimmed = (raw or "").strip()
    if trimmed.startswith(("{", "[")):
        try:
            return True, json.loads(trimmed), ""
        except ValueError:
            pass
    lowered = trimmed.lower()
    if lowered.startswith("<!doctype html") or "<html" in lowered:
        return False, None, "HTML response received (possible 404 or endpoint not available)"
    if not trimmed:
        return False, None, "Empty response"
    return False, None, "Unexpected response format"


class SendyClient:
    """Client for a self-hosted Sendy installation"""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: float = config.SENDY_TIMEOUT,
                 max_retries: int = config.MAX_RETRIES,
                 rate_limit_buffer: float = config.RATE_LIMIT_BUFFER,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.base_url = (base_url if base_url is not None else config.SENDY_INSTALLATION_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else config.SENDY_API_KEY
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.rate_limit_buffer = rate_limit_buffer
        self.sleep = sleep

        if not self.base_url or not self.api_key:
            logger.warning("Sendy configuration missing (SENDY_INSTALLATION_URL or SENDY_API_KEY).")

        # Optional HTTPS fallback if the configured URL is plain http
        self.https_url = None
        if self.base_url.startswith("http://"):
            self.https_url = "https://" + self.base_url[len("http://"):]

        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json, text/plain, */*',
            'User-Agent': 'Calendly-Shopify-Sendy-Sync/1.0'
        })

    # ─── transport ────────────────────────────────────────────────────────

    def _send(self, method: str, url: str, **kwargs) -> Tuple[str, int]:
        """
        One Sendy request under the shared retry policy (429 and 5xx are
        repeated). The final response is returned whatever its status; a
        network failure propagates.
        """
        send = self.session.post if method == "POST" else self.session.get
        for attempt in range(self.max_retries):
            response = send(url, timeout=self.timeout, **kwargs)
            delay = retry_delay(response, attempt, self.max_retries, self.rate_limit_buffer)
            if delay is None:
                break
            log_retry("Sendy", response.status_code, delay, attempt, self.max_retries)
            self.sleep(delay)
        return (response.text or "").strip(), response.status_code

    def _post(self, base: str, path: str, body: Dict[str, str]) -> Tuple[str, int]:
        return self._send("POST", f"{base}{path}", data=body)

    def _call(self, path: str, body: Dict[str, str]) -> Tuple[str, int]:
        """POST form data; on "No data passed" retry as GET, then over HTTPS"""
        body = {"api_key": self.api_key, **body}
        text, status = self._post(self.base_url, path, body)

        if text == NO_DATA_PASSED:
            logger.debug(f"Sendy ignored POST body for {path}; retrying as GET")
            text, status = self._send("GET", f"{self.base_url}{path}", params=body)

        if text == NO_DATA_PASSED and self.https_url:
            logger.debug(f"Sendy still reports '{NO_DATA_PASSED}' for {path}; retrying over HTTPS")
            text, status = self._post(self.https_url, path, body)

        return text, status

    # ─── subscribers ──────────────────────────────────────────────────────

    def get_subscriber_status(self, email: str, list_id: str) -> SubscriptionStatus:
        """
        Current status of an email in a list.

        A failed check returns UNKNOWN (the caller then queues the address and
        any real problem surfaces in the subscribe result).
        """
        try:
            raw, _status = self._call("/api/subscribers/subscription-status.php",
                                      {"email": email, "list_id": list_id})
        except requests.exceptions.RequestException as e:
            logger.warning(f"Error checking subscriber status for {email} in list {list_id}: {e}")
            return SubscriptionStatus.UNKNOWN

        status = SubscriptionStatus.from_raw(raw)
        if status is SubscriptionStatus.UNKNOWN:
            logger.debug(f"Unrecognized Sendy status for {email}: {raw!r}")
        return status

    def subscribe(self, email: str, list_id: str, name: str = "") -> SyncResult:
        """Subscribe one address and classify the response"""
        path = "/subscribe"
        body = {"api_key": self.api_key, "email": email, "name": name or "",
                "list": list_id, "boolean": "true"}
        try:
            text, status_code = self._call(path, body)
            if not text:
                # empty body: try the other transport once
                if self.https_url:
                    text, status_code = self._post(self.https_url, path, body)
                else:
                    text, status_code = self._post(self.base_url, path, body)
        except requests.exceptions.RequestException as e:
            logger.error(f"Sendy subscribe error for {email} (list {list_id}): {e}")
            return SyncResult(email=email, success=False, message=str(e))

        outcome = classify_subscribe_response(text)
        if outcome is SubscribeOutcome.UNRECOGNIZED:
            logger.warning(f"Unrecognized Sendy subscribe response for {email}: {text!r}")
        elif outcome is SubscribeOutcome.FAILED:
            logger.warning(f"Sendy rejected {email}: {text}")
        return SyncResult(email=email, success=outcome.success, message=text, status_code=status_code)

    def bulk_subscribe(self, list_id: str, records: Sequence[CandidateRecord],
                       dry_run: bool = False, batch_size: int = config.DEFAULT_BATCH_SIZE,
                       throttle_ms: int = config.DEFAULT_THROTTLE_MS) -> List[SyncResult]:
        """
        Subscribe records one at a time, waiting throttle_ms between calls.

        Batches only drive progress logging; the request pattern is sequential
        either way. Dry runs make no calls and report success=False.
        """
        batch_size = max(1, batch_size)
        results: List[SyncResult] = []
        total_batches = (len(records) + batch_size - 1) // batch_size
        calls = 0

        for index in range(0, len(records), batch_size):
            batch = records[index:index + batch_size]
            logger.info(f"📨 Subscribe batch {index // batch_size + 1}/{total_batches} "
                        f"({len(batch)} emails, dryRun={dry_run})")
            for record in batch:
                if dry_run:
                    results.append(SyncResult(email=record.email, success=False,
                                              message=DRY_RUN_MESSAGE, dry_run=True))
                    continue
                if calls and throttle_ms > 0:
                    self.sleep(throttle_ms / 1000.0)
                calls += 1
                results.append(self.subscribe(record.email, list_id, name=record.name))

        return results

    # ─── lists / brands / counts ──────────────────────────────────────────

    def get_active_subscriber_count(self, list_id: str) -> Dict[str, Any]:
        try:
            raw, status = self._call("/api/subscribers/active-subscriber-count.php",
                                     {"list_id": list_id})
        except requests.exceptions.RequestException as e:
            return {"success": False, "message": str(e)}
        try:
            count = int(raw)
        except ValueError:
            return {"success": False, "message": "Response not numeric", "raw": raw, "status": status}
        return {"success": True, "count": count, "raw": raw, "status": status}

    def list_lists(self, brand_id: Optional[str] = None) -> Dict[str, Any]:
        """Lists of a brand; requires SENDY_BRAND_ID (Brands page, ID column)"""
        brand_id = brand_id or config.SENDY_BRAND_ID
        if not brand_id:
            return {"success": False,
                    "message": "SENDY_BRAND_ID not set. Find it on Brands page (column ID) and add to .env."}
        try:
            raw, status = self._call("/api/lists/get-lists.php",
                                     {"brand_id": brand_id, "include_hidden": "no"})
        except requests.exceptions.RequestException as e:
            logger.warning(f"Could not list Sendy lists (check /api/lists/get-lists.php): {e}")
            return {"success": False, "message": str(e)}
        ok, parsed, message = _parse_structured(raw)
        if ok:
            return {"success": True, "lists": parsed, "status": status}
        return {"success": False, "message": message, "raw": raw, "status": status}

    def list_brands(self) -> Dict[str, Any]:
        try:
            raw, status = self._call("/api/brands/get-brands.php", {})
        except requests.exceptions.RequestException as e:
            logger.warning(f"Error listing brands: {e}")
            return {"success": False, "message": str(e)}
        ok, parsed, message = _parse_structured(raw)
        if ok:
            return {"success": True, "brands": parsed, "status": status}
        return {"success": False, "message": message, "raw": raw, "status": status}

