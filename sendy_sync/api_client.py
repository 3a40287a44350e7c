#!/usr/bin/env python3
"""
api_client.py

Shared plumbing for the Calendly and Shopify REST clients: a requests.Session
with provider headers, the retry policy for rate limits and server errors
(shared with the Sendy client), and capped pagination.
"""

import time
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import requests

from . import config
from .errors import UpstreamAPIError
from .models import SyncWindow, parse_timestamp

logger = logging.getLogger(__name__)

# (url_or_path, params) for the following page, or None when exhausted
NextPage = Optional[Tuple[str, Optional[Dict[str, Any]]]]


def _clean_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop None/empty values so they never reach the query string"""
    return {k: v for k, v in (params or {}).items() if v is not None and v != ""}


def _body_snippet(response: requests.Response, limit: int = 500) -> str:
    try:
        return response.text[:limit]
    except Exception:
        return ""


def _retry_after(response: requests.Response) -> float:
    try:
        return float(response.headers.get("Retry-After", 1))
    except (TypeError, ValueError):
        return 1.0


def retry_delay(response: requests.Response, attempt: int, max_retries: int,
                rate_limit_buffer: float) -> Optional[float]:
    """
    Seconds to wait before repeating a request, or None when the response
    should be returned (or raised) as it is.

    429 → Retry-After (default 1s) + buffer
    5xx → exponential backoff (1s, 2s, 4s, ...)
    The last attempt is never retried.
    """
    if attempt >= max_retries - 1:
        return None
    status = response.status_code
    if status == 429:
        return _retry_after(response) + rate_limit_buffer
    if 500 <= status < 600:
        return 2 ** attempt
    return None


def log_retry(provider: str, status: int, delay: float, attempt: int, max_retries: int) -> None:
    if status == 429:
        logger.warning(f"{provider} rate limit hit (429). Retrying after {delay:.1f}s "
                       f"(attempt {attempt + 1}/{max_retries})")
    else:
        logger.warning(f"{provider} server error ({status}). Retrying in {delay}s "
                       f"(attempt {attempt + 1}/{max_retries})")


class ApiClient:
    """Base REST client with retry-on-429/5xx and page-capped iteration"""

    provider = "API"

    def __init__(self, base_url: str, headers: Optional[Dict[str, str]] = None,
                 timeout: float = 20.0, max_retries: int = config.MAX_RETRIES,
                 max_pages: int = config.MAX_PAGES,
                 rate_limit_buffer: float = config.RATE_LIMIT_BUFFER,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.max_pages = max_pages
        self.rate_limit_buffer = rate_limit_buffer
        self.sleep = sleep

        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': 'Calendly-Shopify-Sendy-Sync/1.0'
        })
        if headers:
            self.session.headers.update({k: v for k, v in headers.items() if v})

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}{path}"

    def get_with_retry(self, path: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """
        GET with the provider retry policy.

        429 → wait Retry-After (+ buffer) and retry the same request
        5xx → exponential backoff (1s, 2s, 4s, ...)
        anything else ≥ 400, or a network failure → UpstreamAPIError at once
        """
        url = self._url(path)
        params = _clean_params(params)

        for attempt in range(self.max_retries):
            logger.debug(f"{self.provider} request: GET {url} {params or ''}")
            try:
                response = self.session.get(url, params=params or None, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                logger.error(f"{self.provider} request failed for {url}: {e}")
                raise UpstreamAPIError(self.provider, str(e)) from e

            status = response.status_code
            if status < 400:
                return response

            delay = retry_delay(response, attempt, self.max_retries, self.rate_limit_buffer)
            if delay is not None:
                log_retry(self.provider, status, delay, attempt, self.max_retries)
                self.sleep(delay)
                continue

            snippet = _body_snippet(response)
            logger.error(f"{self.provider} API error {status} for {url}")
            logger.debug(f"{self.provider} response body: {snippet}")
            raise UpstreamAPIError(self.provider, snippet or response.reason or "request failed", status)

        # range(max_retries) always returns or raises above
        raise UpstreamAPIError(self.provider, "retries exhausted")

    def parse_json(self, response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamAPIError(self.provider, f"malformed JSON response: {e}",
                                   response.status_code) from e
        return data if isinstance(data, dict) else {"data": data}

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.parse_json(self.get_with_retry(path, params))

    def iter_pages(self, path: str, params: Optional[Dict[str, Any]],
                   next_page: Callable[[requests.Response, Dict[str, Any]], NextPage],
                   label: str = "items") -> Iterator[Tuple[requests.Response, Dict[str, Any]]]:
        """
        Yield (response, body) page by page until next_page() returns None or
        max_pages pages have been read; the cap logs a warning instead of failing.
        """
        url, page_params = path, params
        pages = 0
        while True:
            response = self.get_with_retry(url, page_params)
            data = self.parse_json(response)
            pages += 1
            yield response, data

            following = next_page(response, data)
            if not following:
                return
            if pages >= self.max_pages:
                logger.warning(f"{self.provider}: reached maximum pagination attempts ({self.max_pages}) "
                               f"while fetching {label}. Stopping early.")
                return
            url, page_params = following


def log_page(provider: str, icon: str, page: int, batch: List[Dict[str, Any]], total: int,
             label: str, date_field: str) -> None:
    dates = sorted(str(item.get(date_field)) for item in batch if item.get(date_field))
    date_range = f"[{dates[0]} - {dates[-1]}]" if dates else ""
    logger.info(f"{icon} {provider} page {page}: fetched {len(batch)} {label}. "
                f"Total: {total}. Range: {date_range}")


def post_filter(items: List[Dict[str, Any]], window: SyncWindow,
                timestamp_of: Callable[[Dict[str, Any]], Optional[str]],
                provider: str, label: str) -> List[Dict[str, Any]]:
    """Re-check the date window locally; upstream query filters are not always honored"""
    if window.is_open():
        return items
    undated = sum(1 for item in items if parse_timestamp(timestamp_of(item)) is None)
    if undated:
        logger.warning(f"{provider}: {undated} {label} without a parseable timestamp kept "
                       f"without a date check.")
    kept = [item for item in items if window.contains(timestamp_of(item))]
    if len(kept) != len(items):
        logger.info(f"{provider} post-filter trimmed {label} from {len(items)} to {len(kept)} "
                    f"within date window.")
    return kept
