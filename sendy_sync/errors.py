"""Exceptions raised by the sync pipeline."""

from typing import Optional


class ConfigurationError(Exception):
    """Missing or invalid settings, detected before any network call."""


class UpstreamAPIError(Exception):
    """A remote API call failed permanently or ran out of retries."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        self.message = message
        super().__init__(f"{provider} API error"
                         f"{f' {status_code}' if status_code else ''}: {message}")
