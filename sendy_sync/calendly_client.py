#!/usr/bin/env python3
"""
calendly_client.py

Calendly API v2 client: scheduled events in a date window and the invitees
of each event, normalized into CandidateRecords.
"""

import logging
from typing import Any, Dict, List, Optional

from . import config
from .api_client import ApiClient, NextPage, log_page, post_filter
from .errors import UpstreamAPIError
from .models import CandidateRecord, SyncWindow

logger = logging.getLogger(__name__)

CALENDLY_BASE_URL = "https://api.calendly.com"


def event_uuid(event: Dict[str, Any]) -> Optional[str]:
    """Scheduled event UUID: last path segment of its URI"""
    uri = event.get("uri")
    if uri:
        return str(uri).rstrip("/").split("/")[-1]
    return event.get("uuid") or event.get("id")


def event_start(event: Dict[str, Any]) -> Optional[str]:
    return (event.get("start_time") or event.get("start")
            or event.get("created_at") or event.get("updated_at"))


def normalize_invitee(invitee: Dict[str, Any], event: Optional[Dict[str, Any]] = None) -> CandidateRecord:
    """Map a Calendly invitee (and its event) onto the canonical record"""
    event = event or {}
    email = invitee.get("email") or invitee.get("email_address") or ""
    name = invitee.get("name") or invitee.get("full_name") or (email.split("@")[0] if email else "")
    return CandidateRecord(
        email=email,
        name=name,
        created_at=invitee.get("created_at") or invitee.get("created") or invitee.get("time"),
        source_id=invitee.get("id") or invitee.get("uri") or invitee.get("resource"),
        extra={
            "event_uuid": event_uuid(event) if event else None,
            "event_name": event.get("name") or event.get("title") or event.get("event_type"),
            "raw": invitee,
        },
    )


def _next_page_info(data: Dict[str, Any]) -> Dict[str, Optional[str]]:
    pagination = data.get("pagination") or {}
    next_page = pagination.get("next_page")
    next_token = pagination.get("next_page_token")
    return {
        "next_page": next_page.strip() if isinstance(next_page, str) and next_page.strip() else None,
        "next_page_token": next_token.strip() if isinstance(next_token, str) and next_token.strip() else None,
    }


class CalendlyClient(ApiClient):
    """Calendly REST client authenticated with a personal access token"""

    provider = "Calendly"

    def __init__(self, token: Optional[str] = None, base_url: str = CALENDLY_BASE_URL, **kwargs):
        self.token = token if token is not None else config.CALENDLY_TOKEN
        if not self.token:
            logger.warning("No Calendly Personal Access Token found. "
                           "Set CALENDLY_PERSONAL_ACCESS_TOKEN (or CALENDLY_PAT).")
        kwargs.setdefault("timeout", config.CALENDLY_TIMEOUT)
        super().__init__(base_url,
                         headers={"Authorization": f"Bearer {self.token}" if self.token else ""},
                         **kwargs)

    def get_current_user(self) -> Dict[str, Any]:
        data = self.get_json("/users/me")
        return data.get("resource", data)

    def _scopes(self, user: Optional[str], organization: Optional[str]) -> List[Dict[str, str]]:
        if user or organization:
            return [{k: v for k, v in (("user", user), ("organization", organization)) if v}]
        me = self.get_current_user()
        # Prefer user scope first to avoid pulling entire organization events
        scopes = []
        if me.get("uri"):
            scopes.append({"user": me["uri"]})
        if me.get("current_organization"):
            scopes.append({"organization": me["current_organization"]})
        return scopes

    def _fetch_events_for_scope(self, base_params: Dict[str, Any]) -> List[Dict[str, Any]]:
        events: List[Dict[str, Any]] = []
        seen_tokens = set()

        def next_page(_response, data) -> NextPage:
            info = _next_page_info(data)
            if info["next_page"]:
                return info["next_page"], None
            token = info["next_page_token"]
            if not token or token == "null":
                return None
            if token in seen_tokens:
                logger.warning("Calendly pagination returned a repeated page token; "
                               "stopping pagination to avoid infinite loop.")
                return None
            seen_tokens.add(token)
            return "/scheduled_events", {**base_params, "page_token": token}

        pages = self.iter_pages("/scheduled_events", base_params, next_page, label="scheduled events")
        for page, (_response, data) in enumerate(pages, start=1):
            batch = data.get("collection") or []
            events.extend(batch)
            log_page(self.provider, "📅", page, batch, len(events), "events", "start_time")
        return events

    def list_scheduled_events(self, since: Optional[str] = None, until: Optional[str] = None,
                              user: Optional[str] = None, organization: Optional[str] = None,
                              count: int = 100) -> List[Dict[str, Any]]:
        """
        List scheduled events in a date window.

        Calendly requires a user or organization scope; when neither is given
        the current user's scope is tried first, then their organization.
        A 400 for one scope moves on to the next one; other errors propagate.
        """
        window = SyncWindow(since, until)
        last_error: Optional[UpstreamAPIError] = None

        for scope in self._scopes(user, organization):
            base_params = {"count": count, **scope,
                           "min_start_time": since, "max_start_time": until}
            try:
                events = self._fetch_events_for_scope(base_params)
            except UpstreamAPIError as e:
                last_error = e
                if e.status_code != 400:
                    break
                if "page_token" in e.message:
                    logger.warning(f"400 due to page_token; retrying first page without pagination "
                                   f"for scope {scope}")
                    try:
                        data = self.get_json("/scheduled_events", base_params)
                        return post_filter(data.get("collection") or [], window, event_start,
                                           self.provider, "events")
                    except UpstreamAPIError as retry_error:
                        logger.warning(f"Retry without page_token also failed: {retry_error}")
                logger.warning(f"Scheduled events 400 with scope {scope} - trying next scope if available.")
                continue
            return post_filter(events, window, event_start, self.provider, "events")

        logger.error(f"Failed to list scheduled events after trying available scopes: {last_error}")
        raise last_error or UpstreamAPIError(self.provider, "no usable scope for scheduled events")

    def list_invitees_for_event(self, uuid: Optional[str], count: int = 100) -> List[Dict[str, Any]]:
        """Invitees of one event; a failure returns whatever was fetched so far"""
        if not uuid:
            return []
        path = f"/scheduled_events/{uuid}/invitees"
        invitees: List[Dict[str, Any]] = []

        def next_page(_response, data) -> NextPage:
            token = _next_page_info(data)["next_page_token"]
            return (path, {"count": count, "page_token": token}) if token else None

        try:
            for _response, data in self.iter_pages(path, {"count": count}, next_page, label="invitees"):
                invitees.extend(data.get("collection") or [])
        except UpstreamAPIError as e:
            logger.warning(f"Failed to list invitees for event {uuid}: {e}")
        return invitees

    def list_invitees_across_events(self, since: Optional[str] = None,
                                    until: Optional[str] = None) -> List[CandidateRecord]:
        """Normalized invitees for every scheduled event in the window"""
        events = self.list_scheduled_events(since=since, until=until, count=100)
        logger.info(f"✅ Found {len(events)} scheduled events")

        records: List[CandidateRecord] = []
        for processed, event in enumerate(events, start=1):
            uuid = event_uuid(event)
            for invitee in self.list_invitees_for_event(uuid):
                records.append(normalize_invitee(invitee, event))
            if processed % 10 == 0:
                logger.info(f"⏳ Processed invitees for {processed}/{len(events)} events...")

        return records
