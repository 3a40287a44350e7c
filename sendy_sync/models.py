"""
models.py

Canonical record types shared by the API clients, the sync pipeline and the
report writer, plus the date-window helpers used by the CLI.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

DRY_RUN_MESSAGE = "dry-run"

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_FRACTION = re.compile(r"\.(\d+)")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class SubscriptionStatus(Enum):
    """Subscriber status as reported by Sendy, normalized"""
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"
    UNCONFIRMED = "unconfirmed"
    BOUNCED = "bounced"
    COMPLAINED = "complained"
    DELETED = "deleted"
    NOT_IN_LIST = "not-in-list"
    UNKNOWN = "unknown"

    @classmethod
    def from_raw(cls, raw: Optional[str]) -> "SubscriptionStatus":
        """Map Sendy's plain-text status ("Subscribed", "Email does not exist in list", ...)"""
        text = (raw or "").strip().lower()
        if text in ("not in list", "email does not exist in list"):
            return cls.NOT_IN_LIST
        for status in cls:
            if status.value == text:
                return status
        return cls.UNKNOWN


class SubscribeOutcome(Enum):
    """Classification of a Sendy /subscribe response body"""
    SUBSCRIBED = "subscribed"
    ALREADY_SUBSCRIBED = "already_subscribed"
    FAILED = "failed"
    UNRECOGNIZED = "unrecognized"

    @property
    def success(self) -> bool:
        return self in (SubscribeOutcome.SUBSCRIBED, SubscribeOutcome.ALREADY_SUBSCRIBED)


@dataclass
class CandidateRecord:
    """A person pulled from Calendly or Shopify who may be subscribed."""
    email: str
    name: str = ""
    created_at: Optional[str] = None
    source_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.email = normalize_email(self.email)
        self.name = (self.name or "").strip()

    @property
    def created(self) -> datetime:
        return parse_timestamp(self.created_at) or _EPOCH

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "email": self.email,
            "name": self.name,
            "created_at": self.created_at,
            "source_id": self.source_id,
        }
        data.update({k: v for k, v in self.extra.items() if k != "raw"})
        return data


@dataclass
class SyncResult:
    """Outcome of one attempted subscription."""
    email: str
    success: bool
    message: str = ""
    status_code: Optional[int] = None
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "email": self.email,
            "success": self.success,
            "message": self.message,
        }
        if self.status_code is not None:
            data["statusCode"] = self.status_code
        if self.dry_run:
            data["dryRun"] = True
        return data


@dataclass
class SyncWindow:
    """Inclusive [since, until] bound for a fetch; either side may be open."""
    since: Optional[str] = None
    until: Optional[str] = None

    def is_open(self) -> bool:
        return not self.since and not self.until

    def contains(self, timestamp: Optional[str]) -> bool:
        """Missing or unparseable timestamps count as inside the window"""
        if self.is_open():
            return True
        moment = parse_timestamp(timestamp)
        if moment is None:
            return True
        lower = parse_timestamp(self.since)
        upper = parse_timestamp(self.until)
        if lower and moment < lower:
            return False
        if upper and moment > upper:
            return False
        return True

    def describe(self) -> str:
        return f"since={self.since or 'unset'} until={self.until or 'unset'}"


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fromisoformat before 3.11 only takes 3- or 6-digit fractions
    text = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_date(value: Optional[str], kind: str) -> Optional[str]:
    """
    Expand a bare YYYY-MM-DD into the start ("since") or end ("until") of that
    day in UTC. Values that already carry a time part pass through unchanged.
    """
    if not value:
        return value
    if "T" in value:
        return value
    if _DATE_ONLY.match(value):
        return f"{value}T23:59:59Z" if kind == "until" else f"{value}T00:00:00Z"
    return value


def dedupe_records(records: Iterable[CandidateRecord]) -> List[CandidateRecord]:
    """
    Collapse records sharing an email, keeping the most recent created_at,
    and return them oldest first.
    """
    by_email: Dict[str, CandidateRecord] = {}
    for record in records:
        if not record.email:
            continue
        current = by_email.get(record.email)
        if current is None or record.created > current.created:
            by_email[record.email] = record
    return sorted(by_email.values(), key=lambda r: r.created)
