#!/usr/bin/env python3
"""
report.py

Per-run sync report: totals, skip reasons and every subscription result,
written once as sync_report_<unixMillis>.json.
"""

import os
import json
import time
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .models import SyncResult

logger = logging.getLogger(__name__)


@dataclass
class SkipCounters:
    cached: int = 0
    already_subscribed: int = 0
    unsubscribed: int = 0
    bounced_or_complained: int = 0
    not_in_list: int = 0
    unknown_status: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "cached": self.cached,
            "alreadySubscribed": self.already_subscribed,
            "unsubscribed": self.unsubscribed,
            "bouncedOrComplained": self.bounced_or_complained,
            "notInList": self.not_in_list,
            "unknownStatus": self.unknown_status,
        }


@dataclass
class SyncReport:
    list_id: str
    dry_run: bool = False
    source: str = "calendly"
    since: Optional[str] = None
    until: Optional[str] = None
    persistent_cache_file: Optional[str] = None
    checked: int = 0
    attempted: int = 0
    skipped: SkipCounters = field(default_factory=SkipCounters)
    results: List[SyncResult] = field(default_factory=list)
    extra_totals: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def subscribed(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def subscription_failures(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> Dict[str, Any]:
        totals: Dict[str, Any] = dict(self.extra_totals)
        totals.update({
            "checked": self.checked,
            "attempted": self.attempted,
            "subscribed": self.subscribed,
            "would_subscribe": self.attempted,
            "skipped": self.skipped.to_dict(),
            "subscriptionFailures": self.subscription_failures,
        })
        data: Dict[str, Any] = {
            "dryRun": self.dry_run,
            "source": self.source,
            "listId": self.list_id,
            "since": self.since,
            "until": self.until,
            "persistentCacheFile": self.persistent_cache_file,
            "totals": totals,
        }
        data.update(self.extra)
        data["results"] = [r.to_dict() for r in self.results]
        return data


def report_filename(prefix: str = "sync_report", now_ms: Optional[int] = None) -> str:
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return f"{prefix}_{now_ms}.json"


def write_report(report: SyncReport, directory: Optional[str] = None,
                 prefix: str = "sync_report", now_ms: Optional[int] = None) -> str:
    """
    Serialize the report to <directory>/<prefix>_<unixMillis>.json and return
    the path. Reports are never overwritten: a taken name gets a _1, _2, ...
    suffix.
    """
    directory = directory or os.getcwd()
    os.makedirs(directory, exist_ok=True)
    name = report_filename(prefix, now_ms)
    stem, ext = os.path.splitext(name)
    path = os.path.join(directory, name)
    suffix = 0
    while True:
        try:
            with open(path, "x", encoding="utf-8") as f:
                json.dump(report.to_dict(), f, indent=2)
            break
        except FileExistsError:
            suffix += 1
            path = os.path.join(directory, f"{stem}_{suffix}{ext}")
    logger.info(f"📝 Report written to {path}")
    return path
