#!/usr/bin/env python
"""
Calendly / Shopify → Sendy Sync Engine

Takes the deduplicated candidate records of a run and decides, one by one,
whether each needs a subscribe call:

    memory cache hit        → skip (cached)
    persistent cache hit    → skip (already subscribed)
    Sendy says subscribed   → skip, remember in both cache layers
    Sendy says unsubscribed → skip, never resubscribe (memory only)
    bounced / complained    → skip (memory only)
    anything else           → queue

Queued records go through SendyClient.bulk_subscribe; successes are written
to both cache layers, failures leave the cache untouched.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from tqdm import tqdm

from . import config
from .cache import DualLayerCache
from .models import CandidateRecord, SubscriptionStatus, SyncWindow
from .report import SkipCounters, SyncReport
from .sendy_client import SendyClient

logger = logging.getLogger(__name__)

# Rough per-call latency used for the status-check duration estimate
ESTIMATED_MS_PER_CALL = 120


@dataclass
class SyncOptions:
    dry_run: bool = False
    batch_size: int = config.DEFAULT_BATCH_SIZE
    throttle_ms: int = config.DEFAULT_THROTTLE_MS


class SyncOrchestrator:
    """Sequential fetch-check-subscribe pipeline for one Sendy list"""

    def __init__(self, sendy: SendyClient, cache: DualLayerCache, list_id: str,
                 options: Optional[SyncOptions] = None, show_progress: bool = True):
        self.sendy = sendy
        self.cache = cache
        self.list_id = list_id
        self.options = options or SyncOptions()
        self.show_progress = show_progress

    def check_record(self, record: CandidateRecord, counters: SkipCounters) -> bool:
        """Route one record; True means it should be subscribed"""
        email = record.email

        if self.cache.memory_hit(self.list_id, email):
            logger.debug(f"Skipping cached email: {email}")
            counters.cached += 1
            return False
        if self.cache.persistent_hit(self.list_id, email):
            logger.debug(f"Skipping persistent-cached email: {email}")
            counters.already_subscribed += 1
            return False

        status = self.sendy.get_subscriber_status(email, self.list_id)

        if status is SubscriptionStatus.SUBSCRIBED:
            logger.debug(f"{email} already subscribed")
            self.cache.mark_subscribed(self.list_id, email)
            counters.already_subscribed += 1
            return False
        if status is SubscriptionStatus.UNSUBSCRIBED:
            logger.info(f"{email} previously unsubscribed; respecting status (will not resubscribe).")
            self.cache.mark_handled(self.list_id, email)
            counters.unsubscribed += 1
            return False
        if status in (SubscriptionStatus.BOUNCED, SubscriptionStatus.COMPLAINED):
            logger.warning(f"{email} status is {status.value}; skipping.")
            self.cache.mark_handled(self.list_id, email)
            counters.bounced_or_complained += 1
            return False
        if status is SubscriptionStatus.NOT_IN_LIST:
            counters.not_in_list += 1
        else:
            logger.debug(f"{email} status {status.value}; will attempt subscribe.")
            counters.unknown_status += 1
        return True

    def run(self, records: Sequence[CandidateRecord], window: Optional[SyncWindow] = None,
            source: str = "calendly") -> SyncReport:
        """Check every record in order, subscribe the queue and build the run report"""
        window = window or SyncWindow()
        counters = SkipCounters()
        report = SyncReport(list_id=self.list_id, dry_run=self.options.dry_run, source=source,
                            since=window.since, until=window.until, checked=len(records),
                            skipped=counters)

        logger.info(f"Found {len(records)} unique records to check against Sendy list {self.list_id}")
        if records:
            estimate = -(-len(records) * ESTIMATED_MS_PER_CALL // 1000)
            logger.info(f"Estimating status check duration ~{estimate}s "
                        f"(assuming ~{ESTIMATED_MS_PER_CALL}ms per API call).")

        queue: List[CandidateRecord] = []
        with tqdm(records,
                  desc=f"Checking list {self.list_id}",
                  unit="email",
                  ncols=80,
                  leave=True,
                  mininterval=2.0,
                  disable=not self.show_progress,
                  bar_format='{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]') as bar:
            for record in bar:
                if self.check_record(record, counters):
                    queue.append(record)

        report.attempted = len(queue)
        logger.info(f"🚀 Will attempt subscription for {len(queue)} emails (dryRun={self.options.dry_run}).")
        if self.options.dry_run:
            logger.info("Note: dry-run means results.success=false in the report entries "
                        "because no API call is made.")

        results = self.sendy.bulk_subscribe(self.list_id, queue,
                                            dry_run=self.options.dry_run,
                                            batch_size=self.options.batch_size,
                                            throttle_ms=self.options.throttle_ms)

        for result in results:
            if result.success:
                self.cache.mark_subscribed(self.list_id, result.email)
            elif not result.dry_run:
                logger.error(f"Failed to subscribe {result.email} to list {self.list_id}: {result.message}")
        report.results = results

        logger.info(f"🎉 Sync complete. {report.subscribed} subscribed, "
                    f"{report.subscription_failures} not subscribed (dryRun={self.options.dry_run}).")
        return report
