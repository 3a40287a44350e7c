#!/usr/bin/env python3
"""
main.py

Command line entry point for the batch syncs:

    sendy-sync calendly --from 2024-01-01 --to 2024-01-31 --dry-run
    sendy-sync shopify --source customers --since=2024-01-01T00:00:00Z

Each run fetches candidates for a date window, dedupes them, checks them
against Sendy, subscribes the rest and writes a JSON report to the working
directory. Exit code 0 on success, 1 on configuration or fatal run errors.
"""

import sys
import logging
import argparse
from typing import Any, Dict, List, Optional, Sequence, Tuple

from . import config
from .cache import DualLayerCache, FileCache, MemoryCache, default_cache_path
from .calendly_client import CalendlyClient
from .errors import ConfigurationError, UpstreamAPIError
from .models import CandidateRecord, SyncWindow, dedupe_records, normalize_date
from .report import SyncReport, write_report
from .sendy_client import SendyClient
from .shopify_client import ShopifyClient, extract_emails_from_orders, normalize_customer
from .sync import SyncOptions, SyncOrchestrator

logger = logging.getLogger(__name__)

SOURCES = {
    # command: (credentials to validate, cache file prefix, report prefix)
    "calendly": (("sendy", "calendly"), ".sendy_cache", "sync_report"),
    "shopify": (("sendy", "shopify"), ".sendy_shopify_cache", "shopify_sync_report"),
}

SAMPLE_SIZE = 5


def _add_sync_arguments(parser: argparse.ArgumentParser) -> None:
    window = parser.add_argument_group("date window")
    window.add_argument("--from", dest="date_from", metavar="DATE",
                        help="Start date; YYYY-MM-DD expands to 00:00:00Z")
    window.add_argument("--since", metavar="ISO",
                        help="Start timestamp, passed through unchanged")
    window.add_argument("--to", dest="date_to", metavar="DATE",
                        help="End date; YYYY-MM-DD expands to 23:59:59Z")
    window.add_argument("--until", metavar="ISO",
                        help="End timestamp, passed through unchanged")

    parser.add_argument("--list-id", help="Target Sendy list (defaults to the configured list)")
    parser.add_argument("--dry-run", action="store_true",
                        help="Check statuses but make no subscribe calls")
    parser.add_argument("--batch-size", type=int, default=config.DEFAULT_BATCH_SIZE,
                        help="Records per subscribe batch (default: %(default)s)")
    parser.add_argument("--throttle-ms", type=int, default=config.DEFAULT_THROTTLE_MS,
                        help="Delay between subscribe calls in ms (default: %(default)s)")

    cache = parser.add_argument_group("cache")
    cache.add_argument("--no-cache", action="store_true",
                       help="Disable the in-memory cache")
    cache.add_argument("--clear-cache", action="store_true",
                       help="Clear the in-memory cache at the start of the run")
    cache.add_argument("--no-persistent-cache", action="store_true",
                       help="Disable the persistent file cache")
    cache.add_argument("--cache-file", help="Path of the persistent cache file")
    cache.add_argument("--refresh-persistent", action="store_true",
                       help="Forget every stored email for this list before the run")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sendy-sync",
        description="Sync Calendly invitees or Shopify customers into a Sendy list",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s calendly --from 2024-01-01 --to 2024-01-31 --dry-run
  %(prog)s calendly --since=2024-01-01T00:00:00Z --list-id abc123
  %(prog)s shopify --source customers --from 2024-01-01
  %(prog)s shopify --order-status closed --no-persistent-cache
        """
    )
    parser.add_argument("--log-level", default=None,
                        help="Override LOG_LEVEL for this run")
    subparsers = parser.add_subparsers(dest="command", metavar="{calendly,shopify}")
    subparsers.required = True

    calendly = subparsers.add_parser("calendly", help="Sync Calendly invitees")
    _add_sync_arguments(calendly)

    shopify = subparsers.add_parser("shopify", help="Sync Shopify customers")
    _add_sync_arguments(shopify)
    shopify.add_argument("--source", choices=("orders", "customers"), default="orders",
                         type=str.lower, help="Read customers from orders or the customer list")
    shopify.add_argument("--order-status", default="any",
                         help="Shopify order status filter (default: %(default)s)")
    return parser


def resolve_window(args: argparse.Namespace) -> SyncWindow:
    """--from/--to are normalized, --since/--until are used verbatim"""
    since = normalize_date(args.date_from, "since") if args.date_from else args.since
    until = normalize_date(args.date_to, "until") if args.date_to else args.until
    return SyncWindow(since or None, until or None)


def resolve_list_id(args: argparse.Namespace) -> str:
    if args.list_id:
        return args.list_id
    list_id = config.shopify_list_id() if args.command == "shopify" else config.SENDY_LIST_ID
    if not list_id:
        raise ConfigurationError("Missing Sendy list ID. Set SENDY_LIST_ID in .env or pass --list-id.")
    return list_id


def build_cache(args: argparse.Namespace, list_id: str, prefix: str) -> Tuple[DualLayerCache, Optional[str]]:
    """Assemble the cache layers the flags ask for; returns (cache, persistent file path or None)"""
    memory = MemoryCache()
    if args.clear_cache:
        memory.clear()
        logger.info("In-memory cache cleared at start of run (--clear-cache).")

    if args.no_persistent_cache:
        logger.info("Persistent file cache disabled (--no-persistent-cache).")
        return DualLayerCache(memory=memory, use_memory=not args.no_cache), None

    path = default_cache_path(list_id, prefix=prefix, override=args.cache_file)
    file_cache = FileCache(path)
    file_cache.load()
    if args.refresh_persistent:
        logger.info("Refreshing persistent cache: clearing existing stored emails (--refresh-persistent).")
        file_cache.ensure_list(list_id)["emails"] = {}
        file_cache.save()
    logger.info(f"💾 Persistent cache: {path} ({file_cache.count(list_id)} emails stored for list {list_id})")
    return DualLayerCache(memory=memory, file=file_cache, use_memory=not args.no_cache), path


def fetch_calendly(client: CalendlyClient, window: SyncWindow) -> List[CandidateRecord]:
    logger.info("📅 Fetching Calendly invitees...")
    records = dedupe_records(client.list_invitees_across_events(since=window.since, until=window.until))
    logger.info(f"✅ Found {len(records)} unique invitee emails")
    return records


def fetch_shopify(client: ShopifyClient, window: SyncWindow, source: str,
                  order_status: str) -> Tuple[List[CandidateRecord], int]:
    """(records, orders fetched); orders stay 0 when reading the customer list"""
    if source == "customers":
        logger.info("🛍️ Fetching customers from Shopify...")
        customers = client.list_customers(since=window.since, until=window.until, limit=250)
        records = dedupe_records(r for r in (normalize_customer(c) for c in customers) if r)
        logger.info(f"✅ Found {len(records)} customers from Shopify customer list")
        return records, 0

    logger.info("📦 Fetching orders from Shopify...")
    orders = client.list_orders(since=window.since, until=window.until, status=order_status, limit=250)
    records = extract_emails_from_orders(orders)
    logger.info(f"✅ Found {len(records)} unique customer emails from {len(orders)} orders")
    return records, len(orders)


def _sample(records: Sequence[CandidateRecord]) -> List[Dict[str, Any]]:
    return [{
        "email": r.email,
        "name": r.name,
        "order_id": r.extra.get("order_id"),
        "order_value": r.extra.get("order_value"),
        "created_at": r.created_at,
    } for r in records[:SAMPLE_SIZE]]


def run_sync(args: argparse.Namespace, source_client: Any = None, sendy: Optional[SendyClient] = None,
             report_dir: Optional[str] = None) -> Tuple[SyncReport, str]:
    """
    One full sync run for args.command.

    Clients are built from configuration unless injected; configuration is
    validated first so nothing touches the network when it is incomplete.
    Returns the report and the path it was written to.
    """
    required, cache_prefix, report_prefix = SOURCES[args.command]
    list_id = resolve_list_id(args)
    if source_client is None or sendy is None:
        errors, warnings = config.validate_configuration(required)
        for warning in warnings:
            logger.warning(warning)
        if errors:
            raise ConfigurationError("; ".join(errors))

    window = resolve_window(args)
    if window.is_open():
        logger.warning("No date window provided (--since/--until or --from/--to). "
                       "Fetching ALL records may take a while.")
    else:
        logger.info(f"Date window: {window.describe()}")

    sendy = sendy or SendyClient()
    cache, cache_path = build_cache(args, list_id, cache_prefix)

    extra_totals: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}
    try:
        if args.command == "shopify":
            source = args.source
            records, orders_fetched = fetch_shopify(source_client or ShopifyClient(), window,
                                                    source, args.order_status)
            extra_totals = {"orders_fetched": orders_fetched, "customers_checked": len(records)}
            extra = {"orderStatus": args.order_status, "sample_customers": _sample(records)}
        else:
            source = "calendly"
            records = fetch_calendly(source_client or CalendlyClient(), window)

        options = SyncOptions(dry_run=args.dry_run, batch_size=args.batch_size,
                              throttle_ms=args.throttle_ms)
        report = SyncOrchestrator(sendy, cache, list_id, options).run(records, window, source=source)
    finally:
        cache.close()

    report.persistent_cache_file = cache_path
    report.extra_totals = extra_totals
    report.extra = extra
    path = write_report(report, directory=report_dir, prefix=report_prefix)

    cache.save()
    if cache_path:
        logger.info(f"💾 Persistent cache updated ({cache.persistent_count(list_id)} emails stored).")
    return report, path


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config.setup_logging(args.log_level)

    try:
        run_sync(args)
    except ConfigurationError as e:
        logger.error(f"❌ Configuration error: {e}")
        return 1
    except UpstreamAPIError as e:
        logger.error(f"❌ {args.command} sync failed: {e}")
        return 1

    logger.info(f"✨ {args.command.capitalize()} sync completed successfully.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
