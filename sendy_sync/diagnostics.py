#!/usr/bin/env python3
"""
diagnostics.py

Read-only checks against the three services, for setting up an install or
debugging a failed run:

    python -m sendy_sync.diagnostics test-calendly
    python -m sendy_sync.diagnostics test-sendy --list-id abc123
    python -m sendy_sync.diagnostics test-shopify
    python -m sendy_sync.diagnostics sendy-summary
    python -m sendy_sync.diagnostics sendy-lists | sendy-brands
    python -m sendy_sync.diagnostics calendly-analytics --since=2024-01-01T00:00:00Z --top=5

Exit codes: 0 OK, 1 missing credentials, 2 upstream API error.
"""

import sys
import json
import logging
import argparse
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from . import config
from .calendly_client import CalendlyClient, event_uuid
from .errors import ConfigurationError, UpstreamAPIError
from .models import CandidateRecord, parse_timestamp
from .sendy_client import SendyClient
from .shopify_client import ShopifyClient, extract_emails_from_orders

logger = logging.getLogger(__name__)


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


# ─── analytics helpers ────────────────────────────────────────────────────

def bucket_by_day(records: Iterable[CandidateRecord]) -> Dict[str, int]:
    """Bookings per YYYY-MM-DD (taken from created_at as written)"""
    buckets: Dict[str, int] = {}
    for record in records:
        if not record.created_at:
            continue
        day = record.created_at[:10]
        buckets[day] = buckets.get(day, 0) + 1
    return buckets


def bucket_by_hour(records: Iterable[CandidateRecord]) -> Dict[int, int]:
    """Bookings per UTC hour of day"""
    buckets: Dict[int, int] = {}
    for record in records:
        moment = parse_timestamp(record.created_at)
        if moment is None:
            continue
        hour = moment.astimezone(timezone.utc).hour
        buckets[hour] = buckets.get(hour, 0) + 1
    return buckets


def top_invitees(records: Iterable[CandidateRecord], limit: int = 10) -> List[Dict[str, Any]]:
    counts = Counter(r.email for r in records if r.email)
    return [{"email": email, "count": count} for email, count in counts.most_common(limit)]


def calendly_analytics(records: Sequence[CandidateRecord], since: Optional[str] = None,
                       until: Optional[str] = None, top: int = 10) -> Dict[str, Any]:
    return {
        "range": {"since": since, "until": until},
        "total_invitees": len(records),
        "unique_emails": len({r.email for r in records if r.email}),
        "per_day": bucket_by_day(records),
        "per_hour_utc": bucket_by_hour(records),
        "top_invitees": top_invitees(records, top),
    }


# ─── commands ─────────────────────────────────────────────────────────────

def _require(*integrations: str) -> None:
    errors, _warnings = config.validate_configuration(integrations)
    if errors:
        raise ConfigurationError("; ".join(errors))


def check_calendly(args, client: Optional[CalendlyClient] = None) -> None:
    """Identity, next upcoming appointment, all-time totals"""
    if client is None:
        _require("calendly")
        client = CalendlyClient()

    user = client.get_current_user()
    print("✅ Calendly connection OK")
    _print({
        "user_uri": user.get("uri"),
        "name": user.get("name"),
        "slug": user.get("slug"),
        "current_organization": user.get("current_organization"),
    })

    now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    upcoming = [e for e in client.list_scheduled_events(since=now, count=50) if e.get("start_time")]
    upcoming.sort(key=lambda e: parse_timestamp(e["start_time"]) or datetime.max.replace(tzinfo=timezone.utc))
    print("\nNext upcoming appointment:")
    if upcoming:
        event = upcoming[0]
        _print({
            "name": event.get("name") or event.get("event_type") or "Scheduled Event",
            "start_time": event.get("start_time"),
            "end_time": event.get("end_time"),
            "uri": event.get("uri"),
        })
    else:
        print("None found")

    events = client.list_scheduled_events()
    print(f"\nTotal appointments (all time): {len(events)}")
    emails = set()
    for event in events:
        for invitee in client.list_invitees_for_event(event_uuid(event)):
            if invitee.get("email"):
                emails.add(invitee["email"].lower())
    print(f"Unique invitees (all time): {len(emails)}")


def check_sendy(args, client: Optional[SendyClient] = None) -> None:
    """Active subscriber count for one list"""
    list_id = getattr(args, "list_id", None) or config.SENDY_LIST_ID
    if client is None:
        _require("sendy")
        client = SendyClient()
    if not list_id:
        raise ConfigurationError("Provide a list id via SENDY_LIST_ID in .env or --list-id")

    result = client.get_active_subscriber_count(list_id)
    status = result.get("status")
    if "raw" not in result or (status and status >= 400):
        raise UpstreamAPIError("Sendy", result.get("message") or result.get("raw") or "request failed", status)

    if result["success"]:
        print("✅ Sendy connection OK")
        _print({"list_id": list_id, "active_subscribers": result["count"]})
    else:
        print("✅ Sendy connection OK (response not numeric, raw shown below):")
        print(result["raw"])


def check_shopify(args, client: Optional[ShopifyClient] = None) -> None:
    """Shop info, recent orders and the unique customer emails they yield"""
    if client is None:
        _require("shopify")
        client = ShopifyClient()

    shop = client.get_shop_info()
    print("✅ Shopify connection OK")
    _print({k: shop.get(k) for k in ("name", "domain", "email", "currency", "timezone", "plan_name")})

    orders = client.list_orders(limit=250)
    print(f"\nRecent orders: {len(orders)} found")
    if orders:
        sample = orders[0]
        print("\nMost recent order sample:")
        _print({
            "id": sample.get("id"),
            "order_number": sample.get("order_number") or sample.get("name"),
            "email": sample.get("email"),
            "customer_email": (sample.get("customer") or {}).get("email"),
            "created_at": sample.get("created_at"),
            "total_price": sample.get("total_price"),
            "currency": sample.get("currency"),
        })

    customers = extract_emails_from_orders(orders)
    print(f"Unique customer emails: {len(customers)}")
    for idx, customer in enumerate(customers[:3], start=1):
        print(f"  {idx}. {customer.email} ({customer.name}) - Order #{customer.extra.get('order_number')} "
              f"- {customer.extra.get('order_value')}")


def sendy_summary(args, client: Optional[SendyClient] = None) -> Dict[str, Any]:
    if client is None:
        _require("sendy")
        client = SendyClient()
    list_id = getattr(args, "list_id", None) or config.SENDY_LIST_ID
    if not list_id:
        logger.warning("No list id provided; pass --list-id or set SENDY_LIST_ID in .env")

    summary: Dict[str, Any] = {"list": {"id": list_id}, "lists_overview": None}
    if list_id:
        count = client.get_active_subscriber_count(list_id)
        summary["list"]["active_subscribers"] = count["count"] if count["success"] else None
        if not count["success"]:
            summary["list"]["error"] = count.get("message") or count.get("raw")

    lists = client.list_lists()
    if lists["success"]:
        ids = list((lists["lists"] or {}).keys()) if isinstance(lists["lists"], dict) else []
        summary["lists_overview"] = {
            "total": len(ids),
            "sample": [{"id": i, **(lists["lists"].get(i) or {})} for i in ids[:5]],
        }
    else:
        summary["lists_overview"] = {"success": False,
                                     "message": lists.get("message") or "List endpoint not available"}
    _print(summary)
    return summary


def sendy_lists(args, client: Optional[SendyClient] = None) -> None:
    if client is None:
        _require("sendy")
        client = SendyClient()
    _print(client.list_lists())


def sendy_brands(args, client: Optional[SendyClient] = None) -> None:
    if client is None:
        _require("sendy")
        client = SendyClient()
    _print(client.list_brands())


def analytics(args, client: Optional[CalendlyClient] = None) -> Dict[str, Any]:
    if client is None:
        _require("calendly")
        client = CalendlyClient()
    logger.info("Fetching events and invitees for analytics...")
    records = client.list_invitees_across_events(since=args.since, until=args.until)
    summary = calendly_analytics(records, args.since, args.until, args.top)
    _print(summary)
    return summary


COMMANDS = {
    "test-calendly": check_calendly,
    "test-sendy": check_sendy,
    "test-shopify": check_shopify,
    "sendy-summary": sendy_summary,
    "sendy-lists": sendy_lists,
    "sendy-brands": sendy_brands,
    "calendly-analytics": analytics,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sendy-sync-diagnostics",
                                     description="Connection checks and reports for Calendly, Sendy and Shopify")
    subparsers = parser.add_subparsers(dest="command", metavar="{" + ",".join(COMMANDS) + "}")
    subparsers.required = True

    subparsers.add_parser("test-calendly", help="Check the Calendly token and show booking totals")
    for name in ("test-sendy", "sendy-summary"):
        sub = subparsers.add_parser(name, help="Check the Sendy install" if name == "test-sendy"
                                    else "Subscriber count and lists overview")
        sub.add_argument("--list-id", help="Sendy list (defaults to SENDY_LIST_ID)")
    subparsers.add_parser("test-shopify", help="Check the Shopify token and show recent orders")
    subparsers.add_parser("sendy-lists", help="Lists of SENDY_BRAND_ID")
    subparsers.add_parser("sendy-brands", help="Brands of the Sendy install")

    stats = subparsers.add_parser("calendly-analytics", help="Bookings per day/hour and top invitees")
    stats.add_argument("--since", help="ISO start timestamp")
    stats.add_argument("--until", help="ISO end timestamp")
    stats.add_argument("--top", type=int, default=10, help="How many top invitees to list (default: %(default)s)")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config.setup_logging()
    try:
        COMMANDS[args.command](args)
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 1
    except UpstreamAPIError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
