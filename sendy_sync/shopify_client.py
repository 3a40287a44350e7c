#!/usr/bin/env python3
"""
shopify_client.py

Shopify Admin REST client: orders and customers in a date window, paginated
through the Link header, normalized into CandidateRecords.
"""

import re
import logging
from typing import Any, Dict, List, Optional

from . import config
from .api_client import ApiClient, NextPage, log_page, post_filter
from .errors import UpstreamAPIError
from .models import CandidateRecord, SyncWindow, dedupe_records, normalize_email

logger = logging.getLogger(__name__)

_NEXT_LINK = re.compile(r'<([^>]+)>;\s*rel="next"')


def parse_next_link(link_header: Optional[str]) -> Optional[str]:
    """URL of the rel="next" entry in a Link header, if any"""
    if not link_header or not isinstance(link_header, str):
        return None
    match = _NEXT_LINK.search(link_header)
    return match.group(1) if match else None


def _full_name(person: Optional[Dict[str, Any]]) -> str:
    if not person:
        return ""
    return " ".join(p for p in (person.get("first_name"), person.get("last_name")) if p).strip()


def normalize_order(order: Dict[str, Any]) -> Optional[CandidateRecord]:
    """Order → record; email priority is order > customer > billing address"""
    customer = order.get("customer") or {}
    billing = order.get("billing_address") or {}
    email = normalize_email(order.get("email") or customer.get("email") or billing.get("email"))
    if not email:
        return None

    name = _full_name(customer) if customer else _full_name(billing)
    return CandidateRecord(
        email=email,
        name=name or email.split("@")[0],
        created_at=order.get("created_at"),
        source_id=str(order["id"]) if order.get("id") is not None else None,
        extra={
            "order_id": order.get("id"),
            "order_number": order.get("order_number") or order.get("name"),
            "order_value": order.get("total_price") or "0.00",
            "raw": order,
        },
    )


def normalize_customer(customer: Dict[str, Any]) -> Optional[CandidateRecord]:
    email = normalize_email(customer.get("email"))
    if not email:
        return None
    return CandidateRecord(
        email=email,
        name=_full_name(customer) or email.split("@")[0],
        created_at=customer.get("created_at"),
        source_id=str(customer["id"]) if customer.get("id") is not None else None,
        extra={"raw": customer},
    )


def extract_emails_from_orders(orders: List[Dict[str, Any]]) -> List[CandidateRecord]:
    """One record per email (most recent order wins), oldest first"""
    return dedupe_records(r for r in (normalize_order(o) for o in orders) if r)


class ShopifyClient(ApiClient):
    """Shopify Admin API client authenticated with an access token"""

    provider = "Shopify"

    def __init__(self, shop_name: Optional[str] = None, access_token: Optional[str] = None,
                 api_version: Optional[str] = None, **kwargs):
        self.shop_name = shop_name if shop_name is not None else config.SHOPIFY_SHOP_NAME
        self.access_token = access_token if access_token is not None else config.SHOPIFY_ACCESS_TOKEN
        self.api_version = api_version or config.SHOPIFY_API_VERSION
        if not self.shop_name or not self.access_token:
            logger.warning("Shopify configuration missing (SHOPIFY_SHOP_NAME or SHOPIFY_ACCESS_TOKEN).")

        clean_shop = re.sub(r"\.myshopify\.com$", "", self.shop_name or "")
        base_url = f"https://{clean_shop}.myshopify.com/admin/api/{self.api_version}"
        logger.debug(f"Shopify client initialized with base URL: {base_url}")

        kwargs.setdefault("timeout", config.SHOPIFY_TIMEOUT)
        super().__init__(base_url,
                         headers={"X-Shopify-Access-Token": self.access_token,
                                  "Content-Type": "application/json"},
                         **kwargs)

    def get_shop_info(self) -> Dict[str, Any]:
        data = self.get_json("/shop.json")
        return data.get("shop", data)

    def _list(self, path: str, key: str, params: Dict[str, Any], window: SyncWindow,
              icon: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []

        def next_page(response, _data) -> NextPage:
            url = parse_next_link(response.headers.get("Link") or response.headers.get("link"))
            return (url, None) if url else None

        try:
            pages = self.iter_pages(path, params, next_page, label=key)
            for page, (_response, data) in enumerate(pages, start=1):
                batch = data.get(key) or []
                items.extend(batch)
                log_page(self.provider, icon, page, batch, len(items), key, "created_at")
        except UpstreamAPIError as e:
            logger.error(f"Failed to list Shopify {key}: {e}")
            raise

        logger.info(f"✅ Fetched {len(items)} {key} from Shopify")
        return post_filter(items, window, lambda item: item.get("created_at"), self.provider, key)

    def list_orders(self, since: Optional[str] = None, until: Optional[str] = None,
                    status: str = "any", limit: int = 250,
                    fields: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"limit": limit, "status": status, "fields": fields,
                  "created_at_min": since, "created_at_max": until}
        return self._list("/orders.json", "orders", params, SyncWindow(since, until), "📦")

    def list_customers(self, since: Optional[str] = None, until: Optional[str] = None,
                       limit: int = 250) -> List[Dict[str, Any]]:
        params = {"limit": limit, "created_at_min": since, "created_at_max": until}
        return self._list("/customers.json", "customers", params, SyncWindow(since, until), "🛍️")

    def get_customer(self, customer_id: Optional[Any]) -> Optional[Dict[str, Any]]:
        """Single customer lookup; failures are logged and return None"""
        if not customer_id:
            return None
        try:
            data = self.get_json(f"/customers/{customer_id}.json")
        except UpstreamAPIError as e:
            logger.warning(f"Failed to fetch customer {customer_id}: {e}")
            return None
        return data.get("customer", data)
