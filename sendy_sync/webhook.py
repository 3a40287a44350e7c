#!/usr/bin/env python3
"""
webhook.py

Real-time path: Calendly posts invitee events here and every new booking is
subscribed to the configured Sendy list.

    GET  /health
    POST /webhook/calendly   (Calendly-Webhook-Signature: base64 HMAC-SHA256)

Run with `python -m sendy_sync.webhook` (uvicorn on $PORT).
"""

import hmac
import base64
import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from . import __version__, config
from .cache import MemoryCache
from .errors import ConfigurationError
from .models import normalize_email
from .sendy_client import SendyClient

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Calendly-Webhook-Signature"
INVITEE_CREATED = "invitee.created"


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Check a Calendly signature against the raw request body.

    Without a configured secret verification is skipped (and logged); with
    one, a missing or mismatching signature fails.
    """
    if not secret:
        logger.warning("No webhook secret configured - skipping signature verification")
        return True
    if not signature:
        return False
    expected = base64.b64encode(hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest())
    return hmac.compare_digest(signature.encode("utf-8"), expected)


def handle_calendly_event(body: Dict[str, Any], sendy: SendyClient, cache: MemoryCache,
                          list_id: str) -> str:
    """
    Act on one webhook event; returns what happened
    ("subscribed", "failed", "duplicate", "missing_email" or "ignored").
    """
    event = body.get("event")
    logger.info(f"Received Calendly webhook: {event}")
    if event != INVITEE_CREATED:
        logger.info(f"Ignoring event type: {event}")
        return "ignored"

    invitee = body.get("payload") or {}
    email = normalize_email(invitee.get("email"))
    name = invitee.get("name") or ""
    if not email:
        logger.warning("No email found in invitee data")
        return "missing_email"

    cache_key = f"processed:{email}:{invitee.get('created_at')}"
    if cache.has(cache_key):
        logger.info(f"Already processed invitee: {email}")
        return "duplicate"

    logger.info(f"Processing new invitee: {name} ({email})")
    result = sendy.subscribe(email, list_id, name=name)
    if not result.success:
        logger.error(f"Failed to add {email} to Sendy list {list_id}: {result.message}")
        return "failed"

    cache.set(cache_key, True)
    logger.info(f"Successfully added {email} to Sendy list {list_id}")
    return "subscribed"


def create_app(sendy: Optional[SendyClient] = None, cache: Optional[MemoryCache] = None,
               list_id: Optional[str] = None, secret: Optional[str] = None) -> FastAPI:
    app = FastAPI(title="Calendly-Sendy Integration", version=__version__)
    app.state.sendy = sendy or SendyClient()
    app.state.cache = cache if cache is not None else MemoryCache()
    app.state.list_id = list_id or config.SENDY_LIST_ID
    app.state.secret = config.CALENDLY_WEBHOOK_SECRET if secret is None else secret

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "calendly-sendy-integration",
        }

    @app.post("/webhook/calendly")
    async def calendly_webhook(request: Request):
        raw = await request.body()
        signature = request.headers.get(SIGNATURE_HEADER)
        if not verify_webhook_signature(raw, signature, app.state.secret):
            logger.warning("Invalid webhook signature")
            raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            body = json.loads(raw or b"{}")
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Invalid JSON body")

        try:
            await run_in_threadpool(handle_calendly_event, body, app.state.sendy,
                                    app.state.cache, app.state.list_id)
        except Exception:
            logger.exception("Error processing Calendly webhook")
            raise HTTPException(status_code=500, detail="Internal server error")
        return {"status": "received"}

    return app


def run_server() -> None:
    import uvicorn

    config.setup_logging()
    errors, warnings = config.validate_configuration(("sendy", "webhook"))
    for warning in warnings:
        logger.warning(warning)
    if errors:
        raise ConfigurationError("Invalid configuration. Server not started: " + "; ".join(errors))

    logger.info(f"Configuration: {config.get_config_summary()}")
    logger.info(f"Calendly-Sendy Integration Server running on port {config.PORT}")
    uvicorn.run(create_app(), host="0.0.0.0", port=config.PORT, log_level=config.LOG_LEVEL.lower())


def main() -> int:
    try:
        run_server()
    except ConfigurationError as e:
        logger.error(f"❌ {e}")
        return 1
    return 0


if __name__ == "__main__":
    import sys

    sys.exit(main())
