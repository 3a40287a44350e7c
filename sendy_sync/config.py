#!/usr/bin/env python3
"""
config.py

Central configuration for the Calendly / Shopify → Sendy sync.

Everything is read from the environment (a local .env file is loaded first),
so the batch scripts, the webhook server and the diagnostics share one set of
settings. Edit .env, not this file, for per-install values.
"""

import os
import logging
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv

load_dotenv(override=True)

# =============================================================================
# 🔐 API CREDENTIALS
# =============================================================================

# Sendy installation (self-hosted)
SENDY_INSTALLATION_URL = os.getenv("SENDY_INSTALLATION_URL", "").strip().rstrip("/")
SENDY_API_KEY = os.getenv("SENDY_API_KEY", "").strip()
SENDY_LIST_ID = os.getenv("SENDY_LIST_ID", "").strip()
SENDY_SHOPIFY_LIST_ID = os.getenv("SENDY_SHOPIFY_LIST_ID", "").strip()
SENDY_BRAND_ID = os.getenv("SENDY_BRAND_ID", "").strip()

# Calendly personal access token (CALENDLY_PAT kept as an alias)
CALENDLY_TOKEN = (
    os.getenv("CALENDLY_PERSONAL_ACCESS_TOKEN") or os.getenv("CALENDLY_PAT") or ""
).strip()
CALENDLY_WEBHOOK_SECRET = os.getenv("CALENDLY_WEBHOOK_SECRET", "")

# Shopify Admin API
SHOPIFY_SHOP_NAME = os.getenv("SHOPIFY_SHOP_NAME", "").strip()
SHOPIFY_ACCESS_TOKEN = os.getenv("SHOPIFY_ACCESS_TOKEN", "").strip()
SHOPIFY_API_VERSION = os.getenv("SHOPIFY_API_VERSION", "2024-10")

# =============================================================================
# ⚙️ SYNC PARAMETERS
# =============================================================================

MAX_RETRIES = int(os.getenv("MAX_RETRIES", 3))              # attempts per request
MAX_PAGES = int(os.getenv("MAX_PAGES", 50))                 # pagination safety cap
RATE_LIMIT_BUFFER = float(os.getenv("RATE_LIMIT_BUFFER", 0.5))  # seconds added to Retry-After

DEFAULT_BATCH_SIZE = 20
DEFAULT_THROTTLE_MS = 250

CALENDLY_TIMEOUT = float(os.getenv("CALENDLY_TIMEOUT", 20))
SENDY_TIMEOUT = float(os.getenv("SENDY_TIMEOUT", 15))
SHOPIFY_TIMEOUT = float(os.getenv("SHOPIFY_TIMEOUT", 30))

# =============================================================================
# 🗂️ CACHE & STORAGE SETTINGS
# =============================================================================

CACHE_TTL = int(os.getenv("CACHE_TTL", 3600))               # in-memory entry lifetime (s)
SENDY_SYNC_CACHE_FILE = os.getenv("SENDY_SYNC_CACHE_FILE", "")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "logs")

# Webhook server
PORT = int(os.getenv("PORT", 3000))


def setup_logging(level: Optional[str] = None, log_dir: Optional[str] = None) -> None:
    """Configure root logging: logs/sync.log plus console output."""
    level = (level or LOG_LEVEL).upper()
    log_dir = log_dir or LOG_DIR
    os.makedirs(log_dir, exist_ok=True)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.FileHandler(os.path.join(log_dir, "sync.log")),
            logging.StreamHandler()
        ]
    )

    # Quiet noisy libs
    logging.getLogger("urllib3").setLevel(logging.INFO)
    logging.getLogger("requests").setLevel(logging.INFO)


def shopify_list_id() -> str:
    """Sendy list for Shopify customers, falling back to the main list."""
    return SENDY_SHOPIFY_LIST_ID or SENDY_LIST_ID


def validate_configuration(require: Tuple[str, ...] = ("sendy",),
                           env: Optional[Dict[str, str]] = None) -> Tuple[List[str], List[str]]:
    """
    Validate configuration settings before any network call.

    Args:
        require: Which integrations must be fully configured
                 ("sendy", "calendly", "shopify", "webhook")
        env: Mapping to read from instead of os.environ (used by tests)

    Returns:
        (errors, warnings) - the caller decides whether errors are fatal
    """
    env = os.environ if env is None else env
    errors: List[str] = []
    warnings: List[str] = []

    if "sendy" in require:
        url = env.get("SENDY_INSTALLATION_URL", "").strip()
        if not url:
            errors.append("SENDY_INSTALLATION_URL not configured")
        elif not url.startswith(("http://", "https://")):
            errors.append("SENDY_INSTALLATION_URL must start with http:// or https://")
        if not env.get("SENDY_API_KEY", "").strip():
            errors.append("SENDY_API_KEY not configured")

    if "calendly" in require:
        if not (env.get("CALENDLY_PERSONAL_ACCESS_TOKEN") or env.get("CALENDLY_PAT")):
            errors.append("CALENDLY_PERSONAL_ACCESS_TOKEN (or CALENDLY_PAT) not configured")

    if "shopify" in require:
        if not env.get("SHOPIFY_SHOP_NAME", "").strip():
            errors.append("SHOPIFY_SHOP_NAME not configured")
        if not env.get("SHOPIFY_ACCESS_TOKEN", "").strip():
            errors.append("SHOPIFY_ACCESS_TOKEN not configured")

    if "webhook" in require:
        if not env.get("SENDY_LIST_ID", "").strip():
            errors.append("SENDY_LIST_ID not configured")
        if not env.get("CALENDLY_WEBHOOK_SECRET"):
            warnings.append("CALENDLY_WEBHOOK_SECRET not set - webhook signatures will NOT be verified")

    return errors, warnings


def get_config_summary() -> Dict[str, object]:
    """Non-secret view of the active configuration"""
    return {
        "port": PORT,
        "sendy_url": SENDY_INSTALLATION_URL,
        "list_id": SENDY_LIST_ID,
        "shopify_list_id": shopify_list_id(),
        "cache_ttl": CACHE_TTL,
        "max_retries": MAX_RETRIES,
        "max_pages": MAX_PAGES,
        "webhook_secret_configured": bool(CALENDLY_WEBHOOK_SECRET),
    }
