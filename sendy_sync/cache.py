#!/usr/bin/env python3
"""
cache.py

Two cache layers used to avoid repeat Sendy calls:

- MemoryCache: per-process TTL cache ("already handled in this session")
- FileCache: JSON file remembering, per list, which emails were confirmed
  subscribed and when. Entries never expire; the file is rewritten in full
  on save().

DualLayerCache ties both together behind list-scoped email keys.
"""

import os
import json
import time
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from . import config
from .models import normalize_email

logger = logging.getLogger(__name__)


class MemoryCache:
    """Key → value store where each entry expires ttl seconds after being set"""

    def __init__(self, ttl: float = config.CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[str, tuple] = {}
        self.hits = 0
        self.misses = 0

    def _expired(self, expires_at: float) -> bool:
        return self.clock() >= expires_at

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return default
        value, expires_at = entry
        if self._expired(expires_at):
            del self._entries[key]
            self.misses += 1
            return default
        self.hits += 1
        return value

    def has(self, key: str) -> bool:
        return self.get(key, None) is not None

    def set(self, key: str, value: Any = True, ttl: Optional[float] = None) -> None:
        lifetime = self.ttl if ttl is None else ttl
        self._entries[key] = (value, self.clock() + lifetime)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def prune(self) -> int:
        """Drop expired entries; returns how many were removed"""
        expired = [k for k, (_v, exp) in self._entries.items() if self._expired(exp)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def stats(self) -> Dict[str, int]:
        self.prune()
        return {"keys": len(self._entries), "hits": self.hits, "misses": self.misses}

    def close(self) -> None:
        """End-of-run teardown: log usage and release entries"""
        stats = self.stats()
        if stats["keys"]:
            logger.debug(f"Cache stats: {stats['keys']} keys, {stats['hits']} hits, {stats['misses']} misses")
        self.clear()


def _empty() -> Dict[str, Any]:
    return {"lists": {}}


class FileCache:
    """
    Persistent record of confirmed subscriptions.

    Schema: {"lists": {<listId>: {"emails": {<email>: <ISO timestamp>}}}}
    Loaded lazily once per instance; a missing or unreadable file starts empty.
    """

    def __init__(self, path: str):
        self.path = path
        self.data: Dict[str, Any] = _empty()
        self._loaded = False

    def load(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read cache file {self.path} ({e}); starting with an empty cache")
            return
        if isinstance(data, dict) and isinstance(data.get("lists"), dict):
            self.data = data
        else:
            logger.warning(f"Cache file {self.path} has an unexpected shape; starting with an empty cache")

    def save(self) -> None:
        """Rewrite the whole file"""
        self.load()
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self.data, f, indent=2)

    def clear(self) -> None:
        self._loaded = True
        self.data = _empty()
        self.save()

    def ensure_list(self, list_id: str) -> Dict[str, Any]:
        self.load()
        entry = self.data["lists"].setdefault(str(list_id), {"emails": {}})
        entry.setdefault("emails", {})
        return entry

    def has_email(self, list_id: str, email: str) -> bool:
        self.load()
        entry = self.data["lists"].get(str(list_id)) or {}
        return bool((entry.get("emails") or {}).get(normalize_email(email)))

    def set_email(self, list_id: str, email: str, when: Optional[str] = None) -> None:
        when = when or datetime.now(timezone.utc).isoformat()
        self.ensure_list(list_id)["emails"][normalize_email(email)] = when

    def count(self, list_id: str) -> int:
        return len(self.ensure_list(list_id)["emails"])


def default_cache_path(list_id: str, prefix: str = ".sendy_cache",
                       override: Optional[str] = None, directory: Optional[str] = None) -> str:
    """--cache-file, then SENDY_SYNC_CACHE_FILE, then <prefix>_<listId>.json in the cwd"""
    if override:
        return override
    if config.SENDY_SYNC_CACHE_FILE:
        return config.SENDY_SYNC_CACHE_FILE
    return os.path.join(directory or os.getcwd(), f"{prefix}_{list_id}.json")


class DualLayerCache:
    """
    Memory + file cache keyed by (list ID, lowercased email).

    Either layer can be switched off (--no-cache / --no-persistent-cache);
    a disabled layer never reports a hit and ignores writes.
    """

    def __init__(self, memory: Optional[MemoryCache] = None, file: Optional[FileCache] = None,
                 use_memory: bool = True, use_persistent: bool = True):
        self.memory = memory if memory is not None else MemoryCache()
        self.file = file
        self.use_memory = use_memory
        self.use_persistent = use_persistent and file is not None

    @staticmethod
    def key(list_id: str, email: str) -> str:
        return f"synced:{list_id}:{normalize_email(email)}"

    def memory_hit(self, list_id: str, email: str) -> bool:
        return self.use_memory and self.memory.has(self.key(list_id, email))

    def persistent_hit(self, list_id: str, email: str) -> bool:
        return self.use_persistent and self.file.has_email(list_id, email)

    def mark_handled(self, list_id: str, email: str) -> None:
        """Memory only: skip further checks this session"""
        if self.use_memory:
            self.memory.set(self.key(list_id, email), True)

    def mark_subscribed(self, list_id: str, email: str, when: Optional[str] = None) -> None:
        self.mark_handled(list_id, email)
        if self.use_persistent:
            self.file.set_email(list_id, email, when)

    def persistent_count(self, list_id: str) -> int:
        return self.file.count(list_id) if self.use_persistent else 0

    def save(self) -> None:
        if self.use_persistent:
            self.file.save()

    def close(self) -> None:
        self.memory.close()
