"""Redis cache-aside layer for sync reads.

Keys follow ``sync:{kind}:{user_id}[:{id}]``. The cache is an accelerator
only: every failure is logged and treated as a miss.
"""

import json
import logging
from typing import Any

import redis

from src.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60
FILE_TTL_SECONDS = 7 * 24 * 60 * 60

# Shared synchronous Redis client
_redis: redis.Redis | None = None


def get_redis() -> redis.Redis:
    """Get the shared synchronous Redis client."""
    global _redis
    if _redis is None:
        _redis = redis.from_url(get_settings().redis_url, decode_responses=True)
    return _redis


def recent_key(user_id: str) -> str:
    return f"sync:recent:{user_id}"


def favorites_key(user_id: str) -> str:
    return f"sync:favorites:{user_id}"


def record_key(user_id: str, sync_id: str) -> str:
    return f"sync:record:{user_id}:{sync_id}"


class SyncCache:
    """Caches recent-item snapshots, favorites and single records per user.

    ``SyncCache(None)`` is a disabled cache that always misses.
    """

    def __init__(self, client: redis.Redis | None):
        self.client = client

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _get(self, key: str) -> Any | None:
        if self.client is None:
            return None
        try:
            raw = self.client.get(key)
            return json.loads(raw) if raw else None
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

    def _set(self, key: str, value: Any, ttl: int = DEFAULT_TTL_SECONDS) -> None:
        if self.client is None:
            return
        try:
            self.client.set(key, json.dumps(value), ex=ttl)
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    def _delete(self, *keys: str) -> None:
        if self.client is None:
            return
        try:
            self.client.delete(*keys)
        except Exception as e:
            logger.warning(f"Cache invalidation failed for {keys}: {e}")

    def get_recent(self, user_id: str) -> dict | None:
        """The newest records of a user plus whether they are all of them."""
        snapshot = self._get(recent_key(user_id))
        if not isinstance(snapshot, dict) or "items" not in snapshot:
            return None
        return snapshot

    def set_recent(self, user_id: str, items: list[dict], complete: bool) -> None:
        self._set(recent_key(user_id), {"items": items, "complete": complete})

    def get_favorites(self, user_id: str) -> list[dict] | None:
        favorites = self._get(favorites_key(user_id))
        return favorites if isinstance(favorites, list) else None

    def set_favorites(self, user_id: str, items: list[dict]) -> None:
        self._set(favorites_key(user_id), items)

    def get_record(self, user_id: str, sync_id: str) -> dict | None:
        return self._get(record_key(user_id, sync_id))

    def set_record(self, user_id: str, record: dict) -> None:
        # File records only carry a path reference and stay valid longer
        ttl = FILE_TTL_SECONDS if record.get("content_type") == "file" else DEFAULT_TTL_SECONDS
        self._set(record_key(user_id, record["id"]), record, ttl)

    def invalidate_lists(self, user_id: str) -> None:
        self._delete(recent_key(user_id), favorites_key(user_id))

    def invalidate_record(self, user_id: str, sync_id: str) -> None:
        self._delete(recent_key(user_id), favorites_key(user_id), record_key(user_id, sync_id))


def get_sync_cache() -> SyncCache:
    """Get the sync cache, disabled when caching is turned off."""
    if not get_settings().cache_enabled:
        return SyncCache(None)
    return SyncCache(get_redis())
