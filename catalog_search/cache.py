"""
Redis cache layer for search results, query embeddings and the sync lease.

Redis is ONLY an accelerator, never the source of truth. Read and write
failures are logged and treated as cache misses.

Cache keys (all prefixed with the configured namespace):
- search:{hash}      final search result sets (TTL: search_cache_ttl_seconds)
- embedding:{hash}   query embeddings (TTL: embedding_cache_ttl_seconds)
- lock:{name}        lease held while a sync runs (TTL: sync_lock_ttl_seconds)
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from typing import Any

import redis

from catalog_search.config import Settings

logger = logging.getLogger(__name__)

# Compare-and-delete so a lease is only released by its holder
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

# Compare-and-expire so only the holder can extend its lease
EXTEND_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class RedisCache:
    """Key/value JSON cache with expiry on top of a redis-py client."""

    def __init__(self, client: redis.Redis, namespace: str = "catalog"):
        self.client = client
        self.namespace = namespace

    @classmethod
    def from_settings(cls, settings: Settings) -> RedisCache:
        client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        return cls(client, namespace=settings.cache_namespace)

    def _key(self, key: str) -> str:
        """Prefix key with namespace."""
        return f"{self.namespace}:{key}"

    def ping(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False

    # ------------------------------------------------------------------
    # JSON blobs
    # ------------------------------------------------------------------

    def get_json(self, key: str) -> Any | None:
        """Return the cached value or None on miss or error."""
        full_key = self._key(key)
        try:
            cached = self.client.get(full_key)
        except redis.RedisError as exc:
            logger.warning("Cache read failed", extra={"key": full_key, "error": str(exc)})
            return None
        if cached is None:
            return None
        try:
            return json.loads(cached)
        except (TypeError, ValueError):
            logger.warning("Discarding malformed cache entry", extra={"key": full_key})
            return None

    def set_json(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Store a JSON-serializable value with a TTL. Returns False on error."""
        full_key = self._key(key)
        try:
            self.client.setex(full_key, ttl_seconds, json.dumps(value, default=str))
            return True
        except redis.RedisError as exc:
            logger.warning("Cache write failed", extra={"key": full_key, "error": str(exc)})
            return False

    # ------------------------------------------------------------------
    # Search results
    # ------------------------------------------------------------------

    @staticmethod
    def make_search_key(
        normalized_query: str, limit: int, threshold: float, include_inactive: bool
    ) -> str:
        """Deterministic key for a (query, options) combination."""
        raw = json.dumps(
            {
                "q": normalized_query,
                "l": limit,
                "t": round(threshold, 6),
                "i": include_inactive,
            },
            sort_keys=True,
            ensure_ascii=False,
        )
        return f"search:{hashlib.sha256(raw.encode()).hexdigest()[:32]}"

    def invalidate_search_cache(self) -> int:
        """Invalidate all cached search results. Returns count of keys deleted."""
        try:
            pattern = self._key("search:*")
            keys = list(self.client.scan_iter(match=pattern, count=100))
            if keys:
                return int(self.client.delete(*keys))
            return 0
        except redis.RedisError as exc:
            logger.warning("Search cache invalidation failed", extra={"error": str(exc)})
            return 0

    # ------------------------------------------------------------------
    # Lease
    # ------------------------------------------------------------------

    def acquire_lock(self, name: str, ttl_seconds: int) -> str | None:
        """Try to take a lease. Returns a token when acquired, None when held.

        Raises:
            redis.RedisError: The lease state is unknown, so the caller must not
                assume it holds the lock.
        """
        token = uuid.uuid4().hex
        acquired = self.client.set(self._key(f"lock:{name}"), token, nx=True, ex=ttl_seconds)
        return token if acquired else None

    def extend_lock(self, name: str, token: str, ttl_seconds: int) -> bool:
        """Reset the lease TTL. Returns False when the lease is no longer ours.

        Raises:
            redis.RedisError: Redis is unreachable.
        """
        extended = self.client.eval(
            EXTEND_LOCK_SCRIPT, 1, self._key(f"lock:{name}"), token, ttl_seconds
        )
        return bool(extended)

    def release_lock(self, name: str, token: str) -> bool:
        try:
            released = self.client.eval(
                RELEASE_LOCK_SCRIPT, 1, self._key(f"lock:{name}"), token
            )
            return bool(released)
        except redis.RedisError as exc:
            # The lease expires on its own TTL
            logger.warning("Lock release failed", extra={"lock": name, "error": str(exc)})
            return False
