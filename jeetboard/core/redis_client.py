"""
Redis key-value store with in-memory fallback.

Mirrors computed snapshots so several workers can share them. When Redis is
disabled or unreachable every call degrades to a process-local dict, so the
cache layer above never has to care which backend is live.
"""

import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

import redis

from ..config import JeetConfig

logger = logging.getLogger(__name__)


class RedisClient:
    """
    Namespaced Redis wrapper storing JSON documents with a TTL.

    If Redis is unavailable or disabled, falls back to an in-memory map of
    key -> (value, expiry monotonic time).
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        enabled: Optional[bool] = None,
        namespace: str = "jeetboard",
    ):
        """
        Initialize the store.

        Args:
            redis_url: Redis connection URL (defaults to config)
            enabled: Whether Redis is enabled (defaults to config)
            namespace: Prefix applied to every key
        """
        self.enabled = JeetConfig.get_redis_enabled() if enabled is None else enabled
        self.redis_url = redis_url or JeetConfig.get_redis_url()
        self.namespace = namespace

        self.redis_client: Optional[redis.Redis] = None
        self._fallback: Dict[str, Tuple[str, Optional[float]]] = {}

        if self.enabled:
            try:
                self.redis_client = redis.Redis.from_url(
                    self.redis_url,
                    decode_responses=True,
                    socket_connect_timeout=2,
                    socket_timeout=2,
                )
                self.redis_client.ping()
                logger.info("Redis store initialized")
            except (redis.RedisError, ValueError) as e:
                logger.warning(f"Failed to connect to Redis: {e}. Using in-memory store.")
                self.enabled = False
                self.redis_client = None
        else:
            logger.debug("Redis disabled, using in-memory store")

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> Optional[str]:
        """Raw string value, or None if missing/expired."""
        if self.redis_client is not None:
            try:
                return self.redis_client.get(self._key(key))
            except redis.RedisError as e:
                logger.debug(f"Redis get failed for {key}: {e}, using fallback")

        item = self._fallback.get(key)
        if item is None:
            return None
        value, expiry = item
        if expiry is not None and time.monotonic() >= expiry:
            self._fallback.pop(key, None)
            return None
        return value

    def set(self, key: str, value: str, ttl_seconds: Optional[float] = None):
        """Store a raw string value; ``ttl_seconds=None`` means no expiry."""
        if self.redis_client is not None:
            try:
                if ttl_seconds:
                    self.redis_client.setex(self._key(key), max(1, int(ttl_seconds)), value)
                else:
                    self.redis_client.set(self._key(key), value)
                return
            except redis.RedisError as e:
                logger.debug(f"Redis set failed for {key}: {e}, using fallback")

        expiry = time.monotonic() + ttl_seconds if ttl_seconds else None
        self._fallback[key] = (value, expiry)

        if len(self._fallback) > 1000:
            now = time.monotonic()
            for k in [k for k, (_, exp) in self._fallback.items() if exp is not None and now >= exp]:
                del self._fallback[k]

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding undecodable cache entry {key}")
            self.delete(key)
            return None

    def set_json(self, key: str, value: Any, ttl_seconds: Optional[float] = None):
        self.set(key, json.dumps(value, separators=(",", ":")), ttl_seconds)

    def ttl_remaining(self, key: str) -> Optional[float]:
        """Seconds until expiry, or None when unknown/no expiry."""
        if self.redis_client is not None:
            try:
                ttl = self.redis_client.ttl(self._key(key))
                return float(ttl) if ttl and ttl > 0 else None
            except redis.RedisError as e:
                logger.debug(f"Redis ttl failed for {key}: {e}")

        item = self._fallback.get(key)
        if item is None or item[1] is None:
            return None
        return max(0.0, item[1] - time.monotonic())

    def delete(self, key: str):
        """Delete key from the store."""
        if self.redis_client is not None:
            try:
                self.redis_client.delete(self._key(key))
            except redis.RedisError as e:
                logger.debug(f"Redis delete failed for {key}: {e}")
        self._fallback.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``; returns the count removed."""
        removed = 0
        if self.redis_client is not None:
            try:
                for full_key in self.redis_client.scan_iter(match=f"{self._key(prefix)}*"):
                    removed += self.redis_client.delete(full_key)
            except redis.RedisError as e:
                logger.debug(f"Redis prefix delete failed for {prefix}: {e}")

        for k in [k for k in self._fallback if k.startswith(prefix)]:
            del self._fallback[k]
            removed += 1
        return removed

    def clear(self):
        """Clear every key in this namespace."""
        self.delete_prefix("")

    def is_available(self) -> bool:
        """Check if Redis is available and working."""
        if self.redis_client is None:
            return False
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError:
            return False
