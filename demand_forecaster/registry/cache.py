"""
Cache tiers used by the registry, feature engineering and provider clients.

Two layers:

  ``ModelCache``      in-process map of restaurant id → ``MLModel`` (hot path).
                      Owned by one ``ModelRegistry`` and invalidated explicitly.
  ``ExternalCache``   JSON key/value store with per-key TTL, shared between
                      processes when backed by Redis.

``build_external_cache(CacheConfig)`` picks the external implementation: a
non-empty ``redis_url`` gives ``RedisCache``, otherwise ``MemoryTTLCache``.

Redis errors are logged and treated as misses; a cache outage degrades to
database reads instead of failing predictions.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Optional, Protocol

import redis

from demand_forecaster.config import CacheConfig
from demand_forecaster.models.ml_model import MLModel

logger = logging.getLogger(__name__)


class ExternalCache(Protocol):
    """Minimal JSON cache interface."""

    def get_json(self, key: str) -> Optional[Any]: ...

    def set_json(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...


# ── External implementations ──────────────────────────────────────────────────


class MemoryTTLCache:
    """Process-local ``ExternalCache`` with lazy expiry.

    Values are stored as JSON text so callers always get a fresh copy back,
    matching what a network cache would return.

    Args:
        clock: Monotonic seconds source (injectable for tests).
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._store: dict[str, tuple[float, str]] = {}
        self._lock = threading.Lock()

    def get_json(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires_at, payload = entry
            if self._clock() >= expires_at:
                del self._store[key]
                return None
        return json.loads(payload)

    def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = json.dumps(value, default=str)
        with self._lock:
            self._store[key] = (self._clock() + ttl_seconds, payload)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


class RedisCache:
    """``ExternalCache`` backed by a Redis server (``SETEX`` / ``GET`` / ``DEL``)."""

    def __init__(self, client: "redis.Redis") -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get_json(self, key: str) -> Optional[Any]:
        try:
            payload = self._client.get(key)
        except redis.RedisError as exc:
            logger.warning("Redis GET %s failed: %s", key, exc)
            return None
        if payload is None:
            return None
        return json.loads(payload)

    def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            self._client.setex(key, ttl_seconds, json.dumps(value, default=str))
        except redis.RedisError as exc:
            logger.warning("Redis SETEX %s failed: %s", key, exc)

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            logger.warning("Redis DEL %s failed: %s", key, exc)

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False


def build_external_cache(config: Optional[CacheConfig] = None) -> ExternalCache:
    """Return ``RedisCache`` when ``redis_url`` is set, else ``MemoryTTLCache``."""
    config = config or CacheConfig()
    if config.redis_url:
        logger.info("Using Redis cache at %s", config.redis_url)
        return RedisCache.from_url(config.redis_url)
    return MemoryTTLCache()


# ── In-process model cache ────────────────────────────────────────────────────


class ModelCache:
    """Restaurant id → ACTIVE ``MLModel``, with a per-entry TTL.

    Args:
        ttl_seconds: Entry lifetime; ``0`` disables expiry.
        clock: Monotonic seconds source (injectable for tests).
    """

    def __init__(self, ttl_seconds: int = 3600, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._models: dict[str, tuple[float, MLModel]] = {}
        self._lock = threading.Lock()

    def get(self, restaurant_id: str) -> Optional[MLModel]:
        with self._lock:
            entry = self._models.get(restaurant_id)
            if entry is None:
                return None
            expires_at, model = entry
            if self.ttl_seconds and self._clock() >= expires_at:
                del self._models[restaurant_id]
                return None
            return model

    def put(self, model: MLModel) -> None:
        with self._lock:
            self._models[model.restaurant_id] = (self._clock() + self.ttl_seconds, model)

    def replace(self, model: MLModel) -> None:
        """Swap the cached copy without extending its TTL (no-op if absent)."""
        with self._lock:
            entry = self._models.get(model.restaurant_id)
            if entry is not None:
                self._models[model.restaurant_id] = (entry[0], model)

    def invalidate(self, restaurant_id: str) -> None:
        with self._lock:
            self._models.pop(restaurant_id, None)

    def clear(self) -> None:
        with self._lock:
            self._models.clear()

    def __contains__(self, restaurant_id: str) -> bool:
        return self.get(restaurant_id) is not None
