"""
Generation Cache
================

Stores generated protocols so that an equivalent request does not pay for
another (slow, billed) model call.

Key derivation
--------------
``generation_cache_key`` is a pure function of the *normalized* request:
list fields are sorted and the free-text prompt is hashed after
lower-casing, so two semantically identical requests always share a key,
whatever order their fields were given in.

Backends
--------
- InMemoryGenerationCache: process-local dict behind a lock, lazy expiry on
  read plus a sweep of expired entries once the store grows past a threshold
- RedisGenerationCache: shared across processes, expiry enforced by Redis

Both honour the same rule: an entry past its expiry time is never returned.
"""

import hashlib
import json
import logging
import threading
import time
from typing import Callable, Optional, Protocol

import redis
from pydantic import BaseModel, ValidationError as PydanticValidationError

from config import Settings, get_settings
from exceptions import ConfigurationError
from models import GenerationRequest, GeneratedProtocol


logger = logging.getLogger(__name__)


def generation_cache_key(request: GenerationRequest) -> str:
    """
    Derive the cache key for a generation request.

    Example:
        >>> a = GenerationRequest(duration=30, health_conditions=["b", "a"])
        >>> b = GenerationRequest(duration=30, health_conditions=["a", "b"])
        >>> generation_cache_key(a) == generation_cache_key(b)
        True
    """
    prompt = (request.natural_language_prompt or "").strip().lower()
    normalized = {
        "category": request.effective_category.value,
        "intensity": request.intensity.value,
        "duration": request.duration,
        "age": request.age,
        "conditions": sorted(_normalize_items(request.health_conditions)),
        "medications": sorted(_normalize_items(request.current_medications)),
        "experience": request.experience_level.value if request.experience_level else None,
        "goals": sorted(_normalize_items(request.specific_goals)),
        "prompt_hash": hashlib.sha256(prompt.encode("utf-8")).hexdigest(),
    }
    digest = hashlib.sha256(
        json.dumps(normalized, sort_keys=True).encode("utf-8")
    ).hexdigest()
    return f"protocol:{digest}"


def _normalize_items(items: list[str]) -> list[str]:
    return [item.strip().lower() for item in items if item and item.strip()]


class CacheEntry(BaseModel):
    """A stored protocol with its lifetime (epoch seconds)."""
    key: str
    result: GeneratedProtocol
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class GenerationCacheProtocol(Protocol):
    """
    Interface for generation caches.

    Injected into the generator so tests and multi-process deployments can
    swap the storage without touching the pipeline.
    """

    @property
    def stats(self) -> CacheStats:
        ...

    def get(self, key: str) -> Optional[GeneratedProtocol]:
        """Return the cached protocol, or None when absent or expired."""
        ...

    def set(self, key: str, result: GeneratedProtocol, ttl_seconds: int) -> None:
        ...

    def delete(self, key: str) -> bool:
        ...

    def clear(self) -> None:
        ...


# =============================================================================
# In-Memory Backend
# =============================================================================

class InMemoryGenerationCache:
    """
    Thread-safe in-process cache.

    Every read and write happens under one lock, so a reader never sees a
    half-applied write. Stored and returned protocols are deep copies:
    callers can mutate what they get back without corrupting the cache.
    """

    def __init__(
        self,
        cleanup_threshold: int = 1000,
        clock: Callable[[], float] = time.time
    ):
        self.cleanup_threshold = cleanup_threshold
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._stats = CacheStats()

    @property
    def stats(self) -> CacheStats:
        with self._lock:
            return self._stats.model_copy()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Optional[GeneratedProtocol]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                logger.debug(f"Cache miss: {key}")
                return None

            if entry.is_expired(now):
                del self._entries[key]
                self._stats.evictions += 1
                self._stats.misses += 1
                logger.debug(f"Cache entry expired: {key}")
                return None

            self._stats.hits += 1
            logger.debug(f"Cache hit: {key}")
            return entry.result.model_copy(deep=True)

    def set(self, key: str, result: GeneratedProtocol, ttl_seconds: int) -> None:
        now = self._clock()
        entry = CacheEntry(
            key=key,
            result=result.model_copy(deep=True),
            created_at=now,
            expires_at=now + ttl_seconds,
        )
        with self._lock:
            self._entries[key] = entry
            self._stats.sets += 1
            if len(self._entries) > self.cleanup_threshold:
                removed = self._remove_expired(now)
                logger.info(
                    f"Cache cleanup removed {removed} expired entries "
                    f"({len(self._entries)} remaining)"
                )

    def delete(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            if removed:
                self._stats.deletes += 1
            return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup_expired(self) -> int:
        """Remove every expired entry now. Returns the number removed."""
        now = self._clock()
        with self._lock:
            return self._remove_expired(now)

    def _remove_expired(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._stats.evictions += len(expired)
        return len(expired)


# =============================================================================
# Redis Backend
# =============================================================================

class RedisGenerationCache:
    """
    Generation cache shared through Redis.

    Entries are stored as JSON with SETEX, so Redis drops them at expiry.
    A Redis outage degrades to cache misses: the error is logged and
    counted, and generation carries on against the model.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[redis.Redis] = None
    ):
        self.settings = settings or get_settings()
        self.namespace = self.settings.redis_namespace
        self._client = client
        self._stats = CacheStats()
        self._lock = threading.Lock()

    @property
    def client(self) -> redis.Redis:
        """Lazy-create the Redis connection."""
        if self._client is None:
            self._client = redis.Redis(
                host=self.settings.redis_host,
                port=self.settings.redis_port,
                db=self.settings.redis_db,
                password=self.settings.redis_password or None,
                decode_responses=True,
                socket_connect_timeout=2
            )
        return self._client

    @property
    def stats(self) -> CacheStats:
        with self._lock:
            return self._stats.model_copy()

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _count(self, field: str) -> None:
        with self._lock:
            setattr(self._stats, field, getattr(self._stats, field) + 1)

    def get(self, key: str) -> Optional[GeneratedProtocol]:
        try:
            data = self.client.get(self._full_key(key))
        except redis.RedisError as e:
            logger.warning(f"Redis cache get failed for {key}: {e}")
            self._count("errors")
            return None

        if data is None:
            self._count("misses")
            logger.debug(f"Cache miss: {key}")
            return None

        try:
            protocol = GeneratedProtocol.model_validate_json(data)
        except PydanticValidationError as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e.error_count()} error(s)")
            self._count("errors")
            self.delete(key)
            return None

        self._count("hits")
        logger.debug(f"Cache hit: {key}")
        return protocol

    def set(self, key: str, result: GeneratedProtocol, ttl_seconds: int) -> None:
        try:
            self.client.setex(
                self._full_key(key),
                max(1, int(ttl_seconds)),
                result.model_dump_json(by_alias=True)
            )
        except redis.RedisError as e:
            logger.warning(f"Redis cache set failed for {key}: {e}")
            self._count("errors")
            return
        self._count("sets")

    def delete(self, key: str) -> bool:
        try:
            removed = self.client.delete(self._full_key(key)) > 0
        except redis.RedisError as e:
            logger.warning(f"Redis cache delete failed for {key}: {e}")
            self._count("errors")
            return False
        if removed:
            self._count("deletes")
        return removed

    def clear(self) -> None:
        try:
            keys = list(self.client.scan_iter(match=f"{self.namespace}:*"))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Redis cache clear failed: {e}")
            self._count("errors")


# =============================================================================
# Factory Function
# =============================================================================

def create_generation_cache(
    settings: Optional[Settings] = None
) -> GenerationCacheProtocol:
    """
    Factory function to create the configured generation cache.

    Args:
        settings: Application settings

    Returns:
        A generation cache instance
    """
    settings = settings or get_settings()
    backend = settings.cache_backend.lower()

    if backend == "redis":
        logger.info(f"Creating Redis generation cache at {settings.redis_host}:{settings.redis_port}")
        return RedisGenerationCache(settings=settings)

    if backend != "memory":
        raise ConfigurationError(
            "cache_backend",
            f"unknown backend '{settings.cache_backend}' (expected 'memory' or 'redis')"
        )

    logger.info("Creating in-memory generation cache")
    return InMemoryGenerationCache(cleanup_threshold=settings.cache_cleanup_threshold)
