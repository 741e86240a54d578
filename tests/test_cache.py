"""Tests for the generation cache backends and key derivation."""

import pytest
import redis

from core.cache import (
    InMemoryGenerationCache,
    RedisGenerationCache,
    create_generation_cache,
    generation_cache_key,
)
from core.enhancer import enhance_protocol
from exceptions import ConfigurationError
from models import GenerationRequest


def _protocol(doc, request):
    return enhance_protocol(doc, request)


class TestCacheKey:

    def test_list_order_does_not_change_key(self):
        a = GenerationRequest(
            duration=30,
            health_conditions=["diabetes", "asthma"],
            current_medications=["metformin", "insulin"],
        )
        b = GenerationRequest(
            duration=30,
            health_conditions=["asthma", "diabetes"],
            current_medications=["insulin", "metformin"],
        )
        assert generation_cache_key(a) == generation_cache_key(b)

    def test_prompt_case_and_whitespace_ignored(self):
        a = GenerationRequest(duration=30, natural_language_prompt="Focus on Sleep ")
        b = GenerationRequest(duration=30, natural_language_prompt="focus on sleep")
        assert generation_cache_key(a) == generation_cache_key(b)

    def test_unset_category_matches_general(self):
        assert generation_cache_key(GenerationRequest(duration=30)) == generation_cache_key(
            GenerationRequest(duration=30, category="general")
        )

    def test_different_parameters_give_different_keys(self):
        base = GenerationRequest(duration=30)
        assert generation_cache_key(base) != generation_cache_key(GenerationRequest(duration=31))
        assert generation_cache_key(base) != generation_cache_key(
            GenerationRequest(duration=30, intensity="gentle")
        )

    def test_key_is_namespaced(self):
        assert generation_cache_key(GenerationRequest(duration=7)).startswith("protocol:")


class TestInMemoryCache:

    def test_entry_available_until_ttl(self, cache, clock, protocol_doc, request_30_days):
        protocol = _protocol(protocol_doc, request_30_days)
        cache.set("k", protocol, ttl_seconds=60)

        clock.advance(seconds=59)
        assert cache.get("k") is not None

        clock.advance(seconds=2)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_returned_value_is_a_copy(self, cache, protocol_doc, request_30_days):
        protocol = _protocol(protocol_doc, request_30_days)
        cache.set("k", protocol, ttl_seconds=60)

        protocol.name = "changed after set"
        first = cache.get("k")
        first.tags.append("mutated")

        second = cache.get("k")
        assert second.name == protocol_doc["name"]
        assert "mutated" not in second.tags

    def test_sweep_when_threshold_exceeded(self, clock, protocol_doc, request_30_days):
        cache = InMemoryGenerationCache(cleanup_threshold=2, clock=clock.timestamp)
        protocol = _protocol(protocol_doc, request_30_days)
        cache.set("a", protocol, ttl_seconds=10)
        cache.set("b", protocol, ttl_seconds=10)

        clock.advance(seconds=11)
        cache.set("c", protocol, ttl_seconds=10)

        assert len(cache) == 1
        assert cache.stats.evictions == 2

    def test_cleanup_expired(self, cache, clock, protocol_doc, request_30_days):
        protocol = _protocol(protocol_doc, request_30_days)
        cache.set("short", protocol, ttl_seconds=5)
        cache.set("long", protocol, ttl_seconds=500)

        clock.advance(seconds=10)
        assert cache.cleanup_expired() == 1
        assert cache.get("long") is not None

    def test_stats(self, cache, protocol_doc, request_30_days):
        cache.get("missing")
        cache.set("k", _protocol(protocol_doc, request_30_days), ttl_seconds=60)
        cache.get("k")
        assert cache.delete("k") is True
        assert cache.delete("k") is False

        stats = cache.stats
        assert (stats.hits, stats.misses, stats.sets, stats.deletes) == (1, 1, 1, 1)
        assert stats.hit_rate == 0.5

    def test_clear(self, cache, protocol_doc, request_30_days):
        cache.set("k", _protocol(protocol_doc, request_30_days), ttl_seconds=60)
        cache.clear()
        assert cache.get("k") is None


class FailingRedis:
    def get(self, key):
        raise redis.ConnectionError("connection refused")

    def setex(self, key, ttl, value):
        raise redis.ConnectionError("connection refused")

    def delete(self, *keys):
        raise redis.ConnectionError("connection refused")


class DictRedis:
    """Just enough of the redis client API for the cache."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    def scan_iter(self, match):
        prefix = match.rstrip("*")
        return [key for key in list(self.store) if key.startswith(prefix)]


class TestRedisCache:

    def test_outage_degrades_to_miss(self, settings, protocol_doc, request_30_days):
        cache = RedisGenerationCache(settings=settings, client=FailingRedis())

        cache.set("k", _protocol(protocol_doc, request_30_days), ttl_seconds=60)
        assert cache.get("k") is None
        assert cache.delete("k") is False
        assert cache.stats.errors == 3

    def test_round_trip_through_client(self, settings, protocol_doc, request_30_days):
        client = DictRedis()
        cache = RedisGenerationCache(settings=settings, client=client)
        protocol = _protocol(protocol_doc, request_30_days)

        cache.set("k", protocol, ttl_seconds=90)

        assert client.ttls["protocolforge:k"] == 90
        restored = cache.get("k")
        assert restored.name == protocol.name
        assert restored.metadata.difficulty_score == protocol.metadata.difficulty_score

    def test_unreadable_entry_is_discarded(self, settings):
        client = DictRedis()
        client.store["protocolforge:k"] = '{"not": "a protocol"}'
        cache = RedisGenerationCache(settings=settings, client=client)

        assert cache.get("k") is None
        assert "protocolforge:k" not in client.store

    def test_clear_only_touches_namespace(self, settings, protocol_doc, request_30_days):
        client = DictRedis()
        client.store["other:key"] = "x"
        cache = RedisGenerationCache(settings=settings, client=client)
        cache.set("k", _protocol(protocol_doc, request_30_days), ttl_seconds=60)

        cache.clear()
        assert list(client.store) == ["other:key"]


def test_factory_selects_backend(settings):
    assert isinstance(create_generation_cache(settings), InMemoryGenerationCache)
    redis_settings = settings.model_copy(update={"cache_backend": "redis"})
    assert isinstance(create_generation_cache(redis_settings), RedisGenerationCache)


def test_factory_rejects_unknown_backend(settings):
    with pytest.raises(ConfigurationError) as exc_info:
        create_generation_cache(settings.model_copy(update={"cache_backend": "memcached"}))
    assert exc_info.value.details["setting_name"] == "cache_backend"
