"""Shared fixtures for the ProtocolForge test suite."""

import json
from datetime import datetime, timedelta

import pytest

from config import get_settings_for_testing
from core.cache import InMemoryGenerationCache
from core.generator import ProtocolGenerator
from core.model_client import MockModelClient, mock_protocol_document
from core.safety import InMemoryProtocolDirectory, InMemoryVerdictStore, SafetyValidationEngine
from models import GenerationRequest


class FakeClock:
    """Manually advanced clock, usable for both epoch-second and datetime callers."""

    def __init__(self, start: datetime = datetime(2025, 1, 15, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def settings():
    return get_settings_for_testing(
        batch_delay_seconds=0,
        cache_backend="memory",
        single_flight=True,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def protocol_doc():
    return mock_protocol_document(category="longevity", intensity="moderate", duration=30)


@pytest.fixture
def protocol_json(protocol_doc):
    return json.dumps(protocol_doc)


@pytest.fixture
def request_30_days():
    return GenerationRequest(category="longevity", intensity="moderate", duration=30)


@pytest.fixture
def mock_client():
    return MockModelClient()


@pytest.fixture
def cache(clock):
    return InMemoryGenerationCache(cleanup_threshold=1000, clock=clock.timestamp)


@pytest.fixture
def generator(settings, mock_client, cache):
    return ProtocolGenerator(settings=settings, model_client=mock_client, cache=cache)


@pytest.fixture
def directory(protocol_doc):
    return InMemoryProtocolDirectory(
        protocols={"proto-1": protocol_doc["config"], "proto-2": protocol_doc["config"]},
        assignments={"cust-1": ["proto-1", "proto-2"]},
    )


@pytest.fixture
def safety_engine(settings, mock_client, directory, clock):
    return SafetyValidationEngine(
        settings=settings,
        model_client=mock_client,
        verdict_store=InMemoryVerdictStore(),
        protocol_directory=directory,
        clock=clock,
    )
