"""
Core Processing Module
======================

Contains the generation and safety components for ProtocolForge:
- cache: Generation cache (in-memory and Redis)
- response_parser: JSON parsing with truncation repair
- prompt_builder: Model prompt assembly
- validator: Structural checks on model documents
- enhancer: Derived metadata and the mandatory safety precaution
- model_client: Generative model access (Ollama via LangChain)
- generator: Single-request generation with caching
- batch: Paced batch generation
- safety: Safety validation engine
"""

from core.batch import BatchOrchestrator
from core.cache import (
    InMemoryGenerationCache,
    RedisGenerationCache,
    create_generation_cache,
    generation_cache_key,
)
from core.generator import GenerationOutcome, ProtocolGenerator
from core.model_client import MockModelClient, OllamaModelClient, create_model_client
from core.prompt_builder import PromptBuilder
from core.response_parser import parse_model_response
from core.safety import (
    InMemoryProtocolDirectory,
    InMemoryVerdictStore,
    SafetyValidationEngine,
)
from core.validator import validate_protocol_document

__all__ = [
    'BatchOrchestrator',
    'InMemoryGenerationCache',
    'RedisGenerationCache',
    'create_generation_cache',
    'generation_cache_key',
    'GenerationOutcome',
    'ProtocolGenerator',
    'MockModelClient',
    'OllamaModelClient',
    'create_model_client',
    'PromptBuilder',
    'parse_model_response',
    'InMemoryProtocolDirectory',
    'InMemoryVerdictStore',
    'SafetyValidationEngine',
    'validate_protocol_document',
]
