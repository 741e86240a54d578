"""
Protocol Pipeline for ProtocolForge
===================================

This module provides the main orchestration layer that wires the
generation and safety components into a single entry point.

Architecture Pattern: Pipeline
------------------------------
Generation:
    Request → [Cache] → [Prompt Builder] → Model → [Parser/Repair]
            → [Validator] → [Enhancer] → [Cache] → GeneratedProtocol

Safety validation is a parallel, independent flow:
    (protocol, customer) → [Local rules] + [Model analysis] → Verdict

The pipeline owns no logic of its own; it shares one model client and one
cache across the generator, the batch orchestrator and the safety engine.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Sequence

from config import Settings, get_settings
from core.batch import BatchOrchestrator
from core.cache import GenerationCacheProtocol, create_generation_cache
from core.generator import GenerationOutcome, ProtocolGenerator
from core.model_client import ModelClientProtocol, create_model_client
from core.safety import (
    InMemoryProtocolDirectory,
    InMemoryVerdictStore,
    ProtocolDirectoryProtocol,
    SafetyValidationEngine,
    VerdictStoreProtocol,
)
from models import (
    GeneratedProtocol,
    GenerationRequest,
    SafetyValidationRequest,
    SafetyValidationResult,
)


# Set up module logger
logger = logging.getLogger(__name__)


class ProtocolPipeline:
    """
    Main entry point for protocol generation and safety validation.

    Design Principles:
    -----------------
    1. Dependency Injection: Services injected for testability
    2. Single Responsibility: Only orchestrates, doesn't implement
    3. Lazy defaults: services are created from settings when first used

    Usage:
        pipeline = ProtocolPipeline()
        protocol = pipeline.generate(GenerationRequest(duration=30))
        print(protocol.to_formatted_string())
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        model_client: Optional[ModelClientProtocol] = None,
        cache: Optional[GenerationCacheProtocol] = None,
        verdict_store: Optional[VerdictStoreProtocol] = None,
        protocol_directory: Optional[ProtocolDirectoryProtocol] = None,
    ):
        """
        Initialize the pipeline with optional dependencies.

        Dependency Injection Pattern:
        - If dependencies are provided, use them (testing/customization)
        - If not, create defaults (production use)

        Args:
            settings: Application settings
            model_client: Generative model client
            cache: Generation cache
            verdict_store: Storage for safety verdicts
            protocol_directory: Lookup of stored protocols and assignments
        """
        self.settings = settings or get_settings()

        # Lazy initialization - services created when first needed
        self._model_client = model_client
        self._cache = cache
        self._verdict_store = verdict_store
        self._protocol_directory = protocol_directory
        self._generator: Optional[ProtocolGenerator] = None
        self._batch: Optional[BatchOrchestrator] = None
        self._safety: Optional[SafetyValidationEngine] = None

        logger.info("ProtocolPipeline initialized")

    @property
    def model_client(self) -> ModelClientProtocol:
        """Lazy-load the model client."""
        if self._model_client is None:
            self._model_client = create_model_client(settings=self.settings)
        return self._model_client

    @property
    def cache(self) -> GenerationCacheProtocol:
        """Lazy-load the generation cache."""
        if self._cache is None:
            self._cache = create_generation_cache(settings=self.settings)
        return self._cache

    @property
    def verdict_store(self) -> VerdictStoreProtocol:
        if self._verdict_store is None:
            self._verdict_store = InMemoryVerdictStore()
        return self._verdict_store

    @property
    def protocol_directory(self) -> ProtocolDirectoryProtocol:
        if self._protocol_directory is None:
            self._protocol_directory = InMemoryProtocolDirectory()
        return self._protocol_directory

    @property
    def generator(self) -> ProtocolGenerator:
        if self._generator is None:
            self._generator = ProtocolGenerator(
                settings=self.settings,
                model_client=self.model_client,
                cache=self.cache,
            )
        return self._generator

    @property
    def batch(self) -> BatchOrchestrator:
        if self._batch is None:
            self._batch = BatchOrchestrator(self.generator, settings=self.settings)
        return self._batch

    @property
    def safety(self) -> SafetyValidationEngine:
        if self._safety is None:
            self._safety = SafetyValidationEngine(
                settings=self.settings,
                model_client=self.model_client,
                verdict_store=self.verdict_store,
                protocol_directory=self.protocol_directory,
            )
        return self._safety

    # =========================================================================
    # Generation
    # =========================================================================

    def generate(self, request: GenerationRequest) -> GeneratedProtocol:
        """
        Generate (or fetch from cache) a protocol for one request.

        Example:
            protocol = pipeline.generate(GenerationRequest(
                category="longevity", duration=30, intensity="moderate"
            ))
        """
        return self.generator.generate(request)

    async def agenerate(
        self,
        request: GenerationRequest,
        timeout: Optional[float] = None
    ) -> GeneratedProtocol:
        """Async version of generate()."""
        return await self.generator.agenerate(request, timeout=timeout)

    def generate_batch(self, requests: Sequence[GenerationRequest]) -> list[GeneratedProtocol]:
        """Generate many protocols in paced groups; fails on the first failure."""
        return self.batch.generate_batch(requests)

    async def agenerate_batch(self, requests: Sequence[GenerationRequest]) -> list[GeneratedProtocol]:
        return await self.batch.agenerate_batch(requests)

    async def agenerate_batch_outcomes(
        self,
        requests: Sequence[GenerationRequest]
    ) -> list[GenerationOutcome]:
        """Generate many protocols, reporting each success or failure without raising."""
        return await self.batch.agenerate_batch_outcomes(requests)

    async def aparse_request(self, text: str) -> GenerationRequest:
        """Turn a trainer's free-text description into a generation request."""
        return await self.generator.aparse_natural_language_request(text)

    def parse_request(self, text: str) -> GenerationRequest:
        return self.generator.parse_natural_language_request(text)

    # =========================================================================
    # Safety Validation
    # =========================================================================

    def validate_safety(self, request: SafetyValidationRequest) -> SafetyValidationResult:
        """Validate a protocol for a customer, reusing a stored verdict when valid."""
        return self.safety.validate(request)

    async def avalidate_safety(self, request: SafetyValidationRequest) -> SafetyValidationResult:
        return await self.safety.avalidate(request)

    async def aupdate_customer_medical_info(
        self,
        customer_id: str,
        medications: Optional[list[str]] = None,
        health_conditions: Optional[list[str]] = None,
        allergies: Optional[list[str]] = None
    ) -> list[SafetyValidationResult]:
        """Record new medical info and force-revalidate the customer's active protocols."""
        return await self.safety.aupdate_customer_medical_info(
            customer_id,
            medications=medications,
            health_conditions=health_conditions,
            allergies=allergies,
        )

    async def acustomer_history(
        self,
        customer_id: str,
        limit: Optional[int] = None
    ) -> list[SafetyValidationResult]:
        return await self.safety.acustomer_history(customer_id, limit=limit)


def save_protocol_to_file(
    protocol: GeneratedProtocol,
    output_dir: str = "./output"
) -> dict[str, str]:
    """
    Save a generated protocol to files.

    Saves:
    1. Full protocol as JSON (camelCase keys, as consumed by the web client)
    2. Human-readable summary as text

    Args:
        protocol: The protocol to save
        output_dir: Directory to save files in

    Returns:
        Dict of saved file paths
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    stamp = protocol.metadata.generated_at.strftime("%Y%m%d_%H%M%S")
    slug = "".join(c if c.isalnum() else "_" for c in protocol.name.lower()).strip("_")[:40]
    base_name = f"Protocol_{slug or 'untitled'}_{stamp}"
    saved_files = {}

    json_path = output_path / f"{base_name}.json"
    with open(json_path, 'w') as f:
        json.dump(protocol.model_dump(mode='json', by_alias=True), f, indent=2)
    saved_files['json'] = str(json_path)

    summary_path = output_path / f"{base_name}_summary.txt"
    with open(summary_path, 'w') as f:
        f.write(protocol.to_formatted_string())
    saved_files['summary'] = str(summary_path)

    logger.info(f"Saved protocol to {output_dir}: {list(saved_files.keys())}")

    return saved_files


def create_pipeline(
    settings: Optional[Settings] = None,
    use_mock: bool = False
) -> ProtocolPipeline:
    """
    Factory function to create a configured pipeline instance.

    Args:
        settings: Optional custom settings. Uses default if not provided.
        use_mock: Use the offline mock model client instead of Ollama

    Returns:
        ProtocolPipeline: Configured pipeline instance

    Example:
        pipeline = create_pipeline()
        protocol = await pipeline.agenerate(request)
    """
    if settings is None:
        settings = get_settings()

    model_client = create_model_client(settings=settings, use_mock=True) if use_mock else None
    return ProtocolPipeline(settings=settings, model_client=model_client)
