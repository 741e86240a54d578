"""
Protocol Generator for ProtocolForge
====================================

Runs one generation request end to end:

    cache lookup -> prompt -> model call -> parse/repair -> validate
    -> enhance -> cache write

Steps are strictly sequential. A protocol only reaches the cache after it
passed validation and enhancement, so the cache never holds a document
without the mandatory safety precaution.

Single-flight
-------------
Two concurrent requests with the same cache key would otherwise both miss
the cache and both pay for a model call. With ``single_flight`` enabled,
the second caller waits on a per-key lock and then finds the first
caller's result in the cache.
Coroutines and threads use separate lock sets, so a concurrent
``generate`` and ``agenerate`` for the same key each call the model.

Cancellation
------------
Cancelling the task (or exceeding ``timeout``) aborts the in-flight model
call. Nothing is written to the cache for an aborted generation.
"""

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from config import Settings, get_settings
from core.cache import GenerationCacheProtocol, create_generation_cache, generation_cache_key
from core.enhancer import enhance_protocol
from core.model_client import ModelClientProtocol, create_model_client
from core.prompt_builder import PromptBuilder
from core.response_parser import parse_model_response
from core.validator import ensure_valid_protocol, format_model_errors
from exceptions import GenerationError, ProtocolForgeError, ValidationError
from models import GeneratedProtocol, GenerationRequest, PromptPayload


logger = logging.getLogger(__name__)


@dataclass
class GenerationOutcome:
    """
    Result of one generation: a protocol on success, the typed error on failure.

    Lets batch callers decide between fail-fast and partial success
    without relying on exception propagation.
    """
    protocol: Optional[GeneratedProtocol] = None
    error: Optional[ProtocolForgeError] = None

    @classmethod
    def success(cls, protocol: GeneratedProtocol) -> "GenerationOutcome":
        return cls(protocol=protocol)

    @classmethod
    def failure(cls, error: ProtocolForgeError) -> "GenerationOutcome":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> GeneratedProtocol:
        if self.error is not None:
            raise self.error
        return self.protocol


class _InFlightLocks:
    """
    Per-key locks that exist only while someone holds or waits on them.

    The lock type is supplied by the caller: ``asyncio.Lock`` for the async
    path, ``threading.Lock`` for the blocking path.
    """

    def __init__(self, lock_factory):
        self._lock_factory = lock_factory
        self._locks: dict[str, list] = {}
        self._guard = threading.Lock()

    def checkout(self, key: str):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [self._lock_factory(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def release(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class ProtocolGenerator:
    """
    Generates validated, enhanced protocols with caching.

    Collaborators are injected (or created lazily from settings), which
    allows testing with a MockModelClient and an in-memory cache.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        model_client: Optional[ModelClientProtocol] = None,
        cache: Optional[GenerationCacheProtocol] = None,
        prompt_builder: Optional[PromptBuilder] = None
    ):
        self.settings = settings or get_settings()
        self._model_client = model_client
        self._cache = cache
        self._prompt_builder = prompt_builder
        self._async_flights = _InFlightLocks(asyncio.Lock)
        self._sync_flights = _InFlightLocks(threading.Lock)

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
    def prompt_builder(self) -> PromptBuilder:
        if self._prompt_builder is None:
            self._prompt_builder = PromptBuilder(settings=self.settings)
        return self._prompt_builder

    # =========================================================================
    # Async API
    # =========================================================================

    async def agenerate(
        self,
        request: GenerationRequest,
        timeout: Optional[float] = None
    ) -> GeneratedProtocol:
        """
        Generate a protocol for a request (asynchronous).

        Args:
            request: Generation parameters
            timeout: Seconds before the generation is abandoned (no limit if None)

        Returns:
            The cached or freshly generated protocol

        Raises:
            ServiceUnavailableError: Model unconfigured or unreachable
            ParseError: Model output could not be recovered as JSON
            ValidationError: Model output broke structural rules
            GenerationError: Any other failure, including a timeout
        """
        if timeout is None:
            return await self._agenerate(request)

        try:
            return await asyncio.wait_for(self._agenerate(request), timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Protocol generation timed out after {timeout}s")
            raise GenerationError(
                message=f"Protocol generation timed out after {timeout}s",
                details={"timeout_seconds": timeout}
            ) from e

    async def _agenerate(self, request: GenerationRequest) -> GeneratedProtocol:
        key = generation_cache_key(request)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"Returning cached protocol for {key}")
            return cached

        async with self._async_flight(key):
            if self.settings.single_flight:
                cached = self.cache.get(key)
                if cached is not None:
                    logger.info(f"Protocol for {key} produced by a concurrent request")
                    return cached

            payload = self.prompt_builder.build(request)
            logger.info(
                f"Generating {request.effective_category.value} protocol "
                f"({request.intensity.value}, {request.duration} days)"
            )
            try:
                raw_response = await self.model_client.acomplete(
                    payload.system_prompt,
                    payload.user_prompt,
                    response_format=payload.response_format,
                    temperature=payload.temperature
                )
                protocol = self._build_protocol(raw_response, request)
            except ProtocolForgeError:
                raise
            except Exception as e:
                logger.error(f"Protocol generation failed: {e}")
                raise GenerationError(
                    message=f"Protocol generation failed: {e}",
                    details={"error_class": type(e).__name__}
                ) from e

            self.cache.set(key, protocol, self.settings.generation_cache_ttl_seconds)
            logger.info(f"Generated protocol '{protocol.name}' ({protocol.meal_count} meals)")
            return protocol

    @contextlib.asynccontextmanager
    async def _async_flight(self, key: str):
        if not self.settings.single_flight:
            yield
            return
        lock = self._async_flights.checkout(key)
        try:
            async with lock:
                yield
        finally:
            self._async_flights.release(key)

    async def agenerate_outcome(
        self,
        request: GenerationRequest,
        timeout: Optional[float] = None
    ) -> GenerationOutcome:
        """Like agenerate(), but returns the failure instead of raising it."""
        try:
            return GenerationOutcome.success(await self.agenerate(request, timeout=timeout))
        except ProtocolForgeError as e:
            return GenerationOutcome.failure(e)

    async def aparse_natural_language_request(self, text: str) -> GenerationRequest:
        """
        Extract generation parameters from a trainer's free-text description.

        The original text is kept as the request's natural-language prompt.

        Raises:
            ValidationError: Empty input, or the extracted values are invalid
        """
        payload = self._request_parsing_payload(text)
        raw_response = await self.model_client.acomplete(
            payload.system_prompt,
            payload.user_prompt,
            response_format=payload.response_format,
            temperature=payload.temperature
        )
        return self._build_request(raw_response, text)

    # =========================================================================
    # Sync API
    # =========================================================================

    def generate(self, request: GenerationRequest) -> GeneratedProtocol:
        """Generate a protocol for a request (blocking). See agenerate()."""
        key = generation_cache_key(request)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"Returning cached protocol for {key}")
            return cached

        with self._sync_flight(key):
            if self.settings.single_flight:
                cached = self.cache.get(key)
                if cached is not None:
                    logger.info(f"Protocol for {key} produced by a concurrent request")
                    return cached

            payload = self.prompt_builder.build(request)
            logger.info(
                f"Generating {request.effective_category.value} protocol "
                f"({request.intensity.value}, {request.duration} days)"
            )
            try:
                raw_response = self.model_client.complete(
                    payload.system_prompt,
                    payload.user_prompt,
                    response_format=payload.response_format,
                    temperature=payload.temperature
                )
                protocol = self._build_protocol(raw_response, request)
            except ProtocolForgeError:
                raise
            except Exception as e:
                logger.error(f"Protocol generation failed: {e}")
                raise GenerationError(
                    message=f"Protocol generation failed: {e}",
                    details={"error_class": type(e).__name__}
                ) from e

            self.cache.set(key, protocol, self.settings.generation_cache_ttl_seconds)
            logger.info(f"Generated protocol '{protocol.name}' ({protocol.meal_count} meals)")
            return protocol

    @contextlib.contextmanager
    def _sync_flight(self, key: str):
        if not self.settings.single_flight:
            yield
            return
        lock = self._sync_flights.checkout(key)
        try:
            with lock:
                yield
        finally:
            self._sync_flights.release(key)

    def parse_natural_language_request(self, text: str) -> GenerationRequest:
        """Blocking version of aparse_natural_language_request()."""
        payload = self._request_parsing_payload(text)
        raw_response = self.model_client.complete(
            payload.system_prompt,
            payload.user_prompt,
            response_format=payload.response_format,
            temperature=payload.temperature
        )
        return self._build_request(raw_response, text)

    # =========================================================================
    # Shared steps
    # =========================================================================

    def _build_protocol(self, raw_response: str, request: GenerationRequest) -> GeneratedProtocol:
        doc = parse_model_response(raw_response)
        ensure_valid_protocol(doc)
        return enhance_protocol(doc, request)

    def _request_parsing_payload(self, text: str) -> PromptPayload:
        if not text or not text.strip():
            raise ValidationError(["Natural language input is required"])
        logger.info(f"Parsing natural language request ({len(text)} chars)")
        return self.prompt_builder.build_request_parsing(text)

    def _build_request(self, raw_response: str, text: str) -> GenerationRequest:
        data: dict[str, Any] = parse_model_response(raw_response)
        data.setdefault("naturalLanguagePrompt", text.strip())
        try:
            request = GenerationRequest.model_validate(data)
        except PydanticValidationError as e:
            errors = format_model_errors(e)
            logger.warning(f"Extracted request parameters are invalid: {errors}")
            raise ValidationError(errors) from e
        logger.info(
            f"Parsed request: {request.effective_category.value}, "
            f"{request.intensity.value}, {request.duration} days"
        )
        return request
