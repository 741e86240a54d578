"""
Safety Validation Engine
========================

Decides whether a protocol is safe for a specific customer, given their
medications, health conditions and allergies.

Two independent analyses are combined:
1. Local rule check against the static knowledge base (core.interaction_kb)
2. Model-derived interaction analysis of the full protocol configuration

The combination is conservative: the final rating is the more severe of
the two, interactions from both are kept, and recommendations are merged
without duplicates.

Failure policy
--------------
If the model analysis fails (model unreachable, unreadable response,
missing rating) a SafetyAnalysisError is raised. A failed analysis is
never reported as "safe", and nothing is stored for it.

Verdicts are stored per (protocol, customer) and reused until they expire
(3 calendar months by default; medications change).
"""

import calendar
import copy
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from config import Settings, get_settings
from core.interaction_kb import GENERAL_RECOMMENDATIONS, lookup_medication, match_condition
from core.model_client import ModelClientProtocol, create_model_client
from core.prompt_builder import PromptBuilder
from core.response_parser import parse_model_response
from exceptions import ProtocolForgeError, ProtocolNotFoundError, SafetyAnalysisError
from models import (
    SAFETY_RATING_ORDER,
    InteractionRecord,
    InteractionSeverity,
    InteractionType,
    SafetyRating,
    SafetyValidationRequest,
    SafetyValidationResult,
)


logger = logging.getLogger(__name__)


class SafetyAnalysis(BaseModel):
    """Outcome of one analysis (local, model or combined), before it is stored."""
    safety_rating: SafetyRating
    interactions: list[InteractionRecord] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


# =============================================================================
# Collaborators
# =============================================================================

class VerdictStoreProtocol(Protocol):
    """Persistent storage for safety verdicts."""

    def find(self, protocol_id: str, customer_id: str) -> Optional[SafetyValidationResult]:
        """Most recent verdict for the pair, or None."""
        ...

    def save(self, result: SafetyValidationResult) -> None:
        ...

    def history(self, customer_id: str, limit: int) -> list[SafetyValidationResult]:
        """A customer's verdicts, most recent first."""
        ...


class InMemoryVerdictStore:
    """Thread-safe in-process verdict store. Stores and returns copies."""

    def __init__(self):
        self._verdicts: list[SafetyValidationResult] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._verdicts)

    def find(self, protocol_id: str, customer_id: str) -> Optional[SafetyValidationResult]:
        with self._lock:
            matches = [
                verdict for verdict in self._verdicts
                if verdict.protocol_id == protocol_id and verdict.customer_id == customer_id
            ]
        if not matches:
            return None
        latest = max(matches, key=lambda verdict: verdict.validated_at)
        return latest.model_copy(deep=True)

    def save(self, result: SafetyValidationResult) -> None:
        with self._lock:
            self._verdicts.append(result.model_copy(deep=True))

    def history(self, customer_id: str, limit: int) -> list[SafetyValidationResult]:
        with self._lock:
            verdicts = [v for v in self._verdicts if v.customer_id == customer_id]
        verdicts.sort(key=lambda verdict: verdict.validated_at, reverse=True)
        return [verdict.model_copy(deep=True) for verdict in verdicts[:limit]]


class ProtocolDirectoryProtocol(Protocol):
    """Read access to stored protocols and their customer assignments."""

    def get_protocol_config(self, protocol_id: str) -> dict[str, Any]:
        """
        Raises:
            ProtocolNotFoundError: Unknown protocol id
        """
        ...

    def active_protocol_ids(self, customer_id: str) -> list[str]:
        ...


class InMemoryProtocolDirectory:
    """Protocol directory backed by dicts, for tests and single-process use."""

    def __init__(
        self,
        protocols: Optional[dict[str, dict[str, Any]]] = None,
        assignments: Optional[dict[str, list[str]]] = None
    ):
        self._protocols = copy.deepcopy(protocols or {})
        self._assignments = copy.deepcopy(assignments or {})
        self._lock = threading.Lock()

    def add_protocol(self, protocol_id: str, config: dict[str, Any]) -> None:
        with self._lock:
            self._protocols[protocol_id] = copy.deepcopy(config)

    def assign(self, customer_id: str, protocol_id: str) -> None:
        with self._lock:
            assigned = self._assignments.setdefault(customer_id, [])
            if protocol_id not in assigned:
                assigned.append(protocol_id)

    def get_protocol_config(self, protocol_id: str) -> dict[str, Any]:
        with self._lock:
            if protocol_id not in self._protocols:
                raise ProtocolNotFoundError(protocol_id)
            return copy.deepcopy(self._protocols[protocol_id])

    def active_protocol_ids(self, customer_id: str) -> list[str]:
        with self._lock:
            return list(self._assignments.get(customer_id, []))


# =============================================================================
# Rating Logic
# =============================================================================

def combine_ratings(first: SafetyRating, second: SafetyRating) -> SafetyRating:
    """
    The more severe of two ratings.

    Examples:
        >>> combine_ratings(SafetyRating.SAFE, SafetyRating.WARNING)
        <SafetyRating.WARNING: 'warning'>
    """
    return max(first, second, key=SAFETY_RATING_ORDER.index)


def _local_rating(interactions: list[InteractionRecord], has_contraindications: bool) -> SafetyRating:
    severity_order = list(InteractionSeverity)
    max_severity = max(
        (interaction.severity for interaction in interactions),
        key=severity_order.index,
        default=None
    )
    if has_contraindications or any(i.severity == InteractionSeverity.HIGH for i in interactions):
        return SafetyRating.CONTRAINDICATED
    if max_severity == InteractionSeverity.HIGH:
        return SafetyRating.WARNING
    if max_severity == InteractionSeverity.MEDIUM or interactions:
        return SafetyRating.CAUTION
    return SafetyRating.SAFE


def perform_local_safety_check(
    medications: list[str],
    health_conditions: list[str]
) -> SafetyAnalysis:
    """
    Rule-based check against the local knowledge base.

    Unknown medication names are ignored. Each known medication contributes
    one interaction per interacting substance plus its warnings; each
    condition matching the risk table contributes one interaction.
    """
    interactions: list[InteractionRecord] = []
    recommendations: list[str] = []
    has_contraindications = False

    for medication in medications:
        profile = lookup_medication(medication)
        if profile is None:
            logger.debug(f"No local interaction data for medication '{medication}'")
            continue

        for interaction in profile["interactions"]:
            interactions.append(InteractionRecord(
                type=InteractionType.MEDICATION,
                item=medication,
                severity=interaction["severity"],
                description=interaction["description"],
                recommendation=interaction["recommendation"],
            ))

        recommendations.extend(f"{medication}: {warning}" for warning in profile["warnings"])

        if profile["contraindications"]:
            has_contraindications = True
            recommendations.append(
                f"{medication}: Check for contraindications - "
                f"{', '.join(profile['contraindications'])}"
            )

    for condition in health_conditions:
        risk = match_condition(condition)
        if risk is None:
            continue
        interactions.append(InteractionRecord(
            type=InteractionType.CONDITION,
            item=condition,
            severity=risk["severity"],
            description=risk["description"],
            recommendation=risk["recommendation"],
        ))

    recommendations.extend(GENERAL_RECOMMENDATIONS)

    return SafetyAnalysis(
        safety_rating=_local_rating(interactions, has_contraindications),
        interactions=interactions,
        recommendations=recommendations,
    )


def parse_model_analysis(doc: dict[str, Any], protocol_id: str = "") -> SafetyAnalysis:
    """
    Read the model's interaction analysis.

    Interaction ``type`` and ``severity`` are matched case-insensitively.
    Malformed interaction entries are skipped; a missing or unknown
    ``safetyRating`` fails the whole analysis.

    Raises:
        SafetyAnalysisError: No valid safety rating in the response
    """
    raw_rating = doc.get("safetyRating")
    try:
        rating = SafetyRating(str(raw_rating).strip().lower())
    except ValueError as e:
        raise SafetyAnalysisError(
            f"Model returned no valid safety rating (got {raw_rating!r})",
            protocol_id=protocol_id
        ) from e

    interactions = []
    raw_interactions = doc.get("interactions")
    for entry in raw_interactions if isinstance(raw_interactions, list) else []:
        if isinstance(entry, dict):
            entry = dict(entry)
            for key in ("type", "severity"):
                if isinstance(entry.get(key), str):
                    entry[key] = entry[key].strip().lower()
        try:
            interactions.append(InteractionRecord.model_validate(entry))
        except PydanticValidationError as e:
            logger.warning(f"Skipping malformed interaction from model analysis: {e.error_count()} error(s)")

    raw_recommendations = doc.get("generalRecommendations")
    recommendations = [
        item for item in (raw_recommendations if isinstance(raw_recommendations, list) else [])
        if isinstance(item, str) and item.strip()
    ]

    return SafetyAnalysis(
        safety_rating=rating,
        interactions=interactions,
        recommendations=recommendations,
    )


def combine_analysis_results(local: SafetyAnalysis, model: SafetyAnalysis) -> SafetyAnalysis:
    """Conservative merge: worst rating, all interactions, unique recommendations."""
    recommendations: list[str] = []
    for recommendation in local.recommendations + model.recommendations:
        if recommendation not in recommendations:
            recommendations.append(recommendation)

    return SafetyAnalysis(
        safety_rating=combine_ratings(local.safety_rating, model.safety_rating),
        interactions=local.interactions + model.interactions,
        recommendations=recommendations,
    )


def add_months(moment: datetime, months: int) -> datetime:
    """
    Same time ``months`` calendar months later, clamped to the month's last day.

    Examples:
        >>> add_months(datetime(2024, 11, 30), 3)
        datetime.datetime(2025, 2, 28, 0, 0)
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


# =============================================================================
# Engine
# =============================================================================

class SafetyValidationEngine:
    """
    Validates (protocol, customer) pairs and stores the verdicts.

    Collaborators are injected or created lazily; ``clock`` lets tests pin
    the validation time and therefore the expiry.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        model_client: Optional[ModelClientProtocol] = None,
        verdict_store: Optional[VerdictStoreProtocol] = None,
        protocol_directory: Optional[ProtocolDirectoryProtocol] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.settings = settings or get_settings()
        self._model_client = model_client
        self._prompt_builder = prompt_builder
        self.verdict_store = verdict_store or InMemoryVerdictStore()
        self.protocol_directory = protocol_directory or InMemoryProtocolDirectory()
        self._clock = clock

    @property
    def model_client(self) -> ModelClientProtocol:
        """Lazy-load the model client."""
        if self._model_client is None:
            self._model_client = create_model_client(settings=self.settings)
        return self._model_client

    @property
    def prompt_builder(self) -> PromptBuilder:
        if self._prompt_builder is None:
            self._prompt_builder = PromptBuilder(settings=self.settings)
        return self._prompt_builder

    async def avalidate(self, request: SafetyValidationRequest) -> SafetyValidationResult:
        """
        Validate a protocol for a customer (asynchronous).

        Returns:
            A stored, non-expired verdict when one exists and revalidation is
            not forced; otherwise a freshly computed and stored verdict

        Raises:
            ProtocolNotFoundError: Unknown protocol id
            SafetyAnalysisError: The model analysis failed
        """
        request = request.model_copy(deep=True)
        prior = self._reusable_verdict(request)
        if prior is not None:
            return prior

        protocol_config, local = self._prepare(request)
        payload = self.prompt_builder.build_safety_analysis(
            protocol_config, request.medications, request.health_conditions, request.allergies
        )
        try:
            raw_response = await self.model_client.acomplete(
                payload.system_prompt,
                payload.user_prompt,
                response_format=payload.response_format,
                temperature=payload.temperature
            )
        except Exception as e:
            raise self._analysis_failure(e, request.protocol_id) from e

        return self._finalize(request, local, raw_response)

    def validate(self, request: SafetyValidationRequest) -> SafetyValidationResult:
        """Validate a protocol for a customer (blocking). See avalidate()."""
        request = request.model_copy(deep=True)
        prior = self._reusable_verdict(request)
        if prior is not None:
            return prior

        protocol_config, local = self._prepare(request)
        payload = self.prompt_builder.build_safety_analysis(
            protocol_config, request.medications, request.health_conditions, request.allergies
        )
        try:
            raw_response = self.model_client.complete(
                payload.system_prompt,
                payload.user_prompt,
                response_format=payload.response_format,
                temperature=payload.temperature
            )
        except Exception as e:
            raise self._analysis_failure(e, request.protocol_id) from e

        return self._finalize(request, local, raw_response)

    async def acustomer_history(
        self,
        customer_id: str,
        limit: Optional[int] = None
    ) -> list[SafetyValidationResult]:
        """A customer's most recent verdicts, newest first."""
        return self.customer_history(customer_id, limit)

    def customer_history(
        self,
        customer_id: str,
        limit: Optional[int] = None
    ) -> list[SafetyValidationResult]:
        return self.verdict_store.history(customer_id, limit or self.settings.safety_history_limit)

    async def aupdate_customer_medical_info(
        self,
        customer_id: str,
        medications: Optional[list[str]] = None,
        health_conditions: Optional[list[str]] = None,
        allergies: Optional[list[str]] = None
    ) -> list[SafetyValidationResult]:
        """
        Revalidate every active protocol of a customer with new medical info.

        Protocols are revalidated one after another, always recomputed.
        """
        protocol_ids = self.protocol_directory.active_protocol_ids(customer_id)
        logger.info(
            f"Medical info updated for customer {customer_id}: "
            f"revalidating {len(protocol_ids)} active protocol(s)"
        )

        results = []
        for protocol_id in protocol_ids:
            results.append(await self.avalidate(SafetyValidationRequest(
                protocol_id=protocol_id,
                customer_id=customer_id,
                medications=medications or [],
                health_conditions=health_conditions or [],
                allergies=allergies or [],
                force_revalidation=True,
            )))
        return results

    # =========================================================================
    # Shared steps
    # =========================================================================

    def _reusable_verdict(self, request: SafetyValidationRequest) -> Optional[SafetyValidationResult]:
        if request.force_revalidation:
            return None
        prior = self.verdict_store.find(request.protocol_id, request.customer_id)
        if prior is None:
            return None
        if prior.is_expired(self._clock()):
            logger.info(
                f"Stored verdict for protocol {request.protocol_id} / customer "
                f"{request.customer_id} expired, revalidating"
            )
            return None
        logger.info(
            f"Reusing safety verdict {prior.id} ({prior.safety_rating.value}) for protocol "
            f"{request.protocol_id} / customer {request.customer_id}"
        )
        return prior

    def _prepare(self, request: SafetyValidationRequest) -> tuple[dict[str, Any], SafetyAnalysis]:
        protocol_config = self.protocol_directory.get_protocol_config(request.protocol_id)
        local = perform_local_safety_check(request.medications, request.health_conditions)
        logger.info(
            f"Local safety check for protocol {request.protocol_id}: {local.safety_rating.value} "
            f"({len(local.interactions)} interaction(s))"
        )
        return protocol_config, local

    def _analysis_failure(self, error: Exception, protocol_id: str) -> SafetyAnalysisError:
        reason = error.message if isinstance(error, ProtocolForgeError) else str(error)
        logger.error(f"Safety analysis for protocol {protocol_id} failed: {reason}")
        return SafetyAnalysisError(reason, protocol_id=protocol_id, cause=type(error).__name__)

    def _finalize(
        self,
        request: SafetyValidationRequest,
        local: SafetyAnalysis,
        raw_response: str
    ) -> SafetyValidationResult:
        try:
            doc = parse_model_response(raw_response)
        except ProtocolForgeError as e:
            raise self._analysis_failure(e, request.protocol_id) from e
        model = parse_model_analysis(doc, protocol_id=request.protocol_id)
        combined = combine_analysis_results(local, model)

        now = self._clock()
        result = SafetyValidationResult(
            protocol_id=request.protocol_id,
            customer_id=request.customer_id,
            medications=request.medications,
            health_conditions=request.health_conditions,
            allergies=request.allergies,
            safety_rating=combined.safety_rating,
            interactions=combined.interactions,
            recommendations=combined.recommendations,
            validated_at=now,
            expires_at=add_months(now, self.settings.safety_validity_months),
        )
        self.verdict_store.save(result)

        logger.info(
            f"Safety verdict for protocol {request.protocol_id} / customer {request.customer_id}: "
            f"{result.safety_rating.value} (local {local.safety_rating.value}, "
            f"model {model.safety_rating.value})"
        )
        return result
