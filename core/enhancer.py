"""
Protocol Enhancer
=================

Turns a validated model document into a ``GeneratedProtocol`` by adding
derived metadata and enforcing the mandatory safety precaution.

Derived metadata:
- features: capability flags read off the raw document
- difficulty: 0-10 score from intensity, meal count and supplement count
- cost estimate: monthly supplement and special-food cost ranges

The transform is pure and deterministic: the input document is never
mutated, and the only non-derived value (the generation timestamp) can be
pinned with ``now``.
"""

import copy
import logging
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from core.validator import format_model_errors
from exceptions import ValidationError
from models import (
    CostEstimate,
    CostRange,
    GeneratedProtocol,
    GenerationRequest,
    Precaution,
)


logger = logging.getLogger(__name__)


SAFETY_DISCLAIMER = (
    "Consult with your healthcare provider before starting this protocol, "
    "especially if you have any medical conditions or take medications."
)

INTENSITY_DIFFICULTY = {"gentle": 1, "moderate": 2, "intensive": 3}

# Monthly cost per supplement (USD)
SUPPLEMENT_COST_RANGE = (15, 45)
# Daily special-food cost, weighted because not every meal needs special ingredients
SPECIAL_FOOD_DAILY_RANGE = (5, 15)
SPECIAL_FOOD_WEIGHTS = (0.3, 0.7)


# =============================================================================
# Derived Metadata
# =============================================================================

def _list_at(container: Any, key: str) -> list:
    if isinstance(container, dict) and isinstance(container.get(key), list):
        return container[key]
    return []


def _is_critical(precaution: Any) -> bool:
    return (
        isinstance(precaution, dict)
        and isinstance(precaution.get("severity"), str)
        and precaution["severity"].strip().lower() == "critical"
    )


def compute_features(doc: dict[str, Any]) -> list[str]:
    """Capability flags of a protocol document, in a fixed order."""
    config = doc.get("config")
    recommendations = doc.get("recommendations")

    features = []
    if len(_list_at(config, "meals")) >= 14:
        features.append("comprehensive-meal-planning")
    if _list_at(recommendations, "supplements"):
        features.append("supplement-protocol")
    if isinstance(config, dict) and isinstance(config.get("dailySchedule"), dict):
        features.append("structured-daily-schedule")
    if _list_at(recommendations, "monitoring"):
        features.append("progress-monitoring")
    if any(_is_critical(p) for p in _list_at(recommendations, "precautions")):
        features.append("high-safety-awareness")
    return features


def compute_difficulty(intensity: str, meal_count: int, supplement_count: int) -> int:
    """
    Difficulty score in [0, 10].

    Examples:
        >>> compute_difficulty("gentle", 7, 0)
        1
        >>> compute_difficulty("intensive", 28, 6)
        7
    """
    score = INTENSITY_DIFFICULTY.get(intensity, 0)

    if meal_count > 21:
        score += 2
    elif meal_count > 14:
        score += 1

    if supplement_count > 5:
        score += 2
    elif supplement_count > 2:
        score += 1

    return max(0, min(10, score))


def estimate_cost(supplement_count: int, duration: int) -> CostEstimate:
    supplements = CostRange(
        min=supplement_count * SUPPLEMENT_COST_RANGE[0],
        max=supplement_count * SUPPLEMENT_COST_RANGE[1],
    )
    special_foods = CostRange(
        min=duration * SPECIAL_FOOD_DAILY_RANGE[0] * SPECIAL_FOOD_WEIGHTS[0],
        max=duration * SPECIAL_FOOD_DAILY_RANGE[1] * SPECIAL_FOOD_WEIGHTS[1],
    )
    total = CostRange(
        min=supplements.min + special_foods.min,
        max=supplements.max + special_foods.max,
    )
    return CostEstimate(supplements=supplements, special_foods=special_foods, total=total)


def enforce_safety_disclaimer(precautions: list[Precaution]) -> list[Precaution]:
    """
    Guarantee a critical precaution telling the client to see a healthcare provider.

    Returns a new list; the consultation precaution is prepended when no
    existing precaution is both critical and mentions a healthcare provider.
    """
    if any(p.is_critical and p.mentions_healthcare_provider() for p in precautions):
        return list(precautions)
    logger.info("Model omitted the healthcare provider precaution, inserting it")
    return [Precaution(text=SAFETY_DISCLAIMER, severity="critical")] + list(precautions)


# =============================================================================
# Enhancement
# =============================================================================

def enhance_protocol(
    doc: dict[str, Any],
    request: GenerationRequest,
    now: Optional[datetime] = None
) -> GeneratedProtocol:
    """
    Build the final protocol from a structurally valid document.

    Args:
        doc: Parsed, validated model document (left untouched)
        request: The request the document was generated for
        now: Generation timestamp (defaults to the current time)

    Returns:
        GeneratedProtocol with metadata and the enforced safety precaution

    Raises:
        ValidationError: If a nested value cannot be coerced into the protocol model
    """
    doc = copy.deepcopy(doc)
    config = doc["config"]
    recommendations = doc["recommendations"]

    meal_count = len(_list_at(config, "meals"))
    supplement_count = len(_list_at(recommendations, "supplements"))
    duration = int(doc["duration"])

    features = compute_features(doc)
    difficulty = compute_difficulty(doc["intensity"], meal_count, supplement_count)
    cost = estimate_cost(supplement_count, duration)

    try:
        protocol = GeneratedProtocol.model_validate({
            "name": doc["name"].strip(),
            "description": doc["description"].strip(),
            "category": doc["category"],
            "duration": duration,
            "intensity": doc["intensity"],
            "config": config,
            "tags": [str(tag) for tag in doc["tags"]],
            "recommendations": recommendations,
            "metadata": {
                "generatedAt": now or datetime.now(),
                "features": features,
                "difficultyScore": difficulty,
                "costEstimate": cost,
            },
        })
    except PydanticValidationError as e:
        raise ValidationError(format_model_errors(e)) from e

    protocol.recommendations.precautions = enforce_safety_disclaimer(
        protocol.recommendations.precautions
    )

    logger.debug(
        f"Enhanced protocol '{protocol.name}' for {request.effective_category.value} request: "
        f"difficulty={difficulty}, features={features}"
    )
    return protocol
