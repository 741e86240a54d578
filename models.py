"""
Domain Models for ProtocolForge
===============================

This module defines the core data structures used throughout the application.
We use Pydantic for several important reasons:

1. **Validation**: Automatically validates data types and constraints
2. **Serialization**: Easy conversion to/from JSON (cache, tasks, exports)
3. **Documentation**: Self-documenting with type hints

Design Principle: These models are "pure" - they have no dependencies on
external services, databases, or frameworks.

Wire format: the generative model produces camelCase keys
(``dietaryGuidelines``, ``dailySchedule``...). Models expose snake_case
attributes with camelCase aliases and accept either spelling.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional, List, Union
from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class ProtocolCategory(str, Enum):
    """
    Kind of protocol to generate.

    Lookup is forgiving about case and underscores so that
    ``"parasite_cleanse"`` resolves to ``PARASITE_CLEANSE``.
    """
    LONGEVITY = "longevity"
    PARASITE_CLEANSE = "parasite-cleanse"
    THERAPEUTIC = "therapeutic"
    GENERAL = "general"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = value.strip().lower().replace("_", "-")
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class Intensity(str, Enum):
    GENTLE = "gentle"
    MODERATE = "moderate"
    INTENSIVE = "intensive"


class ExperienceLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class SafetyRating(str, Enum):
    """
    Overall verdict of a safety validation, least to most severe.

    Declaration order is the severity order; see SAFETY_RATING_ORDER.
    """
    SAFE = "safe"
    CAUTION = "caution"
    WARNING = "warning"
    CONTRAINDICATED = "contraindicated"


SAFETY_RATING_ORDER: List[SafetyRating] = list(SafetyRating)


class InteractionType(str, Enum):
    MEDICATION = "medication"
    CONDITION = "condition"
    ALLERGY = "allergy"


class InteractionSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================================================
# Generation Request
# =============================================================================

class GenerationRequest(BaseModel):
    """
    Normalized parameters describing what kind of protocol to produce.

    Two requests are equivalent when their fields match after sorting the
    list fields and lower-casing the free text; see
    ``core.cache.generation_cache_key``.
    """
    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    category: Optional[ProtocolCategory] = Field(
        default=None,
        description="Protocol category (unset means general)"
    )
    intensity: Intensity = Field(default=Intensity.MODERATE)
    duration: int = Field(..., ge=1, le=365, description="Duration in days")
    age: Optional[int] = Field(default=None, ge=0, le=130)
    health_conditions: List[str] = Field(default_factory=list, alias="healthConditions")
    current_medications: List[str] = Field(default_factory=list, alias="currentMedications")
    experience_level: Optional[ExperienceLevel] = Field(default=None, alias="experienceLevel")
    specific_goals: List[str] = Field(default_factory=list, alias="specificGoals")
    natural_language_prompt: Optional[str] = Field(
        default=None,
        alias="naturalLanguagePrompt",
        description="Free-text requirements from the trainer"
    )

    @property
    def effective_category(self) -> ProtocolCategory:
        return self.category or ProtocolCategory.GENERAL


class PromptPayload(BaseModel):
    """A complete request for the generative model."""
    system_prompt: str
    user_prompt: str
    response_format: str = Field(default="structured", description="'structured' or 'text'")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


# =============================================================================
# Generated Protocol
# =============================================================================

class Precaution(BaseModel):
    """
    A single safety precaution.

    The model sometimes returns bare strings or uses another key for the
    text; both are normalized here. An object with no recognizable text key
    takes its first other string value, or its own repr as a last resort.
    """
    text: str
    severity: str = Field(default="medium", description="low | medium | high | critical")

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"text": data, "severity": "medium"}
        if not isinstance(data, dict):
            return {"text": str(data), "severity": "medium"}
        if isinstance(data.get("text"), str):
            return data
        for key in ("precaution", "description", "warning", "note"):
            if isinstance(data.get(key), str):
                return {**data, "text": data[key]}
        for key, value in data.items():
            if key != "severity" and isinstance(value, str) and value.strip():
                return {**data, "text": value}
        return {**data, "text": str(data)}

    @property
    def is_critical(self) -> bool:
        return self.severity.strip().lower() == "critical"

    def mentions_healthcare_provider(self) -> bool:
        return "healthcare provider" in self.text.lower()


class ProtocolConfig(BaseModel):
    """
    Free-form protocol body.

    Only the meal list is required; any extra key the model emits is kept
    as-is for forward compatibility.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    meals: List[Any] = Field(default_factory=list)
    daily_schedule: Optional[Any] = Field(default=None, alias="dailySchedule")
    shopping_list: Optional[Any] = Field(default=None, alias="shoppingList")
    weekly_goals: Optional[Any] = Field(default=None, alias="weeklyGoals")


class Recommendations(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    supplements: List[Union[dict[str, Any], str]] = Field(default_factory=list)
    dietary_guidelines: List[Union[str, dict[str, Any]]] = Field(
        default_factory=list, alias="dietaryGuidelines"
    )
    lifestyle_changes: List[Union[str, dict[str, Any]]] = Field(
        default_factory=list, alias="lifestyleChanges"
    )
    precautions: List[Precaution] = Field(default_factory=list)
    monitoring: List[Union[str, dict[str, Any]]] = Field(default_factory=list)


class CostRange(BaseModel):
    min: float
    max: float


class CostEstimate(BaseModel):
    """Estimated monthly cost of following a protocol."""
    supplements: CostRange
    special_foods: CostRange = Field(alias="specialFoods")
    total: CostRange
    currency: str = "USD"

    model_config = ConfigDict(populate_by_name=True)


class ProtocolMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    generated_at: datetime = Field(alias="generatedAt")
    features: List[str] = Field(default_factory=list)
    difficulty_score: int = Field(..., ge=0, le=10, alias="difficultyScore")
    cost_estimate: CostEstimate = Field(alias="costEstimate")


class GeneratedProtocol(BaseModel):
    """
    A validated, enhanced protocol ready to be stored and assigned.

    Invariant: ``recommendations.precautions`` holds at least one critical
    precaution that tells the client to consult a healthcare provider.
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str
    category: ProtocolCategory
    duration: int = Field(..., ge=1, le=365)
    intensity: Intensity
    config: ProtocolConfig
    tags: List[str] = Field(default_factory=list)
    recommendations: Recommendations
    metadata: ProtocolMetadata

    @property
    def meal_count(self) -> int:
        return len(self.config.meals)

    def to_formatted_string(self) -> str:
        """Short human-readable summary for terminals and logs."""
        cost = self.metadata.cost_estimate.total
        lines = [
            f"{self.name} ({self.category.value}, {self.intensity.value}, {self.duration} days)",
            self.description,
            "",
            f"Meals: {self.meal_count} | Difficulty: {self.metadata.difficulty_score}/10 | "
            f"Est. cost: ${cost.min:.0f}-${cost.max:.0f} {self.metadata.cost_estimate.currency}",
            f"Features: {', '.join(self.metadata.features) or 'none'}",
            "",
            "Precautions:",
        ]
        for precaution in self.recommendations.precautions:
            lines.append(f"  [{precaution.severity.upper()}] {precaution.text}")
        return "\n".join(lines)


# =============================================================================
# Safety Validation
# =============================================================================

class SafetyValidationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    protocol_id: str = Field(..., alias="protocolId")
    customer_id: str = Field(..., alias="customerId")
    medications: List[str] = Field(default_factory=list)
    health_conditions: List[str] = Field(default_factory=list, alias="healthConditions")
    allergies: List[str] = Field(default_factory=list)
    force_revalidation: bool = Field(default=False, alias="forceRevalidation")


class InteractionRecord(BaseModel):
    """One medication, condition or allergy concern found for a protocol."""
    type: InteractionType
    item: str
    severity: InteractionSeverity
    description: str
    recommendation: str


class SafetyValidationResult(BaseModel):
    """
    Combined, conservative safety verdict for a (protocol, customer) pair.

    ``requires_healthcare_approval`` and ``can_proceed_with_caution`` are
    derived from the rating and always agree with it.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    protocol_id: str = Field(..., alias="protocolId")
    customer_id: str = Field(..., alias="customerId")
    medications: List[str] = Field(default_factory=list)
    health_conditions: List[str] = Field(default_factory=list, alias="healthConditions")
    allergies: List[str] = Field(default_factory=list)
    safety_rating: SafetyRating = Field(..., alias="safetyRating")
    interactions: List[InteractionRecord] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    validated_at: datetime = Field(default_factory=datetime.now, alias="validatedAt")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    validated_by: str = Field(default="system", alias="validatedBy")

    @computed_field
    @property
    def requires_healthcare_approval(self) -> bool:
        return self.safety_rating in (SafetyRating.WARNING, SafetyRating.CONTRAINDICATED)

    @computed_field
    @property
    def can_proceed_with_caution(self) -> bool:
        return self.safety_rating in (SafetyRating.SAFE, SafetyRating.CAUTION)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now()) > self.expires_at
