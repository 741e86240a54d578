"""
Prompt Builder for ProtocolForge
================================

Assembles complete model requests (``PromptPayload``) from the text
fragments in ``prompts.py``.

A generation prompt is layered:
1. Category template (what kind of protocol)
2. Intensity and duration directives
3. Client context, built only from the fields the request actually has
4. Free-text requirements from the trainer, when given
5. The JSON output schema
6. Mandatory healthcare-provider safety language

The builder is pure: the same request always produces the same payload,
which keeps generation cache keys and prompts in step.
"""

import json
import logging
from typing import Any, Optional

from config import Settings, get_settings
from models import GenerationRequest, PromptPayload
from prompts import (
    DURATION_DIRECTIVE,
    INTENSITY_DIRECTIVES,
    PROTOCOL_DESIGNER_SYSTEM_PROMPT,
    PROTOCOL_OUTPUT_SCHEMA,
    REQUEST_PARSING_SYSTEM_PROMPT,
    REQUEST_PARSING_USER_PROMPT,
    SAFETY_ANALYSIS_SYSTEM_PROMPT,
    SAFETY_REQUIREMENTS,
    get_category_template,
)


logger = logging.getLogger(__name__)


class PromptBuilder:
    """
    Builds model prompts for generation, safety analysis and request parsing.

    Temperatures come from settings: generation uses the (higher) generation
    temperature, analysis and parsing the low analysis temperature.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def build(self, request: GenerationRequest) -> PromptPayload:
        """
        Build the protocol generation prompt for a request.

        Args:
            request: Normalized generation parameters

        Returns:
            Structured PromptPayload for the model client
        """
        category = request.effective_category
        sections = [
            get_category_template(category.value),
            INTENSITY_DIRECTIVES[request.intensity.value],
            DURATION_DIRECTIVE.format(duration=request.duration),
        ]

        context = self._client_context(request)
        if context:
            sections.append("## CLIENT PROFILE:\n" + "\n".join(context))

        if request.natural_language_prompt and request.natural_language_prompt.strip():
            sections.append(
                "## TRAINER REQUIREMENTS:\n" + request.natural_language_prompt.strip()
            )

        sections.append(
            "## OUTPUT FORMAT:\nReturn a JSON object with exactly this structure "
            f"(category must be \"{category.value}\", duration {request.duration}, "
            f"intensity \"{request.intensity.value}\"):\n{PROTOCOL_OUTPUT_SCHEMA}"
        )
        sections.append(SAFETY_REQUIREMENTS)

        logger.debug(
            f"Built generation prompt for {category.value}/{request.intensity.value} "
            f"({len(context)} context line(s))"
        )

        return PromptPayload(
            system_prompt=PROTOCOL_DESIGNER_SYSTEM_PROMPT,
            user_prompt="\n\n".join(sections),
            response_format="structured",
            temperature=self.settings.generation_temperature,
        )

    def _client_context(self, request: GenerationRequest) -> list[str]:
        """One line per present request field; absent fields add nothing."""
        lines = []
        if request.age is not None:
            lines.append(f"- Client Age: {request.age} years")
        if request.health_conditions:
            lines.append(f"- Health Conditions: {', '.join(request.health_conditions)}")
        if request.current_medications:
            lines.append(f"- Current Medications: {', '.join(request.current_medications)}")
        if request.experience_level is not None:
            lines.append(f"- Experience Level: {request.experience_level.value}")
        if request.specific_goals:
            lines.append(f"- Personal Goals: {', '.join(request.specific_goals)}")
        return lines

    def build_safety_analysis(
        self,
        protocol_config: dict[str, Any],
        medications: list[str],
        conditions: list[str],
        allergies: Optional[list[str]] = None
    ) -> PromptPayload:
        """
        Build the interaction analysis prompt for a protocol and a customer.

        Allergies are only included when the customer has any.
        """
        parts = [
            "## PROTOCOL CONFIGURATION:",
            json.dumps(protocol_config, indent=2, default=str),
            "",
            f"## CURRENT MEDICATIONS: {', '.join(medications) if medications else 'none'}",
            f"## HEALTH CONDITIONS: {', '.join(conditions) if conditions else 'none'}",
        ]
        if allergies:
            parts.append(f"## ALLERGIES: {', '.join(allergies)}")
        parts.append("")
        parts.append("Analyze this protocol for interactions and return the JSON verdict.")

        return PromptPayload(
            system_prompt=SAFETY_ANALYSIS_SYSTEM_PROMPT,
            user_prompt="\n".join(parts),
            response_format="structured",
            temperature=self.settings.analysis_temperature,
        )

    def build_request_parsing(self, text: str) -> PromptPayload:
        """Build the prompt that extracts GenerationRequest fields from free text."""
        return PromptPayload(
            system_prompt=REQUEST_PARSING_SYSTEM_PROMPT,
            user_prompt=REQUEST_PARSING_USER_PROMPT.format(text=text.strip()),
            response_format="structured",
            temperature=self.settings.analysis_temperature,
        )
