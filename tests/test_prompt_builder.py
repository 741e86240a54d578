"""Tests for prompt assembly."""

import json

from core.prompt_builder import PromptBuilder
from models import GenerationRequest
from prompts import (
    PROTOCOL_DESIGNER_SYSTEM_PROMPT,
    REQUEST_PARSING_SYSTEM_PROMPT,
    SAFETY_ANALYSIS_SYSTEM_PROMPT,
    get_category_template,
)


def test_minimal_request_has_no_client_profile(settings):
    payload = PromptBuilder(settings).build(GenerationRequest(duration=14))

    assert payload.system_prompt == PROTOCOL_DESIGNER_SYSTEM_PROMPT
    assert "CLIENT PROFILE" not in payload.user_prompt
    assert "TRAINER REQUIREMENTS" not in payload.user_prompt
    assert get_category_template("general") in payload.user_prompt
    assert payload.response_format == "structured"
    assert payload.temperature == settings.generation_temperature


def test_context_only_for_present_fields(settings):
    payload = PromptBuilder(settings).build(GenerationRequest(
        category="therapeutic",
        duration=30,
        age=52,
        current_medications=["metformin"],
    ))

    assert "- Client Age: 52 years" in payload.user_prompt
    assert "- Current Medications: metformin" in payload.user_prompt
    assert "Health Conditions" not in payload.user_prompt
    assert "Experience Level" not in payload.user_prompt
    assert "Personal Goals" not in payload.user_prompt


def test_parameters_and_safety_language(settings):
    payload = PromptBuilder(settings).build(GenerationRequest(
        category="parasite-cleanse",
        intensity="gentle",
        duration=21,
        natural_language_prompt="  Client travels a lot  ",
    ))

    assert 'category must be "parasite-cleanse", duration 21, intensity "gentle"' in payload.user_prompt
    assert "## TRAINER REQUIREMENTS:\nClient travels a lot" in payload.user_prompt
    assert "healthcare provider" in payload.user_prompt.lower()


def test_build_is_deterministic(settings):
    request = GenerationRequest(duration=30, specific_goals=["energy"])
    builder = PromptBuilder(settings)
    assert builder.build(request) == builder.build(request)


def test_safety_analysis_prompt(settings, protocol_doc):
    builder = PromptBuilder(settings)

    payload = builder.build_safety_analysis(protocol_doc["config"], ["warfarin"], [])

    assert payload.system_prompt == SAFETY_ANALYSIS_SYSTEM_PROMPT
    assert payload.temperature == settings.analysis_temperature
    assert json.dumps(protocol_doc["config"], indent=2) in payload.user_prompt
    assert "## CURRENT MEDICATIONS: warfarin" in payload.user_prompt
    assert "## HEALTH CONDITIONS: none" in payload.user_prompt
    assert "ALLERGIES" not in payload.user_prompt

    with_allergies = builder.build_safety_analysis(protocol_doc["config"], [], [], ["peanuts"])
    assert "## ALLERGIES: peanuts" in with_allergies.user_prompt


def test_request_parsing_prompt(settings):
    payload = PromptBuilder(settings).build_request_parsing("  two week gentle cleanse ")

    assert payload.system_prompt == REQUEST_PARSING_SYSTEM_PROMPT
    assert payload.user_prompt.endswith('"two week gentle cleanse"')
