"""Tests for protocol enhancement: metadata and the mandatory precaution."""

import copy
from datetime import datetime

import pytest

from core.enhancer import (
    SAFETY_DISCLAIMER,
    compute_difficulty,
    compute_features,
    enforce_safety_disclaimer,
    enhance_protocol,
    estimate_cost,
)
from core.validator import validate_protocol_document
from exceptions import ValidationError
from models import GenerationRequest, Precaution


@pytest.fixture
def request_model():
    return GenerationRequest(category="longevity", duration=30)


def test_disclaimer_inserted_when_no_precautions(protocol_doc, request_model):
    protocol_doc["recommendations"]["precautions"] = []

    protocol = enhance_protocol(protocol_doc, request_model)

    precautions = protocol.recommendations.precautions
    assert len(precautions) == 1
    assert precautions[0].severity == "critical"
    assert precautions[0].text == SAFETY_DISCLAIMER


def test_disclaimer_prepended_to_existing_precautions(protocol_doc, request_model):
    protocol = enhance_protocol(protocol_doc, request_model)

    precautions = protocol.recommendations.precautions
    assert [p.severity for p in precautions] == ["critical", "medium"]


def test_existing_critical_provider_precaution_kept():
    precautions = [Precaution(text="Talk to your Healthcare Provider first", severity="CRITICAL")]
    assert enforce_safety_disclaimer(precautions) == precautions


def test_critical_precaution_without_provider_gets_disclaimer():
    precautions = [Precaution(text="Stop if dizzy", severity="critical")]
    result = enforce_safety_disclaimer(precautions)
    assert len(result) == 2
    assert result[0].text == SAFETY_DISCLAIMER


def test_string_precautions_coerced(protocol_doc, request_model):
    protocol_doc["recommendations"]["precautions"] = ["Drink plenty of water"]

    protocol = enhance_protocol(protocol_doc, request_model)

    assert protocol.recommendations.precautions[1].text == "Drink plenty of water"
    assert protocol.recommendations.precautions[1].severity == "medium"


def test_input_document_not_mutated(protocol_doc, request_model):
    original = copy.deepcopy(protocol_doc)
    enhance_protocol(protocol_doc, request_model)
    assert protocol_doc == original


def test_metadata(protocol_doc, request_model):
    now = datetime(2025, 3, 1, 12, 0)

    protocol = enhance_protocol(protocol_doc, request_model, now=now)

    assert protocol.metadata.generated_at == now
    # moderate (2) + 21 meals (+1) + 1 supplement (+0)
    assert protocol.metadata.difficulty_score == 3
    assert protocol.metadata.cost_estimate.supplements.min == 15
    assert protocol.metadata.features == [
        "comprehensive-meal-planning",
        "supplement-protocol",
        "structured-daily-schedule",
        "progress-monitoring",
    ]


def test_features_ignore_inserted_disclaimer(protocol_doc):
    assert "high-safety-awareness" not in compute_features(protocol_doc)
    protocol_doc["recommendations"]["precautions"].append(
        {"text": "Seek care for chest pain", "severity": "critical"}
    )
    assert "high-safety-awareness" in compute_features(protocol_doc)


@pytest.mark.parametrize("intensity,meals,supplements,expected", [
    ("gentle", 7, 0, 1),
    ("moderate", 15, 3, 4),
    ("intensive", 28, 6, 7),
    ("unknown", 0, 0, 0),
])
def test_difficulty(intensity, meals, supplements, expected):
    assert compute_difficulty(intensity, meals, supplements) == expected


def test_cost_estimate():
    cost = estimate_cost(supplement_count=2, duration=30)
    assert (cost.supplements.min, cost.supplements.max) == (30, 90)
    assert cost.special_foods.min == pytest.approx(45.0)
    assert cost.special_foods.max == pytest.approx(315.0)
    assert cost.total.min == pytest.approx(75.0)
    assert cost.currency == "USD"


def test_non_object_config_raises_validation_error(protocol_doc, request_model):
    protocol_doc["config"] = ["breakfast", "lunch"]
    with pytest.raises(ValidationError):
        enhance_protocol(protocol_doc, request_model)


def test_free_form_config_shapes_accepted(protocol_doc, request_model):
    protocol_doc["config"]["dailySchedule"] = ["07:00 warm water", "08:00 breakfast"]
    protocol_doc["config"]["weeklyGoals"] = {"week1": "Establish the meal rhythm"}
    protocol_doc["config"]["shoppingList"] = "See the meal plan"
    assert validate_protocol_document(protocol_doc) == []

    protocol = enhance_protocol(protocol_doc, request_model)

    assert protocol.config.daily_schedule == ["07:00 warm water", "08:00 breakfast"]
    assert protocol.config.weekly_goals == {"week1": "Establish the meal rhythm"}
    assert "structured-daily-schedule" not in protocol.metadata.features


@pytest.mark.parametrize("raw,expected", [
    ({"item": "Avoid grapefruit", "severity": "high"}, "Avoid grapefruit"),
    ({"warning": "Stop if dizzy"}, "Stop if dizzy"),
    ({"severity": "high"}, "{'severity': 'high'}"),
    (42, "42"),
])
def test_loosely_shaped_precautions_coerced(protocol_doc, request_model, raw, expected):
    protocol_doc["recommendations"]["precautions"] = [raw]
    assert validate_protocol_document(protocol_doc) == []

    protocol = enhance_protocol(protocol_doc, request_model)

    precautions = protocol.recommendations.precautions
    assert precautions[0].text == SAFETY_DISCLAIMER
    assert precautions[1].text == expected
