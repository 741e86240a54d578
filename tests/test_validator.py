"""Tests for structural validation of protocol documents."""

import pytest

from core.validator import ensure_valid_protocol, validate_protocol_document
from exceptions import ValidationError


def test_valid_document_has_no_errors(protocol_doc):
    assert validate_protocol_document(protocol_doc) == []


def test_every_violation_reported(protocol_doc):
    del protocol_doc["name"]
    protocol_doc["duration"] = 500
    protocol_doc["intensity"] = "extreme"

    errors = validate_protocol_document(protocol_doc)

    assert len(errors) == 3
    assert any("'name'" in error for error in errors)
    assert any("'duration'" in error for error in errors)
    assert any("'intensity'" in error for error in errors)


@pytest.mark.parametrize("duration", [0, 366, "30", True, None])
def test_duration_bounds_and_type(protocol_doc, duration):
    protocol_doc["duration"] = duration
    assert len(validate_protocol_document(protocol_doc)) == 1


@pytest.mark.parametrize("duration", [1, 365, 30.0])
def test_duration_accepted(protocol_doc, duration):
    protocol_doc["duration"] = duration
    assert validate_protocol_document(protocol_doc) == []


def test_empty_meals_rejected(protocol_doc):
    protocol_doc["config"]["meals"] = []
    assert validate_protocol_document(protocol_doc) == ["'config.meals' must be a non-empty list"]


def test_each_missing_recommendation_list_reported(protocol_doc):
    del protocol_doc["recommendations"]["supplements"]
    protocol_doc["recommendations"]["precautions"] = "see a doctor"

    errors = validate_protocol_document(protocol_doc)

    assert errors == [
        "'recommendations.supplements' must be a list",
        "'recommendations.precautions' must be a list",
    ]


def test_unknown_category_rejected(protocol_doc):
    protocol_doc["category"] = "keto"
    assert len(validate_protocol_document(protocol_doc)) == 1


def test_non_object_document():
    assert validate_protocol_document(["not", "a", "dict"]) == [
        "Protocol document must be an object, got list"
    ]


def test_ensure_valid_raises_with_all_errors(protocol_doc):
    protocol_doc["tags"] = "longevity"
    protocol_doc["description"] = "   "

    with pytest.raises(ValidationError) as exc_info:
        ensure_valid_protocol(protocol_doc)

    assert len(exc_info.value.errors) == 2
    assert exc_info.value.to_dict()["details"]["errors"] == exc_info.value.errors
