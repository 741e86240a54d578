"""Tests for model response parsing and truncation repair."""

import json

import pytest

from core.response_parser import parse_model_response, repair_truncated_json
from exceptions import ParseError


def test_valid_json_parsed_unchanged(protocol_json, protocol_doc):
    assert parse_model_response(protocol_json) == protocol_doc


def test_truncated_list_is_closed():
    assert parse_model_response('{"a": 1, "b": [1,2,') == {"a": 1, "b": [1, 2]}


def test_truncated_nested_object_is_closed():
    raw = '{"name": "Reset", "config": {"meals": [{"day": 1}, {"day": 2'
    result = parse_model_response(raw)
    assert result["name"] == "Reset"
    assert result["config"]["meals"][0] == {"day": 1}


def test_surrounding_prose_is_dropped():
    raw = 'Here is your protocol:\n{"name": "Reset", "tags": ["a"]}\nEnjoy!'
    assert parse_model_response(raw) == {"name": "Reset", "tags": ["a"]}


def test_truncated_before_any_closer():
    assert parse_model_response('{"name": "Reset",') == {"name": "Reset"}


def test_repair_is_identity_on_valid_object(protocol_json):
    assert json.loads(repair_truncated_json(protocol_json)) == json.loads(protocol_json)


@pytest.mark.parametrize("raw", ["", "   ", None])
def test_empty_response_raises(raw):
    with pytest.raises(ParseError):
        parse_model_response(raw)


def test_no_json_raises():
    with pytest.raises(ParseError) as exc_info:
        parse_model_response("I cannot help with that.")
    assert exc_info.value.raw_response == "I cannot help with that."


def test_top_level_array_rejected():
    with pytest.raises(ParseError, match="Expected a JSON object"):
        parse_model_response('[{"name": "Reset"}]')


def test_raw_response_kept_out_of_error_dict():
    raw = '{"secret": "patient notes" ' + "x" * 20
    with pytest.raises(ParseError) as exc_info:
        parse_model_response(raw)

    error = exc_info.value
    assert error.raw_response == raw
    assert "patient notes" not in json.dumps(error.to_dict())
    assert error.to_dict()["details"]["response_length"] == len(raw)
