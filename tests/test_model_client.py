"""Tests for the model client boundary."""

import json

import pytest
from langchain_core.runnables import RunnableLambda

from core.model_client import (
    MockModelClient,
    OllamaModelClient,
    create_model_client,
    default_mock_response,
)
from core.prompt_builder import PromptBuilder
from exceptions import GenerationError, ParseError, ServiceUnavailableError
from models import GenerationRequest


def _raising(error):
    def invoke(_prompt):
        raise error
    return RunnableLambda(invoke)


def test_unconfigured_model_is_unavailable(settings):
    client = OllamaModelClient(settings=settings.model_copy(update={"ollama_model": ""}))

    with pytest.raises(ServiceUnavailableError) as exc_info:
        client.complete("system", "user")
    assert "No model configured" in exc_info.value.details["original_error"]


def test_connection_error_translated(settings):
    client = OllamaModelClient(settings=settings, llm=_raising(ConnectionError("Connection refused")))

    with pytest.raises(ServiceUnavailableError) as exc_info:
        client.complete("system", "user")
    assert exc_info.value.details["model_url"] == settings.ollama_base_url


def test_missing_model_translated(settings):
    client = OllamaModelClient(
        settings=settings, llm=_raising(RuntimeError('model "llama3.2" not found, try pulling it first'))
    )

    with pytest.raises(ServiceUnavailableError, match="ollama pull"):
        client.complete("system", "user")


async def test_other_failures_are_generation_errors(settings):
    client = OllamaModelClient(settings=settings, llm=_raising(ValueError("bad sampling option")))

    with pytest.raises(GenerationError) as exc_info:
        await client.acomplete("system", "user")
    assert not isinstance(exc_info.value, ServiceUnavailableError)
    assert exc_info.value.details["error_class"] == "ValueError"


def test_empty_response_is_parse_error(settings):
    client = OllamaModelClient(settings=settings, llm=RunnableLambda(lambda _prompt: "  "))

    with pytest.raises(ParseError):
        client.complete("system", "user")


def test_braces_in_prompts_reach_the_model(settings):
    seen = []

    def echo(prompt_value):
        seen.append(prompt_value.to_string())
        return '{"ok": true}'

    client = OllamaModelClient(settings=settings, llm=RunnableLambda(echo))

    assert client.complete("Return {\"a\": 1}", "schema: {name}") == '{"ok": true}'
    assert '{"a": 1}' in seen[0]
    assert "schema: {name}" in seen[0]


def test_mock_list_responses_repeat_last():
    client = MockModelClient(responses=["first", "second"])

    assert [client.complete("s", "u") for _ in range(3)] == ["first", "second", "second"]
    assert client.call_count == 3


def test_mock_callable_and_error_responses():
    client = MockModelClient(responses=lambda system, user: user.upper())
    assert client.complete("s", "hello") == "HELLO"

    failing = MockModelClient(responses=[ParseError("bad"), "recovered"])
    with pytest.raises(ParseError):
        failing.complete("s", "u")
    assert failing.complete("s", "u") == "recovered"


def test_default_mock_response_follows_prompt(settings):
    payload = PromptBuilder(settings).build(
        GenerationRequest(category="therapeutic", intensity="intensive", duration=45)
    )

    doc = json.loads(default_mock_response(payload.system_prompt, payload.user_prompt))

    assert (doc["category"], doc["intensity"], doc["duration"]) == ("therapeutic", "intensive", 45)


def test_factory(settings):
    assert isinstance(create_model_client(settings, use_mock=True), MockModelClient)
    assert isinstance(create_model_client(settings), OllamaModelClient)
