"""
Generative Model Client for ProtocolForge
=========================================

Thin boundary around the text-generation model. Everything above this
module deals in prompts and raw response text; everything model-specific
(LangChain chain, Ollama connection, JSON mode) lives here.

Architecture Pattern: Service with Strategy
-------------------------------------------
- OllamaModelClient: local Ollama model through LangChain
- MockModelClient: scripted responses for tests and offline runs

Calls are never retried here. A failed call surfaces as a typed error so
the generator and the batch orchestrator decide what to do with it.
"""

import asyncio
import json
import logging
import re
from typing import Callable, Optional, Protocol, Union

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_ollama import OllamaLLM

from config import Settings, get_settings
from exceptions import GenerationError, ParseError, ServiceUnavailableError
from prompts import REQUEST_PARSING_SYSTEM_PROMPT, SAFETY_ANALYSIS_SYSTEM_PROMPT


# Set up module logger
logger = logging.getLogger(__name__)


# Prompts are passed as variables so JSON braces in them are not read as
# template placeholders.
CHAT_TEMPLATE = ChatPromptTemplate.from_messages([
    ("system", "{system_prompt}"),
    ("human", "{user_prompt}"),
])


class ModelClientProtocol(Protocol):
    """
    Protocol for generative model clients.

    This allows us to swap implementations:
    - OllamaModelClient: Local LLM
    - MockModelClient: Testing
    """

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        response_format: str = "structured",
        temperature: float = 0.7
    ) -> str:
        """
        Send one prompt to the model and return the raw response text (synchronous).

        Args:
            system_prompt: Role and rules for the model
            user_prompt: The actual request
            response_format: "structured" asks for JSON output, "text" for free text
            temperature: Sampling temperature

        Raises:
            ServiceUnavailableError: Model unconfigured or unreachable
            ParseError: Model returned an empty response
        """
        ...

    async def acomplete(
        self,
        system_prompt: str,
        user_prompt: str,
        response_format: str = "structured",
        temperature: float = 0.7
    ) -> str:
        """Async version of complete()."""
        ...


class OllamaModelClient:
    """
    Model client using a local Ollama server through LangChain.

    Key Design Decisions:
    ---------------------
    1. Lazy initialization: no connection until the first call
    2. One LLM wrapper per (format, temperature) pair, reused across calls
    3. Structured requests use Ollama's JSON mode
    4. Connection problems become ServiceUnavailableError so callers can
       tell "can't reach the model" from "model responded badly"
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        llm: Optional[OllamaLLM] = None
    ):
        """
        Initialize the model client.

        Args:
            settings: Application settings (uses defaults if not provided)
            llm: Pre-configured LLM used for every call (creates them if not provided)
        """
        self.settings = settings or get_settings()
        self._llm = llm
        self._llms: dict[tuple[str, float], OllamaLLM] = {}

        logger.info(
            f"OllamaModelClient initialized with model: {self.settings.ollama_model or '<unconfigured>'}"
        )

    def _get_llm(self, response_format: str, temperature: float) -> OllamaLLM:
        """Lazy-load the LLM wrapper for a format/temperature pair."""
        if self._llm is not None:
            return self._llm

        if not self.settings.ollama_model:
            raise ServiceUnavailableError(
                url=self.settings.ollama_base_url,
                original_error="No model configured (set PROTOCOLFORGE_OLLAMA_MODEL)"
            )

        format_ = "json" if response_format == "structured" else ""
        key = (format_, temperature)
        if key not in self._llms:
            logger.info(
                f"Initializing Ollama LLM: {self.settings.ollama_model} at "
                f"{self.settings.ollama_base_url} (format={format_ or 'text'}, "
                f"temperature={temperature})"
            )
            self._llms[key] = OllamaLLM(
                model=self.settings.ollama_model,
                base_url=self.settings.ollama_base_url,
                temperature=temperature,
                num_ctx=self.settings.ollama_context_window,
                format=format_,
                client_kwargs={"timeout": self.settings.ollama_timeout},
            )
        return self._llms[key]

    def _chain(self, response_format: str, temperature: float):
        return CHAT_TEMPLATE | self._get_llm(response_format, temperature) | StrOutputParser()

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        response_format: str = "structured",
        temperature: float = 0.7
    ) -> str:
        chain = self._chain(response_format, temperature)
        logger.debug(f"Sending request to Ollama ({len(user_prompt)} chars)...")
        try:
            raw_response = chain.invoke({
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
            })
        except Exception as e:
            raise self._translate_error(e) from e
        return self._check_response(raw_response)

    async def acomplete(
        self,
        system_prompt: str,
        user_prompt: str,
        response_format: str = "structured",
        temperature: float = 0.7
    ) -> str:
        chain = self._chain(response_format, temperature)
        logger.debug(f"Sending async request to Ollama ({len(user_prompt)} chars)...")
        try:
            raw_response = await chain.ainvoke({
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
            })
        except Exception as e:
            raise self._translate_error(e) from e
        return self._check_response(raw_response)

    def _check_response(self, raw_response: str) -> str:
        if not raw_response or not raw_response.strip():
            raise ParseError("Empty response from model", raw_response=raw_response or "")
        logger.debug(f"Received response ({len(raw_response)} chars)")
        return raw_response

    def _translate_error(self, error: Exception) -> GenerationError:
        """Map a LangChain/Ollama failure onto the library's error types."""
        error_msg = str(error)
        lowered = error_msg.lower()
        if (
            isinstance(error, (ConnectionError, TimeoutError))
            or "connection" in lowered
            or "refused" in lowered
            or "timed out" in lowered
        ):
            logger.error(f"Ollama unreachable at {self.settings.ollama_base_url}: {error_msg}")
            return ServiceUnavailableError(
                url=self.settings.ollama_base_url,
                original_error=error_msg
            )
        if "not found" in lowered or "pull" in lowered:
            logger.error(f"Ollama model '{self.settings.ollama_model}' is not available")
            return ServiceUnavailableError(
                url=self.settings.ollama_base_url,
                original_error=f"Model '{self.settings.ollama_model}' not found. "
                               f"Run: ollama pull {self.settings.ollama_model}"
            )
        logger.error(f"Model call failed: {error_msg}")
        return GenerationError(
            message=f"Model call failed: {error_msg}",
            details={"error_class": type(error).__name__}
        )


# =============================================================================
# Mock Client
# =============================================================================

ScriptedResponse = Union[str, Exception]
Responder = Callable[[str, str], ScriptedResponse]


class MockModelClient:
    """
    Mock model client for testing and offline runs.

    Responses can be:
    - a list, consumed in order (the last entry repeats once exhausted)
    - a single string returned for every call
    - a callable ``(system_prompt, user_prompt) -> str``
    - omitted, in which case canned documents are produced per prompt kind

    An Exception in place of a response is raised instead of returned.
    Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        responses: Optional[Union[list[ScriptedResponse], ScriptedResponse, Responder]] = None,
        delay: float = 0.0
    ):
        self.responses = responses
        self.delay = delay
        self.calls: list[dict] = []
        self._index = 0

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def _next_response(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
        })

        if self.responses is None:
            response = default_mock_response(system_prompt, user_prompt)
        elif isinstance(self.responses, list):
            position = min(self._index, len(self.responses) - 1)
            self._index += 1
            response = self.responses[position]
        elif callable(self.responses) and not isinstance(self.responses, Exception):
            response = self.responses(system_prompt, user_prompt)
        else:
            response = self.responses

        if isinstance(response, Exception):
            raise response
        return response

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        response_format: str = "structured",
        temperature: float = 0.7
    ) -> str:
        """Return the next scripted response (sync)."""
        return self._next_response(system_prompt, user_prompt)

    async def acomplete(
        self,
        system_prompt: str,
        user_prompt: str,
        response_format: str = "structured",
        temperature: float = 0.7
    ) -> str:
        """Return the next scripted response (async)."""
        if self.delay:
            await asyncio.sleep(self.delay)
        return self._next_response(system_prompt, user_prompt)


def mock_protocol_document(
    category: str = "general",
    intensity: str = "moderate",
    duration: int = 30
) -> dict:
    """A structurally valid protocol document, as the model would return it."""
    meal_types = ["breakfast", "lunch", "dinner"]
    return {
        "name": f"{category.replace('-', ' ').title()} Reset",
        "description": f"A {duration}-day {intensity} {category} protocol built on whole foods.",
        "category": category,
        "duration": duration,
        "intensity": intensity,
        "config": {
            "meals": [
                {
                    "day": day,
                    "mealType": meal_type,
                    "name": f"Day {day} {meal_type}",
                    "ingredients": ["leafy greens", "olive oil", "lentils"],
                }
                for day in range(1, 8)
                for meal_type in meal_types
            ],
            "dailySchedule": {
                "morning": "Warm water with lemon, breakfast",
                "midday": "Lunch and a 20 minute walk",
                "evening": "Light dinner before 7pm",
            },
            "weeklyGoals": ["Week 1: establish the meal rhythm"],
        },
        "tags": [category, intensity],
        "recommendations": {
            "supplements": [
                {"name": "Magnesium glycinate", "dosage": "200mg", "timing": "evening"},
            ],
            "dietaryGuidelines": ["Eat whole, minimally processed foods"],
            "lifestyleChanges": ["Sleep 7-9 hours"],
            "precautions": [
                {"text": "Stop the protocol if you feel unwell", "severity": "medium"},
            ],
            "monitoring": ["Track energy levels daily"],
        },
    }


_PROMPT_PARAMS = re.compile(
    r'category must be "(?P<category>[a-z-]+)", duration (?P<duration>\d+), '
    r'intensity "(?P<intensity>[a-z]+)"'
)


def default_mock_response(system_prompt: str, user_prompt: str) -> str:
    """Canned response matching the kind of prompt received."""
    if system_prompt == SAFETY_ANALYSIS_SYSTEM_PROMPT:
        return json.dumps({
            "safetyRating": "safe",
            "interactions": [],
            "generalRecommendations": ["Stay hydrated throughout the protocol"],
        })

    if system_prompt == REQUEST_PARSING_SYSTEM_PROMPT:
        return json.dumps({"category": "general", "intensity": "moderate", "duration": 30})

    match = _PROMPT_PARAMS.search(user_prompt)
    if match:
        document = mock_protocol_document(
            category=match.group("category"),
            intensity=match.group("intensity"),
            duration=int(match.group("duration")),
        )
    else:
        document = mock_protocol_document()
    return json.dumps(document)


# =============================================================================
# Factory Function
# =============================================================================

def create_model_client(
    settings: Optional[Settings] = None,
    use_mock: bool = False,
    responses: Optional[Union[list[ScriptedResponse], ScriptedResponse, Responder]] = None
) -> ModelClientProtocol:
    """
    Factory function to create the appropriate model client.

    Args:
        settings: Application settings
        use_mock: If True, returns a mock client
        responses: Scripted responses for the mock client

    Returns:
        A model client instance
    """
    if use_mock:
        logger.info("Creating mock model client")
        return MockModelClient(responses=responses)

    logger.info("Creating Ollama model client")
    return OllamaModelClient(settings=settings)
