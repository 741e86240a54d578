"""
Model Response Parser
=====================

Turns the raw text returned by the generative model into a JSON object.

Models asked for structured output occasionally stop mid-generation
(token limits, timeouts), which leaves the JSON unterminated. The parser
first tries the text as-is and only falls back to a repair pass when that
fails, so a response that is already valid is never altered.

Repair strategy:
1. Cut the text after the last ``}`` or ``]`` (drops a dangling partial token)
2. Close every bracket left open, innermost first, dropping trailing commas
3. Keep the slice between the first ``{`` and the last ``}``
"""

import json
import logging
from typing import Any

from exceptions import ParseError


logger = logging.getLogger(__name__)


def parse_model_response(raw: str) -> dict[str, Any]:
    """
    Parse a model response into a JSON object, repairing truncation.

    Args:
        raw: Text returned by the model

    Returns:
        The decoded JSON object

    Raises:
        ParseError: If no JSON object can be recovered. The original text is
                    attached as ``raw_response`` for diagnostics.
    """
    if raw is None or not raw.strip():
        raise ParseError("Empty response from model", raw_response=raw or "")

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as direct_error:
        logger.warning(
            f"Model response is not valid JSON ({direct_error.msg} at char {direct_error.pos}), "
            f"attempting repair on {len(raw)} chars"
        )
        candidate = repair_truncated_json(raw)
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as repair_error:
            logger.error(f"JSON repair failed: {repair_error.msg}")
            raise ParseError(
                f"Failed to parse or repair JSON response: {repair_error.msg}",
                raw_response=raw
            ) from repair_error
        logger.info(f"Recovered JSON document from truncated response ({len(candidate)} chars kept)")

    if not isinstance(parsed, dict):
        raise ParseError(
            f"Expected a JSON object, got {type(parsed).__name__}",
            raw_response=raw
        )
    return parsed


def repair_truncated_json(raw: str) -> str:
    """
    Best-effort reconstruction of a JSON object from truncated text.

    This is the repair path on its own; for well-formed object text it
    returns the same document (surrounding whitespace aside).

    Raises:
        ParseError: If the text holds no JSON object at all
    """
    last_close = max(raw.rfind("}"), raw.rfind("]"))
    if last_close == -1:
        if "{" not in raw:
            raise ParseError("No valid JSON structures found in the response", raw_response=raw)
        # Cut off before the model emitted any closing bracket
        candidate = raw.rstrip()
    else:
        candidate = raw[: last_close + 1]

    candidate = _close_open_brackets(candidate)

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end < start:
        raise ParseError("No JSON object found in the response", raw_response=raw)
    return candidate[start: end + 1]


def _close_open_brackets(text: str) -> str:
    """Append closers for brackets still open at the end of ``text``."""
    stack: list[str] = []
    in_string = False
    escaped = False

    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append(char)
        elif char == "}" and stack and stack[-1] == "{":
            stack.pop()
        elif char == "]" and stack and stack[-1] == "[":
            stack.pop()

    if in_string:
        # Truncated inside a string literal; nothing sensible to close
        return text

    repaired = text
    for opener in reversed(stack):
        repaired = repaired.rstrip()
        if repaired.endswith(","):
            repaired = repaired[:-1]
        repaired += "]" if opener == "[" else "}"
    return repaired
