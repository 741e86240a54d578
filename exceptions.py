"""
Custom Exceptions for ProtocolForge
===================================

This module defines a hierarchy of custom exceptions that:

1. **Categorize Errors**: Different exception types for different problems
2. **Carry Context**: Include relevant information for debugging
3. **Enable Recovery**: Callers can tell "can't reach the model" apart
   from "the model responded badly"
4. **Serialize Cleanly**: `to_dict()` feeds Celery task results and CLI output

Exception Hierarchy:
    ProtocolForgeError (base)
    ├── GenerationError
    │   ├── ServiceUnavailableError
    │   ├── ParseError
    │   ├── ValidationError
    │   └── BatchGenerationError
    ├── SafetyError
    │   ├── SafetyAnalysisError
    │   └── ProtocolNotFoundError
    └── ConfigurationError
"""

from typing import Optional


class ProtocolForgeError(Exception):
    """
    Base exception for all ProtocolForge errors.

    All custom exceptions inherit from this, allowing code to catch
    all pipeline-related errors with a single except clause:

        try:
            pipeline.generate(request)
        except ProtocolForgeError as e:
            logger.error(f"Protocol pipeline error: {e}")

    Attributes:
        message: Human-readable error description
        details: Additional context (JSON-serializable)
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """
        Convert to a JSON-serializable dictionary.

        Returns a structured error that can be easily serialized to JSON.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


# =============================================================================
# Generation-Related Errors
# =============================================================================

class GenerationError(ProtocolForgeError):
    """Base class for protocol generation errors."""
    pass


class ServiceUnavailableError(GenerationError):
    """Raised when the generative model is unconfigured or unreachable."""

    def __init__(self, url: str, original_error: str):
        super().__init__(
            message=f"Generative model unavailable at {url}: {original_error}",
            details={
                "model_url": url,
                "original_error": original_error,
                "hint": "Make sure Ollama is running: 'ollama serve'"
            }
        )


class ParseError(GenerationError):
    """
    Raised when a model response cannot be turned into structured data,
    even after the truncation repair.

    The raw response is kept on the instance for diagnostics only; it is
    never part of the message or of to_dict().
    """

    def __init__(self, reason: str, raw_response: str = ""):
        self.raw_response = raw_response
        super().__init__(
            message=f"Failed to parse model response: {reason}",
            details={
                "reason": reason,
                "response_length": len(raw_response)
            }
        )


class ValidationError(GenerationError):
    """Raised when a parsed document breaks one or more structural rules."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            message=f"Generated protocol failed validation ({len(self.errors)} issue(s)): "
                    f"{'; '.join(self.errors)}",
            details={"errors": self.errors}
        )


class BatchGenerationError(GenerationError):
    """Raised when one generation of a batch fails (fail-fast)."""

    def __init__(self, index: int, cause: ProtocolForgeError):
        self.index = index
        self.cause = cause
        super().__init__(
            message=f"Batch generation failed at request {index}: {cause.message}",
            details={
                "index": index,
                "cause": cause.to_dict()
            }
        )


# =============================================================================
# Safety-Related Errors
# =============================================================================

class SafetyError(ProtocolForgeError):
    """Base class for safety validation errors."""
    pass


class SafetyAnalysisError(SafetyError):
    """
    Raised when the model-derived interaction analysis fails.

    A failed analysis is never reported as "safe".
    """

    def __init__(self, reason: str, protocol_id: str = "", cause: str = ""):
        super().__init__(
            message=f"Safety interaction analysis failed: {reason}",
            details={
                "reason": reason,
                "protocol_id": protocol_id,
                "cause": cause
            }
        )


class ProtocolNotFoundError(SafetyError):
    """Raised when a safety validation references an unknown protocol."""

    def __init__(self, protocol_id: str):
        super().__init__(
            message=f"Protocol not found: {protocol_id}",
            details={"protocol_id": protocol_id}
        )


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(ProtocolForgeError):
    """Raised when there's a configuration problem."""

    def __init__(self, setting_name: str, issue: str):
        super().__init__(
            message=f"Configuration error for '{setting_name}': {issue}",
            details={
                "setting_name": setting_name,
                "issue": issue
            }
        )
