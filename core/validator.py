"""
Structural validation of parsed protocol documents.

Every rule is checked independently and all violations are reported
together, so a caller gets the complete diagnostic in one pass.
"""

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from exceptions import ValidationError
from models import Intensity, ProtocolCategory


logger = logging.getLogger(__name__)

VALID_CATEGORIES = [category.value for category in ProtocolCategory]
VALID_INTENSITIES = [intensity.value for intensity in Intensity]
REQUIRED_RECOMMENDATION_LISTS = ("supplements", "dietaryGuidelines", "lifestyleChanges", "precautions")

MIN_DURATION_DAYS = 1
MAX_DURATION_DAYS = 365


def validate_protocol_document(doc: Any) -> list[str]:
    """
    Check a parsed model document against the required-field rules.

    Returns:
        One message per violated rule; an empty list means the document is valid
    """
    if not isinstance(doc, dict):
        return [f"Protocol document must be an object, got {type(doc).__name__}"]

    errors = []

    for field in ("name", "description"):
        value = doc.get(field)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"'{field}' must be a non-empty string")

    if doc.get("category") not in VALID_CATEGORIES:
        errors.append(
            f"'category' must be one of {', '.join(VALID_CATEGORIES)} (got {doc.get('category')!r})"
        )

    duration = doc.get("duration")
    if (
        isinstance(duration, bool)
        or not isinstance(duration, (int, float))
        or not MIN_DURATION_DAYS <= duration <= MAX_DURATION_DAYS
    ):
        errors.append(
            f"'duration' must be a number between {MIN_DURATION_DAYS} and "
            f"{MAX_DURATION_DAYS} (got {duration!r})"
        )

    if doc.get("intensity") not in VALID_INTENSITIES:
        errors.append(
            f"'intensity' must be one of {', '.join(VALID_INTENSITIES)} (got {doc.get('intensity')!r})"
        )

    config = doc.get("config")
    if not isinstance(config, dict):
        errors.append("'config' must be an object containing a non-empty 'meals' list")
    elif not isinstance(config.get("meals"), list) or not config["meals"]:
        errors.append("'config.meals' must be a non-empty list")

    if not isinstance(doc.get("tags"), list):
        errors.append("'tags' must be a list")

    recommendations = doc.get("recommendations")
    if not isinstance(recommendations, dict):
        errors.append("'recommendations' must be an object")
    else:
        for key in REQUIRED_RECOMMENDATION_LISTS:
            if not isinstance(recommendations.get(key), list):
                errors.append(f"'recommendations.{key}' must be a list")

    return errors


def ensure_valid_protocol(doc: Any) -> None:
    """
    Raise if the document breaks any structural rule.

    Raises:
        ValidationError: Carrying every violation, not just the first
    """
    errors = validate_protocol_document(doc)
    if errors:
        logger.warning(f"Generated protocol failed validation with {len(errors)} issue(s)")
        for error in errors:
            logger.debug(f"Validation issue: {error}")
        raise ValidationError(errors)


def format_model_errors(error: PydanticValidationError) -> list[str]:
    """Render pydantic errors as ``'path.to.field': message`` strings."""
    return [
        f"'{'.'.join(str(part) for part in item['loc'])}': {item['msg']}"
        for item in error.errors()
    ]
