"""Defensive parsing of completed model output into schema-checked profiles."""

import json
import logging
import re
from typing import Type, TypeVar

from pydantic import ValidationError

from knowledge_base.config import RAW_OUTPUT_LOG_CHARS
from knowledge_base.errors import ParseError
from knowledge_base.profiling.profile_models import PartialProfile

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=PartialProfile)

_LEADING_FENCE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*")
_TRAILING_FENCE = re.compile(r"\s*```\s*$")


def strip_code_fence(text: str) -> str:
    """Remove a leading/trailing markdown code fence and surrounding whitespace."""
    cleaned = _LEADING_FENCE.sub("", text or "", count=1)
    cleaned = _TRAILING_FENCE.sub("", cleaned, count=1)
    return cleaned.strip()


def parse_profile_output(
    raw_output: str,
    model: Type[P] = PartialProfile,
    *,
    source_type: str | None = None,
) -> P:
    """Parse accumulated model output into a validated profile.

    Args:
        raw_output: Concatenation of every streamed token
        model: Schema to validate against (PartialProfile by default)
        source_type: If given, records without provenance are tagged with it

    Returns:
        The validated profile

    Raises:
        ParseError: If the output is not a JSON object or fails validation
    """
    cleaned = strip_code_fence(raw_output)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.error(
            "Failed to parse model output as JSON: %s (raw prefix: %r)",
            e,
            (raw_output or "")[:RAW_OUTPUT_LOG_CHARS],
        )
        raise ParseError(
            "Failed to parse extracted profile. The model response was incomplete or malformed."
        ) from e

    if not isinstance(data, dict):
        logger.error("Model output is %s, expected a JSON object", type(data).__name__)
        raise ParseError("Extracted profile must be a JSON object.")

    try:
        profile = model.model_validate(data)
    except ValidationError as e:
        logger.error("Model output failed schema validation: %s", e)
        raise ParseError(
            f"Extracted profile failed schema validation ({e.error_count()} errors)."
        ) from e

    if source_type:
        profile.stamp_source(source_type)
    return profile
