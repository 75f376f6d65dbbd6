"""Parse and validate structured LLM output.

Nothing returned by a model is trusted: every response goes through
JSON parsing and pydantic validation before it reaches storage.
"""

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from src.core.errors import InvalidGenerationOutput

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_json_response(raw_text: str | None) -> Any:
    """Decode an LLM response as JSON.

    Handles markdown-wrapped JSON (```json ... ```) and plain JSON.
    """
    if not raw_text or not raw_text.strip():
        msg = "LLM returned an empty response"
        raise InvalidGenerationOutput(msg)

    cleaned = re.sub(r"^```(?:json)?\s*\n?", "", raw_text.strip())
    cleaned = re.sub(r"\n?```\s*$", "", cleaned)

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        msg = "Failed to parse LLM response as JSON"
        raise InvalidGenerationOutput(msg, [str(e)]) from e


def format_validation_errors(error: ValidationError) -> list[str]:
    """One "loc: message" line per pydantic error."""
    lines = []
    for item in error.errors():
        loc = ".".join(str(part) for part in item["loc"]) or "<root>"
        lines.append(f"{loc}: {item['msg']}")
    return lines


def validate_payload(data: Any, model: type[ModelT], *, what: str) -> ModelT:
    """Validate already-decoded JSON against a pydantic model."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        msg = f"{what} failed schema validation"
        raise InvalidGenerationOutput(msg, format_validation_errors(e)) from e


def parse_structured(raw_text: str | None, model: type[ModelT], *, what: str) -> ModelT:
    """Parse raw LLM text and validate it against ``model``."""
    return validate_payload(parse_json_response(raw_text), model, what=what)
