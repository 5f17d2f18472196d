"""Helpers for turning raw LLM text into validated JSON."""

import json
import re
from typing import TypeVar

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def _strip_llm_fences(raw_output: str) -> str:
    """Strip markdown code fences from LLM output.

    Handles: ```json ... ```, ``` ... ```, leading/trailing whitespace.
    """
    cleaned = raw_output.strip()

    # Extract JSON from markdown code fences
    fence_match = re.search(r"```(?:json)?\s*\n?(.*?)```", cleaned, re.DOTALL)
    if fence_match:
        return fence_match.group(1).strip()

    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def _load_json_object(raw_output: str) -> dict:
    cleaned = _strip_llm_fences(raw_output)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        # Models sometimes wrap the object in a sentence
        match = _JSON_OBJECT_RE.search(cleaned)
        if not match:
            raise
        return json.loads(match.group(0))


def parse_llm_json(raw_output: str, model: type[T]) -> T:
    """
    Parse LLM output as JSON and validate against a Pydantic model.

    Handles common LLM response quirks:
    - Markdown code fences (```json ... ```)
    - Leading/trailing whitespace
    - Prose around a single JSON object

    Args:
        raw_output: Raw string from LLM response
        model: Pydantic model class to validate against

    Returns:
        Validated Pydantic model instance

    Raises:
        json.JSONDecodeError: If JSON parsing fails after cleanup
        pydantic.ValidationError: If parsed JSON doesn't match schema
    """
    return model.model_validate(_load_json_object(raw_output))


def parse_llm_json_dict(raw_output: str) -> dict:
    """
    Parse LLM output as JSON, returning a raw dict.

    Use this when you need to adjust fields before Pydantic validation.

    Raises:
        json.JSONDecodeError: If JSON parsing fails after cleanup
    """
    data = _load_json_object(raw_output)
    if not isinstance(data, dict):
        raise json.JSONDecodeError("Expected a JSON object", raw_output, 0)
    return data
