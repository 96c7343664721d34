"""Pull a JSON payload out of model output and validate it against a schema."""

from __future__ import annotations

import json
import re
from functools import lru_cache
from typing import Any, TypeVar

from pydantic import TypeAdapter, ValidationError

from llm_gateway.services.exceptions import OutputValidationError

T = TypeVar("T")

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_OPENERS = {"{": "}", "[": "]"}


@lru_cache(maxsize=128)
def _adapter(schema: Any) -> TypeAdapter[Any]:
    return TypeAdapter(schema)


def extract_json_text(raw_text: str) -> str:
    """Return the JSON document embedded in ``raw_text``.

    A fenced code block wins; otherwise the span from the first ``{`` or ``[``
    to its last matching closer is taken, which tolerates a sentence of prose
    around the payload.
    """

    fence = _FENCE_RE.search(raw_text)
    text = fence.group(1).strip() if fence else raw_text.strip()
    if not text:
        raise OutputValidationError("Model output is empty.")
    if text[0] in _OPENERS:
        return text

    starts = [idx for idx in (text.find("{"), text.find("[")) if idx != -1]
    if not starts:
        raise OutputValidationError("No JSON payload found in model output.")
    start = min(starts)
    end = text.rfind(_OPENERS[text[start]])
    if end <= start:
        raise OutputValidationError("No JSON payload found in model output.")
    return text[start : end + 1]


def extract_and_validate(raw_text: str, schema: type[T]) -> T:
    text = extract_json_text(raw_text)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise OutputValidationError(f"Malformed JSON in model output: {exc.msg}") from exc
    try:
        return _adapter(schema).validate_python(parsed)
    except ValidationError as exc:
        raise OutputValidationError(
            f"Model output does not match {getattr(schema, '__name__', schema)!s}: "
            f"{exc.error_count()} error(s), first: {exc.errors()[0]['msg']}"
        ) from exc


__all__ = ["extract_and_validate", "extract_json_text"]
