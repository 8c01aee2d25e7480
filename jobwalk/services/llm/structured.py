from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Generic, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from jobwalk.core.errors import ParseFailure

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


@dataclass(frozen=True)
class Ok(Generic[T]):
    data: T


@dataclass(frozen=True)
class ParseError:
    raw: str
    reason: str

    def to_payload(self) -> dict[str, Any]:
        """Shape stored in place of structured data when parsing fails."""
        return {"raw_response": self.raw, "parse_error": True}


StructuredResult = Union[Ok[T], ParseError]


def strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def _extract_json(text: str) -> dict[str, Any]:
    """
    Best-effort JSON extraction if model returns extra text.
    """
    text = strip_fences(text)
    if not text:
        raise ParseFailure("Empty response from model")

    # Fast path
    try:
        obj = json.loads(text)
        if isinstance(obj, dict):
            return obj
    except json.JSONDecodeError:
        pass

    # Try to find outermost JSON object
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        try:
            obj = json.loads(text[start : end + 1])
        except json.JSONDecodeError as e:
            raise ParseFailure(f"Model returned malformed JSON: {e}") from e
        if isinstance(obj, dict):
            return obj

    raise ParseFailure(f"Model returned non-JSON. First 200 chars: {text[:200]!r}")


def parse_structured(raw: str, schema: Type[T]) -> StructuredResult:
    """
    Validate a free-form completion against `schema`.

    Never raises for bad model output: returns Ok(data) or ParseError(raw).
    """
    try:
        payload = _extract_json(raw)
        return Ok(schema.model_validate(payload))
    except ParseFailure as e:
        return ParseError(raw=raw or "", reason=str(e))
    except ValidationError as e:
        return ParseError(raw=raw or "", reason=f"schema mismatch: {e.error_count()} error(s)")
