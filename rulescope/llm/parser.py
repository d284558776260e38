"""
Response Parser — Turns raw model text into JSON or validated pydantic objects.

Parse problems are returned as ParseFailure values, never raised.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, get_origin

from pydantic import BaseModel, ValidationError

from rulescope.errors import ParseFailure

logger = logging.getLogger("rulescope.llm.parser")

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)\n?```", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the trimmed text."""
    if not text:
        return ""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def try_parse_json(text: str) -> Any | None:
    """
    Best-effort JSON extraction.

    Tries the whole text, then a fenced block, then the first balanced
    object or array. Returns None when nothing parses.
    """
    if not text or not text.strip():
        return None

    for candidate in (text.strip(), strip_code_fences(text)):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    return _extract_balanced(text)


def parse_structured(raw: str, schema: type[BaseModel]) -> BaseModel | ParseFailure:
    """Validate model output against a pydantic schema."""
    data = try_parse_json(raw)
    if data is None:
        logger.warning(f"Model output is not valid JSON for {schema.__name__}: {raw[:200]!r}")
        return ParseFailure(f"Response is not valid JSON for {schema.__name__}", raw_response=raw)

    # A bare list is accepted for single-list schemas
    if isinstance(data, list):
        list_fields = [
            name for name, f in schema.model_fields.items()
            if get_origin(f.annotation) is list
        ]
        if len(list_fields) == 1:
            data = {list_fields[0]: data}

    try:
        return schema.model_validate(data)
    except ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        logger.warning(f"Schema validation failed for {schema.__name__}: {errors}")
        return ParseFailure(
            f"Response does not match {schema.__name__}",
            raw_response=raw,
            errors=errors,
        )


def _extract_balanced(text: str) -> Any | None:
    openers = {"{": "}", "[": "]"}
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None

    start = min(starts)
    opener = text[start]
    closer = openers[opener]
    depth = 0
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(text[start : i + 1])
                except json.JSONDecodeError:
                    return None
    return None
