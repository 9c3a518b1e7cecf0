from __future__ import annotations

import json
import logging
import re

from pydantic import ValidationError

from studyguide.services.chunked.types import StructuredResult

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_CLOSERS = {"{": "}", "[": "]"}


class StructuredOutputError(ValueError):
    pass


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    match = _CODE_FENCE.match(stripped)
    if match is None:
        return stripped
    return match.group(1)


def recover_truncated_json(text: str) -> str:
    """Cut a truncated JSON document back to its last complete value.

    The text is cut right after the last ``}`` or ``]`` that closed outside a
    string, then every container still open at that point is closed again.
    """
    stack: list[str] = []
    in_string = False
    escaped = False
    cut_at = -1
    open_at_cut: tuple[str, ...] = ()

    for position, char in enumerate(text):
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
        elif char in _CLOSERS:
            stack.append(char)
        elif char in "}]":
            if stack and _CLOSERS[stack[-1]] == char:
                stack.pop()
            cut_at = position
            open_at_cut = tuple(stack)

    if cut_at < 0:
        return text

    recovered = text[: cut_at + 1] + "".join(_CLOSERS[opener] for opener in reversed(open_at_cut))
    return _TRAILING_COMMA.sub(r"\1", recovered)


def _load_json(text: str) -> object:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        original_error = exc

    recovered = recover_truncated_json(text)
    try:
        parsed = json.loads(recovered)
    except json.JSONDecodeError as exc:
        raise StructuredOutputError(
            f"Failed to parse structured output: {original_error.msg} (recovery failed: {exc.msg})"
        ) from exc

    logger.warning(
        "recovered truncated structured output original_length=%d recovered_length=%d",
        len(text),
        len(recovered),
    )
    return parsed


def parse_structured_result(text: str) -> StructuredResult:
    if not text or not text.strip():
        raise StructuredOutputError("Empty structured output")

    payload = _load_json(_strip_code_fence(text))
    if not isinstance(payload, dict):
        raise StructuredOutputError("Structured output must be a JSON object")

    missing = [key for key in ("document_title", "total_pages", "pages") if key not in payload]
    if missing:
        raise StructuredOutputError(
            f"Invalid structured output: missing fields [{', '.join(missing)}]"
        )

    try:
        result = StructuredResult.model_validate(payload)
    except ValidationError as exc:
        raise StructuredOutputError(f"Invalid structured output: {exc.error_count()} validation errors") from exc

    if not result.pages:
        raise StructuredOutputError("Invalid structured output: page list is empty")

    return result
