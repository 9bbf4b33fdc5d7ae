"""Structured output decoding for model replies.

Models are asked to answer with exactly one JSON object, but in practice they
wrap it in code fences, emit several objects back to back, leave trailing
commas or relay the provider's own error body. The decoder repairs syntax only;
it never invents field values.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from typing import Any

from pydantic import ValidationError

from mermaid_documenter.core.types import Clarification, Decision, FinalAnswer, ToolCall, UnknownDecision
from mermaid_documenter.errors import DecodeError, UpstreamError

PREVIEW_CHARS = 200

UPSTREAM_ERROR_PATTERNS = (
    "error 400",
    "error 401",
    "error 403",
    "error 404",
    "api key not valid",
    "model not found",
    "invalid model",
    "unsupported model",
    "model does not exist",
    "invalid_argument",
    "permission_denied",
    "not_found",
)

DECISION_MODELS: dict[str, type[ToolCall | FinalAnswer | Clarification]] = {
    ToolCall.kind: ToolCall,
    FinalAnswer.kind: FinalAnswer,
    Clarification.kind: Clarification,
}

_FENCE_OPEN_RE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def is_upstream_error(text: str) -> bool:
    """Return True when the text looks like a provider error rather than a reply.

    A reply whose first object declares a decision type is never an error, no
    matter what its string values mention.
    """
    payload = None
    if (candidate := extract_candidate(strip_code_fence(text))) is not None:
        payload = _loads_object(strip_trailing_commas(candidate))
    if payload is not None and declared_kind(payload) is not None:
        return False

    lowered = text.lower()
    if any(pattern in lowered for pattern in UPSTREAM_ERROR_PATTERNS):
        return True
    if payload is None:
        return False
    return "error" in payload or ("message" in payload and "code" in payload)


def declared_kind(payload: dict[str, Any]) -> str | None:
    """Return the decision type named by `type` (or `kind`), if any."""
    kind = payload.get("type", payload.get("kind"))
    if not isinstance(kind, str) or not kind.strip():
        return None
    return kind.strip()


def strip_code_fence(text: str) -> str:
    """Remove one enclosing fenced code block marker."""
    text = text.strip()
    if not text.startswith("```"):
        return text
    text = _FENCE_OPEN_RE.sub("", text, count=1)
    if text.rstrip().endswith("```"):
        text = text.rstrip()[:-3]
    return text.strip()


def strip_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing brace or bracket outside strings."""
    out: list[str] = []
    in_string = False
    escaped = False
    for idx, char in enumerate(text):
        if in_string:
            out.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "," and _TRAILING_COMMA_RE.match(text, idx):
            continue
        out.append(char)
    return "".join(out)


def scan_objects(text: str) -> Iterator[str]:
    """Yield every top-level brace-balanced object found in text.

    Quoted strings and escapes are tracked so braces inside string values do
    not change the depth. Text outside objects is skipped.
    """
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for idx, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            if depth > 0:
                in_string = True
        elif char == "{":
            if depth == 0:
                start = idx
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start : idx + 1]


def split_concatenated(text: str) -> list[str]:
    """Split `{...}{...}` replies at object boundaries and keep the fragments that parse on their own.

    Boundaries inside quoted string values are ignored.
    """
    pieces: list[str] = []
    start = 0
    in_string = False
    escaped = False
    for idx, char in enumerate(text):
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
        elif char == "}" and text.startswith("{", idx + 1):
            pieces.append(text[start : idx + 1])
            start = idx + 1
    if not pieces:
        return []
    pieces.append(text[start:])
    return [piece for piece in pieces if _loads_object(piece) is not None]


def extract_candidate(text: str) -> str | None:
    """Pick the first JSON object candidate in text."""
    if _loads_object(text) is not None:
        return text
    if fragments := split_concatenated(text):
        return fragments[0]
    for obj in scan_objects(text):
        return obj
    return None


class StructuredOutputDecoder:
    """Turns raw model text into a decision."""

    def __init__(self, *, strict_kinds: bool = False) -> None:
        self._strict_kinds = strict_kinds

    def decode(self, raw: str) -> Decision:
        text = raw.strip()
        if is_upstream_error(text):
            raise UpstreamError(f"API error in response: {_preview(text)}")

        text = strip_code_fence(text)
        candidate = extract_candidate(text)
        if candidate is None:
            raise DecodeError("no valid JSON objects found in response", preview=_preview(text))

        candidate = strip_trailing_commas(candidate).strip()
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError as exc:
            raise DecodeError(
                "failed to parse response as structured output JSON", preview=_preview(candidate), cause=str(exc)
            ) from exc
        if not isinstance(payload, dict):
            raise DecodeError("structured output must be a JSON object", preview=_preview(candidate))
        return self._build(payload, candidate)

    def _build(self, payload: dict[str, Any], candidate: str) -> Decision:
        kind = declared_kind(payload)
        if kind is None:
            raise DecodeError("parsed output missing required 'type' field", preview=_preview(candidate))

        model = DECISION_MODELS.get(kind)
        try:
            if model is not None:
                return model.model_validate(payload)
            if self._strict_kinds:
                raise DecodeError(f"unrecognized output type '{kind}'", preview=_preview(candidate))
            return UnknownDecision.model_validate({**payload, "type": kind})
        except ValidationError as exc:
            raise DecodeError(
                f"invalid '{kind}' output", preview=_preview(candidate), cause=_validation_summary(exc)
            ) from exc


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def _preview(text: str) -> str:
    if len(text) <= PREVIEW_CHARS:
        return text
    return text[:PREVIEW_CHARS] + "..."


def _validation_summary(exc: ValidationError) -> str:
    rows = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "<root>"
        rows.append(f"{location}: {error['msg']}")
    return "; ".join(rows)
