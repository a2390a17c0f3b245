"""Recover JSON from free-form model output.

Models wrap JSON in markdown fences or explanatory prose, and long answers may
carry trailing text after the payload. Extraction strips fences, tries the
whole text, then falls back to the first balanced ``{...}`` or ``[...]``
substring found by a string-aware scan.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Final

from pydantic import ValidationError as PydanticValidationError

from event_digest.config.logging_config import get_logger
from event_digest.domain.models import ExtractionPage

logger = get_logger(__name__)

_LEADING_FENCE: Final[re.Pattern[str]] = re.compile(
    r"^```(?:json)?\s*", flags=re.IGNORECASE
)
_TRAILING_FENCE: Final[re.Pattern[str]] = re.compile(r"\s*```\s*$")


def strip_code_fences(text: str | None) -> str:
    """Remove a leading/trailing markdown code fence.

    Example:
        >>> strip_code_fences('```json\\n{"a": 1}\\n```')
        '{"a": 1}'
    """
    value = (text or "").strip()
    value = _LEADING_FENCE.sub("", value, count=1)
    value = _TRAILING_FENCE.sub("", value, count=1)
    return value.strip()


def _scan_balanced(text: str, open_char: str, close_char: str) -> str | None:
    start = text.find(open_char)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]

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
        elif char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return text[start : index + 1]

    return None


def find_first_balanced_json(text: str | None) -> str | None:
    """Return the first balanced JSON object (or, failing that, array).

    Braces and brackets inside string literals, including escaped quotes,
    do not affect nesting depth.

    Args:
        text: Raw text

    Returns:
        Candidate substring or None if no balanced structure exists
    """
    value = strip_code_fences(text)
    if not value:
        return None
    return _scan_balanced(value, "{", "}") or _scan_balanced(value, "[", "]")


def extract_json(text: str | None) -> Any | None:
    """Parse a JSON value out of possibly-fenced, possibly-noisy text.

    Args:
        text: Raw model output

    Returns:
        Parsed JSON value, or None on failure

    Example:
        >>> extract_json('Here you go: {"has_more": false} Enjoy!')
        {'has_more': False}
    """
    unfenced = strip_code_fences(text)
    if not unfenced:
        return None

    try:
        return json.loads(unfenced)
    except json.JSONDecodeError:
        pass

    candidate = find_first_balanced_json(unfenced)
    if candidate is None:
        return None

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        return None


@dataclass(frozen=True)
class DecodeResult:
    """Tagged outcome of decoding one extraction response."""

    page: ExtractionPage | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.page is not None


def decode_extraction_page(text: str | None) -> DecodeResult:
    """Decode raw model output into a validated ExtractionPage.

    Non-object JSON and shape violations fail closed.

    Args:
        text: Raw model output

    Returns:
        DecodeResult carrying either the page or an error description
    """
    parsed = extract_json(text)
    if parsed is None:
        return DecodeResult(page=None, error="no parseable JSON found")
    if not isinstance(parsed, dict):
        return DecodeResult(
            page=None, error=f"expected JSON object, got {type(parsed).__name__}"
        )

    try:
        page = ExtractionPage.model_validate(parsed)
    except PydanticValidationError as exc:
        logger.warning("extraction_page_invalid", error=str(exc))
        return DecodeResult(page=None, error=f"invalid page shape: {exc}")

    return DecodeResult(page=page)
