"""Text normalization service for extracted event fields.

Handles:
- Whitespace collapsing for free-form fields
- Coercion of raw model output into EventRecord
- Line-ending normalization for outgoing message text
"""

import re
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from event_digest.config.logging_config import get_logger
from event_digest.domain.models import EVENT_TEXT_FIELDS, EventRecord

logger = get_logger(__name__)

_WHITESPACE_RUN = re.compile(r"\s+")


def normalize_text(value: Any) -> str:
    """Collapse whitespace runs to a single space and trim the ends.

    Args:
        value: Any value; ``None`` becomes the empty string

    Returns:
        Normalized text

    Example:
        >>> normalize_text("  Sesc \\n  Pompeia ")
        'Sesc Pompeia'
    """
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    return _WHITESPACE_RUN.sub(" ", text).strip()


def normalize_event(raw: Any) -> EventRecord | None:
    """Normalize one raw event mapping.

    Args:
        raw: Raw event object from the model response

    Returns:
        EventRecord, or None when the entry is not a mapping or lacks
        ``unit``/``name`` after normalization
    """
    if isinstance(raw, EventRecord):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        return None

    fields = {name: normalize_text(raw.get(name)) for name in EVENT_TEXT_FIELDS}
    if not fields["unit"] or not fields["name"]:
        return None

    try:
        return EventRecord(**fields)
    except PydanticValidationError:
        return None


def normalize_events(raw_events: Any) -> list[EventRecord]:
    """Normalize a raw events array, silently dropping unusable entries.

    Args:
        raw_events: Value of the ``events`` key; non-lists yield ``[]``

    Returns:
        Normalized records in input order
    """
    if not isinstance(raw_events, list):
        return []

    records: list[EventRecord] = []
    for raw in raw_events:
        record = normalize_event(raw)
        if record is not None:
            records.append(record)

    dropped = len(raw_events) - len(records)
    if dropped:
        logger.debug("events_dropped_during_normalization", dropped=dropped)
    return records


def normalize_message_text(text: Any) -> str:
    """Normalize line endings and trim outgoing message text.

    Example:
        >>> normalize_message_text("a\\r\\nb  ")
        'a\\nb'
    """
    if text is None:
        return ""
    return str(text).replace("\r\n", "\n").strip()
