"""Event identity and deduplication service.

Two keys identify an event:
- identity key: run-local, lowercase ``unit|name|date|time``; used to merge
  pages returned by successive extraction rounds
- fingerprint: durable SHA-256 of lowercase-trimmed ``name|date|time|location``;
  used by the event store to decide insert vs. touch across runs
"""

import hashlib
from collections.abc import Iterable, Sequence

from event_digest.domain.constants import IDENTITY_KEY_DELIMITER
from event_digest.domain.models import EventRecord
from event_digest.services.text_normalizer import normalize_text


def identity_key(record: EventRecord) -> str:
    """Generate the run-local identity key.

    Args:
        record: Normalized event

    Returns:
        Lowercase pipe-joined key

    Example:
        >>> identity_key(EventRecord(unit="Sesc Pompeia", name="Show A", date="10/03", time="20h"))
        'sesc pompeia|show a|10/03|20h'
    """
    return IDENTITY_KEY_DELIMITER.join(
        [record.unit, record.name, record.date, record.time]
    ).lower()


def merge_unique_events(
    existing: Sequence[EventRecord], incoming: Iterable[EventRecord]
) -> tuple[list[EventRecord], int]:
    """Append unseen incoming events to a copy of ``existing``.

    Existing records keep their positions; new records follow in arrival
    order. Duplicates within ``incoming`` are collapsed as well.

    Args:
        existing: Already accumulated events
        incoming: Newly extracted events

    Returns:
        Tuple of (merged list, number of records added)
    """
    merged = list(existing)
    seen = {identity_key(record) for record in merged}
    added = 0

    for record in incoming:
        key = identity_key(record)
        if key in seen:
            continue
        seen.add(key)
        merged.append(record)
        added += 1

    return merged, added


def generate_fingerprint(record: EventRecord) -> str:
    """Generate the durable fingerprint used for cross-run dedup.

    The event's ``unit`` is the location component.

    Args:
        record: Event to fingerprint

    Returns:
        SHA-256 hex digest

    Example:
        >>> a = EventRecord(unit="Sesc Pompeia ", name="Show", date="10/03", time="20h")
        >>> b = EventRecord(unit="sesc pompeia", name="show", date="10/03", time="20h")
        >>> generate_fingerprint(a) == generate_fingerprint(b)
        True
    """
    key_material = IDENTITY_KEY_DELIMITER.join(
        normalize_text(value).lower()
        for value in (record.name, record.date, record.time, record.unit)
    )
    return hashlib.sha256(key_material.encode("utf-8")).hexdigest()
