"""Tests for text normalization service."""

from event_digest.domain.models import EventRecord
from event_digest.services import text_normalizer


def test_normalize_text_collapses_whitespace() -> None:
    """Whitespace runs including newlines become a single space."""
    result = text_normalizer.normalize_text("  Sesc \n\t Pompeia   ")
    assert result == "Sesc Pompeia"


def test_normalize_text_handles_none_and_numbers() -> None:
    assert text_normalizer.normalize_text(None) == ""
    assert text_normalizer.normalize_text(42) == "42"


def test_normalize_event_requires_unit_and_name() -> None:
    """Entries missing unit or name after trimming are dropped."""
    assert text_normalizer.normalize_event({"unit": "  ", "name": "Show"}) is None
    assert text_normalizer.normalize_event({"unit": "Sesc", "name": None}) is None
    assert text_normalizer.normalize_event("not a mapping") is None


def test_normalize_event_fills_missing_fields() -> None:
    record = text_normalizer.normalize_event(
        {"unit": " Sesc  Pompeia ", "name": "Show\nA", "price": 30}
    )

    assert record == EventRecord(unit="Sesc Pompeia", name="Show A", price="30")
    assert record.date == ""
    assert record.description == ""


def test_normalize_events_drops_bad_entries_and_keeps_order() -> None:
    raw = [
        {"unit": "B", "name": "Second"},
        None,
        {"unit": "", "name": "No unit"},
        {"unit": "A", "name": "Third"},
        ["list", "entry"],
    ]

    records = text_normalizer.normalize_events(raw)

    assert [(r.unit, r.name) for r in records] == [("B", "Second"), ("A", "Third")]


def test_normalize_events_non_list_yields_empty() -> None:
    assert text_normalizer.normalize_events({"unit": "A"}) == []
    assert text_normalizer.normalize_events(None) == []


def test_normalize_message_text() -> None:
    assert text_normalizer.normalize_message_text("  a\r\nb\r\n ") == "a\nb"
    assert text_normalizer.normalize_message_text(None) == ""
