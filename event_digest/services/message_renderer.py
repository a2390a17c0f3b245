"""Digest rendering service.

Turns classified events into plain-text message blocks, one per delivery
window, grouped by unit. Units are ordered alphabetically ignoring case and
accents; events inside a unit keep their classified order.
"""

import unicodedata
from collections.abc import Iterable
from datetime import date
from typing import Any, Final

from event_digest.domain.models import (
    ClassifiedEvents,
    DatedEvent,
    DocumentRef,
    EventRecord,
    EventWindow,
    RenderedDigest,
    WindowBounds,
)
from event_digest.services.text_normalizer import normalize_text

DIGEST_TITLE: Final[str] = "🎭 Agenda Sesc"
SEPARATOR: Final[str] = "━━━━━━━━━━━━━━━━━━━━━━━━━"
FIELD_SEPARATOR: Final[str] = " · "

WINDOW_TITLES: Final[dict[EventWindow, str]] = {
    EventWindow.THIS_WEEK: "⭐ DESTAQUES DESTA SEMANA",
    EventWindow.REST_OF_MONTH: "📅 PRÓXIMOS EVENTOS DO MÊS",
}

WINDOW_ORDER: Final[tuple[EventWindow, ...]] = (
    EventWindow.THIS_WEEK,
    EventWindow.REST_OF_MONTH,
)


def format_day(day: date) -> str:
    """Format a date as ``DD/MM/YYYY``."""
    return day.strftime("%d/%m/%Y")


def unit_sort_key(unit: str) -> tuple[str, str]:
    """Alphabetic sort key that ignores case and diacritics.

    Example:
        >>> sorted(["Sesc Vila Mariana", "Sesc Átila", "sesc belenzinho"], key=unit_sort_key)
        ['Sesc Átila', 'sesc belenzinho', 'Sesc Vila Mariana']
    """
    decomposed = unicodedata.normalize("NFKD", unit)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return stripped.casefold(), unit


def group_by_unit(events: Iterable[DatedEvent]) -> list[tuple[str, list[EventRecord]]]:
    """Group events by unit, ordering units alphabetically.

    Args:
        events: Events in display order

    Returns:
        List of (unit, records) with records in arrival order
    """
    groups: dict[str, list[EventRecord]] = {}
    for item in events:
        groups.setdefault(item.record.unit, []).append(item.record)
    return [(unit, groups[unit]) for unit in sorted(groups, key=unit_sort_key)]


def render_event(record: EventRecord) -> list[str]:
    """Render one event as display lines.

    Example:
        >>> render_event(EventRecord(unit="U", name="Show", time="20h"))
        ['• 🎫 Show', '  ⏰ 20h']
    """
    lines = [f"• 🎫 {record.name}"]

    when = FIELD_SEPARATOR.join(
        part
        for part in (
            f"🗓️ {record.date}" if record.date else "",
            f"⏰ {record.time}" if record.time else "",
        )
        if part
    )
    if when:
        lines.append(f"  {when}")

    tags = FIELD_SEPARATOR.join(
        part
        for part in (
            f"🏷️ {record.category}" if record.category else "",
            f"💳 {record.price}" if record.price else "",
            f"🔞 {record.age}" if record.age else "",
        )
        if part
    )
    if tags:
        lines.append(f"  {tags}")

    if record.description:
        lines.append(f"  📝 {record.description}")

    return lines


def _render_header(
    window: EventWindow,
    bounds: WindowBounds,
    count: int,
    document: DocumentRef | None,
    meta: dict[str, Any],
) -> list[str]:
    noun = "evento" if count == 1 else "eventos"
    lines = [
        f"{DIGEST_TITLE}{FIELD_SEPARATOR}{WINDOW_TITLES[window]}",
        f"📆 {format_day(bounds.start)} a {format_day(bounds.end)}{FIELD_SEPARATOR}{count} {noun}",
    ]
    month = normalize_text(meta.get("month"))
    if month:
        lines.append(f"🗓️ Referência: {month}")
    if document is not None:
        if document.name:
            lines.append(f"📄 Guia: {document.name}")
        lines.append(f"🔗 PDF: {document.url}")
    lines.append(SEPARATOR)
    return lines


def render_window_block(
    window: EventWindow,
    bounds: WindowBounds,
    events: list[DatedEvent],
    *,
    document: DocumentRef | None = None,
    meta: dict[str, Any] | None = None,
) -> str | None:
    """Render a single window block; None when the window has no events."""
    if not events:
        return None

    lines = _render_header(window, bounds, len(events), document, meta or {})
    for unit, records in group_by_unit(events):
        lines.append("")
        lines.append(f"🏛️ {unit}")
        for record in records:
            lines.extend(render_event(record))
            lines.append("")

    return "\n".join(lines).strip()


def render_digest(
    classified: ClassifiedEvents,
    *,
    document: DocumentRef | None = None,
    meta: dict[str, Any] | None = None,
) -> RenderedDigest:
    """Render one block per non-empty delivery window.

    Args:
        classified: Classified events
        document: Source guide reference shown in headers
        meta: Aggregated guide metadata (``month`` is displayed)

    Returns:
        RenderedDigest; ``nothing_to_send`` is True when no window qualified
    """
    digest = RenderedDigest()
    for window in WINDOW_ORDER:
        block = render_window_block(
            window,
            classified.bounds(window),
            classified.window(window),
            document=document,
            meta=meta,
        )
        if block:
            digest.blocks.append(block)
            digest.windows.append(window)
    return digest


def render_no_events_notice(
    classified: ClassifiedEvents, *, document: DocumentRef | None = None
) -> str:
    """Explicit notice sent instead of an empty digest."""
    end = max(classified.this_week_bounds.end, classified.rest_of_month_bounds.end)
    lines = [
        DIGEST_TITLE,
        f"⚠️ Nenhum evento encontrado entre {format_day(classified.today)} e {format_day(end)}.",
    ]
    if document is not None:
        lines.append(f"🔗 PDF: {document.url}")
    return "\n".join(lines)


def render_failure_notice(error: BaseException) -> str:
    """Notice sent to the chat when a run fails."""
    return f"❌ A execução da agenda falhou: {error}"
