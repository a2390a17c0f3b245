"""Date parsing and delivery-window classification.

Handles:
- Numeric dates (``10/03/2025``, ``10/3/25``, ``10/03``)
- Day-of-month dates (``10 de março``, ``5 de set. de 2026``)
- Month-day dates (``março 10``, ``Out 5``)
- Bucketing into this-week / rest-of-month / past / beyond / undated

The guide's date field often lists ranges or alternatives; the first date in
textual order is the one used for filtering.
"""

import re
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from typing import Final

import pytz
from dateutil.relativedelta import relativedelta

from event_digest.config.logging_config import get_logger
from event_digest.domain.models import (
    ClassifiedEvents,
    DatedEvent,
    EventRecord,
    WindowBounds,
)

logger = get_logger(__name__)

MONTHS: Final[dict[str, int]] = {
    "janeiro": 1,
    "jan": 1,
    "fevereiro": 2,
    "fev": 2,
    "março": 3,
    "marco": 3,
    "mar": 3,
    "abril": 4,
    "abr": 4,
    "maio": 5,
    "mai": 5,
    "junho": 6,
    "jun": 6,
    "julho": 7,
    "jul": 7,
    "agosto": 8,
    "ago": 8,
    "setembro": 9,
    "set": 9,
    "outubro": 10,
    "out": 10,
    "novembro": 11,
    "nov": 11,
    "dezembro": 12,
    "dez": 12,
}
"""Month vocabulary: full names, accent-free spellings and 3-letter abbreviations."""

SATURDAY: Final[int] = 5
"""``date.weekday()`` value for Saturday."""

_MONTH_ALTERNATION: Final[str] = "|".join(
    sorted((re.escape(name) for name in MONTHS), key=len, reverse=True)
)

NUMERIC_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?<!\d)(\d{1,2})/(\d{1,2})(?:/(\d{4}|\d{2}))?(?!\d)"
)
"""``D/M`` with optional 2- or 4-digit year."""

DAY_OF_MONTH_PATTERN: Final[re.Pattern[str]] = re.compile(
    rf"(?<!\d)(\d{{1,2}})\s+de\s+({_MONTH_ALTERNATION})\b\.?(?:\s+de\s+(\d{{4}}))?",
    flags=re.IGNORECASE,
)
"""``D de <month>`` with optional ``de YYYY``."""

MONTH_DAY_PATTERN: Final[re.Pattern[str]] = re.compile(
    rf"\b({_MONTH_ALTERNATION})\b\.?\s+(\d{{1,2}})(?!\d)(?!\s*(?:h|:))",
    flags=re.IGNORECASE,
)
"""``<month> D``; a number followed by ``h`` or ``:`` is a time, not a day."""


def _expand_year(raw_year: str | None, reference: date) -> int:
    if not raw_year:
        return reference.year
    year = int(raw_year)
    return year + 2000 if year < 100 else year


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _find_matches(text: str, reference: date) -> list[tuple[int, date]]:
    found: list[tuple[int, date]] = []

    for match in NUMERIC_PATTERN.finditer(text):
        parsed = _safe_date(
            _expand_year(match.group(3), reference),
            int(match.group(2)),
            int(match.group(1)),
        )
        if parsed:
            found.append((match.start(), parsed))

    for match in DAY_OF_MONTH_PATTERN.finditer(text):
        parsed = _safe_date(
            _expand_year(match.group(3), reference),
            MONTHS[match.group(2).lower()],
            int(match.group(1)),
        )
        if parsed:
            found.append((match.start(), parsed))

    for match in MONTH_DAY_PATTERN.finditer(text):
        parsed = _safe_date(
            reference.year,
            MONTHS[match.group(1).lower()],
            int(match.group(2)),
        )
        if parsed:
            found.append((match.start(), parsed))

    found.sort(key=lambda item: item[0])
    return found


def parse_event_dates(text: str | None, reference: date | None = None) -> list[date]:
    """Parse every date expression in ``text``.

    Args:
        text: Free-form localized date text
        reference: Date supplying the default year (defaults to today)

    Returns:
        Distinct dates in textual order

    Example:
        >>> parse_event_dates("10 e 12/03/2025", date(2025, 3, 1))
        [datetime.date(2025, 3, 12)]
    """
    if not text:
        return []

    reference = reference or date.today()
    dates: list[date] = []
    for _, parsed in _find_matches(text, reference):
        if parsed not in dates:
            dates.append(parsed)
    return dates


def parse_event_date(text: str | None, reference: date | None = None) -> date | None:
    """Parse the first date expression in ``text``.

    Args:
        text: Free-form localized date text
        reference: Date supplying the default year (defaults to today)

    Returns:
        First date in textual order, or None when nothing matches

    Example:
        >>> parse_event_date("Sáb, 15 de março", date(2025, 1, 1))
        datetime.date(2025, 3, 15)
    """
    dates = parse_event_dates(text, reference)
    return dates[0] if dates else None


def today_in_timezone(tz_name: str, now: datetime | None = None) -> date:
    """Current calendar date in ``tz_name``.

    Args:
        tz_name: IANA timezone name
        now: Optional aware datetime to convert instead of the clock

    Returns:
        Local date
    """
    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        logger.warning("unknown_timezone", tz_name=tz_name)
        tz = pytz.UTC

    current = now or datetime.now(tz=pytz.UTC)
    if current.tzinfo is None:
        current = pytz.UTC.localize(current)
    return current.astimezone(tz).date()


def next_saturday(today: date) -> date:
    """Today when it is Saturday, otherwise the coming Saturday."""
    return today + timedelta(days=(SATURDAY - today.weekday()) % 7)


def last_day_of_month(today: date) -> date:
    return today + relativedelta(day=31)


def compute_windows(today: date) -> tuple[WindowBounds, WindowBounds]:
    """Compute this-week and rest-of-month bounds for ``today``.

    This week is ``[today, next Saturday]``; rest of month is
    ``(next Saturday, last day of the month]`` and is empty when next
    Saturday already falls on or after the month end.

    Args:
        today: Reference date

    Returns:
        Tuple of (this_week, rest_of_month)
    """
    saturday = next_saturday(today)
    this_week = WindowBounds(start=today, end=saturday)
    rest_of_month = WindowBounds(
        start=saturday + timedelta(days=1), end=last_day_of_month(today)
    )
    return this_week, rest_of_month


def _sort_by_date(events: list[DatedEvent]) -> list[DatedEvent]:
    # sorted() is stable, so undated events keep their relative order
    return sorted(
        events,
        key=lambda item: (item.parsed_date is None, item.parsed_date or date.min),
    )


def attach_dates(records: Iterable[EventRecord], today: date) -> list[DatedEvent]:
    return [
        DatedEvent(record=record, parsed_date=parse_event_date(record.date, today))
        for record in records
    ]


def classify_events(records: Iterable[EventRecord], today: date) -> ClassifiedEvents:
    """Bucket events into delivery windows.

    Undated events are excluded from both windows and kept in ``undated``.
    Past events (before ``today``) go to ``past``; events after both windows go
    to ``beyond`` and will be picked up by a later run.

    Args:
        records: Normalized events
        today: Reference date (local midnight)

    Returns:
        ClassifiedEvents with each window sorted by date
    """
    this_week_bounds, rest_bounds = compute_windows(today)
    result = ClassifiedEvents(
        today=today,
        this_week_bounds=this_week_bounds,
        rest_of_month_bounds=rest_bounds,
    )

    for item in attach_dates(records, today):
        if item.parsed_date is None:
            result.undated.append(item)
        elif item.parsed_date < today:
            result.past.append(item)
        elif this_week_bounds.contains(item.parsed_date):
            result.this_week.append(item)
        elif rest_bounds.contains(item.parsed_date):
            result.rest_of_month.append(item)
        else:
            result.beyond.append(item)

    result.this_week = _sort_by_date(result.this_week)
    result.rest_of_month = _sort_by_date(result.rest_of_month)

    if result.past:
        logger.info("past_events_excluded", count=len(result.past))

    logger.info(
        "events_classified",
        this_week=len(result.this_week),
        rest_of_month=len(result.rest_of_month),
        past=len(result.past),
        beyond=len(result.beyond),
        undated=len(result.undated),
    )
    return result


def select_upcoming(records: Iterable[EventRecord], today: date) -> list[DatedEvent]:
    """Keep events dated today or later plus undated ones, sorted by date.

    Undated events sort after all dated ones.
    """
    upcoming = [
        item
        for item in attach_dates(records, today)
        if item.parsed_date is None or item.parsed_date >= today
    ]
    return _sort_by_date(upcoming)
