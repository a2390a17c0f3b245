"""Advanced event filters applied before date windowing.

Rules:
1. Price: first integer in the price text compared against min/max;
   free-admission wording counts as 0; prices without a number pass
2. Category: case-insensitive substring match against the allow-list
3. Age: first integer in the rating compared against the minimum;
   ratings without a number (e.g. "Livre") count as 0
4. Location: case-insensitive substring match of ``unit`` against the allow-list
"""

import re
from collections.abc import Iterable
from typing import Final

from event_digest.config.logging_config import get_logger
from event_digest.domain.models import EventFilters, EventRecord

logger = get_logger(__name__)

FIRST_INTEGER: Final[re.Pattern[str]] = re.compile(r"\d+")

FREE_ADMISSION_TERMS: Final[tuple[str, ...]] = (
    "grátis",
    "gratis",
    "gratuito",
    "gratuita",
    "entrada franca",
    "free",
)


def first_integer(text: str) -> int | None:
    """Return the first integer substring of ``text``.

    Example:
        >>> first_integer("R$ 40,00 (inteira)")
        40
    """
    match = FIRST_INTEGER.search(text or "")
    return int(match.group()) if match else None


def parse_price(text: str) -> int | None:
    """Parse a price as an integer amount; free admission is 0."""
    lowered = (text or "").lower()
    if any(term in lowered for term in FREE_ADMISSION_TERMS):
        return 0
    return first_integer(lowered)


def parse_age_rating(text: str) -> int:
    """Parse an age rating; non-numeric ratings count as 0."""
    value = first_integer(text)
    return value if value is not None else 0


def _matches_any(value: str, terms: list[str]) -> bool:
    lowered = value.lower()
    return any(term.lower() in lowered for term in terms if term.strip())


def passes_filters(record: EventRecord, filters: EventFilters) -> bool:
    """Check a single event against the configured filters."""
    if filters.price_min is not None or filters.price_max is not None:
        price = parse_price(record.price)
        if price is not None:
            if filters.price_min is not None and price < filters.price_min:
                return False
            if filters.price_max is not None and price > filters.price_max:
                return False

    if filters.categories and not _matches_any(record.category, filters.categories):
        return False

    if filters.min_age is not None and parse_age_rating(record.age) < filters.min_age:
        return False

    if filters.locations and not _matches_any(record.unit, filters.locations):
        return False

    return True


def apply_filters(
    records: Iterable[EventRecord], filters: EventFilters
) -> list[EventRecord]:
    """Keep the events that pass every configured filter, in order.

    Args:
        records: Normalized events
        filters: Filter configuration

    Returns:
        Filtered events
    """
    items = list(records)
    if filters.is_empty:
        return items

    kept = [record for record in items if passes_filters(record, filters)]
    logger.info(
        "event_filters_applied",
        total=len(items),
        kept=len(kept),
        filtered_out=len(items) - len(kept),
    )
    return kept
