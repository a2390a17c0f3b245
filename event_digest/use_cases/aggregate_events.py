"""Pagination aggregator use case.

Drives repeated extraction calls against the same guide document, following
the continuation cursor returned by the model, and accumulates a deduplicated
event list. Boundary failures and unparseable responses end pagination early
with whatever has been collected so far.
"""

import json
import time
from collections.abc import Callable
from time import perf_counter
from typing import Any

from event_digest.config.logging_config import get_logger
from event_digest.domain.constants import (
    CONTINUATION_HISTORY_SIZE,
    DEFAULT_GUIDE_META,
    DEFAULT_MAX_ROUNDS,
    DEFAULT_ROUND_DELAY_SECONDS,
)
from event_digest.domain.models import (
    AggregationState,
    DocumentPayload,
    EventRecord,
    StopReason,
)
from event_digest.domain.protocols import ExtractionClientProtocol, ProgressReporter
from event_digest.services.deduplicator import merge_unique_events
from event_digest.services.json_extractor import decode_extraction_page
from event_digest.services.text_normalizer import normalize_events, normalize_text

logger = get_logger(__name__)


def build_continuation_hint(
    cursor: str,
    events: list[EventRecord],
    history_size: int = CONTINUATION_HISTORY_SIZE,
) -> str:
    """Build the instructions asking the model to resume after ``cursor``.

    Args:
        cursor: Cursor returned by the previous round (empty on round 1)
        events: Events accumulated so far
        history_size: How many of the most recent events to echo back

    Returns:
        Instruction text, or an empty string when there is no cursor
    """
    if not cursor:
        return ""

    recent = events[-history_size:] if history_size > 0 else []
    already = [
        {"unit": ev.unit, "name": ev.name, "date": ev.date, "time": ev.time}
        for ev in recent
    ]
    return (
        "CONTINUATION\n"
        "- Resume the extraction from the cursor below (do not repeat events):\n"
        f"  cursor: {cursor}\n"
        f"- Events already extracted (do not repeat): "
        f"{json.dumps(already, ensure_ascii=False)}"
    )


class EventAggregator:
    """Run the pagination loop for one document.

    Each call to :meth:`run` creates and owns a fresh ``AggregationState``.
    """

    def __init__(
        self,
        client: ExtractionClientProtocol,
        *,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        round_delay_seconds: float = DEFAULT_ROUND_DELAY_SECONDS,
        history_size: int = CONTINUATION_HISTORY_SIZE,
        default_meta: dict[str, Any] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self._client = client
        self._max_rounds = max_rounds
        self._round_delay_seconds = round_delay_seconds
        self._history_size = history_size
        self._default_meta = dict(
            DEFAULT_GUIDE_META if default_meta is None else default_meta
        )
        self._sleep = sleep or time.sleep

    def run(
        self,
        document: DocumentPayload,
        *,
        selected_units: list[str] | None = None,
        progress: ProgressReporter | None = None,
    ) -> AggregationState:
        """Aggregate every page the model returns for ``document``.

        Args:
            document: Guide payload sent on every round
            selected_units: Optional unit allow-list forwarded to the model
            progress: Optional progress channel

        Returns:
            Finalized AggregationState
        """
        state = AggregationState(meta=dict(self._default_meta))

        while state.rounds < self._max_rounds:
            state.rounds += 1
            self._report(
                progress,
                (state.rounds - 1) / self._max_rounds,
                f"Extraction round {state.rounds}/{self._max_rounds}",
            )
            logger.info(
                "aggregation_round_started",
                round=state.rounds,
                max_rounds=self._max_rounds,
                cursor=state.cursor or None,
            )

            hint = build_continuation_hint(state.cursor, state.events, self._history_size)
            started = perf_counter()
            try:
                raw = self._client.extract_events(
                    document,
                    extra_instructions=hint,
                    selected_units=selected_units,
                )
            except Exception as exc:
                logger.warning(
                    "aggregation_boundary_failed",
                    round=state.rounds,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    events_kept=len(state.events),
                )
                return self._finish(state, StopReason.BOUNDARY_ERROR, progress)

            decoded = decode_extraction_page(raw)
            if not decoded.ok or decoded.page is None:
                logger.warning(
                    "aggregation_unparseable_response",
                    round=state.rounds,
                    error=decoded.error,
                    response_length=len(raw or ""),
                )
                return self._finish(state, StopReason.UNPARSEABLE, progress)

            page = decoded.page
            state.meta = {**state.meta, **page.meta}

            incoming = normalize_events(page.events)
            state.events, added = merge_unique_events(state.events, incoming)

            logger.info(
                "aggregation_round_completed",
                round=state.rounds,
                duration_seconds=round(perf_counter() - started, 2),
                received=len(incoming),
                added=added,
                total=len(state.events),
                has_more=page.has_more,
            )

            if not page.has_more:
                return self._finish(state, StopReason.EXHAUSTED, progress)

            next_cursor = normalize_text(page.cursor)
            if not next_cursor or next_cursor == state.cursor:
                logger.warning(
                    "aggregation_cursor_stalled",
                    round=state.rounds,
                    cursor=next_cursor or None,
                )
                return self._finish(state, StopReason.NO_PROGRESS, progress)

            state.cursor = next_cursor
            if state.rounds < self._max_rounds:
                self._sleep(self._round_delay_seconds)

        logger.warning("aggregation_round_cap_reached", max_rounds=self._max_rounds)
        return self._finish(state, StopReason.ROUND_CAP, progress)

    def _finish(
        self,
        state: AggregationState,
        reason: StopReason,
        progress: ProgressReporter | None,
    ) -> AggregationState:
        state.stop_reason = reason
        self._report(
            progress,
            1.0,
            f"Extraction finished ({reason.value}): {len(state.events)} events",
        )
        logger.info(
            "aggregation_finished",
            stop_reason=reason.value,
            rounds=state.rounds,
            events=len(state.events),
        )
        return state

    @staticmethod
    def _report(
        progress: ProgressReporter | None, value: float, message: str
    ) -> None:
        if progress is None:
            return
        progress.update(progress=value, message=message)


def aggregate_events(
    client: ExtractionClientProtocol,
    document: DocumentPayload,
    *,
    max_rounds: int = DEFAULT_MAX_ROUNDS,
    selected_units: list[str] | None = None,
    round_delay_seconds: float = DEFAULT_ROUND_DELAY_SECONDS,
    default_meta: dict[str, Any] | None = None,
    progress: ProgressReporter | None = None,
    sleep: Callable[[float], None] | None = None,
) -> AggregationState:
    """Functional wrapper around :class:`EventAggregator`."""
    aggregator = EventAggregator(
        client,
        max_rounds=max_rounds,
        round_delay_seconds=round_delay_seconds,
        default_meta=default_meta,
        sleep=sleep,
    )
    return aggregator.run(document, selected_units=selected_units, progress=progress)
