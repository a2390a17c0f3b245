"""Digest run orchestration.

One run: locate and download the guide, aggregate events page by page,
pre-filter, classify into delivery windows, persist, render and deliver.
The run is bracketed by the execution reporter; failures are recorded,
announced to the chat on a best-effort basis and re-raised.
"""

from __future__ import annotations

import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Final

import requests

from event_digest.adapters.document_source import GuideDocumentSource
from event_digest.adapters.llm_client import LLMClient
from event_digest.adapters.message_client_factory import get_message_sink
from event_digest.adapters.sqlite_repository import SQLiteRepository
from event_digest.adapters.telegram_client import TelegramClient
from event_digest.config.logging_config import get_logger
from event_digest.config.settings import Settings
from event_digest.domain.constants import RUNNING_EXECUTION_STALE_MINUTES
from event_digest.domain.exceptions import ConfigurationError, EventDigestError
from event_digest.domain.models import (
    AggregationState,
    ClassifiedEvents,
    DigestRunResult,
    DocumentRef,
    EventRecord,
    ExecutionStats,
    ExecutionStatus,
)
from event_digest.domain.protocols import (
    DocumentSourceProtocol,
    EventStoreProtocol,
    ExecutionReporterProtocol,
    ExtractionClientProtocol,
    MessageSinkProtocol,
    ProgressReporter,
)
from event_digest.observability.tracing import run_scope
from event_digest.services.date_windows import (
    classify_events,
    select_upcoming,
    today_in_timezone,
)
from event_digest.services.deduplicator import generate_fingerprint
from event_digest.services.event_filters import apply_filters
from event_digest.services.message_renderer import (
    render_digest,
    render_failure_notice,
    render_no_events_notice,
)
from event_digest.use_cases.aggregate_events import EventAggregator
from event_digest.use_cases.deliver_message import ChunkedMessageDelivery, RetryPolicy

logger = get_logger(__name__)

STALE_RUN_AFTER: Final[timedelta] = timedelta(minutes=RUNNING_EXECUTION_STALE_MINUTES)


@dataclass
class DigestDependencies:
    """Runtime collaborators required for a digest run."""

    document_source: DocumentSourceProtocol
    extraction_client: ExtractionClientProtocol
    message_sink: MessageSinkProtocol | None = None
    event_store: EventStoreProtocol | None = None
    execution_reporter: ExecutionReporterProtocol | None = None
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_settings(
        cls, settings: Settings, *, dry_run: bool = False
    ) -> DigestDependencies:
        """Build production adapters from settings.

        Raises:
            ConfigurationError: Delivery credentials are missing (non dry-run)
        """
        sink = None if dry_run else get_message_sink(settings)
        llm_client = LLMClient(
            api_key=settings.openai_api_key.get_secret_value(),
            model=settings.llm_model,
            timeout=settings.llm_timeout_seconds,
            prompt_file=settings.llm_prompt_file,
        )
        repository = (
            SQLiteRepository(settings.db_path) if settings.persist_events else None
        )

        return cls(
            document_source=GuideDocumentSource(
                timeout_seconds=settings.http_timeout_seconds
            ),
            extraction_client=llm_client,
            message_sink=sink,
            event_store=repository,
            execution_reporter=repository,
        )


def is_run_in_progress(deps: DigestDependencies) -> bool:
    """Whether the execution log shows a non-stale run still marked running."""
    if deps.execution_reporter is None:
        return False
    return deps.execution_reporter.has_running_execution(STALE_RUN_AFTER)


def persist_upcoming_events(
    store: EventStoreProtocol,
    records: list[EventRecord],
    today: date,
    *,
    retention_days: int,
) -> int:
    """Upsert every upcoming event by fingerprint and prune stale rows.

    Returns:
        Number of events seen for the first time
    """
    new_count = 0
    upcoming = select_upcoming(records, today)
    for item in upcoming:
        outcome = store.upsert_event_by_fingerprint(
            generate_fingerprint(item.record),
            item.record,
            event_date=item.parsed_date,
        )
        if outcome.is_new:
            new_count += 1

    store.clean_old_events(retention_days)
    logger.info(
        "events_persisted",
        upcoming=len(upcoming),
        new=new_count,
        seen_before=len(upcoming) - new_count,
    )
    return new_count


def deliver_digest(
    delivery: ChunkedMessageDelivery,
    target: str,
    classified: ClassifiedEvents,
    *,
    document: DocumentRef,
    meta: dict[str, object],
) -> int:
    """Deliver one message sequence per window, or a single no-events notice.

    Returns:
        Number of messages sent
    """
    rendered = render_digest(classified, document=document, meta=meta)
    if rendered.nothing_to_send:
        logger.info("digest_nothing_to_send")
        notice = render_no_events_notice(classified, document=document)
        return delivery.deliver(target, notice).messages_sent

    sent = 0
    for window, block in zip(rendered.windows, rendered.blocks):
        result = delivery.deliver(target, block)
        logger.info(
            "digest_window_delivered",
            window=window.value,
            messages=result.messages_sent,
        )
        sent += result.messages_sent
    return sent


def run_digest_use_case(
    settings: Settings,
    deps: DigestDependencies,
    *,
    dry_run: bool = False,
    today: date | None = None,
    progress: ProgressReporter | None = None,
) -> DigestRunResult:
    """Execute one digest run.

    Args:
        settings: Application settings
        deps: Runtime collaborators
        dry_run: Skip delivery (rendered blocks are logged instead)
        today: Override the local date (defaults to today in ``tz_default``)
        progress: Optional progress channel for the extraction loop

    Returns:
        DigestRunResult summary

    Raises:
        ConfigurationError: A sink is required but missing
        DeliveryExhaustedError: A chunk could not be delivered
        EventDigestError: Document lookup or storage failures
    """
    if not dry_run and deps.message_sink is None:
        raise ConfigurationError("A message sink is required unless dry_run is set")
    target = settings.delivery_target or ""

    with run_scope() as scope:
        reporter = deps.execution_reporter
        execution_id = reporter.begin_execution() if reporter else None
        scope.attach_execution(execution_id)
        result = DigestRunResult(
            correlation_id=scope.correlation_id,
            execution_id=execution_id,
            dry_run=dry_run,
        )
        logger.info("digest_run_started", dry_run=dry_run)

        try:
            _execute(settings, deps, result, target, today=today, progress=progress)
        except Exception as exc:
            logger.error(
                "digest_run_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            try:
                _finish(
                    reporter,
                    execution_id,
                    ExecutionStats(
                        status=ExecutionStatus.FAILED,
                        events_found=result.events_found,
                        events_new=result.events_new,
                        error_message=str(exc),
                    ),
                )
            except EventDigestError as finish_error:
                logger.error("execution_finish_failed", error=str(finish_error))
            if not dry_run and deps.message_sink is not None:
                _notify_failure(deps.message_sink, target, exc)
            raise

        _finish(
            reporter,
            execution_id,
            ExecutionStats(
                status=ExecutionStatus.COMPLETED,
                events_found=result.events_found,
                events_new=result.events_new,
            ),
        )
        logger.info("digest_run_completed", **result.model_dump(mode="json"))
        return result


def _execute(
    settings: Settings,
    deps: DigestDependencies,
    result: DigestRunResult,
    target: str,
    *,
    today: date | None,
    progress: ProgressReporter | None,
) -> None:
    ref = deps.document_source.find_latest_document(settings.source_page_url)
    result.document_url = ref.url
    payload = deps.document_source.download(ref)

    aggregator = EventAggregator(
        deps.extraction_client,
        max_rounds=settings.max_rounds,
        round_delay_seconds=settings.round_delay_seconds,
        default_meta=settings.guide_meta,
        sleep=deps.sleep,
    )
    state: AggregationState = aggregator.run(
        payload, selected_units=settings.selected_units or None, progress=progress
    )
    result.rounds = state.rounds
    result.stop_reason = state.stop_reason
    result.events_found = len(state.events)

    filtered = apply_filters(state.events, settings.event_filters)
    result.events_filtered_out = len(state.events) - len(filtered)

    local_today = today or today_in_timezone(settings.tz_default)
    classified = classify_events(filtered, local_today)
    result.this_week = len(classified.this_week)
    result.rest_of_month = len(classified.rest_of_month)
    result.past = len(classified.past)

    if deps.event_store is not None:
        result.events_new = persist_upcoming_events(
            deps.event_store,
            filtered,
            local_today,
            retention_days=settings.event_retention_days,
        )

    if result.dry_run or deps.message_sink is None:
        rendered = render_digest(classified, document=ref, meta=state.meta)
        for block in rendered.blocks:
            logger.info("digest_dry_run_block", length=len(block), preview=block[:300])
        return

    delivery = ChunkedMessageDelivery(
        deps.message_sink,
        policy=RetryPolicy(
            chunk_max_length=settings.chunk_max_length,
            fallback_chunk_length=settings.fallback_chunk_length,
        ),
        sleep=deps.sleep,
    )
    result.messages_sent = deliver_digest(
        delivery, target, classified, document=ref, meta=state.meta
    )


def _finish(
    reporter: ExecutionReporterProtocol | None,
    execution_id: int | None,
    stats: ExecutionStats,
) -> None:
    if reporter is None or execution_id is None:
        return
    reporter.finish_execution(execution_id, stats)


def _notify_failure(sink: MessageSinkProtocol, target: str, error: Exception) -> None:
    try:
        sink.send_message(target, render_failure_notice(error))
    except Exception as notify_error:
        logger.error(
            "failure_notice_not_sent",
            error=str(notify_error),
            original_error=str(error),
        )


def notify_configuration_failure(
    error: Exception,
    *,
    env: Mapping[str, str] | None = None,
    session: requests.Session | None = None,
) -> bool:
    """Best-effort Telegram notice when settings could not be built.

    Uses the raw ``TELEGRAM_BOT_TOKEN`` / ``TELEGRAM_CHAT_ID`` environment
    values because validated settings are not available.

    Returns:
        True when the notice was sent
    """
    source = os.environ if env is None else env
    token = (source.get("TELEGRAM_BOT_TOKEN") or "").strip()
    chat_id = (source.get("TELEGRAM_CHAT_ID") or "").strip()
    if not token or not chat_id:
        logger.warning("configuration_failure_not_notified", reason="no_telegram_env")
        return False

    try:
        TelegramClient(bot_token=token, session=session).send_message(
            chat_id, render_failure_notice(error)
        )
    except EventDigestError as notify_error:
        logger.error("configuration_failure_notice_failed", error=str(notify_error))
        return False
    return True


__all__ = [
    "DigestDependencies",
    "deliver_digest",
    "is_run_in_progress",
    "notify_configuration_failure",
    "persist_upcoming_events",
    "run_digest_use_case",
]
