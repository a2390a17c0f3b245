"""End-to-end tests for the digest run with fake adapters."""

from __future__ import annotations

import json
from datetime import date
from typing import Any

import pytest
import structlog

from event_digest.adapters.document_source import GuideDocumentSource
from event_digest.adapters.sqlite_repository import SQLiteRepository
from event_digest.adapters.telegram_client import TelegramClient
from event_digest.config.settings import Settings
from event_digest.domain.exceptions import ConfigurationError, DocumentNotFoundError
from event_digest.domain.models import (
    DocumentPayload,
    DocumentRef,
    ExecutionStatus,
    StopReason,
)
from event_digest.use_cases.run_digest import (
    DigestDependencies,
    is_run_in_progress,
    notify_configuration_failure,
    run_digest_use_case,
)
from tests.conftest import RecordingSink, RecordingSleep

MONDAY = date(2025, 3, 10)


class FakeDocumentSource:
    def __init__(self, payload: DocumentPayload, error: Exception | None = None) -> None:
        self.payload = payload
        self.error = error
        self.page_urls: list[str] = []

    def find_latest_document(self, page_url: str) -> DocumentRef:
        self.page_urls.append(page_url)
        if self.error is not None:
            raise self.error
        return self.payload.ref

    def download(self, ref: DocumentRef) -> DocumentPayload:
        return self.payload


class SinglePageClient:
    def __init__(self, events: list[dict[str, str]]) -> None:
        self.page = json.dumps({"meta": {"month": "Março"}, "has_more": False, "events": events})
        self.calls = 0

    def extract_events(self, document: DocumentPayload, **_: Any) -> str:
        self.calls += 1
        return self.page


GUIDE_EVENTS = [
    {"unit": "Sesc Pompeia", "name": "Show da semana", "date": "12/03/2025", "time": "20h"},
    {"unit": "Sesc Pinheiros", "name": "Peça do mês", "date": "20/03/2025", "time": "19h"},
    {"unit": "Sesc Pompeia", "name": "Já passou", "date": "01/03/2025", "time": "18h"},
]


@pytest.fixture
def repository(settings: Settings) -> SQLiteRepository:
    return SQLiteRepository(settings.db_path)


def _deps(
    document_payload: DocumentPayload,
    repository: SQLiteRepository | None,
    *,
    events: list[dict[str, str]] | None = None,
    sink: RecordingSink | None = None,
    source_error: Exception | None = None,
) -> DigestDependencies:
    return DigestDependencies(
        document_source=FakeDocumentSource(document_payload, source_error),
        extraction_client=SinglePageClient(GUIDE_EVENTS if events is None else events),
        message_sink=sink,
        event_store=repository,
        execution_reporter=repository,
        sleep=RecordingSleep(),
    )


def test_full_run_delivers_one_block_per_window(
    settings: Settings,
    document_payload: DocumentPayload,
    repository: SQLiteRepository,
) -> None:
    sink = RecordingSink()
    deps = _deps(document_payload, repository, sink=sink)

    result = run_digest_use_case(settings, deps, today=MONDAY)

    assert result.stop_reason is StopReason.EXHAUSTED
    assert result.rounds == 1
    assert result.events_found == 3
    assert result.this_week == 1
    assert result.rest_of_month == 1
    assert result.past == 1
    assert result.events_new == 2
    assert result.messages_sent == 2
    assert result.document_url == document_payload.ref.url

    assert [chat for chat, _ in sink.calls] == ["-100123", "-100123"]
    week, rest = sink.sent
    assert "Show da semana" in week and "Peça do mês" not in week
    assert "Peça do mês" in rest
    assert "Já passou" not in week + rest
    assert "Referência: Março" in week

    [execution] = repository.get_recent_executions()
    assert execution.status is ExecutionStatus.COMPLETED
    assert execution.events_found == 3
    assert execution.events_new == 2


def test_second_run_reports_no_new_events(
    settings: Settings,
    document_payload: DocumentPayload,
    repository: SQLiteRepository,
) -> None:
    run_digest_use_case(
        settings, _deps(document_payload, repository, sink=RecordingSink()), today=MONDAY
    )
    result = run_digest_use_case(
        settings, _deps(document_payload, repository, sink=RecordingSink()), today=MONDAY
    )

    assert result.events_new == 0
    stored = repository.get_events()
    assert {event.times_found for event in stored} == {2}


def test_filters_apply_before_windowing(
    settings: Settings,
    document_payload: DocumentPayload,
    repository: SQLiteRepository,
) -> None:
    filtered_settings = settings.model_copy(update={"filter_locations": ["pinheiros"]})
    sink = RecordingSink()

    result = run_digest_use_case(
        filtered_settings, _deps(document_payload, repository, sink=sink), today=MONDAY
    )

    assert result.events_filtered_out == 2
    assert result.this_week == 0
    assert result.messages_sent == 1
    assert "Peça do mês" in sink.sent[0]


def test_nothing_to_send_delivers_notice(
    settings: Settings,
    document_payload: DocumentPayload,
    repository: SQLiteRepository,
) -> None:
    sink = RecordingSink()
    deps = _deps(document_payload, repository, events=[GUIDE_EVENTS[2]], sink=sink)

    result = run_digest_use_case(settings, deps, today=MONDAY)

    assert result.messages_sent == 1
    assert "Nenhum evento encontrado" in sink.sent[0]


def test_dry_run_sends_nothing(
    settings: Settings,
    document_payload: DocumentPayload,
    repository: SQLiteRepository,
) -> None:
    deps = _deps(document_payload, repository)

    result = run_digest_use_case(settings, deps, dry_run=True, today=MONDAY)

    assert result.dry_run is True
    assert result.messages_sent == 0
    assert result.events_new == 2


def test_missing_sink_requires_dry_run(
    settings: Settings, document_payload: DocumentPayload
) -> None:
    with pytest.raises(ConfigurationError):
        run_digest_use_case(settings, _deps(document_payload, None), today=MONDAY)


def test_failure_is_recorded_announced_and_reraised(
    settings: Settings,
    document_payload: DocumentPayload,
    repository: SQLiteRepository,
) -> None:
    sink = RecordingSink()
    deps = _deps(
        document_payload,
        repository,
        sink=sink,
        source_error=DocumentNotFoundError("No PDF link found"),
    )

    with pytest.raises(DocumentNotFoundError):
        run_digest_use_case(settings, deps, today=MONDAY)

    [execution] = repository.get_recent_executions()
    assert execution.status is ExecutionStatus.FAILED
    assert execution.error_message == "No PDF link found"
    assert len(sink.sent) == 1
    assert "No PDF link found" in sink.sent[0]


def test_failure_notice_errors_do_not_mask_original(
    settings: Settings,
    document_payload: DocumentPayload,
    repository: SQLiteRepository,
) -> None:
    sink = RecordingSink([RuntimeError("sink down")])
    deps = _deps(
        document_payload,
        repository,
        sink=sink,
        source_error=DocumentNotFoundError("missing"),
    )

    with pytest.raises(DocumentNotFoundError):
        run_digest_use_case(settings, deps, today=MONDAY)


def test_is_run_in_progress(
    document_payload: DocumentPayload, repository: SQLiteRepository
) -> None:
    deps = _deps(document_payload, repository)
    assert is_run_in_progress(deps) is False

    repository.begin_execution()
    assert is_run_in_progress(deps) is True
    assert is_run_in_progress(_deps(document_payload, None)) is False


def test_dependencies_from_settings_dry_run(settings: Settings) -> None:
    deps = DigestDependencies.from_settings(settings, dry_run=True)

    assert deps.message_sink is None
    assert isinstance(deps.document_source, GuideDocumentSource)
    assert isinstance(deps.event_store, SQLiteRepository)
    assert deps.execution_reporter is deps.event_store


def test_dependencies_from_settings_builds_telegram_sink(settings: Settings) -> None:
    deps = DigestDependencies.from_settings(
        settings.model_copy(update={"persist_events": False})
    )

    assert isinstance(deps.message_sink, TelegramClient)
    assert deps.event_store is None


def test_dependencies_from_settings_missing_credentials(settings: Settings) -> None:
    broken = settings.model_copy(update={"telegram_chat_id": None})

    with pytest.raises(ConfigurationError, match="TELEGRAM_CHAT_ID"):
        DigestDependencies.from_settings(broken)


class FakeSession:
    def __init__(self) -> None:
        self.posts: list[dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> Any:
        self.posts.append({"url": url, **kwargs})
        return _OkResponse()


class _OkResponse:
    status_code = 200

    def json(self) -> dict[str, Any]:
        return {"ok": True}


def test_notify_configuration_failure_uses_raw_env() -> None:
    session = FakeSession()

    sent = notify_configuration_failure(
        ConfigurationError("Invalid or missing configuration: openai_api_key"),
        env={"TELEGRAM_BOT_TOKEN": "123:abc", "TELEGRAM_CHAT_ID": "-1"},
        session=session,
    )

    assert sent is True
    assert session.posts[0]["json"]["chat_id"] == "-1"
    assert "openai_api_key" in session.posts[0]["json"]["text"]


def test_notify_configuration_failure_without_env() -> None:
    assert notify_configuration_failure(ConfigurationError("x"), env={}) is False


class ContextCapturingSink(RecordingSink):
    def __init__(self) -> None:
        super().__init__()
        self.contexts: list[dict[str, Any]] = []

    def send_message(self, chat_id: str, text: str) -> None:
        self.contexts.append(structlog.contextvars.get_contextvars())
        super().send_message(chat_id, text)


def test_run_logs_carry_execution_id(
    settings: Settings,
    document_payload: DocumentPayload,
    repository: SQLiteRepository,
) -> None:
    sink = ContextCapturingSink()

    result = run_digest_use_case(
        settings, _deps(document_payload, repository, sink=sink), today=MONDAY
    )

    assert sink.contexts
    for context in sink.contexts:
        assert context["execution_id"] == result.execution_id
        assert context["correlation_id"] == result.correlation_id
    assert "execution_id" not in structlog.contextvars.get_contextvars()
