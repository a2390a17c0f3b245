"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import base64
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import pytest
import structlog

from event_digest.config.settings import Settings
from event_digest.domain.models import DocumentPayload, DocumentRef, EventRecord

ENV_VARS_TO_CLEAR = (
    "OPENAI_API_KEY",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
    "SLACK_BOT_TOKEN",
    "SLACK_CHANNEL_ID",
    "DELIVERY_CHANNEL",
    "SELECTED_UNITS",
    "FILTER_PRICE_MIN",
    "FILTER_PRICE_MAX",
    "FILTER_CATEGORIES",
    "FILTER_MIN_AGE",
    "FILTER_LOCATIONS",
    "MAX_ROUNDS",
    "DB_PATH",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer shells from leaking configuration into tests."""
    for name in ENV_VARS_TO_CLEAR:
        monkeypatch.delenv(name, raising=False)
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Telegram-configured settings backed by a temporary database."""
    return Settings(
        openai_api_key="sk-test",
        telegram_bot_token="123:abc",
        telegram_chat_id="-100123",
        db_path=str(tmp_path / "test.db"),
    )


def create_test_event(**overrides: Any) -> EventRecord:
    """Helper to create an event with sensible defaults."""
    defaults: dict[str, Any] = {
        "unit": "Sesc Pompeia",
        "name": "Show A",
        "date": "10/03/2025",
        "time": "20h",
        "category": "Música",
        "price": "R$ 40,00",
        "age": "Livre",
        "description": "",
    }
    defaults.update(overrides)
    return EventRecord(**defaults)


@pytest.fixture
def document_ref() -> DocumentRef:
    return DocumentRef(
        url="https://www.sescsp.org.br/files/emcartaz-marco.pdf",
        name="Em Cartaz Março",
    )


@pytest.fixture
def document_payload(document_ref: DocumentRef) -> DocumentPayload:
    content = b"%PDF-1.4 fake guide"
    return DocumentPayload(
        ref=document_ref,
        data_base64=base64.b64encode(content).decode("ascii"),
        size_bytes=len(content),
    )


class RecordingSink:
    """Message sink that replays scripted outcomes and records sends.

    Each entry in ``outcomes`` is either None (success) or an exception to
    raise; once exhausted every send succeeds.
    """

    def __init__(self, outcomes: Iterable[Exception | None] = ()) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, str]] = []
        self.sent: list[str] = []

    def send_message(self, chat_id: str, text: str) -> None:
        self.calls.append((chat_id, text))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if outcome is not None:
                raise outcome
        self.sent.append(text)


class RecordingSleep:
    """Sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleep_recorder() -> RecordingSleep:
    return RecordingSleep()
