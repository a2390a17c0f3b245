"""Tests for the SQLite event store and execution log."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from pathlib import Path

import pytest
import pytz

from event_digest.adapters.sqlite_repository import SQLiteRepository
from event_digest.domain.models import ExecutionStats, ExecutionStatus
from event_digest.services.deduplicator import generate_fingerprint
from tests.conftest import create_test_event


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime(2025, 3, 10, 12, 0, tzinfo=pytz.UTC))


@pytest.fixture
def repository(tmp_path: Path, clock: MutableClock) -> SQLiteRepository:
    return SQLiteRepository(str(tmp_path / "nested" / "events.db"), clock=clock)


def _store(repo: SQLiteRepository, event_date: date | None = None, **overrides: str):
    record = create_test_event(**overrides)
    return repo.upsert_event_by_fingerprint(
        generate_fingerprint(record), record, event_date=event_date
    )


def test_schema_creates_parent_directory(tmp_path: Path) -> None:
    SQLiteRepository(str(tmp_path / "a" / "b" / "events.db"))
    assert (tmp_path / "a" / "b" / "events.db").exists()


def test_upsert_inserts_then_touches(
    repository: SQLiteRepository, clock: MutableClock
) -> None:
    first = _store(repository, date(2025, 3, 10))
    clock.advance(days=1)
    second = _store(repository, date(2025, 3, 10), name=" SHOW A ")

    assert first.is_new is True
    assert second.is_new is False
    assert first.fingerprint == second.fingerprint

    [stored] = repository.get_events()
    assert stored.times_found == 2
    assert stored.name == "Show A"
    assert stored.location == "Sesc Pompeia"
    assert stored.classification == "Livre"
    assert stored.event_date == date(2025, 3, 10)
    assert stored.last_seen - stored.first_seen == timedelta(days=1)


def test_get_events_filters_and_orders(repository: SQLiteRepository) -> None:
    _store(repository, date(2025, 3, 20), name="Late", unit="Sesc Pinheiros")
    _store(repository, None, name="Undated")
    _store(repository, date(2025, 3, 12), name="Early", category="Teatro")
    _store(repository, date(2025, 3, 15), name="Middle")

    assert [e.name for e in repository.get_events()] == [
        "Early",
        "Middle",
        "Late",
        "Undated",
    ]
    assert [e.name for e in repository.get_events(location="pinheiros")] == ["Late"]
    assert [e.name for e in repository.get_events(category="teatro")] == ["Early"]
    assert [
        e.name
        for e in repository.get_events(
            start_date=date(2025, 3, 13), end_date=date(2025, 3, 20)
        )
    ] == ["Middle", "Late"]


def test_clean_old_events(repository: SQLiteRepository, clock: MutableClock) -> None:
    _store(repository, name="Old")
    clock.advance(days=100)
    _store(repository, name="Fresh")

    deleted = repository.clean_old_events(90)

    assert deleted == 1
    assert [e.name for e in repository.get_events()] == ["Fresh"]


def test_execution_lifecycle(repository: SQLiteRepository, clock: MutableClock) -> None:
    execution_id = repository.begin_execution()
    assert repository.has_running_execution(timedelta(minutes=60)) is True

    clock.advance(minutes=5)
    repository.finish_execution(
        execution_id,
        ExecutionStats(status=ExecutionStatus.COMPLETED, events_found=12, events_new=4),
    )

    assert repository.has_running_execution(timedelta(minutes=60)) is False
    [record] = repository.get_recent_executions()
    assert record.execution_id == execution_id
    assert record.status is ExecutionStatus.COMPLETED
    assert record.events_found == 12
    assert record.events_new == 4
    assert record.finished_at is not None


def test_stale_running_execution_is_ignored(
    repository: SQLiteRepository, clock: MutableClock
) -> None:
    repository.begin_execution()
    clock.advance(minutes=61)

    assert repository.has_running_execution(timedelta(minutes=60)) is False


def test_failed_execution_keeps_error(repository: SQLiteRepository) -> None:
    execution_id = repository.begin_execution()
    repository.finish_execution(
        execution_id,
        ExecutionStats(status=ExecutionStatus.FAILED, error_message="boom"),
    )

    stats = repository.get_stats()

    assert stats["total_executions"] == 1
    assert stats["total_events"] == 0
    assert stats["last_execution"].status is ExecutionStatus.FAILED
    assert stats["last_execution"].error_message == "boom"


def test_recent_executions_newest_first(
    repository: SQLiteRepository, clock: MutableClock
) -> None:
    ids = []
    for _ in range(3):
        ids.append(repository.begin_execution())
        clock.advance(minutes=1)

    recent = repository.get_recent_executions(limit=2)

    assert [r.execution_id for r in recent] == [ids[2], ids[1]]
