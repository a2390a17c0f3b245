"""Protocol definitions for dependency inversion.

These abstract interfaces define contracts that adapters must implement.
"""

from datetime import date, timedelta
from typing import Any, Protocol

from event_digest.domain.models import (
    DocumentPayload,
    DocumentRef,
    EventRecord,
    ExecutionRecord,
    ExecutionStats,
    StoredEvent,
    UpsertOutcome,
)


class DocumentSourceProtocol(Protocol):
    """Locates and downloads the guide document."""

    def find_latest_document(self, page_url: str) -> DocumentRef:
        """Return the most recent document linked from ``page_url``.

        Raises:
            DocumentNotFoundError: If the page links no document
            DocumentFetchError: On HTTP errors
        """
        ...

    def download(self, ref: DocumentRef) -> DocumentPayload:
        """Download the document and wrap it as a base64 payload.

        Raises:
            DocumentFetchError: On HTTP errors
        """
        ...


class ExtractionClientProtocol(Protocol):
    """AI extraction boundary returning raw model text."""

    def extract_events(
        self,
        document: DocumentPayload,
        *,
        extra_instructions: str = "",
        selected_units: list[str] | None = None,
    ) -> str:
        """Ask the model for one page of events.

        Returns:
            Raw response text, expected to contain the extraction JSON

        Raises:
            LLMAPIError: On API communication errors
        """
        ...


class MessageSinkProtocol(Protocol):
    """Chat sink that delivers one bounded-size message per call."""

    def send_message(self, chat_id: str, text: str) -> None:
        """Send a single message.

        Raises:
            MessageTooLongError: Payload exceeds the sink limit
            RateLimitError: Sink throttled the request
            MessagingAPIError: Any other sink failure
        """
        ...


class ProgressReporter(Protocol):
    """Interface for publishing progress updates."""

    def update(
        self, *, progress: float | None = None, message: str | None = None
    ) -> None: ...


class EventStoreProtocol(Protocol):
    """Durable event store keyed by fingerprint."""

    def upsert_event_by_fingerprint(
        self,
        fingerprint: str,
        record: EventRecord,
        *,
        event_date: date | None = None,
    ) -> UpsertOutcome:
        """Insert a new event or touch an existing one atomically."""
        ...

    def get_events(
        self,
        *,
        location: str | None = None,
        category: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[StoredEvent]:
        """Query stored events."""
        ...

    def clean_old_events(self, days_old: int) -> int:
        """Delete events not seen for ``days_old`` days; return count."""
        ...

    def get_stats(self) -> dict[str, Any]:
        """Return totals and the last execution."""
        ...


class ExecutionReporterProtocol(Protocol):
    """Brackets each pipeline run."""

    def begin_execution(self) -> int:
        """Record a new running execution and return its id."""
        ...

    def finish_execution(self, execution_id: int, stats: ExecutionStats) -> None:
        """Close an execution with final counters."""
        ...

    def has_running_execution(self, stale_after: timedelta) -> bool:
        """Whether a non-stale execution is still marked running."""
        ...

    def get_recent_executions(self, limit: int = 10) -> list[ExecutionRecord]:
        """Most recent executions, newest first."""
        ...
