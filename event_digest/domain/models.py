"""Domain models for the event digest pipeline.

All models use Pydantic v2 for validation and serialization.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from datetime import date as CalendarDate
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

EVENT_TEXT_FIELDS: tuple[str, ...] = (
    "unit",
    "name",
    "date",
    "time",
    "category",
    "price",
    "age",
    "description",
)
"""Free-form text fields carried by every extracted event, in schema order."""


class EventRecord(BaseModel):
    """One listed activity extracted from the guide.

    Every field is free-form text as written in the guide. A record is only
    usable downstream when ``unit`` and ``name`` are non-empty.
    """

    unit: str = Field(default="", description="Venue/location name")
    name: str = Field(default="", description="Event title")
    date: str = Field(default="", description="Localized date expression")
    time: str = Field(default="", description="Free-form time expression")
    category: str = Field(default="", description="Category label")
    price: str = Field(default="", description="Ticket price text")
    age: str = Field(default="", description="Age classification/rating")
    description: str = Field(default="", description="Short description")

    @field_validator(*EVENT_TEXT_FIELDS, mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)


class ExtractionPage(BaseModel):
    """One decoded response page from the extraction boundary.

    ``events`` is kept raw so that malformed entries can be dropped one by one
    during normalization instead of failing the whole page.
    """

    meta: dict[str, Any] = Field(default_factory=dict)
    has_more: bool = False
    cursor: str = ""
    events: list[Any] = Field(default_factory=list)

    @field_validator("meta", mode="before")
    @classmethod
    def _meta_mapping(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @field_validator("has_more", mode="before")
    @classmethod
    def _has_more_flag(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("cursor", mode="before")
    @classmethod
    def _cursor_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)

    @field_validator("events", mode="before")
    @classmethod
    def _events_list(cls, value: Any) -> list[Any]:
        return value if isinstance(value, list) else []


class StopReason(str, Enum):
    """Why the pagination loop terminated."""

    EXHAUSTED = "exhausted"
    NO_PROGRESS = "no_progress"
    BOUNDARY_ERROR = "boundary_error"
    UNPARSEABLE = "unparseable"
    ROUND_CAP = "round_cap"


@dataclass
class AggregationState:
    """Accumulated result of one pagination run.

    Owned by a single aggregation loop; read-only once ``stop_reason`` is set.
    """

    meta: dict[str, Any] = field(default_factory=dict)
    events: list[EventRecord] = field(default_factory=list)
    cursor: str = ""
    rounds: int = 0
    stop_reason: StopReason | None = None

    @property
    def finalized(self) -> bool:
        return self.stop_reason is not None


class DocumentRef(BaseModel):
    """Reference to the most recent guide document."""

    url: str
    name: str = ""


class DocumentPayload(BaseModel):
    """Downloaded guide ready to hand to the extraction boundary."""

    ref: DocumentRef
    data_base64: str
    mime_type: str = "application/pdf"
    size_bytes: int = 0


class EventFilters(BaseModel):
    """Advanced pre-filters applied before date windowing.

    Unset thresholds and empty lists are no-ops.
    """

    price_min: int | None = Field(default=None, ge=0)
    price_max: int | None = Field(default=None, ge=0)
    categories: list[str] = Field(default_factory=list)
    min_age: int | None = Field(default=None, ge=0)
    locations: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return (
            self.price_min is None
            and self.price_max is None
            and not self.categories
            and self.min_age is None
            and not self.locations
        )


class EventWindow(str, Enum):
    """Delivery window an event is bucketed into."""

    THIS_WEEK = "this_week"
    REST_OF_MONTH = "rest_of_month"


@dataclass(frozen=True)
class WindowBounds:
    """Inclusive calendar-date range of a window."""

    start: date
    end: date

    @property
    def is_empty(self) -> bool:
        return self.start > self.end

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class DatedEvent:
    """An event paired with the first date parsed from its date text."""

    record: EventRecord
    parsed_date: date | None


@dataclass
class ClassifiedEvents:
    """Events bucketed into delivery windows plus the excluded buckets."""

    today: date
    this_week_bounds: WindowBounds
    rest_of_month_bounds: WindowBounds
    this_week: list[DatedEvent] = field(default_factory=list)
    rest_of_month: list[DatedEvent] = field(default_factory=list)
    past: list[DatedEvent] = field(default_factory=list)
    beyond: list[DatedEvent] = field(default_factory=list)
    undated: list[DatedEvent] = field(default_factory=list)

    def window(self, which: EventWindow) -> list[DatedEvent]:
        if which is EventWindow.THIS_WEEK:
            return self.this_week
        return self.rest_of_month

    def bounds(self, which: EventWindow) -> WindowBounds:
        if which is EventWindow.THIS_WEEK:
            return self.this_week_bounds
        return self.rest_of_month_bounds

    @property
    def windowed_count(self) -> int:
        return len(self.this_week) + len(self.rest_of_month)


class UpsertOutcome(BaseModel):
    """Result of storing one event by fingerprint."""

    fingerprint: str
    is_new: bool


class ExecutionStatus(str, Enum):
    """Lifecycle status of a pipeline execution."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ExecutionStats(BaseModel):
    """Counters reported when a run finishes."""

    status: ExecutionStatus = ExecutionStatus.COMPLETED
    events_found: int = 0
    events_new: int = 0
    error_message: str | None = None


class ExecutionRecord(BaseModel):
    """Stored execution row."""

    execution_id: int
    started_at: datetime
    finished_at: datetime | None = None
    status: ExecutionStatus
    events_found: int = 0
    events_new: int = 0
    error_message: str | None = None


class StoredEvent(BaseModel):
    """Stored event row with sighting metadata."""

    fingerprint: str
    name: str
    date: str = ""
    event_date: CalendarDate | None = None
    time: str = ""
    location: str = ""
    price: str = ""
    classification: str = ""
    category: str = ""
    description: str = ""
    first_seen: datetime
    last_seen: datetime
    times_found: int = 1


class RenderedDigest(BaseModel):
    """Rendered window blocks; ``nothing_to_send`` when no window qualified."""

    blocks: list[str] = Field(default_factory=list)
    windows: list[EventWindow] = Field(default_factory=list)

    @property
    def nothing_to_send(self) -> bool:
        return not self.blocks


class DeliveryResult(BaseModel):
    """Result of delivering one long text."""

    chunks_total: int = 0
    messages_sent: int = 0
    resplit_chunks: int = 0
    rate_limit_waits: int = 0


class DigestRunResult(BaseModel):
    """Summary of a full pipeline run."""

    correlation_id: str
    execution_id: int | None = None
    document_url: str = ""
    rounds: int = 0
    stop_reason: StopReason | None = None
    events_found: int = 0
    events_new: int = 0
    events_filtered_out: int = 0
    this_week: int = 0
    rest_of_month: int = 0
    past: int = 0
    messages_sent: int = 0
    dry_run: bool = False
