"""
Recurring Events — Data Models.

Templates persist in SQLite and are expanded into concrete events by the
reconciler. A template owns its creation log; an event only keeps the
template id as a weak back-reference.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

PATTERNS = ("weekly", "biweekly", "monthly", "custom")

CATEGORIES = (
    "academic",
    "competition",
    "webinar",
    "social",
    "workshop",
    "meeting",
    "extracurricular",
)

SOURCE_RECURRING_TEMPLATE = "recurring_template"


@dataclass
class BaseEvent:
    """Prototype payload stamped onto every generated event."""

    title: str
    category: str
    priority: int                       # 1 = low, 5 = critical
    description: str = ""
    location: str = ""
    duration: int | None = 60           # minutes; None means no end time
    preparation_notes: str = ""
    estimated_prep_time: int = 0        # minutes
    tags: list[str] = field(default_factory=list)


@dataclass
class RecurrenceRule:
    """How a template repeats.

    start_date carries the time-of-day of every occurrence. end_date and
    skip_dates are plain calendar dates.
    """

    pattern: str                        # weekly | biweekly | monthly | custom
    start_date: datetime
    end_date: date | None = None
    skip_dates: list[date] = field(default_factory=list)
    custom_interval_days: int | None = None


@dataclass
class CreatedEventEntry:
    """One row of a template's append-only creation log."""

    event_id: int
    created_date: datetime
    scheduled_date: datetime


@dataclass
class RecurringTemplate:
    """A recurrence rule plus the event payload it stamps out."""

    id: int | None
    owner_id: int
    base_event: BaseEvent
    recurrence: RecurrenceRule
    auto_create_days_before: int = 7
    is_active: bool = True
    created_events: list[CreatedEventEntry] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""


@dataclass
class EventInstance:
    """A concrete scheduled event."""

    id: int | None
    owner_id: int
    title: str
    category: str
    priority: int
    date_time: datetime
    end_date_time: datetime | None = None
    description: str = ""
    location: str = ""
    preparation_notes: str = ""
    estimated_prep_time: int = 0
    tags: list[str] = field(default_factory=list)
    recurring_id: int | None = None
    is_recurring: bool = False
    source_type: str = "text_manual"
    status: str = "scheduled"
    created_at: str = ""
