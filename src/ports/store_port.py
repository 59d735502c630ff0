"""Store ports — abstract interfaces for template and event persistence.

Core modules depend on these protocols, never on a specific backend.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Protocol

from src.data.models import CreatedEventEntry, EventInstance, RecurringTemplate


class StoreError(Exception):
    """Raised when any store operation fails."""


class TemplateStore(Protocol):
    """Durable storage for recurring templates."""

    def find(
        self,
        active_only: bool = True,
        owner_id: int | None = None,
        not_ended_before: date | None = None,
    ) -> list[RecurringTemplate]: ...

    def get(
        self, template_id: int, owner_id: int | None = None
    ) -> RecurringTemplate | None: ...

    def save(self, template: RecurringTemplate) -> RecurringTemplate: ...

    def append_created_events(
        self, template_id: int, entries: list[CreatedEventEntry]
    ) -> None: ...

    def delete_by_id(self, template_id: int) -> bool: ...


class EventStore(Protocol):
    """Durable storage for concrete event instances."""

    def find_one(
        self,
        owner_id: int,
        recurring_id: int,
        start: datetime,
        end: datetime,
    ) -> EventInstance | None: ...

    def get(self, event_id: int) -> EventInstance | None: ...

    def find_for_template(
        self, owner_id: int, recurring_id: int
    ) -> list[EventInstance]: ...

    def save(self, event: EventInstance) -> EventInstance: ...

    def delete_many(self, owner_id: int, recurring_id: int) -> int: ...

    def detach_many(self, owner_id: int, recurring_id: int) -> int: ...
