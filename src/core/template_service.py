"""
Recurring Events — Template lifecycle.

Create, read, update and delete recurring templates on behalf of their
owner. None of these operations reconcile synchronously: new or changed
templates are picked up by the scheduler on its next tick.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date, datetime
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from src.core.errors import ValidationError
from src.data.models import (
    BaseEvent,
    EventInstance,
    RecurrenceRule,
    RecurringTemplate,
)

if TYPE_CHECKING:
    from src.ports.store_port import EventStore, TemplateStore

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {"base_event", "recurrence", "auto_create_days_before", "is_active"}


# ---------------------------------------------------------------------------
# Input contract
# ---------------------------------------------------------------------------


class BaseEventInput(BaseModel):
    """Prototype event payload supplied by the user.

    JSON example:
    {
        "title": "Linear Algebra lecture",
        "category": "academic",
        "priority": 3,
        "location": "Room 204",
        "duration": 90
    }
    """
    title: str = Field(min_length=1, max_length=200)
    category: Literal[
        "academic", "competition", "webinar", "social",
        "workshop", "meeting", "extracurricular",
    ]
    priority: int = Field(ge=1, le=5)
    description: str = Field(default="", max_length=2000)
    location: str = Field(default="", max_length=300)
    duration: int | None = Field(default=60, gt=0)   # minutes
    preparation_notes: str = Field(default="", max_length=1000)
    estimated_prep_time: int = Field(default=0, ge=0)
    tags: list[str] = []

    @field_validator("title", "description", "location", "preparation_notes", mode="before")
    @classmethod
    def strip_text(cls, v: str | None) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: list[str] | None) -> list[str]:
        if not v:
            return []
        return [t.strip().lower() for t in v if t and t.strip()]


class RecurrenceInput(BaseModel):
    """Recurrence rule supplied by the user.

    JSON example:
    {
        "pattern": "weekly",
        "start_date": "2024-01-01T09:00:00",
        "end_date": "2024-01-31",
        "skip_dates": ["2024-01-15"]
    }
    """
    pattern: Literal["weekly", "biweekly", "monthly", "custom"]
    start_date: datetime
    end_date: date | None = None
    skip_dates: list[date] = []
    custom_interval_days: int | None = Field(default=None, ge=1)

    @field_validator("start_date")
    @classmethod
    def drop_timezone(cls, v: datetime) -> datetime:
        # Recurrence math works on naive wall-clock times
        return v.replace(tzinfo=None)

    @model_validator(mode="after")
    def check_range(self) -> RecurrenceInput:
        if self.end_date is not None and self.start_date.date() > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class TemplateInput(BaseModel):
    """Full template payload for create and merged update."""
    base_event: BaseEventInput
    recurrence: RecurrenceInput
    auto_create_days_before: int = Field(default=7, ge=0, le=30)
    is_active: bool = True


def _validate(data: dict) -> TemplateInput:
    try:
        return TemplateInput.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid template: {exc}") from exc


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TemplateService:
    """Owner-scoped lifecycle operations on recurring templates."""

    def __init__(self, template_store: TemplateStore, event_store: EventStore) -> None:
        self._templates = template_store
        self._events = event_store

    def create_template(self, owner_id: int, data: dict) -> RecurringTemplate:
        """Validate and persist a new active template."""
        if owner_id is None:
            raise ValidationError("Template owner is required")
        payload = _validate({**data, "is_active": True})
        template = RecurringTemplate(
            id=None,
            owner_id=owner_id,
            base_event=BaseEvent(**payload.base_event.model_dump()),
            recurrence=RecurrenceRule(**payload.recurrence.model_dump()),
            auto_create_days_before=payload.auto_create_days_before,
            is_active=True,
        )
        template = self._templates.save(template)
        logger.info(
            "Template added: #%d '%s' (%s) for owner %d",
            template.id, template.base_event.title,
            template.recurrence.pattern, owner_id,
        )
        return template

    def get_template(self, template_id: int, owner_id: int) -> RecurringTemplate:
        """Fetch a template owned by `owner_id`, or raise ValidationError."""
        template = self._templates.get(template_id, owner_id=owner_id)
        if template is None:
            raise ValidationError("Template not found")
        return template

    def update_template(
        self, template_id: int, owner_id: int, updates: dict,
    ) -> RecurringTemplate:
        """Merge `updates` into the stored template and persist it.

        Nested base_event / recurrence dicts are merged field by field, so a
        caller can change one field without restating the rest.
        """
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {sorted(unknown)}")

        nested: dict[str, dict] = {}
        for key in ("base_event", "recurrence"):
            value = updates.get(key) or {}
            if not isinstance(value, dict):
                raise ValidationError(f"{key} must be an object")
            nested[key] = value

        template = self.get_template(template_id, owner_id)
        merged = {
            "base_event": {**asdict(template.base_event), **nested["base_event"]},
            "recurrence": {**asdict(template.recurrence), **nested["recurrence"]},
            "auto_create_days_before": updates.get(
                "auto_create_days_before", template.auto_create_days_before,
            ),
            "is_active": updates.get("is_active", template.is_active),
        }
        payload = _validate(merged)

        template.base_event = BaseEvent(**payload.base_event.model_dump())
        template.recurrence = RecurrenceRule(**payload.recurrence.model_dump())
        template.auto_create_days_before = payload.auto_create_days_before
        template.is_active = payload.is_active
        template = self._templates.save(template)
        logger.info("Template #%d updated: %s", template_id, sorted(updates))
        return template

    def deactivate_template(self, template_id: int, owner_id: int) -> RecurringTemplate:
        """Soft-delete: stop expanding the template, keep it and its events."""
        return self.update_template(template_id, owner_id, {"is_active": False})

    def delete_template(
        self, template_id: int, owner_id: int, cascade: bool = False,
    ) -> int:
        """Hard-delete a template.

        With cascade the template's events are deleted too; otherwise they are
        detached and kept as ordinary events.

        Returns:
            Number of events deleted or detached.
        """
        self.get_template(template_id, owner_id)
        if cascade:
            affected = self._events.delete_many(owner_id, template_id)
        else:
            affected = self._events.detach_many(owner_id, template_id)
        self._templates.delete_by_id(template_id)
        logger.info(
            "Template #%d deleted (%s %d events)",
            template_id, "removed" if cascade else "detached", affected,
        )
        return affected

    def list_templates(self, owner_id: int) -> list[RecurringTemplate]:
        """Active templates of an owner, newest first."""
        return self._templates.find(active_only=True, owner_id=owner_id)

    def list_template_events(
        self, template_id: int, owner_id: int,
    ) -> list[EventInstance]:
        """Events generated by a template, earliest first."""
        self.get_template(template_id, owner_id)
        return self._events.find_for_template(owner_id, template_id)
