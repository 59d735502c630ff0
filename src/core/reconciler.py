"""
Recurring Events — Reconciler.

Turns a template's candidate occurrences into stored events without
duplicates. Safe to re-run: an occurrence that already has an event within
the match tolerance is skipped.

This module is storage-agnostic: it depends on the TemplateStore and
EventStore protocols, not on SQLite.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

from src.core.recurrence import Candidate, generate_candidates
from src.data.models import (
    SOURCE_RECURRING_TEMPLATE,
    CreatedEventEntry,
    EventInstance,
    RecurringTemplate,
)

if TYPE_CHECKING:
    from src.ports.store_port import EventStore, TemplateStore

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of one template's reconciliation pass."""

    template_id: int
    created: list[EventInstance] = field(default_factory=list)
    skipped: int = 0


@dataclass
class BatchReport:
    """Outcome of one driver tick across all active templates."""

    results: list[ReconcileResult] = field(default_factory=list)
    failures: dict[int, str] = field(default_factory=dict)

    @property
    def created_count(self) -> int:
        return sum(len(r.created) for r in self.results)


def build_event(template: RecurringTemplate, candidate: Candidate) -> EventInstance:
    """Stamp the template's base event onto a candidate's dates."""
    base = template.base_event
    return EventInstance(
        id=None,
        owner_id=template.owner_id,
        title=base.title,
        category=base.category,
        priority=base.priority,
        date_time=candidate.scheduled_date,
        end_date_time=candidate.scheduled_end_date,
        description=base.description,
        location=base.location,
        preparation_notes=base.preparation_notes,
        estimated_prep_time=base.estimated_prep_time,
        tags=list(base.tags),
        recurring_id=template.id,
        is_recurring=True,
        source_type=SOURCE_RECURRING_TEMPLATE,
    )


class Reconciler:
    """Materializes recurring templates into events.

    Each template is reconciled under its own asyncio.Lock, so overlapping
    runs for the same template serialize while distinct templates proceed
    concurrently (bounded by max_concurrency).
    """

    def __init__(
        self,
        template_store: TemplateStore,
        event_store: EventStore,
        clock: Callable[[], datetime] | None = None,
        lookahead_days: int | None = None,
        tolerance_minutes: int | None = None,
        max_instances: int | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        from src.config import settings

        self._templates = template_store
        self._events = event_store
        self._clock = clock or datetime.now
        self._lookahead = timedelta(
            days=lookahead_days if lookahead_days is not None else settings.LOOKAHEAD_DAYS
        )
        self._tolerance = timedelta(
            minutes=(
                tolerance_minutes
                if tolerance_minutes is not None
                else settings.MATCH_TOLERANCE_MINUTES
            )
        )
        self._max_instances = max_instances or settings.MAX_INSTANCES
        self._max_concurrency = max_concurrency or settings.MAX_CONCURRENT_TEMPLATES
        # Locks vanish once no pass holds or awaits them
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, template_id: int) -> asyncio.Lock:
        lock = self._locks.get(template_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[template_id] = lock
        return lock

    async def reconcile(self, template: RecurringTemplate) -> ReconcileResult:
        """Create the missing events of one template and log them on it.

        The template is re-read inside the lock so a pass always starts
        from the latest stored log. Only the new log entries are written back,
        once, at the end of the pass.
        """
        async with self._lock_for(template.id):
            current = await asyncio.to_thread(self._templates.get, template.id)
            if current is None:
                logger.info("Template #%d no longer exists, skipping", template.id)
                return ReconcileResult(template_id=template.id)
            return await self._reconcile_locked(current)

    async def _reconcile_locked(self, template: RecurringTemplate) -> ReconcileResult:
        result = ReconcileResult(template_id=template.id)
        if not template.is_active:
            logger.debug("Template #%d inactive, skipping", template.id)
            return result

        now = self._clock()
        horizon = now + self._lookahead
        candidates = generate_candidates(
            template.recurrence,
            horizon=horizon,
            now=now,
            duration_minutes=template.base_event.duration,
            max_instances=self._max_instances,
        )

        new_entries: list[CreatedEventEntry] = []
        try:
            for candidate in candidates:
                start = candidate.scheduled_date
                existing = await asyncio.to_thread(
                    self._events.find_one,
                    template.owner_id,
                    template.id,
                    start - self._tolerance,
                    start + self._tolerance,
                )
                if existing is not None:
                    result.skipped += 1
                    continue

                event = await asyncio.to_thread(
                    self._events.save, build_event(template, candidate),
                )
                new_entries.append(
                    CreatedEventEntry(
                        event_id=event.id,
                        created_date=self._clock(),
                        scheduled_date=start,
                    )
                )
                result.created.append(event)
        finally:
            # Events saved before a failure still get their log entries
            if new_entries:
                await asyncio.to_thread(
                    self._templates.append_created_events, template.id, new_entries,
                )
                template.created_events.extend(new_entries)

        if result.created:
            logger.info(
                "Template #%d '%s': created %d events, %d already present",
                template.id, template.base_event.title,
                len(result.created), result.skipped,
            )
        return result

    async def process_all(self) -> BatchReport:
        """Reconcile every active template. One failure never stops the batch."""
        report = BatchReport()
        today = self._clock().date()
        templates = await asyncio.to_thread(
            self._templates.find, active_only=True, not_ended_before=today,
        )
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _run(template: RecurringTemplate) -> None:
            async with semaphore:
                try:
                    report.results.append(await self.reconcile(template))
                except Exception as exc:
                    logger.error(
                        "Failed to process template #%s: %s", template.id, exc,
                    )
                    report.failures[template.id] = str(exc)

        await asyncio.gather(*(_run(t) for t in templates))

        logger.info(
            "Processed %d templates: %d events created, %d failures",
            len(templates), report.created_count, len(report.failures),
        )
        return report
