"""
Recurring Events — SQLite storage.

Templates, their creation logs, and concrete events persist in SQLite across
restarts. Every sqlite3 failure is surfaced as StoreError so the reconciler
can isolate it per template.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import date, datetime
from pathlib import Path

from src.data.models import (
    BaseEvent,
    CreatedEventEntry,
    EventInstance,
    RecurrenceRule,
    RecurringTemplate,
)
from src.ports.store_port import StoreError

logger = logging.getLogger(__name__)


def _ts(value: datetime | None) -> str | None:
    """Fixed-width ISO timestamp so string comparison matches time order."""
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class _SQLiteStore:
    """Shared connection handling for the SQLite-backed stores.

    Subclasses create their tables in _init_db.
    """

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._init_db()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to initialize {db_path}: {exc}") from exc

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn


class TemplateDB(_SQLiteStore):
    """SQLite-backed storage for recurring templates and their creation logs."""

    def _init_db(self) -> None:
        """Create the template tables if they don't exist, and migrate schema."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS recurring_templates (
                    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id                INTEGER NOT NULL,
                    title                   TEXT    NOT NULL,
                    category                TEXT    NOT NULL,
                    priority                INTEGER NOT NULL,
                    description             TEXT    NOT NULL DEFAULT '',
                    location                TEXT    NOT NULL DEFAULT '',
                    duration                INTEGER,
                    pattern                 TEXT    NOT NULL,
                    custom_interval_days    INTEGER,
                    start_date              TEXT    NOT NULL,
                    end_date                TEXT,
                    skip_dates              TEXT    NOT NULL DEFAULT '[]',
                    auto_create_days_before INTEGER NOT NULL DEFAULT 7,
                    is_active               INTEGER NOT NULL DEFAULT 1,
                    created_at              TEXT    NOT NULL,
                    updated_at              TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS template_created_events (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    template_id    INTEGER NOT NULL,
                    event_id       INTEGER NOT NULL,
                    created_date   TEXT    NOT NULL,
                    scheduled_date TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_templates_owner_active "
                "ON recurring_templates (owner_id, is_active)"
            )
            # Migrate existing DBs: add new columns if missing
            existing_cols = {
                row[1]
                for row in conn.execute("PRAGMA table_info(recurring_templates)").fetchall()
            }
            if "preparation_notes" not in existing_cols:
                conn.execute(
                    "ALTER TABLE recurring_templates "
                    "ADD COLUMN preparation_notes TEXT NOT NULL DEFAULT ''"
                )
            if "estimated_prep_time" not in existing_cols:
                conn.execute(
                    "ALTER TABLE recurring_templates "
                    "ADD COLUMN estimated_prep_time INTEGER NOT NULL DEFAULT 0"
                )
            if "tags" not in existing_cols:
                conn.execute(
                    "ALTER TABLE recurring_templates ADD COLUMN tags TEXT NOT NULL DEFAULT '[]'"
                )
        logger.debug("Template tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_template(
        row: sqlite3.Row, entries: list[CreatedEventEntry]
    ) -> RecurringTemplate:
        return RecurringTemplate(
            id=row["id"],
            owner_id=row["owner_id"],
            base_event=BaseEvent(
                title=row["title"],
                category=row["category"],
                priority=row["priority"],
                description=row["description"],
                location=row["location"],
                duration=row["duration"],
                preparation_notes=row["preparation_notes"],
                estimated_prep_time=row["estimated_prep_time"],
                tags=json.loads(row["tags"]),
            ),
            recurrence=RecurrenceRule(
                pattern=row["pattern"],
                start_date=datetime.fromisoformat(row["start_date"]),
                end_date=date.fromisoformat(row["end_date"]) if row["end_date"] else None,
                skip_dates=[date.fromisoformat(d) for d in json.loads(row["skip_dates"])],
                custom_interval_days=row["custom_interval_days"],
            ),
            auto_create_days_before=row["auto_create_days_before"],
            is_active=bool(row["is_active"]),
            created_events=entries,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _load_entries(
        conn: sqlite3.Connection, template_id: int
    ) -> list[CreatedEventEntry]:
        rows = conn.execute(
            "SELECT * FROM template_created_events WHERE template_id = ? ORDER BY id",
            (template_id,),
        ).fetchall()
        return [
            CreatedEventEntry(
                event_id=r["event_id"],
                created_date=datetime.fromisoformat(r["created_date"]),
                scheduled_date=datetime.fromisoformat(r["scheduled_date"]),
            )
            for r in rows
        ]

    def find(
        self,
        active_only: bool = True,
        owner_id: int | None = None,
        not_ended_before: date | None = None,
    ) -> list[RecurringTemplate]:
        """List templates, newest first.

        not_ended_before drops templates whose end_date already passed;
        templates without an end_date are always kept.
        """
        conditions: list[str] = []
        params: list = []
        if active_only:
            conditions.append("is_active = 1")
        if owner_id is not None:
            conditions.append("owner_id = ?")
            params.append(owner_id)
        if not_ended_before is not None:
            conditions.append("(end_date IS NULL OR end_date >= ?)")
            params.append(not_ended_before.isoformat())

        query = "SELECT * FROM recurring_templates"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at DESC, id DESC"

        try:
            with self._connect() as conn:
                rows = conn.execute(query, params).fetchall()
                return [
                    self._row_to_template(r, self._load_entries(conn, r["id"]))
                    for r in rows
                ]
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to list templates: {exc}") from exc

    def get(
        self, template_id: int, owner_id: int | None = None
    ) -> RecurringTemplate | None:
        """Fetch a single template, optionally scoped to its owner."""
        query = "SELECT * FROM recurring_templates WHERE id = ?"
        params: list = [template_id]
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        try:
            with self._connect() as conn:
                row = conn.execute(query, params).fetchone()
                if row is None:
                    return None
                return self._row_to_template(row, self._load_entries(conn, row["id"]))
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to fetch template {template_id}: {exc}") from exc

    def save(self, template: RecurringTemplate) -> RecurringTemplate:
        """Insert or update a template and append any new log entries.

        The template row and its new log rows are written in one transaction.
        """
        now = datetime.now().isoformat()
        if not template.created_at:
            template.created_at = now
        template.updated_at = now

        base = template.base_event
        rule = template.recurrence
        values = (
            template.owner_id,
            base.title,
            base.category,
            base.priority,
            base.description,
            base.location,
            base.duration,
            base.preparation_notes,
            base.estimated_prep_time,
            json.dumps(base.tags),
            rule.pattern,
            rule.custom_interval_days,
            rule.start_date.isoformat(),
            rule.end_date.isoformat() if rule.end_date else None,
            json.dumps(sorted(d.isoformat() for d in rule.skip_dates)),
            template.auto_create_days_before,
            int(template.is_active),
            template.created_at,
            template.updated_at,
        )

        try:
            with self._connect() as conn:
                if template.id is None:
                    cursor = conn.execute(
                        """
                        INSERT INTO recurring_templates
                            (owner_id, title, category, priority, description,
                             location, duration, preparation_notes,
                             estimated_prep_time, tags, pattern,
                             custom_interval_days, start_date, end_date,
                             skip_dates, auto_create_days_before, is_active,
                             created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        values,
                    )
                    template.id = cursor.lastrowid
                else:
                    cursor = conn.execute(
                        """
                        UPDATE recurring_templates SET
                            owner_id = ?, title = ?, category = ?, priority = ?,
                            description = ?, location = ?, duration = ?,
                            preparation_notes = ?, estimated_prep_time = ?,
                            tags = ?, pattern = ?, custom_interval_days = ?,
                            start_date = ?, end_date = ?, skip_dates = ?,
                            auto_create_days_before = ?, is_active = ?,
                            created_at = ?, updated_at = ?
                        WHERE id = ?
                        """,
                        (*values, template.id),
                    )
                    if cursor.rowcount == 0:
                        raise StoreError(f"Template {template.id} no longer exists")

                # The log is append-only: persist only entries beyond what is stored
                stored = conn.execute(
                    "SELECT COUNT(*) FROM template_created_events WHERE template_id = ?",
                    (template.id,),
                ).fetchone()[0]
                new_entries = template.created_events[stored:]
                conn.executemany(
                    """
                    INSERT INTO template_created_events
                        (template_id, event_id, created_date, scheduled_date)
                    VALUES (?, ?, ?, ?)
                    """,
                    [
                        (template.id, e.event_id, e.created_date.isoformat(),
                         e.scheduled_date.isoformat())
                        for e in new_entries
                    ],
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to save template {template.id}: {exc}") from exc

        logger.debug(
            "Template #%d saved (%d new log entries)", template.id, len(new_entries),
        )
        return template

    def append_created_events(
        self, template_id: int, entries: list[CreatedEventEntry]
    ) -> None:
        """Append log entries to a template without touching its other columns."""
        try:
            with self._connect() as conn:
                exists = conn.execute(
                    "SELECT 1 FROM recurring_templates WHERE id = ?", (template_id,)
                ).fetchone()
                if exists is None:
                    raise StoreError(f"Template {template_id} no longer exists")
                conn.executemany(
                    """
                    INSERT INTO template_created_events
                        (template_id, event_id, created_date, scheduled_date)
                    VALUES (?, ?, ?, ?)
                    """,
                    [
                        (template_id, e.event_id, e.created_date.isoformat(),
                         e.scheduled_date.isoformat())
                        for e in entries
                    ],
                )
        except sqlite3.Error as exc:
            raise StoreError(
                f"Failed to append log entries to template {template_id}: {exc}"
            ) from exc

        logger.debug(
            "Template #%d: appended %d log entries", template_id, len(entries),
        )

    def delete_by_id(self, template_id: int) -> bool:
        """Permanently delete a template and its creation log."""
        try:
            with self._connect() as conn:
                conn.execute(
                    "DELETE FROM template_created_events WHERE template_id = ?",
                    (template_id,),
                )
                cursor = conn.execute(
                    "DELETE FROM recurring_templates WHERE id = ?", (template_id,),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to delete template {template_id}: {exc}") from exc
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Template #%d deleted", template_id)
        return deleted


class EventDB(_SQLiteStore):
    """SQLite-backed storage for concrete event instances."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id            INTEGER NOT NULL,
                    title               TEXT    NOT NULL,
                    category            TEXT    NOT NULL,
                    priority            INTEGER NOT NULL,
                    date_time           TEXT    NOT NULL,
                    end_date_time       TEXT,
                    description         TEXT    NOT NULL DEFAULT '',
                    location            TEXT    NOT NULL DEFAULT '',
                    preparation_notes   TEXT    NOT NULL DEFAULT '',
                    estimated_prep_time INTEGER NOT NULL DEFAULT 0,
                    tags                TEXT    NOT NULL DEFAULT '[]',
                    recurring_id        INTEGER,
                    is_recurring        INTEGER NOT NULL DEFAULT 0,
                    source_type         TEXT    NOT NULL,
                    status              TEXT    NOT NULL DEFAULT 'scheduled',
                    created_at          TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_recurring "
                "ON events (owner_id, recurring_id, date_time)"
            )
        logger.debug("Events table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> EventInstance:
        return EventInstance(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            category=row["category"],
            priority=row["priority"],
            date_time=_parse_ts(row["date_time"]),
            end_date_time=_parse_ts(row["end_date_time"]),
            description=row["description"],
            location=row["location"],
            preparation_notes=row["preparation_notes"],
            estimated_prep_time=row["estimated_prep_time"],
            tags=json.loads(row["tags"]),
            recurring_id=row["recurring_id"],
            is_recurring=bool(row["is_recurring"]),
            source_type=row["source_type"],
            status=row["status"],
            created_at=row["created_at"],
        )

    def find_one(
        self,
        owner_id: int,
        recurring_id: int,
        start: datetime,
        end: datetime,
    ) -> EventInstance | None:
        """Return an event of the template whose date_time lies in [start, end]."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT * FROM events
                    WHERE owner_id = ? AND recurring_id = ?
                      AND date_time >= ? AND date_time <= ?
                    ORDER BY date_time
                    LIMIT 1
                    """,
                    (owner_id, recurring_id, _ts(start), _ts(end)),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to look up events of template {recurring_id}: {exc}") from exc
        if row is None:
            return None
        return self._row_to_event(row)

    def get(self, event_id: int) -> EventInstance | None:
        """Fetch a single event by ID."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM events WHERE id = ?", (event_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to fetch event {event_id}: {exc}") from exc
        if row is None:
            return None
        return self._row_to_event(row)

    def find_for_template(
        self, owner_id: int, recurring_id: int
    ) -> list[EventInstance]:
        """Return all events of a template, earliest first."""
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT * FROM events
                    WHERE owner_id = ? AND recurring_id = ?
                    ORDER BY date_time
                    """,
                    (owner_id, recurring_id),
                ).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to list events of template {recurring_id}: {exc}") from exc
        return [self._row_to_event(r) for r in rows]

    def save(self, event: EventInstance) -> EventInstance:
        """Insert or update an event."""
        if not event.created_at:
            event.created_at = datetime.now().isoformat()

        values = (
            event.owner_id,
            event.title,
            event.category,
            event.priority,
            _ts(event.date_time),
            _ts(event.end_date_time),
            event.description,
            event.location,
            event.preparation_notes,
            event.estimated_prep_time,
            json.dumps(event.tags),
            event.recurring_id,
            int(event.is_recurring),
            event.source_type,
            event.status,
            event.created_at,
        )
        try:
            with self._connect() as conn:
                if event.id is None:
                    cursor = conn.execute(
                        """
                        INSERT INTO events
                            (owner_id, title, category, priority, date_time,
                             end_date_time, description, location,
                             preparation_notes, estimated_prep_time, tags,
                             recurring_id, is_recurring, source_type, status,
                             created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        values,
                    )
                    event.id = cursor.lastrowid
                else:
                    conn.execute(
                        """
                        UPDATE events SET
                            owner_id = ?, title = ?, category = ?, priority = ?,
                            date_time = ?, end_date_time = ?, description = ?,
                            location = ?, preparation_notes = ?,
                            estimated_prep_time = ?, tags = ?, recurring_id = ?,
                            is_recurring = ?, source_type = ?, status = ?,
                            created_at = ?
                        WHERE id = ?
                        """,
                        (*values, event.id),
                    )
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to save event: {exc}") from exc
        return event

    def delete_many(self, owner_id: int, recurring_id: int) -> int:
        """Delete every event generated by a template. Returns the count."""
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM events WHERE owner_id = ? AND recurring_id = ?",
                    (owner_id, recurring_id),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to delete events of template {recurring_id}: {exc}") from exc
        logger.info("Deleted %d events of template #%d", cursor.rowcount, recurring_id)
        return cursor.rowcount

    def detach_many(self, owner_id: int, recurring_id: int) -> int:
        """Clear the template reference on its events, keeping the events."""
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    UPDATE events SET recurring_id = NULL, is_recurring = 0
                    WHERE owner_id = ? AND recurring_id = ?
                    """,
                    (owner_id, recurring_id),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to detach events of template {recurring_id}: {exc}") from exc
        logger.info("Detached %d events from template #%d", cursor.rowcount, recurring_id)
        return cursor.rowcount
