"""Tests for src.data.db — TemplateDB and EventDB (SQLite storage)."""

import sqlite3
from datetime import date, datetime, timedelta
from unittest.mock import patch

import pytest

from src.data.db import EventDB, TemplateDB
from src.data.models import (
    BaseEvent,
    CreatedEventEntry,
    EventInstance,
    RecurrenceRule,
    RecurringTemplate,
)
from src.ports.store_port import StoreError


def _template(owner_id: int = 111, **rule_overrides) -> RecurringTemplate:
    rule = {
        "pattern": "weekly",
        "start_date": datetime(2024, 1, 1, 9, 0),
        "end_date": date(2024, 1, 31),
    }
    rule.update(rule_overrides)
    return RecurringTemplate(
        id=None,
        owner_id=owner_id,
        base_event=BaseEvent(
            title="Study group", category="academic", priority=3,
            tags=["math", "exam"],
        ),
        recurrence=RecurrenceRule(**rule),
    )


def _event(owner_id: int = 111, recurring_id: int | None = 1, when=None) -> EventInstance:
    return EventInstance(
        id=None,
        owner_id=owner_id,
        title="Study group",
        category="academic",
        priority=3,
        date_time=when or datetime(2024, 1, 1, 9, 0),
        recurring_id=recurring_id,
        is_recurring=recurring_id is not None,
        source_type="recurring_template",
    )


class TestTemplateDBSaveAndGet:
    def test_save_assigns_id_and_timestamps(self, template_db):
        template = template_db.save(_template())
        assert template.id is not None
        assert template.created_at
        assert template.updated_at

    def test_round_trip(self, template_db):
        saved = template_db.save(
            _template(skip_dates=[date(2024, 1, 15), date(2024, 1, 8)],
                      custom_interval_days=None)
        )
        fetched = template_db.get(saved.id)
        assert fetched.base_event.title == "Study group"
        assert fetched.base_event.tags == ["math", "exam"]
        assert fetched.base_event.duration == 60
        assert fetched.recurrence.start_date == datetime(2024, 1, 1, 9, 0)
        assert fetched.recurrence.end_date == date(2024, 1, 31)
        assert fetched.recurrence.skip_dates == [date(2024, 1, 8), date(2024, 1, 15)]
        assert fetched.is_active is True

    def test_open_ended_rule(self, template_db):
        saved = template_db.save(_template(end_date=None))
        assert template_db.get(saved.id).recurrence.end_date is None

    def test_get_not_found(self, template_db):
        assert template_db.get(999) is None

    def test_get_scoped_to_owner(self, template_db):
        saved = template_db.save(_template(owner_id=111))
        assert template_db.get(saved.id, owner_id=111) is not None
        assert template_db.get(saved.id, owner_id=222) is None

    def test_update_existing(self, template_db):
        saved = template_db.save(_template())
        saved.base_event.title = "Renamed"
        saved.is_active = False
        template_db.save(saved)
        fetched = template_db.get(saved.id)
        assert fetched.base_event.title == "Renamed"
        assert fetched.is_active is False

    def test_saving_deleted_template_raises(self, template_db):
        saved = template_db.save(_template())
        template_db.delete_by_id(saved.id)
        saved.created_events.append(
            CreatedEventEntry(1, datetime(2024, 1, 1), datetime(2024, 1, 1, 9, 0))
        )
        with pytest.raises(StoreError, match="no longer exists"):
            template_db.save(saved)


class TestTemplateDBCreatedEvents:
    def test_log_entries_persist_in_order(self, template_db):
        template = template_db.save(_template())
        for i in range(3):
            template.created_events.append(
                CreatedEventEntry(
                    event_id=10 + i,
                    created_date=datetime(2023, 12, 31, 8, 0),
                    scheduled_date=datetime(2024, 1, 1 + 7 * i, 9, 0),
                )
            )
        template_db.save(template)
        fetched = template_db.get(template.id)
        assert [e.event_id for e in fetched.created_events] == [10, 11, 12]

    def test_resaving_does_not_duplicate_log(self, template_db):
        template = template_db.save(_template())
        template.created_events.append(
            CreatedEventEntry(1, datetime(2024, 1, 1), datetime(2024, 1, 1, 9, 0))
        )
        template_db.save(template)
        template_db.save(template)
        assert len(template_db.get(template.id).created_events) == 1

    def test_delete_removes_template_and_log(self, template_db):
        template = template_db.save(_template())
        template.created_events.append(
            CreatedEventEntry(1, datetime(2024, 1, 1), datetime(2024, 1, 1, 9, 0))
        )
        template_db.save(template)
        assert template_db.delete_by_id(template.id) is True
        assert template_db.get(template.id) is None
        assert template_db.delete_by_id(template.id) is False

    def test_append_leaves_other_columns_alone(self, template_db):
        template = template_db.save(_template())
        stale = template_db.get(template.id)

        template.is_active = False
        template.base_event.title = "Renamed"
        template_db.save(template)

        template_db.append_created_events(
            stale.id,
            [CreatedEventEntry(7, datetime(2023, 12, 31, 8, 0), datetime(2024, 1, 1, 9, 0))],
        )
        fetched = template_db.get(template.id)
        assert fetched.is_active is False
        assert fetched.base_event.title == "Renamed"
        assert [e.event_id for e in fetched.created_events] == [7]

    def test_append_accumulates(self, template_db):
        template = template_db.save(_template())
        for event_id in (1, 2):
            template_db.append_created_events(
                template.id,
                [CreatedEventEntry(event_id, datetime(2024, 1, 1), datetime(2024, 1, 1, 9, 0))],
            )
        assert [e.event_id for e in template_db.get(template.id).created_events] == [1, 2]

    def test_append_to_deleted_template_raises(self, template_db):
        template = template_db.save(_template())
        template_db.delete_by_id(template.id)
        with pytest.raises(StoreError, match="no longer exists"):
            template_db.append_created_events(
                template.id,
                [CreatedEventEntry(1, datetime(2024, 1, 1), datetime(2024, 1, 1, 9, 0))],
            )


class TestTemplateDBFind:
    def test_active_only(self, template_db):
        a = template_db.save(_template())
        b = template_db.save(_template())
        b.is_active = False
        template_db.save(b)
        assert [t.id for t in template_db.find()] == [a.id]
        assert len(template_db.find(active_only=False)) == 2

    def test_filters_by_owner(self, template_db):
        template_db.save(_template(owner_id=111))
        template_db.save(_template(owner_id=222))
        templates = template_db.find(owner_id=111)
        assert len(templates) == 1
        assert templates[0].owner_id == 111

    def test_not_ended_before_keeps_open_ended(self, template_db):
        ended = template_db.save(_template(end_date=date(2023, 6, 30)))
        open_ended = template_db.save(_template(end_date=None))
        running = template_db.save(_template(end_date=date(2024, 1, 31)))
        ids = {t.id for t in template_db.find(not_ended_before=date(2024, 1, 1))}
        assert ids == {open_ended.id, running.id}
        assert ended.id not in ids

    def test_newest_first(self, template_db):
        first = template_db.save(_template())
        second = template_db.save(_template())
        assert [t.id for t in template_db.find()] == [second.id, first.id]


class TestTemplateDBMigration:
    def test_migration_adds_columns_to_old_schema(self, tmp_db_path):
        """Simulate an old DB without the prep/tag columns, verify migration works."""
        conn = sqlite3.connect(tmp_db_path)
        conn.execute("""
            CREATE TABLE recurring_templates (
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
        conn.execute(
            """
            INSERT INTO recurring_templates
                (owner_id, title, category, priority, pattern, start_date,
                 created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (111, "Old template", "meeting", 2, "monthly", "2024-01-01T10:00:00",
             "2023-12-01T00:00:00", "2023-12-01T00:00:00"),
        )
        conn.commit()
        conn.close()

        db = TemplateDB(db_path=tmp_db_path)
        templates = db.find()
        assert len(templates) == 1
        assert templates[0].base_event.title == "Old template"
        assert templates[0].base_event.tags == []
        assert templates[0].base_event.preparation_notes == ""
        assert templates[0].base_event.estimated_prep_time == 0


class TestEventDB:
    def test_save_and_get(self, event_db):
        saved = event_db.save(_event())
        fetched = event_db.get(saved.id)
        assert fetched.date_time == datetime(2024, 1, 1, 9, 0)
        assert fetched.is_recurring is True
        assert fetched.source_type == "recurring_template"
        assert fetched.status == "scheduled"

    def test_find_one_within_window(self, event_db):
        event_db.save(_event(when=datetime(2024, 1, 1, 9, 3)))
        center = datetime(2024, 1, 1, 9, 0)
        window = timedelta(minutes=5)
        found = event_db.find_one(111, 1, center - window, center + window)
        assert found is not None
        assert found.date_time == datetime(2024, 1, 1, 9, 3)

    def test_find_one_outside_window(self, event_db):
        event_db.save(_event(when=datetime(2024, 1, 1, 9, 6)))
        center = datetime(2024, 1, 1, 9, 0)
        window = timedelta(minutes=5)
        assert event_db.find_one(111, 1, center - window, center + window) is None

    def test_find_one_window_bounds_inclusive(self, event_db):
        event_db.save(_event(when=datetime(2024, 1, 1, 9, 5)))
        center = datetime(2024, 1, 1, 9, 0)
        window = timedelta(minutes=5)
        assert event_db.find_one(111, 1, center - window, center + window) is not None

    def test_find_one_handles_sub_second_precision(self, event_db):
        event_db.save(_event(when=datetime(2024, 1, 1, 9, 4, 59, 999999)))
        center = datetime(2024, 1, 1, 9, 0)
        window = timedelta(minutes=5)
        assert event_db.find_one(111, 1, center - window, center + window) is not None

    def test_find_one_scoped_to_owner_and_template(self, event_db):
        event_db.save(_event(owner_id=222))
        event_db.save(_event(recurring_id=2))
        center = datetime(2024, 1, 1, 9, 0)
        window = timedelta(minutes=5)
        assert event_db.find_one(111, 1, center - window, center + window) is None

    def test_find_for_template_earliest_first(self, event_db):
        event_db.save(_event(when=datetime(2024, 1, 15, 9, 0)))
        event_db.save(_event(when=datetime(2024, 1, 1, 9, 0)))
        event_db.save(_event(when=datetime(2024, 1, 8, 9, 0)))
        events = event_db.find_for_template(111, 1)
        assert [e.date_time.day for e in events] == [1, 8, 15]

    def test_delete_many(self, event_db):
        event_db.save(_event())
        event_db.save(_event(when=datetime(2024, 1, 8, 9, 0)))
        other = event_db.save(_event(recurring_id=2))
        assert event_db.delete_many(111, 1) == 2
        assert event_db.find_for_template(111, 1) == []
        assert event_db.get(other.id) is not None

    def test_detach_many_keeps_events(self, event_db):
        saved = event_db.save(_event())
        assert event_db.detach_many(111, 1) == 1
        fetched = event_db.get(saved.id)
        assert fetched is not None
        assert fetched.recurring_id is None
        assert fetched.is_recurring is False


class TestStoreErrors:
    def test_sqlite_failure_raises_store_error(self, event_db):
        with patch.object(EventDB, "_connect", side_effect=sqlite3.OperationalError("disk I/O error")):
            with pytest.raises(StoreError, match="disk I/O error"):
                event_db.find_one(111, 1, datetime(2024, 1, 1), datetime(2024, 1, 2))

    def test_template_save_failure_raises_store_error(self, template_db):
        with patch.object(TemplateDB, "_connect", side_effect=sqlite3.OperationalError("locked")):
            with pytest.raises(StoreError):
                template_db.save(_template())
