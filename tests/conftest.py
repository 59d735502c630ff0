"""Shared test fixtures and configuration.

Sets up environment variables before src.config loads, and provides common
fixtures like temp-file stores and a fixed clock.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("LOOKAHEAD_DAYS", "14")
os.environ.setdefault("MATCH_TOLERANCE_MINUTES", "5")

from datetime import datetime

import pytest

# 2023-12-31 08:00 — the day before the standard test rule starts
FIXED_NOW = datetime(2023, 12, 31, 8, 0)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_events.db")


@pytest.fixture
def template_db(tmp_db_path):
    """Return a TemplateDB instance backed by a temp file."""
    from src.data.db import TemplateDB
    return TemplateDB(db_path=tmp_db_path)


@pytest.fixture
def event_db(tmp_db_path):
    """Return an EventDB instance sharing the template DB file."""
    from src.data.db import EventDB
    return EventDB(db_path=tmp_db_path)


@pytest.fixture
def clock():
    """A fixed 'now' for deterministic expansion."""
    return lambda: FIXED_NOW


@pytest.fixture
def template_data():
    """A valid create payload: weekly on Mondays 09:00 through January 2024."""
    return {
        "base_event": {
            "title": "Study group",
            "category": "academic",
            "priority": 3,
            "location": "Library",
            "duration": 60,
        },
        "recurrence": {
            "pattern": "weekly",
            "start_date": "2024-01-01T09:00:00",
            "end_date": "2024-01-31",
        },
    }


@pytest.fixture
def service(template_db, event_db):
    from src.core.template_service import TemplateService
    return TemplateService(template_db, event_db)


@pytest.fixture
def reconciler(template_db, event_db, clock):
    """Reconciler whose horizon covers the whole January test rule."""
    from src.core.reconciler import Reconciler
    return Reconciler(template_db, event_db, clock=clock, lookahead_days=45)
