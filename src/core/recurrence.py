"""
Recurring Events — Recurrence Engine.

Expands a recurrence rule into the ordered candidate occurrences that fall
between the rule's start and the lookahead horizon.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from src.core.errors import LogicBoundsError
from src.data.models import RecurrenceRule

logger = logging.getLogger(__name__)

MAX_INSTANCES = 50
DEFAULT_CUSTOM_INTERVAL_DAYS = 7

_FIXED_STEPS = {
    "weekly": 7,
    "biweekly": 14,
}


@dataclass
class Candidate:
    """A computed occurrence, before existence checking."""

    scheduled_date: datetime
    scheduled_end_date: datetime | None = None


def step_days(rule: RecurrenceRule) -> int | None:
    """Day step of a fixed-interval pattern, or None for monthly."""
    if rule.pattern == "monthly":
        return None
    if rule.pattern == "custom":
        return rule.custom_interval_days or DEFAULT_CUSTOM_INTERVAL_DAYS
    # Unknown patterns repeat weekly
    return _FIXED_STEPS.get(rule.pattern, 7)


def occurrence_at(rule: RecurrenceRule, index: int) -> datetime:
    """Return the index-th occurrence on the rule's grid (0 = start_date).

    Monthly occurrences are offset from start_date rather than from the
    previous occurrence, so a day-31 rule clamps in short months
    (Jan 31 -> Feb 29 -> Mar 31) without drifting.
    """
    days = step_days(rule)
    if days is None:
        return rule.start_date + relativedelta(months=index)
    return rule.start_date + timedelta(days=days * index)


def generate_candidates(
    rule: RecurrenceRule,
    horizon: datetime,
    now: datetime,
    duration_minutes: int | None = None,
    max_instances: int = MAX_INSTANCES,
    strict: bool = False,
) -> list[Candidate]:
    """Expand `rule` into candidates up to min(end_date, horizon).

    Candidates before `now` or on a skipped date are not emitted. Output is
    ordered by date and capped at `max_instances` emitted candidates.

    Args:
        rule: The recurrence rule to expand.
        horizon: Forward bound of this expansion.
        now: Reference instant for the past-date filter.
        duration_minutes: When set, each candidate gets an end date.
        max_instances: Safety ceiling on emitted candidates.
        strict: Raise LogicBoundsError instead of truncating silently.

    Returns:
        Candidates in ascending scheduled_date order.
    """
    skip = set(rule.skip_dates)
    candidates: list[Candidate] = []

    if rule.end_date is not None and rule.start_date.date() > rule.end_date:
        return candidates

    index = 0
    current = rule.start_date
    while current <= horizon and (rule.end_date is None or current.date() <= rule.end_date):
        if len(candidates) >= max_instances:
            logger.warning(
                "Recurrence expansion truncated at %d candidates (next would be %s)",
                max_instances, current.isoformat(),
            )
            if strict:
                raise LogicBoundsError(max_instances)
            break

        if current >= now and current.date() not in skip:
            end = None
            if duration_minutes:
                end = current + timedelta(minutes=duration_minutes)
            candidates.append(Candidate(scheduled_date=current, scheduled_end_date=end))

        index += 1
        current = occurrence_at(rule, index)

    return candidates
