"""Errors raised by the recurrence core."""

from __future__ import annotations


class ValidationError(Exception):
    """Raised when a lifecycle request is invalid or targets a missing template."""


class LogicBoundsError(Exception):
    """Raised in strict mode when expansion hits the safety ceiling."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Recurrence expansion stopped at the {limit}-instance ceiling")
        self.limit = limit
