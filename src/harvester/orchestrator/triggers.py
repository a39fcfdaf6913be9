"""Cron due-slot evaluation against a caller-supplied reference clock.

A cron task is due when the most recent scheduled fire time at or before
the reference instant (its *due slot*) is

1. recent: within ``window`` before the reference instant, and
2. unserved: the task's ``last_run`` is unset or strictly older than it.

The window absorbs jitter of the external scheduler calling
``trigger_all_enabled_cron_tasks``: it must be at least that scheduler's
tick interval or slots can fall between two ticks. The ``last_run``
comparison makes firing idempotent per slot when ticks are more frequent
than the cron interval.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional

from croniter import croniter

from .exceptions import CronExpressionError

logger = logging.getLogger(__name__)

DEFAULT_DUE_WINDOW = timedelta(seconds=65)


def ensure_aware(value: datetime, tz: tzinfo = timezone.utc) -> datetime:
    """Attach ``tz`` to naive datetimes; aware datetimes pass through."""
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def validate_expression(expression: str) -> None:
    """Raise CronExpressionError if ``expression`` cannot be parsed."""
    try:
        croniter(expression)
    except (ValueError, TypeError, KeyError) as exc:
        raise CronExpressionError(expression, str(exc)) from exc


def find_due_slot(expression: str, reference_time: datetime, tz: tzinfo = timezone.utc) -> datetime:
    """Return the most recent fire time at or before ``reference_time``.

    A reference instant that falls exactly on a fire time is its own slot.

    Raises:
        CronExpressionError: If the expression cannot be parsed
    """
    reference = ensure_aware(reference_time, tz).astimezone(tz)
    try:
        previous = croniter(expression, reference).get_prev(datetime)
        following = croniter(expression, previous).get_next(datetime)
    except (ValueError, TypeError, KeyError) as exc:
        raise CronExpressionError(expression, str(exc)) from exc
    if following <= reference:
        return following
    return previous


def next_fire_time(expression: str, after: datetime, tz: tzinfo = timezone.utc) -> datetime:
    """Return the first fire time strictly after ``after``."""
    reference = ensure_aware(after, tz).astimezone(tz)
    try:
        return croniter(expression, reference).get_next(datetime)
    except (ValueError, TypeError, KeyError) as exc:
        raise CronExpressionError(expression, str(exc)) from exc


@dataclass(frozen=True)
class DueEvaluation:
    """Outcome of evaluating one cron task against a reference instant."""

    due: bool
    slot: datetime
    reference_time: datetime
    window_start: datetime
    last_run: Optional[datetime]

    def describe(self) -> str:
        last = self.last_run.isoformat() if self.last_run else "never"
        return (
            f"slot={self.slot.isoformat()} reference={self.reference_time.isoformat()} "
            f"window_start={self.window_start.isoformat()} last_run={last}"
        )


def evaluate_cron(
    expression: str,
    reference_time: datetime,
    last_run: Optional[datetime],
    *,
    window: timedelta = DEFAULT_DUE_WINDOW,
    tz: tzinfo = timezone.utc,
) -> DueEvaluation:
    """Evaluate the dual due condition for one cron task.

    Raises:
        CronExpressionError: If the expression cannot be parsed
    """
    reference = ensure_aware(reference_time, tz)
    slot = find_due_slot(expression, reference, tz)
    window_start = reference - window
    last = ensure_aware(last_run, tz) if last_run is not None else None

    recent = window_start < slot <= reference
    unserved = last is None or last < slot
    return DueEvaluation(
        due=recent and unserved,
        slot=slot,
        reference_time=reference,
        window_start=window_start,
        last_run=last,
    )


def is_due(
    expression: str,
    reference_time: datetime,
    last_run: Optional[datetime],
    *,
    window: timedelta = DEFAULT_DUE_WINDOW,
    tz: tzinfo = timezone.utc,
) -> bool:
    return evaluate_cron(expression, reference_time, last_run, window=window, tz=tz).due


__all__ = [
    "DEFAULT_DUE_WINDOW",
    "DueEvaluation",
    "ensure_aware",
    "evaluate_cron",
    "find_due_slot",
    "is_due",
    "next_fire_time",
    "validate_expression",
]
