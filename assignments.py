from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from errors import ValidationError
from models import Application, EvaluatorAssignment, as_utc, utcnow
from states import Priority

UPCOMING_WINDOW = timedelta(days=7)
NEARING_DEADLINE_WINDOW = timedelta(days=3)


def _field(row: Any, name: str, default: Any = None) -> Any:
    if isinstance(row, dict):
        return row.get(name, default)
    return getattr(row, name, default)


def parse_priority(value: Optional[str]) -> Priority:
    if value is None or value == "":
        return Priority.MEDIUM
    try:
        return Priority(str(value).lower())
    except ValueError as exc:
        raise ValidationError(f"Priority must be one of low, medium, high (got '{value}')") from exc


def create(
    application: Application,
    evaluator_id: uuid.UUID,
    priority: Optional[str] = None,
    deadline: Optional[datetime] = None,
) -> EvaluatorAssignment:
    # Always a new row: re-assigning the same evaluator is allowed.
    return EvaluatorAssignment(
        application=application,
        evaluator_id=evaluator_id,
        priority=parse_priority(priority).value,
        deadline=as_utc(deadline),
        assigned_at=utcnow(),
    )


def complete(assignment: EvaluatorAssignment, when: Optional[datetime] = None) -> bool:
    """Stamp completion once. Returns False when the assignment was already complete."""
    if assignment.completed_at is not None:
        return False
    assignment.completed_at = when or utcnow()
    return True


def is_open(assignment: Any) -> bool:
    return _field(assignment, "completed_at") is None


def is_pending(assignment: Any, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    deadline = as_utc(_field(assignment, "deadline"))
    return is_open(assignment) and (deadline is None or deadline > now)


def is_upcoming(assignment: Any, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    deadline = as_utc(_field(assignment, "deadline"))
    return is_open(assignment) and deadline is not None and now <= deadline <= now + UPCOMING_WINDOW


def is_nearing_deadline(assignment: Any, now: Optional[datetime] = None) -> bool:
    # Overdue assignments stay in this bucket until they are completed.
    now = now or utcnow()
    deadline = as_utc(_field(assignment, "deadline"))
    return is_open(assignment) and deadline is not None and deadline <= now + NEARING_DEADLINE_WINDOW


def deadline_buckets(assignments: Iterable[Any], now: Optional[datetime] = None) -> dict[str, int]:
    now = now or utcnow()
    rows = list(assignments)
    return {
        "open": sum(1 for a in rows if is_open(a)),
        "pending": sum(1 for a in rows if is_pending(a, now)),
        "upcoming": sum(1 for a in rows if is_upcoming(a, now)),
        "nearing_deadline": sum(1 for a in rows if is_nearing_deadline(a, now)),
    }
