"""Read-side aggregations for dashboards, alerts and the tracker.

Everything here is a pure function over rows that were already loaded; nothing
mutates state, and results are plain dicts ready for any transport layer.
"""

from __future__ import annotations

import math
from collections import Counter
from datetime import datetime
from typing import Any, Iterable, Optional

import assignments as assignment_rules
from documents import percent, verification_summary
from evaluations import average_score
from models import as_utc, utcnow
from states import IN_PROGRESS_STATUSES, ApplicationStatus, StageStatus

RECENT_LIMIT = 10
CHART_MONTHS = 12


def _field(row: Any, name: str, default: Any = None) -> Any:
    if isinstance(row, dict):
        return row.get(name, default)
    return getattr(row, name, default)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def _str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _newest_first(applications: Iterable[Any]) -> list[Any]:
    return sorted(applications, key=lambda a: as_utc(_field(a, "created_at")), reverse=True)


def application_summary(app: Any) -> dict[str, Any]:
    address = _field(app, "address")
    state = _field(app, "state")
    return {
        "id": _str(_field(app, "id")),
        "application_number": _field(app, "application_number"),
        "application_type": _field(app, "application_type"),
        "status": _field(app, "status"),
        "institution_name": _field(app, "institution_name"),
        "location": ", ".join(part for part in (address, state) if part),
        "course_name": _field(app, "course_name"),
        "intake": _field(app, "intake"),
        "submitted_at": _iso(_field(app, "submitted_at")),
        "created_at": _iso(_field(app, "created_at")),
        "updated_at": _iso(_field(app, "updated_at")),
    }


def stage_view(stage: Any) -> dict[str, Any]:
    return {
        "position": _field(stage, "position"),
        "title": _field(stage, "title"),
        "description": _field(stage, "description"),
        "status": _field(stage, "status"),
        "assigned_to": _field(stage, "assigned_to"),
        "completed_at": _iso(_field(stage, "completed_at")),
    }


def document_view(doc: Any) -> dict[str, Any]:
    return {
        "id": _str(_field(doc, "id")),
        "category": _field(doc, "category"),
        "file_name": _field(doc, "file_name"),
        "file_size": _field(doc, "file_size"),
        "file_url": _field(doc, "file_url"),
        "status": _field(doc, "status"),
        "reviewed_at": _iso(_field(doc, "reviewed_at")),
    }


def assignment_view(assignment: Any) -> dict[str, Any]:
    return {
        "id": _str(_field(assignment, "id")),
        "evaluator_id": _str(_field(assignment, "evaluator_id")),
        "priority": _field(assignment, "priority"),
        "deadline": _iso(_field(assignment, "deadline")),
        "assigned_at": _iso(_field(assignment, "assigned_at")),
        "completed_at": _iso(_field(assignment, "completed_at")),
    }


def evaluation_view(evaluation: Any) -> dict[str, Any]:
    return {
        "id": _str(_field(evaluation, "id")),
        "assignment_id": _str(_field(evaluation, "assignment_id")),
        "evaluator_id": _str(_field(evaluation, "evaluator_id")),
        "score": _field(evaluation, "score"),
        "recommendation": _field(evaluation, "recommendation"),
        "comments": _field(evaluation, "comments"),
        "site_visit_notes": _field(evaluation, "site_visit_notes"),
        "created_at": _iso(_field(evaluation, "created_at")),
    }


def _current_stage_title(stages: Iterable[Any]) -> Optional[str]:
    for stage in stages:
        if _field(stage, "status") == StageStatus.CURRENT:
            return _field(stage, "title")
    return None


def application_detail(app: Any) -> dict[str, Any]:
    stages = list(_field(app, "stages", []) or [])
    docs = list(_field(app, "documents", []) or [])
    evaluations = list(_field(app, "evaluations", []) or [])
    return {
        **application_summary(app),
        "address": _field(app, "address"),
        "state": _field(app, "state"),
        "description": _field(app, "description"),
        "documents": [document_view(d) for d in docs],
        "verification": verification_summary(docs),
        "timeline": [stage_view(s) for s in stages],
        "current_stage": _current_stage_title(stages),
        "assignments": [assignment_view(a) for a in _field(app, "assignments", []) or []],
        "evaluations": [evaluation_view(e) for e in evaluations],
        "average_score": average_score(evaluations),
    }


def tracker_entry(app: Any) -> dict[str, Any]:
    docs = list(_field(app, "documents", []) or [])
    summary = verification_summary(docs)
    return {
        **application_summary(app),
        "documents": [document_view(d) for d in docs],
        "approved_docs": summary["approved"],
        "rejected_docs": summary["rejected"],
        "pending_docs": summary["pending"],
        "verification_progress": summary["progress"],
        "current_stage": _current_stage_title(_field(app, "stages", []) or []),
    }


def tracker_view(applications: Iterable[Any]) -> list[dict[str, Any]]:
    return [tracker_entry(app) for app in _newest_first(applications)]


def status_counts(applications: Iterable[Any]) -> Counter:
    return Counter(_field(app, "status") for app in applications)


def approval_rate(applications: Iterable[Any]) -> int:
    """Approved share of all applications, as a whole percentage."""
    rows = list(applications)
    approved = sum(1 for app in rows if _field(app, "status") == ApplicationStatus.APPROVED)
    return percent(approved, len(rows))


def average_processing_days(applications: Iterable[Any]) -> int:
    """Mean submit-to-last-update span of approved applications, floored to whole days."""
    spans = []
    for app in applications:
        if _field(app, "status") != ApplicationStatus.APPROVED:
            continue
        submitted = as_utc(_field(app, "submitted_at"))
        updated = as_utc(_field(app, "updated_at"))
        if submitted is None or updated is None:
            continue
        spans.append((updated - submitted).total_seconds())
    if not spans:
        return 0
    return max(0, math.floor(sum(spans) / len(spans) / 86400))


def workflow_distribution(applications: Iterable[Any]) -> list[dict[str, Any]]:
    counts = status_counts(applications)
    return [
        {"stage": status.value, "count": counts[status.value]}
        for status in ApplicationStatus
        if counts[status.value]
    ]


def monthly_chart(applications: Iterable[Any], months: int = CHART_MONTHS) -> list[dict[str, Any]]:
    """Applications created per calendar month; the most recent ``months`` months with data, oldest first."""
    buckets: Counter = Counter()
    for app in applications:
        created = as_utc(_field(app, "created_at"))
        if created is not None:
            buckets[(created.year, created.month)] += 1
    keys = sorted(buckets)[-months:]
    return [
        {"name": datetime(year, month, 1).strftime("%b %Y"), "applications": buckets[(year, month)]}
        for year, month in keys
    ]


def institution_dashboard(applications: Iterable[Any]) -> dict[str, Any]:
    rows = _newest_first(applications)
    counts = status_counts(rows)
    return {
        "stats": {
            "total": len(rows),
            "in_progress": sum(counts[s.value] for s in IN_PROGRESS_STATUSES),
            "approved": counts[ApplicationStatus.APPROVED.value],
            "rejected": counts[ApplicationStatus.REJECTED.value],
        },
        "applications": [application_summary(app) for app in rows[:RECENT_LIMIT]],
    }


def evaluator_dashboard(assignments: Iterable[Any], now: Optional[datetime] = None) -> dict[str, Any]:
    now = now or utcnow()
    open_rows = [a for a in assignments if assignment_rules.is_open(a)]
    open_rows.sort(key=lambda a: as_utc(_field(a, "assigned_at")), reverse=True)
    items = []
    for assignment in open_rows:
        app = _field(assignment, "application")
        items.append(
            {
                **assignment_view(assignment),
                **{key: value for key, value in application_summary(app).items() if key != "id"},
                "application_id": _str(_field(app, "id")),
            }
        )
    return {
        "stats": {
            "assigned": len(open_rows),
            "pending": sum(1 for a in open_rows if assignment_rules.is_pending(a, now)),
            "upcoming": sum(1 for a in open_rows if assignment_rules.is_upcoming(a, now)),
        },
        "assignments": items,
    }


def admin_dashboard(applications: Iterable[Any], active_evaluators: int) -> dict[str, Any]:
    rows = list(applications)
    return {
        "stats": {
            "total_applications": len(rows),
            "active_evaluators": active_evaluators,
            "approval_rate": approval_rate(rows),
            "avg_processing_days": average_processing_days(rows),
        },
        "chart_data": monthly_chart(rows),
        "workflow_stages": workflow_distribution(rows),
    }


def admin_alerts(
    applications: Iterable[Any],
    assignments: Iterable[Any],
    now: Optional[datetime] = None,
) -> list[dict[str, str]]:
    now = now or utcnow()
    apps = list(applications)
    rows = list(assignments)
    assigned_app_ids = {_field(a, "application_id") for a in rows}

    unassigned = sum(
        1
        for app in apps
        if _field(app, "status") == ApplicationStatus.UNDER_EVALUATION and _field(app, "id") not in assigned_app_ids
    )
    due_this_week = sum(1 for a in rows if assignment_rules.is_upcoming(a, now))
    nearing = sum(1 for a in rows if assignment_rules.is_nearing_deadline(a, now))
    awaiting_review = sum(1 for app in apps if _field(app, "status") == ApplicationStatus.SUBMITTED)

    alerts = []
    if unassigned:
        alerts.append(
            {"type": "warning", "message": f"{unassigned} applications pending evaluator assignment", "action": "Assign Evaluators"}
        )
    if due_this_week:
        alerts.append({"type": "info", "message": f"{due_this_week} evaluations due in next week", "action": "View Schedule"})
    if nearing:
        alerts.append({"type": "warning", "message": f"{nearing} evaluations nearing deadline", "action": "Review"})
    if awaiting_review:
        alerts.append(
            {"type": "info", "message": f"{awaiting_review} new applications awaiting initial review", "action": "Review"}
        )
    return alerts
