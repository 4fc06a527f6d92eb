from datetime import datetime, timedelta, timezone

import pytest

import dashboards
from errors import ForbiddenError
from models import utcnow

NOW = datetime(2025, 3, 10, tzinfo=timezone.utc)


def app_row(status: str, created: datetime, submitted=None, updated=None, **extra) -> dict:
    return {
        "id": extra.pop("id", f"{status}-{created.isoformat()}"),
        "application_number": extra.pop("application_number", "AICTE/2025/001"),
        "status": status,
        "created_at": created,
        "submitted_at": submitted,
        "updated_at": updated or created,
        **extra,
    }


def test_approval_rate_and_processing_days() -> None:
    rows = [
        app_row("approved", NOW, submitted=NOW - timedelta(days=40), updated=NOW - timedelta(days=10)),
        app_row("approved", NOW, submitted=NOW - timedelta(days=20), updated=NOW - timedelta(days=9, hours=12)),
        app_row("rejected", NOW, submitted=NOW - timedelta(days=5), updated=NOW),
    ]

    assert dashboards.approval_rate(rows) == 67
    assert dashboards.average_processing_days(rows) == 20
    assert dashboards.approval_rate([]) == 0
    assert dashboards.average_processing_days(rows[2:]) == 0


def test_workflow_distribution_skips_empty_statuses() -> None:
    rows = [app_row("submitted", NOW), app_row("submitted", NOW), app_row("approved", NOW)]

    assert dashboards.workflow_distribution(rows) == [
        {"stage": "submitted", "count": 2},
        {"stage": "approved", "count": 1},
    ]


def test_monthly_chart_keeps_latest_months_oldest_first() -> None:
    rows = [app_row("draft", datetime(2024, month, 3, tzinfo=timezone.utc)) for month in range(1, 13)]
    rows += [app_row("draft", datetime(2025, 1, 9)), app_row("draft", datetime(2025, 1, 20))]

    chart = dashboards.monthly_chart(rows)

    assert len(chart) == 12
    assert chart[0] == {"name": "Feb 2024", "applications": 1}
    assert chart[-1] == {"name": "Jan 2025", "applications": 2}


def test_institution_dashboard_counts() -> None:
    rows = [app_row(status, NOW - timedelta(days=idx)) for idx, status in enumerate(
        ["draft", "submitted", "scrutiny", "under_evaluation", "approved", "rejected", "rejected"]
    )]

    dashboard = dashboards.institution_dashboard(rows)

    assert dashboard["stats"] == {"total": 7, "in_progress": 3, "approved": 1, "rejected": 2}
    assert dashboard["applications"][0]["status"] == "draft"


def test_admin_alerts_only_reports_nonzero_counts() -> None:
    apps = [
        app_row("under_evaluation", NOW, id="a1"),
        app_row("under_evaluation", NOW, id="a2"),
        app_row("submitted", NOW, id="a3"),
    ]
    assignments = [
        {"application_id": "a1", "deadline": NOW + timedelta(days=2), "completed_at": None},
        {"application_id": "a1", "deadline": NOW + timedelta(days=6), "completed_at": None},
        {"application_id": "a1", "deadline": NOW + timedelta(days=1), "completed_at": NOW},
    ]

    alerts = dashboards.admin_alerts(apps, assignments, NOW)

    assert [a["message"] for a in alerts] == [
        "1 applications pending evaluator assignment",
        "2 evaluations due in next week",
        "1 evaluations nearing deadline",
        "1 new applications awaiting initial review",
    ]
    assert dashboards.admin_alerts([], [], NOW) == []


def test_tracker_entry_reports_verification(workflow, people, assignment) -> None:
    detail = workflow.get_application(people["admin"], assignment.application_id)
    workflow.review_document(people["evaluator"], detail["documents"][0]["id"], "approved")

    tracker = workflow.get_tracker_view(people["institution"])

    assert len(tracker) == 1
    entry = tracker[0]
    assert (entry["approved_docs"], entry["rejected_docs"], entry["pending_docs"]) == (1, 0, 4)
    assert entry["verification_progress"] == 20
    assert entry["current_stage"] == "Site Visit & Evaluation"


def test_dashboard_stats_per_role(workflow, people, assignment) -> None:
    workflow.create_application(people["institution"], "new-institution")

    institution = workflow.get_dashboard_stats(people["institution"])
    assert institution["stats"] == {"total": 2, "in_progress": 1, "approved": 0, "rejected": 0}

    evaluator = workflow.get_dashboard_stats(people["evaluator"])
    assert evaluator["stats"] == {"assigned": 1, "pending": 1, "upcoming": 1}
    assert evaluator["assignments"][0]["application_id"] == str(assignment.application_id)
    assert evaluator["assignments"][0]["course_name"] == "B.Tech in Artificial Intelligence"

    admin = workflow.get_dashboard_stats(people["admin"])
    assert admin["stats"]["total_applications"] == 2
    assert admin["stats"]["active_evaluators"] == 2
    assert admin["stats"]["approval_rate"] == 0
    assert admin["chart_data"] == [{"name": utcnow().strftime("%b %Y"), "applications": 2}]
    assert {row["stage"] for row in admin["workflow_stages"]} == {"draft", "under_evaluation"}


def test_alerts_are_admin_only(workflow, people, assignment) -> None:
    with pytest.raises(ForbiddenError):
        workflow.get_alerts(people["evaluator"])

    messages = [alert["message"] for alert in workflow.get_alerts(people["admin"])]
    assert messages == ["1 evaluations due in next week"]
