from datetime import datetime, timezone

from sqlalchemy import func, select

from engine import WorkflowEngine
from models import Application, Institution, TimelineStage, User
from seed import seed_demo_data
from states import Caller, Role


def seeded(session_factory) -> dict:
    with session_factory() as db:
        result = seed_demo_data(db)
        db.commit()
    return result


def caller_for(session_factory, role: Role) -> Caller:
    with session_factory() as db:
        user = db.scalar(select(User).where(User.role == role.value))
        return Caller.of(user.id, user.role)


def test_seed_creates_sample_applications_once(session_factory) -> None:
    assert seeded(session_factory) == {"created": 5, "skipped": 0}
    assert seeded(session_factory) == {"created": 0, "skipped": 5}

    with session_factory() as db:
        statuses = dict(db.execute(select(Application.application_number, Application.status)).all())
    assert statuses == {
        "AICTE/2025/001": "under_evaluation",
        "AICTE/2025/002": "document_verification",
        "AICTE/2025/003": "submitted",
        "AICTE/2025/004": "approved",
        "AICTE/2024/089": "rejected",
    }


def test_seeded_timelines_match_status(session_factory) -> None:
    seeded(session_factory)
    admin = caller_for(session_factory, Role.ADMIN)
    workflow = WorkflowEngine(session_factory)

    expected = {
        "AICTE/2025/001": "Site Visit & Evaluation",
        "AICTE/2025/002": "Document Verification",
        "AICTE/2025/003": "Initial Scrutiny",
        "AICTE/2025/004": None,
        "AICTE/2024/089": None,
    }
    for number, stage in expected.items():
        detail = workflow.get_application(admin, number)
        assert detail["current_stage"] == stage
        assert sum(1 for s in detail["timeline"] if s["status"] == "current") <= 1

    rejected = workflow.get_application(admin, "AICTE/2024/089")
    assert rejected["verification"]["progress"] == 100
    assert rejected["evaluations"][0]["recommendation"] == "Reject"


def test_seeded_evaluator_sees_open_assignment(session_factory) -> None:
    seeded(session_factory)
    workflow = WorkflowEngine(session_factory)

    dashboard = workflow.get_dashboard_stats(caller_for(session_factory, Role.EVALUATOR))

    assert dashboard["stats"]["assigned"] == 1
    assert dashboard["assignments"][0]["application_number"] == "AICTE/2025/001"


def test_numbers_continue_after_seeded_ones(session_factory) -> None:
    seeded(session_factory)
    with session_factory() as db:
        owner = db.scalar(select(Institution.user_id).where(Institution.name == "Delhi Institute of Technology"))
    workflow = WorkflowEngine(
        session_factory,
        number_prefix="AICTE",
        clock=lambda: datetime(2024, 12, 1, tzinfo=timezone.utc),
    )

    app = workflow.create_application(Caller.of(owner, Role.INSTITUTION), "new-institution")

    assert app.application_number == "AICTE/2024/090"


def test_seeded_applications_have_full_timelines(session_factory) -> None:
    seeded(session_factory)

    with session_factory() as db:
        per_app = dict(
            db.execute(
                select(Application.application_number, func.count(TimelineStage.id))
                .join(TimelineStage, TimelineStage.application_id == Application.id)
                .group_by(Application.application_number)
            ).all()
        )

    assert len(per_app) == 5
    assert set(per_app.values()) == {6}
