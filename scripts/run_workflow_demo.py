from __future__ import annotations

import sys
from datetime import timedelta
from pathlib import Path

from sqlalchemy import select

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db import db_session, init_schema
from engine import WorkflowEngine
from errors import WorkflowError, error_payload
from logging_config import configure_logging
from models import Institution, User, utcnow
from seed import seed_demo_data
from states import Caller


def demo_callers() -> dict[str, Caller]:
    with db_session() as db:
        seed_demo_data(db)
        users = db.scalars(select(User)).all()
        callers = {user.role: Caller.of(user.id, user.role) for user in users}
        has_institution = db.scalar(select(Institution.id).where(Institution.user_id == callers["institution"].user_id))
    if not has_institution:
        raise SystemExit("Demo institution missing; check the seed data")
    return callers


def main() -> None:
    configure_logging()
    init_schema()
    callers = demo_callers()
    institution, admin, evaluator = callers["institution"], callers["admin"], callers["evaluator"]
    engine = WorkflowEngine()

    app = engine.create_application(
        institution,
        "new-course",
        course_name="B.Tech in Data Science",
        intake=60,
        description="Demo walk-through application",
        documents=[{"category": "Institution Registration"}, {"category": "Building Plan"}],
    )
    print(f"Created {app.application_number} ({app.status})")

    steps = [
        ("submit", lambda: engine.submit_application(institution, app.application_number)),
        ("scrutiny", lambda: engine.advance_application(admin, app.application_number, "scrutiny")),
        ("resubmit", lambda: engine.submit_application(institution, app.application_number)),
        (
            "assign",
            lambda: engine.assign_evaluator(
                admin, app.application_number, evaluator.user_id, "high", utcnow() + timedelta(days=5)
            ),
        ),
    ]
    assignment = None
    for name, step in steps:
        try:
            result = step()
        except WorkflowError as exc:
            print(f"{name}: refused -> {error_payload(exc)}")
            continue
        if name == "assign":
            assignment = result
        detail = engine.get_application(admin, app.application_number)
        print(f"{name}: status={detail['status']} stage={detail['current_stage']}")

    if assignment is not None:
        engine.record_evaluation(evaluator, assignment.id, 82, "Approve", "Facilities verified on site.")
        detail = engine.get_application(admin, app.application_number)
        print(f"evaluation: status={detail['status']} stage={detail['current_stage']}")

    stats = engine.get_dashboard_stats(admin)["stats"]
    print("Admin stats:", ", ".join(f"{key}={value}" for key, value in stats.items()))
    for alert in engine.get_alerts(admin):
        print(f"[{alert['type']}] {alert['message']}")


if __name__ == "__main__":
    main()
