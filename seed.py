from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

import timeline
from models import (
    Application,
    Document,
    EvaluatorAssignment,
    Evaluation,
    Institution,
    User,
    utcnow,
)
from states import STATUS_STAGE, ApplicationStatus, DocumentStatus, Priority, Role, is_terminal

logger = logging.getLogger(__name__)

DOCUMENT_CATEGORIES = [
    "Institution Registration",
    "Building Plan",
    "Faculty Details",
    "Infrastructure Report",
    "Financial Statements",
]

INSTITUTION_PROFILE = {
    "name": "Delhi Institute of Technology",
    "address": "123 Tech Street, New Delhi",
    "state": "Delhi",
    "contact_email": "contact@dit.edu.in",
    "contact_phone": "+91-11-12345678",
}

SAMPLE_APPLICATIONS: list[dict[str, Any]] = [
    {
        "application_number": "AICTE/2025/001",
        "application_type": "new-course",
        "status": "under_evaluation",
        "course_name": "B.Tech in Artificial Intelligence",
        "intake": 60,
        "description": "New undergraduate program in AI and Machine Learning",
        "submitted_at": datetime(2025, 1, 15, tzinfo=timezone.utc),
    },
    {
        "application_number": "AICTE/2025/002",
        "application_type": "intake-increase",
        "status": "document_verification",
        "course_name": "M.Tech in Computer Science",
        "intake": 30,
        "description": "Increase intake from 30 to 60 students",
        "submitted_at": datetime(2025, 2, 1, tzinfo=timezone.utc),
    },
    {
        "application_number": "AICTE/2025/003",
        "application_type": "new-institution",
        "status": "submitted",
        "institution_name": "Delhi Institute of Technology - South Campus",
        "address": "456 Innovation Park, South Delhi",
        "course_name": None,
        "intake": None,
        "description": "New campus in South Delhi for engineering programs",
        "submitted_at": datetime(2025, 3, 1, tzinfo=timezone.utc),
    },
    {
        "application_number": "AICTE/2025/004",
        "application_type": "eoa",
        "status": "approved",
        "course_name": "B.Tech in Mechanical Engineering",
        "intake": 120,
        "description": "Extension of Approval for existing programs",
        "submitted_at": datetime(2024, 12, 15, tzinfo=timezone.utc),
    },
    {
        "application_number": "AICTE/2024/089",
        "application_type": "new-course",
        "status": "rejected",
        "course_name": "MBA in Digital Marketing",
        "intake": 40,
        "description": "New management program specializing in digital marketing",
        "submitted_at": datetime(2024, 11, 10, tzinfo=timezone.utc),
    },
]

# Document outcomes per application status, in DOCUMENT_CATEGORIES order.
DOCUMENT_OUTCOMES = {
    "under_evaluation": ["approved", "approved", "pending", "approved", "approved"],
    "document_verification": ["approved", "pending", "approved", "pending", "approved"],
    "submitted": ["approved", "approved", "approved", "pending", "pending"],
    "approved": ["approved", "approved", "approved", "approved", "approved"],
    "rejected": ["rejected", "approved", "rejected", "approved", "rejected"],
}

EVALUATION_SAMPLES = {
    "approved": (85, "Approve", "Excellent infrastructure and qualified faculty. All requirements met."),
    "rejected": (45, "Reject", "Insufficient infrastructure and faculty qualifications. Major gaps in compliance."),
    "under_evaluation": (70, "Under Review", "Application is progressing well. Some documents need clarification."),
}

DECISION_SPAN = timedelta(days=30)


def _slug(category: str) -> str:
    return "-".join(category.lower().split())


def seed_demo_users(db: Session) -> dict[str, User]:
    """Demo admin, evaluator and institution accounts, created once by email."""
    accounts = {
        Role.ADMIN: (os.getenv("DEMO_ADMIN_EMAIL", "admin@example.com"), "AICTE Administrator"),
        Role.EVALUATOR: (os.getenv("DEMO_EVALUATOR_EMAIL", "evaluator@example.com"), "Dr. Evaluator"),
        Role.INSTITUTION: (os.getenv("DEMO_INSTITUTION_EMAIL", "institution@example.com"), INSTITUTION_PROFILE["name"]),
    }
    users = {}
    for role, (email, name) in accounts.items():
        user = db.scalar(select(User).where(User.email == email))
        if not user:
            user = User(role=role.value, email=email, name=name)
            db.add(user)
            db.flush()
        users[role.value] = user
    return users


def seed_demo_institution(db: Session, owner: User) -> Institution:
    institution = db.scalar(select(Institution).where(Institution.user_id == owner.id))
    if not institution:
        institution = Institution(user_id=owner.id, **INSTITUTION_PROFILE)
        db.add(institution)
        db.flush()
        logger.info("Created institution %s", institution.name)
    return institution


def _seed_application(db: Session, institution: Institution, evaluator: User, sample: dict[str, Any]) -> Application:
    status = ApplicationStatus(sample["status"])
    submitted_at = sample["submitted_at"]
    decided = is_terminal(status)
    updated_at = submitted_at + DECISION_SPAN if decided else submitted_at

    app = Application(
        application_number=sample["application_number"],
        institution_id=institution.id,
        application_type=sample["application_type"],
        status=status.value,
        institution_name=sample.get("institution_name", institution.name),
        address=sample.get("address", institution.address),
        state=institution.state,
        course_name=sample["course_name"],
        intake=sample["intake"],
        description=sample["description"],
        submitted_at=submitted_at,
        created_at=submitted_at - timedelta(days=3),
        updated_at=updated_at,
    )
    db.add(app)

    stages = timeline.initialize_stages(app)
    db.add_all(stages)
    if decided:
        timeline.complete_all(stages, updated_at)
    else:
        assignee = evaluator.name if status == ApplicationStatus.UNDER_EVALUATION else None
        timeline.move_to(stages, STATUS_STAGE[status], submitted_at, assignee=assignee)

    for category, outcome in zip(DOCUMENT_CATEGORIES, DOCUMENT_OUTCOMES[status.value]):
        db.add(
            Document(
                application=app,
                category=category,
                file_name=f"{_slug(category)}.pdf",
                file_size="2.5 MB",
                file_url=f"/documents/{_slug(category)}.pdf",
                status=outcome,
                reviewed_at=submitted_at + timedelta(days=7) if outcome != DocumentStatus.PENDING else None,
            )
        )

    if status.value in EVALUATION_SAMPLES:
        assignment = EvaluatorAssignment(
            application=app,
            evaluator_id=evaluator.id,
            priority=(Priority.LOW if decided else Priority.HIGH).value,
            deadline=utcnow() + DECISION_SPAN,
            assigned_at=submitted_at + timedelta(days=10),
            completed_at=updated_at if decided else None,
        )
        db.add(assignment)
        score, recommendation, comments = EVALUATION_SAMPLES[status.value]
        db.add(
            Evaluation(
                assignment=assignment,
                application=app,
                evaluator_id=evaluator.id,
                score=score,
                recommendation=recommendation,
                comments=comments,
                created_at=updated_at if decided else submitted_at + timedelta(days=20),
            )
        )
    return app


def seed_demo_data(db: Session) -> dict[str, int]:
    """Demo accounts plus the sample applications; re-running skips existing application numbers."""
    users = seed_demo_users(db)
    institution = seed_demo_institution(db, users[Role.INSTITUTION.value])
    evaluator = users[Role.EVALUATOR.value]

    created = skipped = 0
    for sample in SAMPLE_APPLICATIONS:
        existing = db.scalar(
            select(Application.id).where(Application.application_number == sample["application_number"])
        )
        if existing:
            logger.info("Application already exists: %s", sample["application_number"])
            skipped += 1
            continue
        _seed_application(db, institution, evaluator, sample)
        db.flush()
        logger.info("Created application %s", sample["application_number"])
        created += 1
    return {"created": created, "skipped": skipped}


if __name__ == "__main__":
    from db import db_session, init_schema
    from logging_config import configure_logging

    configure_logging()
    init_schema()
    with db_session() as session:
        result = seed_demo_data(session)
    logger.info("Seeding complete: %s", result)
