from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from db import init_schema, make_session_factory
from engine import WorkflowEngine
from models import Institution, User, utcnow
from states import Caller, Role

DOCUMENT_SET = [
    {"category": "Institution Registration", "file_name": "institution-registration.pdf", "file_size": "2.5 MB"},
    {"category": "Building Plan", "file_name": "building-plan.pdf", "file_size": "4.1 MB"},
    {"category": "Faculty Details", "file_name": "faculty-details.pdf", "file_size": "1.2 MB"},
    {"category": "Infrastructure Report", "file_name": "infrastructure-report.pdf", "file_size": "3.0 MB"},
    {"category": "Financial Statements", "file_name": "financial-statements.pdf", "file_size": "0.8 MB"},
]


def _populate(factory) -> dict[str, Caller]:
    with factory() as db:
        rows = {
            "admin": User(role=Role.ADMIN.value, name="Admin", email="admin@example.com"),
            "evaluator": User(role=Role.EVALUATOR.value, name="Dr. Rao", email="rao@example.com"),
            "evaluator_b": User(role=Role.EVALUATOR.value, name="Dr. Iyer", email="iyer@example.com"),
            "institution": User(role=Role.INSTITUTION.value, name="DIT", email="dit@example.com"),
            "other_institution": User(role=Role.INSTITUTION.value, name="MIT", email="mit@example.com"),
            "orphan_institution": User(role=Role.INSTITUTION.value, name="Nobody", email="nobody@example.com"),
        }
        db.add_all(rows.values())
        db.flush()
        db.add(
            Institution(
                user_id=rows["institution"].id,
                name="Delhi Institute of Technology",
                address="123 Tech Street, New Delhi",
                state="Delhi",
            )
        )
        db.add(Institution(user_id=rows["other_institution"].id, name="Madras Institute", state="Tamil Nadu"))
        db.commit()
        return {key: Caller.of(user.id, user.role) for key, user in rows.items()}


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_schema(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'workflow.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_schema(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def people(session_factory) -> dict[str, Caller]:
    return _populate(session_factory)


@pytest.fixture
def workflow(session_factory) -> WorkflowEngine:
    return WorkflowEngine(session_factory, number_prefix="AICTE")


@pytest.fixture
def draft(workflow, people):
    return workflow.create_application(
        people["institution"],
        "new-course",
        course_name="B.Tech in Artificial Intelligence",
        intake=60,
        description="New undergraduate program",
        documents=DOCUMENT_SET,
    )


@pytest.fixture
def submitted(workflow, people, draft):
    return workflow.submit_application(people["institution"], draft.application_number)


@pytest.fixture
def assignment(workflow, people, submitted):
    return workflow.assign_evaluator(
        people["admin"],
        submitted.application_number,
        people["evaluator"].user_id,
        "high",
        utcnow() + timedelta(days=5),
    )


@pytest.fixture
def file_world(file_session_factory):
    """Engine and callers over a file database, for tests that use several threads."""
    return WorkflowEngine(file_session_factory, number_prefix="AICTE"), _populate(file_session_factory), file_session_factory
