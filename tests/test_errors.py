import logging
import uuid

import pytest

from db import _normalize_database_url
from errors import ConflictError, NotFoundError, WorkflowError, error_payload
from logging_config import configure_logging
from states import Caller, Role, can_transition


def test_workflow_errors_map_to_stable_codes() -> None:
    assert error_payload(NotFoundError("Application 'x' not found")) == {
        "code": "not_found",
        "message": "Application 'x' not found",
    }
    assert error_payload(ConflictError("modified")) == {"code": "conflict", "message": "modified", "retryable": True}
    assert NotFoundError("x").status == 404
    assert issubclass(ConflictError, WorkflowError)


def test_unexpected_errors_hide_detail_from_non_admins() -> None:
    boom = RuntimeError("connection reset by peer")
    institution = Caller.of(uuid.uuid4(), "institution")
    admin = Caller.of(uuid.uuid4(), Role.ADMIN)

    public = error_payload(boom, institution)
    assert public == {"code": "internal_error", "message": "The request could not be completed."}
    assert "connection reset" in error_payload(boom, admin)["detail"]


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        ("draft", "submitted", True),
        ("draft", "scrutiny", False),
        ("submitted", "under_evaluation", True),
        ("document_verification", "scrutiny", False),
        ("under_evaluation", "approved", True),
        ("approved", "rejected", False),
    ],
)
def test_transition_table(current, target, allowed) -> None:
    assert can_transition(current, target) is allowed


def test_database_url_normalisation() -> None:
    assert _normalize_database_url("postgres://u:p@db.example.com/app") == (
        "postgresql+psycopg2://u:p@db.example.com/app?sslmode=require"
    )
    assert _normalize_database_url("postgresql://u:p@localhost/app") == "postgresql+psycopg2://u:p@localhost/app"
    assert _normalize_database_url("sqlite:///tmp/app.db") == "sqlite:///tmp/app.db"


def test_configure_logging_honours_level(monkeypatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "debug")
    configure_logging()

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    configure_logging("WARNING")
    assert logging.getLogger().level == logging.WARNING
