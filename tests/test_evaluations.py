import uuid

import pytest

import assignments
import evaluations
from errors import ValidationError
from models import Application
from states import ApplicationStatus


def make_assignment():
    app = Application(id=uuid.uuid4())
    return assignments.create(app, uuid.uuid4())


@pytest.mark.parametrize("score", [0, 55, 100, 85.0])
def test_validate_score_accepts_whole_numbers_in_range(score) -> None:
    assert evaluations.validate_score(score) == int(score)


@pytest.mark.parametrize("score", [-1, 101, 72.5, "80", None, True])
def test_validate_score_rejects_bad_values(score) -> None:
    with pytest.raises(ValidationError):
        evaluations.validate_score(score)


def test_decision_for_is_case_insensitive() -> None:
    assert evaluations.decision_for("Approve") == ApplicationStatus.APPROVED
    assert evaluations.decision_for(" reject ") == ApplicationStatus.REJECTED
    assert evaluations.decision_for("Under Review") is None


def test_record_requires_recommendation_and_comments() -> None:
    assignment = make_assignment()

    with pytest.raises(ValidationError):
        evaluations.record(assignment, uuid.uuid4(), 70, "", "Looks fine")
    with pytest.raises(ValidationError):
        evaluations.record(assignment, uuid.uuid4(), 70, "Approve", "   ")


def test_record_builds_evaluation_for_assignment() -> None:
    assignment = make_assignment()
    evaluator = uuid.uuid4()

    row = evaluations.record(assignment, evaluator, 88, " Approve ", "Strong faculty", "  ")

    assert row.assignment is assignment
    assert row.evaluator_id == evaluator
    assert row.score == 88
    assert row.recommendation == "Approve"
    assert row.site_visit_notes is None


def test_average_and_latest() -> None:
    assignment = make_assignment()
    first = evaluations.record(assignment, uuid.uuid4(), 70, "Under Review", "First pass")
    second = evaluations.record(assignment, uuid.uuid4(), 85, "Approve", "Second pass")

    assert evaluations.average_score([first, second]) == 77.5
    assert evaluations.average_score([]) is None
    assert evaluations.latest([first, second]) in (first, second)
    assert evaluations.latest([]) is None
