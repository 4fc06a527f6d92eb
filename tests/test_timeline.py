from datetime import datetime, timezone

import pytest

import timeline
from errors import InvalidStateError, NotFoundError, ValidationError
from models import Application
from states import STAGE_TEMPLATE, StageStatus


def fresh_stages() -> list:
    return timeline.initialize_stages(Application(application_number="AICTE/2025/900"))


def test_initialize_stages_first_current_rest_pending() -> None:
    stages = fresh_stages()

    assert [s.title for s in stages] == [title for title, _ in STAGE_TEMPLATE]
    assert [s.position for s in stages] == list(range(len(STAGE_TEMPLATE)))
    assert stages[0].status == StageStatus.CURRENT
    assert all(s.status == StageStatus.PENDING for s in stages[1:])


def test_initialize_stages_rejects_empty_template() -> None:
    with pytest.raises(ValidationError):
        timeline.initialize_stages(Application(), template=())


def test_completing_stage_promotes_next() -> None:
    stages = fresh_stages()
    when = datetime(2025, 1, 15, tzinfo=timezone.utc)

    timeline.advance(stages, "Application Submitted", "completed", when)

    assert stages[0].status == StageStatus.COMPLETED
    assert stages[0].completed_at == when
    assert stages[1].status == StageStatus.CURRENT
    assert timeline.current_count(stages) == 1


def test_advance_refuses_to_skip_earlier_stages() -> None:
    stages = fresh_stages()

    with pytest.raises(InvalidStateError):
        timeline.advance(stages, "Final Decision", "completed")


def test_advance_refuses_backwards_moves() -> None:
    stages = fresh_stages()
    timeline.advance(stages, "Application Submitted", "completed")

    with pytest.raises(InvalidStateError):
        timeline.advance(stages, "Application Submitted", "current")
    with pytest.raises(InvalidStateError):
        timeline.advance(stages, "Initial Scrutiny", "pending")


def test_advance_rejects_unknown_stage_and_status() -> None:
    stages = fresh_stages()

    with pytest.raises(NotFoundError):
        timeline.advance(stages, "Interview", "completed")
    with pytest.raises(ValidationError):
        timeline.advance(stages, "Application Submitted", "done")


def test_advance_same_status_is_noop() -> None:
    stages = fresh_stages()

    timeline.advance(stages, "Application Submitted", "current")

    assert timeline.stage_statuses(stages)[0] == ("Application Submitted", "current")


def test_move_to_completes_earlier_stages_and_sets_assignee() -> None:
    stages = fresh_stages()

    timeline.move_to(stages, "Site Visit & Evaluation", assignee="Dr. Rao")

    assert [s.status for s in stages] == ["completed", "completed", "completed", "completed", "current", "pending"]
    assert timeline.current_stage(stages).assigned_to == "Dr. Rao"


def test_move_to_leaves_timeline_already_past_target() -> None:
    stages = fresh_stages()
    timeline.move_to(stages, "Document Verification")

    timeline.move_to(stages, "Initial Scrutiny")

    assert timeline.current_stage(stages).title == "Document Verification"


def test_complete_all_leaves_no_current_stage() -> None:
    stages = fresh_stages()
    timeline.move_to(stages, "Initial Scrutiny", assignee="Scrutiny Cell")

    timeline.complete_all(stages)

    assert all(s.status == StageStatus.COMPLETED for s in stages)
    assert all(s.completed_at is not None for s in stages)
    assert timeline.current_stage(stages) is None
    assert stages[1].assigned_to is None
