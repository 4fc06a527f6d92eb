from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Sequence

from errors import InvalidStateError, NotFoundError, ValidationError
from models import Application, TimelineStage, utcnow
from states import STAGE_TEMPLATE, StageStatus


def initialize_stages(
    application: Application,
    template: Sequence[tuple[str, str]] = STAGE_TEMPLATE,
) -> list[TimelineStage]:
    """Create the ordered stage rows for a new application.

    The first stage starts as ``current``; it only becomes ``completed`` when the
    application is submitted. Every other stage starts ``pending``.
    """
    if not template:
        raise ValidationError("A timeline needs at least one stage")
    stages = []
    for position, (title, description) in enumerate(template):
        stages.append(
            TimelineStage(
                application=application,
                position=position,
                title=title,
                description=description,
                status=StageStatus.CURRENT.value if position == 0 else StageStatus.PENDING.value,
            )
        )
    return stages


def _index_of(stages: Sequence[TimelineStage], title: str) -> int:
    for idx, stage in enumerate(stages):
        if stage.title == title:
            return idx
    raise NotFoundError(f"Timeline stage '{title}' not found", title=title)


def _earlier_all_completed(stages: Sequence[TimelineStage], idx: int) -> bool:
    return all(s.status == StageStatus.COMPLETED for s in stages[:idx])


def advance(
    stages: Sequence[TimelineStage],
    title: str,
    new_status: str,
    when: Optional[datetime] = None,
) -> TimelineStage:
    """Set one stage's status without breaking the single-current ordering.

    Completing a stage promotes the next stage (by position) to ``current`` when it
    was ``pending``. Stages never move backwards here; forcing that is an admin act.
    """
    try:
        target = StageStatus(new_status)
    except ValueError as exc:
        raise ValidationError(f"Unknown stage status '{new_status}'") from exc

    idx = _index_of(stages, title)
    stage = stages[idx]
    current = StageStatus(stage.status)

    if current == target:
        return stage
    if current == StageStatus.COMPLETED or (current == StageStatus.CURRENT and target == StageStatus.PENDING):
        raise InvalidStateError(
            f"Stage '{title}' cannot move from {current.value} back to {target.value}",
            title=title,
        )
    if not _earlier_all_completed(stages, idx):
        raise InvalidStateError(f"Stage '{title}' cannot advance before earlier stages complete", title=title)

    if target == StageStatus.CURRENT:
        if any(s.status == StageStatus.CURRENT for s in stages):
            raise InvalidStateError("Another stage is already current", title=title)
        stage.status = StageStatus.CURRENT.value
        return stage

    stage.status = StageStatus.COMPLETED.value
    stage.completed_at = when or utcnow()
    stage.assigned_to = None
    if idx + 1 < len(stages) and stages[idx + 1].status == StageStatus.PENDING:
        stages[idx + 1].status = StageStatus.CURRENT.value
    return stage


def move_to(
    stages: Sequence[TimelineStage],
    title: str,
    when: Optional[datetime] = None,
    assignee: Optional[str] = None,
) -> TimelineStage:
    """Complete everything before ``title`` and leave ``title`` current.

    A timeline that is already past ``title`` (after an admin force-set) is left alone.
    """
    idx = _index_of(stages, title)
    if stages[idx].status == StageStatus.COMPLETED:
        return stages[idx]
    when = when or utcnow()
    for stage in stages[:idx]:
        if stage.status != StageStatus.COMPLETED:
            advance(stages, stage.title, StageStatus.COMPLETED.value, when)
    target = advance(stages, title, StageStatus.CURRENT.value, when)
    if assignee:
        target.assigned_to = assignee
    return target


def complete_all(stages: Sequence[TimelineStage], when: Optional[datetime] = None) -> None:
    when = when or utcnow()
    for stage in stages:
        if stage.status != StageStatus.COMPLETED:
            advance(stages, stage.title, StageStatus.COMPLETED.value, when)


def current_stage(stages: Sequence[TimelineStage]) -> Optional[TimelineStage]:
    for stage in stages:
        if stage.status == StageStatus.CURRENT:
            return stage
    return None


def current_count(stages: Sequence[Any]) -> int:
    return sum(1 for stage in stages if stage.status == StageStatus.CURRENT)


def stage_statuses(stages: Sequence[TimelineStage]) -> list[tuple[str, str]]:
    return [(stage.title, stage.status) for stage in stages]
