from __future__ import annotations

import uuid
from typing import Any, Iterable, Optional

from errors import ValidationError
from models import Evaluation, EvaluatorAssignment, as_utc, utcnow
from states import DECISION_LABELS, ApplicationStatus

MIN_SCORE = 0
MAX_SCORE = 100


def validate_score(score: Any) -> int:
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise ValidationError("Score must be a number between 0 and 100")
    if isinstance(score, float):
        if not score.is_integer():
            raise ValidationError("Score must be a whole number")
        score = int(score)
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise ValidationError(f"Score {score} is outside {MIN_SCORE}-{MAX_SCORE}")
    return score


def decision_for(recommendation: str) -> Optional[ApplicationStatus]:
    """Terminal status implied by a recommendation label, or None for advisory labels."""
    return DECISION_LABELS.get((recommendation or "").strip().lower())


def record(
    assignment: EvaluatorAssignment,
    evaluator_id: uuid.UUID,
    score: Any,
    recommendation: str,
    comments: str,
    site_visit_notes: Optional[str] = None,
) -> Evaluation:
    recommendation = (recommendation or "").strip()
    comments = (comments or "").strip()
    if not recommendation:
        raise ValidationError("Recommendation is required")
    if not comments:
        raise ValidationError("Comments are required")

    return Evaluation(
        assignment=assignment,
        application_id=assignment.application_id,
        evaluator_id=evaluator_id,
        score=validate_score(score),
        comments=comments,
        recommendation=recommendation,
        site_visit_notes=(site_visit_notes or "").strip() or None,
        created_at=utcnow(),
    )


def latest(evaluations: Iterable[Evaluation]) -> Optional[Evaluation]:
    rows = list(evaluations)
    if not rows:
        return None
    return max(rows, key=lambda e: as_utc(e.created_at))


def average_score(evaluations: Iterable[Evaluation]) -> Optional[float]:
    scores = [e.score for e in evaluations]
    if not scores:
        return None
    return round(sum(scores) / len(scores), 1)
