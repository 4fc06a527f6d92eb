from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum


class ApplicationType(str, Enum):
    NEW_INSTITUTION = "new-institution"
    INTAKE_INCREASE = "intake-increase"
    NEW_COURSE = "new-course"
    EOA = "eoa"
    LOCATION_CHANGE = "location-change"


class ApplicationStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    SCRUTINY = "scrutiny"
    DOCUMENT_VERIFICATION = "document_verification"
    UNDER_EVALUATION = "under_evaluation"
    APPROVED = "approved"
    REJECTED = "rejected"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class StageStatus(str, Enum):
    PENDING = "pending"
    CURRENT = "current"
    COMPLETED = "completed"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Role(str, Enum):
    INSTITUTION = "institution"
    EVALUATOR = "evaluator"
    ADMIN = "admin"


TERMINAL_STATUSES = frozenset({ApplicationStatus.APPROVED, ApplicationStatus.REJECTED})

IN_PROGRESS_STATUSES = frozenset(
    {
        ApplicationStatus.SUBMITTED,
        ApplicationStatus.SCRUTINY,
        ApplicationStatus.DOCUMENT_VERIFICATION,
        ApplicationStatus.UNDER_EVALUATION,
    }
)

# Types that carry a course; institution-level types may leave course fields empty.
COURSE_LEVEL_TYPES = frozenset(
    {
        ApplicationType.NEW_COURSE,
        ApplicationType.INTAKE_INCREASE,
        ApplicationType.EOA,
    }
)

# Guided transitions. Admin force-set ignores this table.
TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    ApplicationStatus.DRAFT: frozenset({ApplicationStatus.SUBMITTED}),
    ApplicationStatus.SUBMITTED: frozenset(
        {
            ApplicationStatus.SCRUTINY,
            ApplicationStatus.DOCUMENT_VERIFICATION,
            ApplicationStatus.UNDER_EVALUATION,
        }
    ),
    ApplicationStatus.SCRUTINY: frozenset(
        {ApplicationStatus.DOCUMENT_VERIFICATION, ApplicationStatus.UNDER_EVALUATION}
    ),
    ApplicationStatus.DOCUMENT_VERIFICATION: frozenset({ApplicationStatus.UNDER_EVALUATION}),
    ApplicationStatus.UNDER_EVALUATION: frozenset(
        {ApplicationStatus.APPROVED, ApplicationStatus.REJECTED}
    ),
    ApplicationStatus.APPROVED: frozenset(),
    ApplicationStatus.REJECTED: frozenset(),
}

STAGE_SUBMITTED = "Application Submitted"
STAGE_SCRUTINY = "Initial Scrutiny"
STAGE_DOCUMENTS = "Document Verification"
STAGE_ASSIGNMENT = "Evaluator Assignment"
STAGE_EVALUATION = "Site Visit & Evaluation"
STAGE_DECISION = "Final Decision"

STAGE_TEMPLATE: tuple[tuple[str, str], ...] = (
    (STAGE_SUBMITTED, "Application created"),
    (STAGE_SCRUTINY, "Awaiting scrutiny"),
    (STAGE_DOCUMENTS, "Awaiting verification"),
    (STAGE_ASSIGNMENT, "Awaiting evaluator"),
    (STAGE_EVALUATION, "Pending site visit"),
    (STAGE_DECISION, "Pending final review"),
)

# Stage that is `current` while the application sits in a non-terminal status.
STATUS_STAGE: dict[ApplicationStatus, str] = {
    ApplicationStatus.DRAFT: STAGE_SUBMITTED,
    ApplicationStatus.SUBMITTED: STAGE_SCRUTINY,
    ApplicationStatus.SCRUTINY: STAGE_SCRUTINY,
    ApplicationStatus.DOCUMENT_VERIFICATION: STAGE_DOCUMENTS,
    ApplicationStatus.UNDER_EVALUATION: STAGE_EVALUATION,
}

DECISION_LABELS: dict[str, ApplicationStatus] = {
    "approve": ApplicationStatus.APPROVED,
    "reject": ApplicationStatus.REJECTED,
}


def can_transition(current: str, target: str) -> bool:
    return ApplicationStatus(target) in TRANSITIONS[ApplicationStatus(current)]


def is_terminal(status: str) -> bool:
    return ApplicationStatus(status) in TERMINAL_STATUSES


def enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


def check_in(column: str, enum_cls: type[Enum]) -> str:
    """SQL fragment for a CheckConstraint that pins ``column`` to ``enum_cls`` values."""
    quoted = ", ".join(f"'{value}'" for value in enum_values(enum_cls))
    return f"{column} in ({quoted})"


@dataclass(frozen=True)
class Caller:
    """Identity of whoever invokes an engine operation."""

    user_id: uuid.UUID
    role: Role

    @classmethod
    def of(cls, user_id: str | uuid.UUID, role: str | Role) -> "Caller":
        return cls(uuid.UUID(str(user_id)), Role(role))

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
