"""Application status machine.

``WorkflowEngine`` is the single entry point for every state-changing request.
It checks the caller and the transition, then applies the change and the
matching timeline update inside one transaction.
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterable, Iterator, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

import assignments as assignment_rules
import dashboards
import documents as document_ledger
import evaluations as evaluation_rules
import timeline
from db import db_session
from errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from models import (
    Application,
    AuditLog,
    Document,
    EvaluatorAssignment,
    Evaluation,
    Institution,
    User,
    as_utc,
    utcnow,
)
from states import (
    COURSE_LEVEL_TYPES,
    STATUS_STAGE,
    ApplicationStatus,
    ApplicationType,
    Caller,
    Role,
    can_transition,
    is_terminal,
)

logger = logging.getLogger(__name__)

NUMBER_ATTEMPTS = 2
EDITABLE_FIELDS = frozenset({"course_name", "intake", "description", "institution_name", "address", "state"})
TEXT_FIELDS = EDITABLE_FIELDS - {"intake"}


class _LockSlot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class _ApplicationLocks:
    """One in-process mutex per application id, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._slots: dict[uuid.UUID, _LockSlot] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)

    @contextmanager
    def hold(self, application_id: uuid.UUID) -> Iterator[None]:
        with self._guard:
            slot = self._slots.get(application_id)
            if slot is None:
                slot = self._slots[application_id] = _LockSlot()
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._guard:
                slot.users -= 1
                if not slot.users:
                    del self._slots[application_id]


_LOCKS = _ApplicationLocks()
# Numbers are allocated as max + 1, one creation at a time per process.
_NUMBERING = threading.Lock()


def _as_uuid(value: Any, what: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as exc:
        raise NotFoundError(f"{what} '{value}' not found") from exc


def _parse_status(value: Any) -> ApplicationStatus:
    try:
        return ApplicationStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown application status '{value}'") from exc


def _parse_type(value: Any) -> ApplicationType:
    try:
        return ApplicationType(value)
    except ValueError as exc:
        allowed = ", ".join(t.value for t in ApplicationType)
        raise ValidationError(f"Application type must be one of {allowed}") from exc


def _parse_intake(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError("Intake must be a whole number")
    try:
        intake = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Intake must be a whole number") from exc
    if intake <= 0:
        raise ValidationError("Intake must be a positive whole number")
    return intake


def _clean_text(field: str, value: Any, required: bool = False) -> Optional[str]:
    label = field.replace("_", " ").capitalize()
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{label} must be text")
    cleaned = (value or "").strip() or None
    if required and cleaned is None:
        raise ValidationError(f"{label} cannot be blank")
    return cleaned


def _parse_deadline(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value)))
    except ValueError as exc:
        raise ValidationError(f"Deadline '{value}' is not an ISO date/time") from exc


class WorkflowEngine:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        number_prefix: Optional[str] = None,
        clock=utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._prefix = number_prefix or os.getenv("APPLICATION_NUMBER_PREFIX", "AICTE")
        self._clock = clock

    # ------------------------------------------------------------------ plumbing

    def _session(self):
        return db_session(self._session_factory)

    @contextmanager
    def _write(self, application_id: uuid.UUID) -> Iterator[Session]:
        """Single-writer scope for one application: mutex, row lock, version check."""
        with _LOCKS.hold(application_id):
            try:
                with self._session() as db:
                    yield db
            except StaleDataError as exc:
                logger.warning("Concurrent modification of application %s", application_id)
                raise ConflictError(
                    "The application was modified by another request; reload and retry",
                    application_id=str(application_id),
                ) from exc

    def _application_id(self, reference: Any) -> uuid.UUID:
        with self._session() as db:
            if isinstance(reference, uuid.UUID):
                found = db.scalar(select(Application.id).where(Application.id == reference))
            else:
                found = db.scalar(select(Application.id).where(Application.application_number == str(reference)))
                if found is None:
                    try:
                        found = db.scalar(select(Application.id).where(Application.id == uuid.UUID(str(reference))))
                    except ValueError:
                        found = None
        if found is None:
            raise NotFoundError(f"Application '{reference}' not found")
        return found

    def _lock_application(self, db: Session, application_id: uuid.UUID) -> Application:
        app = db.scalars(
            select(Application)
            .where(Application.id == application_id)
            .options(selectinload(Application.stages))
            .with_for_update()
        ).one_or_none()
        if app is None:
            raise NotFoundError(f"Application '{application_id}' not found")
        return app

    @staticmethod
    def _require_role(caller: Caller, *roles: Role) -> None:
        if caller.role not in roles:
            raise ForbiddenError(f"Role '{caller.role.value}' may not perform this action")

    @staticmethod
    def _institution_of(db: Session, caller: Caller) -> Optional[Institution]:
        return db.scalar(select(Institution).where(Institution.user_id == caller.user_id))

    def _authorize(self, db: Session, caller: Caller, app: Application, *roles: Role) -> None:
        self._require_role(caller, *roles)
        if caller.role == Role.ADMIN:
            return
        if caller.role == Role.INSTITUTION:
            institution = self._institution_of(db, caller)
            if institution is None or institution.id != app.institution_id:
                raise ForbiddenError("Institution does not own this application")
            return
        assigned = db.scalar(
            select(func.count())
            .select_from(EvaluatorAssignment)
            .where(
                EvaluatorAssignment.application_id == app.id,
                EvaluatorAssignment.evaluator_id == caller.user_id,
            )
        )
        if not assigned:
            raise ForbiddenError("Evaluator is not assigned to this application")

    @staticmethod
    def _audit(db: Session, caller: Caller, app: Application, action: str, **details: Any) -> None:
        db.add(
            AuditLog(
                user_id=caller.user_id,
                application_id=app.id,
                action=action,
                details_json={"role": caller.role.value, **details},
            )
        )

    def _move(self, app: Application, target: ApplicationStatus, now: datetime, assignee: Optional[str] = None) -> None:
        """Guided transition: table check, then status and timeline move together."""
        if not can_transition(app.status, target):
            logger.warning("Refused %s -> %s for %s", app.status, target.value, app.application_number)
            raise InvalidStateError(
                f"Application {app.application_number} cannot move from {app.status} to {target.value}",
                status=app.status,
                target=target.value,
            )
        previous = app.status
        app.status = target.value
        app.updated_at = now
        if is_terminal(target):
            timeline.complete_all(app.stages, now)
        else:
            timeline.move_to(app.stages, STATUS_STAGE[target], now, assignee=assignee)
        logger.info("Application %s moved %s -> %s", app.application_number, previous, target.value)

    def _next_number(self, db: Session, year: int) -> str:
        prefix = f"{self._prefix}/{year}/"
        existing = db.scalars(
            select(Application.application_number).where(Application.application_number.like(f"{prefix}%"))
        ).all()
        highest = 0
        for number in existing:
            tail = number[len(prefix):]
            if tail.isdigit():
                highest = max(highest, int(tail))
        return f"{prefix}{highest + 1:03d}"

    # ------------------------------------------------------------------ guided operations

    def create_application(
        self,
        caller: Caller,
        application_type: str,
        course_name: Optional[str] = None,
        intake: Any = None,
        description: Optional[str] = None,
        institution_name: Optional[str] = None,
        address: Optional[str] = None,
        state: Optional[str] = None,
        documents: Iterable[dict[str, Any]] = (),
    ) -> Application:
        self._require_role(caller, Role.INSTITUTION)
        app_type = _parse_type(application_type)
        intake_value = _parse_intake(intake)
        document_entries = list(documents)

        for attempt in range(1, NUMBER_ATTEMPTS + 1):
            try:
                with _NUMBERING, self._session() as db:
                    institution = self._institution_of(db, caller)
                    if institution is None:
                        raise NotFoundError("Institution not found for this user")
                    now = self._clock()
                    app = Application(
                        application_number=self._next_number(db, now.year),
                        institution_id=institution.id,
                        application_type=app_type.value,
                        status=ApplicationStatus.DRAFT.value,
                        institution_name=(institution_name or "").strip() or institution.name,
                        address=address or institution.address,
                        state=state or institution.state,
                        course_name=(course_name or "").strip() or None,
                        intake=intake_value,
                        description=description,
                        created_at=now,
                        updated_at=now,
                    )
                    db.add(app)
                    db.add_all(timeline.initialize_stages(app))
                    db.add_all(document_ledger.build_documents(app, document_entries))
                    db.flush()
                    self._audit(db, caller, app, "application_created", application_number=app.application_number)
                logger.info("Created application %s (%s)", app.application_number, app.application_type)
                return app
            except IntegrityError as exc:
                if attempt == NUMBER_ATTEMPTS:
                    raise ConflictError("Could not allocate an application number; retry") from exc
                logger.warning("Application number collision, retrying (attempt %s)", attempt)
        raise ConflictError("Could not allocate an application number; retry")

    def update_application(self, caller: Caller, reference: Any, **fields: Any) -> Application:
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if not fields:
            raise ValidationError("No updates provided")
        if "intake" in fields:
            fields["intake"] = _parse_intake(fields["intake"])
        for key in TEXT_FIELDS & fields.keys():
            fields[key] = _clean_text(key, fields[key], required=key == "institution_name")

        application_id = self._application_id(reference)
        with self._write(application_id) as db:
            app = self._lock_application(db, application_id)
            self._authorize(db, caller, app, Role.INSTITUTION, Role.ADMIN)
            if app.status != ApplicationStatus.DRAFT:
                raise InvalidStateError(f"Only draft applications can be edited (status is {app.status})")
            if (
                "course_name" in fields
                and fields["course_name"] is None
                and ApplicationType(app.application_type) in COURSE_LEVEL_TYPES
            ):
                raise ValidationError("Course name cannot be cleared for this application type")
            for key, value in fields.items():
                setattr(app, key, value)
            app.updated_at = self._clock()
            self._audit(db, caller, app, "application_updated", fields=sorted(fields))
        return app

    def submit_application(self, caller: Caller, reference: Any) -> Application:
        application_id = self._application_id(reference)
        with self._write(application_id) as db:
            app = self._lock_application(db, application_id)
            self._authorize(db, caller, app, Role.INSTITUTION, Role.ADMIN)
            if app.status != ApplicationStatus.DRAFT:
                raise InvalidStateError(
                    f"Application {app.application_number} is {app.status}; only drafts can be submitted",
                    status=app.status,
                )
            if ApplicationType(app.application_type) in COURSE_LEVEL_TYPES and not app.course_name:
                raise ValidationError("Course name is required before submitting this application type")
            now = self._clock()
            app.submitted_at = now
            self._move(app, ApplicationStatus.SUBMITTED, now)
            self._audit(db, caller, app, "application_submitted")
        return app

    def advance_application(self, caller: Caller, reference: Any, to_status: str) -> Application:
        """Admin-guided move through scrutiny and document verification."""
        self._require_role(caller, Role.ADMIN)
        target = _parse_status(to_status)
        if is_terminal(target):
            raise InvalidStateError("Final decisions come from evaluations or an admin force-set")
        if target == ApplicationStatus.UNDER_EVALUATION:
            raise InvalidStateError("Assign an evaluator to start the evaluation")

        application_id = self._application_id(reference)
        with self._write(application_id) as db:
            app = self._lock_application(db, application_id)
            previous = app.status
            self._move(app, target, self._clock())
            self._audit(db, caller, app, "application_advanced", from_status=previous, to_status=target.value)
        return app

    def assign_evaluator(
        self,
        caller: Caller,
        reference: Any,
        evaluator_id: Any,
        priority: Optional[str] = "medium",
        deadline: Any = None,
    ) -> EvaluatorAssignment:
        self._require_role(caller, Role.ADMIN)
        level = assignment_rules.parse_priority(priority)
        due = _parse_deadline(deadline)
        evaluator_uuid = _as_uuid(evaluator_id, "Evaluator")

        application_id = self._application_id(reference)
        with self._write(application_id) as db:
            app = self._lock_application(db, application_id)
            evaluator = db.get(User, evaluator_uuid)
            if evaluator is None or evaluator.role != Role.EVALUATOR:
                raise NotFoundError(f"Evaluator '{evaluator_id}' not found")
            if app.status == ApplicationStatus.DRAFT or is_terminal(app.status):
                raise InvalidStateError(
                    f"Cannot assign an evaluator while the application is {app.status}",
                    status=app.status,
                )

            now = self._clock()
            assignment = assignment_rules.create(app, evaluator.id, level.value, due)
            assignment.assigned_at = now
            db.add(assignment)
            if app.status != ApplicationStatus.UNDER_EVALUATION:
                self._move(app, ApplicationStatus.UNDER_EVALUATION, now, assignee=evaluator.name)
            else:
                app.updated_at = now
            db.flush()
            self._audit(
                db,
                caller,
                app,
                "evaluator_assigned",
                assignment_id=str(assignment.id),
                evaluator_id=str(evaluator.id),
                priority=level.value,
                deadline=due.isoformat() if due else None,
            )
        logger.info("Assigned evaluator %s to %s", evaluator.id, app.application_number)
        return assignment

    def record_evaluation(
        self,
        caller: Caller,
        assignment_id: Any,
        score: Any,
        recommendation: str,
        comments: str,
        site_visit_notes: Optional[str] = None,
    ) -> Evaluation:
        self._require_role(caller, Role.EVALUATOR, Role.ADMIN)
        assignment_uuid = _as_uuid(assignment_id, "Assignment")
        with self._session() as db:
            application_id = db.scalar(
                select(EvaluatorAssignment.application_id).where(EvaluatorAssignment.id == assignment_uuid)
            )
        if application_id is None:
            raise NotFoundError(f"Assignment '{assignment_id}' not found")

        with self._write(application_id) as db:
            app = self._lock_application(db, application_id)
            assignment = db.get(EvaluatorAssignment, assignment_uuid)
            if not caller.is_admin and assignment.evaluator_id != caller.user_id:
                raise ForbiddenError("This assignment belongs to another evaluator")

            if is_terminal(app.status):
                raise InvalidStateError(
                    f"Application {app.application_number} is already {app.status}",
                    status=app.status,
                )
            decision = evaluation_rules.decision_for(recommendation)
            if decision is not None and app.status != ApplicationStatus.UNDER_EVALUATION:
                raise InvalidStateError(
                    f"Application {app.application_number} is {app.status}; it can no longer be decided",
                    status=app.status,
                )
            evaluation = evaluation_rules.record(
                assignment,
                assignment.evaluator_id,
                score,
                recommendation,
                comments,
                site_visit_notes,
            )
            now = self._clock()
            evaluation.created_at = now
            db.add(evaluation)
            assignment_rules.complete(assignment, now)
            if decision is not None:
                self._move(app, decision, now)
            else:
                app.updated_at = now
            db.flush()
            self._audit(
                db,
                caller,
                app,
                "evaluation_recorded",
                assignment_id=str(assignment.id),
                evaluation_id=str(evaluation.id),
                score=evaluation.score,
                recommendation=evaluation.recommendation,
            )
        logger.info(
            "Recorded evaluation for %s: %s (%s)", app.application_number, evaluation.recommendation, evaluation.score
        )
        return evaluation

    def review_document(self, caller: Caller, document_id: Any, new_status: str) -> Document:
        self._require_role(caller, Role.EVALUATOR, Role.ADMIN)
        document_uuid = _as_uuid(document_id, "Document")
        with self._session() as db:
            application_id = db.scalar(select(Document.application_id).where(Document.id == document_uuid))
        if application_id is None:
            raise NotFoundError(f"Document '{document_id}' not found")

        with self._write(application_id) as db:
            app = self._lock_application(db, application_id)
            self._authorize(db, caller, app, Role.EVALUATOR, Role.ADMIN)
            document = db.get(Document, document_uuid)
            document_ledger.review(document, new_status, caller.user_id, self._clock())
            self._audit(
                db,
                caller,
                app,
                "document_reviewed",
                document_id=str(document.id),
                category=document.category,
                status=document.status,
            )
        logger.info("Document %s on %s marked %s", document.category, app.application_number, document.status)
        return document

    # ------------------------------------------------------------------ admin escape hatch

    def set_application_status(
        self,
        caller: Caller,
        reference: Any,
        new_status: str,
        reason: Optional[str] = None,
    ) -> Application:
        """Force-set any status without consulting the transition table or the timeline."""
        self._require_role(caller, Role.ADMIN)
        target = _parse_status(new_status)
        application_id = self._application_id(reference)
        with self._write(application_id) as db:
            app = self._lock_application(db, application_id)
            previous = app.status
            app.status = target.value
            app.updated_at = self._clock()
            self._audit(db, caller, app, "status_force_set", from_status=previous, to_status=target.value, reason=reason)
        logger.warning(
            "Admin %s force-set %s from %s to %s", caller.user_id, app.application_number, previous, target.value
        )
        return app

    # ------------------------------------------------------------------ reads

    def _visible_applications(self, db: Session, caller: Caller, *loads) -> list[Application]:
        query = select(Application).options(*loads).order_by(Application.created_at.desc())
        if caller.role == Role.INSTITUTION:
            institution = self._institution_of(db, caller)
            if institution is None:
                raise NotFoundError("Institution not found for this user")
            query = query.where(Application.institution_id == institution.id)
        elif caller.role == Role.EVALUATOR:
            assigned = select(EvaluatorAssignment.application_id).where(
                EvaluatorAssignment.evaluator_id == caller.user_id
            )
            query = query.where(Application.id.in_(assigned))
        return list(db.scalars(query).all())

    def get_application(self, caller: Caller, reference: Any) -> dict[str, Any]:
        application_id = self._application_id(reference)
        with self._session() as db:
            app = db.scalars(
                select(Application)
                .where(Application.id == application_id)
                .options(
                    selectinload(Application.stages),
                    selectinload(Application.documents),
                    selectinload(Application.assignments),
                    selectinload(Application.evaluations),
                )
            ).one()
            self._authorize(db, caller, app, Role.INSTITUTION, Role.EVALUATOR, Role.ADMIN)
            return dashboards.application_detail(app)

    def list_applications(self, caller: Caller) -> list[dict[str, Any]]:
        with self._session() as db:
            return [dashboards.application_summary(app) for app in self._visible_applications(db, caller)]

    def get_tracker_view(self, caller: Caller) -> list[dict[str, Any]]:
        with self._session() as db:
            apps = self._visible_applications(
                db, caller, selectinload(Application.documents), selectinload(Application.stages)
            )
            return dashboards.tracker_view(apps)

    def get_dashboard_stats(self, caller: Caller) -> dict[str, Any]:
        with self._session() as db:
            if caller.role == Role.EVALUATOR:
                rows = db.scalars(
                    select(EvaluatorAssignment)
                    .where(EvaluatorAssignment.evaluator_id == caller.user_id)
                    .options(selectinload(EvaluatorAssignment.application))
                ).all()
                return dashboards.evaluator_dashboard(rows, self._clock())
            apps = self._visible_applications(db, caller)
            if caller.role == Role.INSTITUTION:
                return dashboards.institution_dashboard(apps)
            evaluators = db.scalar(select(func.count()).select_from(User).where(User.role == Role.EVALUATOR.value))
            return dashboards.admin_dashboard(apps, int(evaluators or 0))

    def get_alerts(self, caller: Caller) -> list[dict[str, str]]:
        self._require_role(caller, Role.ADMIN)
        with self._session() as db:
            apps = db.scalars(select(Application)).all()
            rows = db.scalars(select(EvaluatorAssignment)).all()
            return dashboards.admin_alerts(apps, rows, self._clock())

    def audit_trail(self, caller: Caller, reference: Any) -> list[dict[str, Any]]:
        self._require_role(caller, Role.ADMIN)
        application_id = self._application_id(reference)
        with self._session() as db:
            rows = db.scalars(
                select(AuditLog).where(AuditLog.application_id == application_id).order_by(AuditLog.created_at)
            ).all()
            return [
                {
                    "action": row.action,
                    "user_id": str(row.user_id) if row.user_id else None,
                    "details": row.details_json,
                    "created_at": as_utc(row.created_at).isoformat(),
                }
                for row in rows
            ]
