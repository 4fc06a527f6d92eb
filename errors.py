from __future__ import annotations

import logging
from typing import Any, Optional

from states import Caller

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    """Base class for every failure the workflow engine reports to callers."""

    code = "workflow_error"
    status = 400
    retryable = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class NotFoundError(WorkflowError):
    code = "not_found"
    status = 404


class ForbiddenError(WorkflowError):
    code = "forbidden"
    status = 403


class InvalidStateError(WorkflowError):
    code = "invalid_state"
    status = 409


class ValidationError(WorkflowError):
    code = "validation_error"
    status = 400


class ConflictError(WorkflowError):
    """Concurrent modification detected at commit time; safe to re-fetch and retry."""

    code = "conflict"
    status = 409
    retryable = True


def error_payload(exc: BaseException, caller: Optional[Caller] = None) -> dict[str, Any]:
    if isinstance(exc, WorkflowError):
        payload = exc.to_dict()
        if exc.retryable:
            payload["retryable"] = True
        return payload

    logger.error("Unhandled engine error: %s", exc, exc_info=exc)
    payload = {"code": "internal_error", "message": "The request could not be completed."}
    if caller is not None and caller.is_admin:
        payload["detail"] = f"{type(exc).__name__}: {exc}"
    return payload
