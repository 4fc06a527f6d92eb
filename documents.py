from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Iterable, Optional

from errors import InvalidStateError, ValidationError
from models import Application, Document, utcnow
from states import DocumentStatus

REVIEW_OUTCOMES = frozenset({DocumentStatus.APPROVED, DocumentStatus.REJECTED})


def _field(row: Any, name: str, default: Any = None) -> Any:
    if isinstance(row, dict):
        return row.get(name, default)
    return getattr(row, name, default)


def build_documents(application: Application, entries: Iterable[dict[str, Any]]) -> list[Document]:
    """Initial document set for a new application; every record starts pending."""
    documents = []
    for entry in entries:
        category = str(entry.get("category") or "").strip()
        if not category:
            raise ValidationError("Each document needs a category")
        documents.append(
            Document(
                application=application,
                category=category,
                file_name=entry.get("file_name"),
                file_size=entry.get("file_size"),
                file_url=entry.get("file_url"),
                status=DocumentStatus.PENDING.value,
            )
        )
    return documents


def review(
    document: Document,
    new_status: str,
    reviewer_id: Optional[uuid.UUID] = None,
    when: Optional[datetime] = None,
) -> Document:
    try:
        outcome = DocumentStatus(new_status)
    except ValueError as exc:
        raise ValidationError(f"Unknown document status '{new_status}'") from exc
    if outcome not in REVIEW_OUTCOMES:
        raise ValidationError("A review must approve or reject the document")
    if document.status != DocumentStatus.PENDING:
        raise InvalidStateError(
            f"Document '{document.category}' was already {document.status}",
            document_id=str(document.id),
        )

    document.status = outcome.value
    document.reviewed_by = reviewer_id
    document.reviewed_at = when or utcnow()
    return document


def percent(part: int, whole: int) -> int:
    """Whole-number percentage with halves rounded up; 0 when there is nothing to count."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def verification_summary(documents: Iterable[Any]) -> dict[str, int]:
    """Review-completion figures; a rejected document counts as reviewed, not passed."""
    approved = rejected = pending = 0
    for doc in documents:
        status = _field(doc, "status")
        if status == DocumentStatus.APPROVED:
            approved += 1
        elif status == DocumentStatus.REJECTED:
            rejected += 1
        else:
            pending += 1
    total = approved + rejected + pending
    return {
        "total": total,
        "approved": approved,
        "rejected": rejected,
        "pending": pending,
        "progress": percent(approved + rejected, total),
    }


def verification_progress(documents: Iterable[Any]) -> int:
    return verification_summary(documents)["progress"]
