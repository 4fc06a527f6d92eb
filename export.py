from __future__ import annotations

import io
import json
from typing import Any
from xml.sax.saxutils import escape

from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from models import utcnow

TYPE_LABELS = {
    "new-institution": "New Institution",
    "intake-increase": "Intake Increase",
    "new-course": "New Course",
    "eoa": "Extension of Approval",
    "location-change": "Location Change",
}


def _safe_text(value: Any) -> str:
    if value is None or value == "":
        return "-"
    return escape(str(value))


def _label(value: Any) -> str:
    return _safe_text(value).replace("_", " ").title()


def build_application_report(detail: dict[str, Any]) -> bytes:
    """PDF summary of one application, built from ``dashboards.application_detail``."""
    buffer = io.BytesIO()
    number = _safe_text(detail.get("application_number"))
    doc = SimpleDocTemplate(buffer, pagesize=A4, title=f"Application {number}")
    styles = getSampleStyleSheet()
    normal = styles["BodyText"]
    heading = styles["Heading2"]

    story = []
    story.append(Paragraph(f"Application {number}", styles["Title"]))
    story.append(Paragraph(f"Generated: {utcnow().isoformat()}", normal))
    story.append(Spacer(1, 12))

    story.append(Paragraph("Application Summary", heading))
    app_type = detail.get("application_type")
    story.append(Paragraph(f"Type: {TYPE_LABELS.get(app_type, _safe_text(app_type))}", normal))
    story.append(Paragraph(f"Status: {_label(detail.get('status'))}", normal))
    story.append(Paragraph(f"Institution: {_safe_text(detail.get('institution_name'))}", normal))
    story.append(Paragraph(f"Location: {_safe_text(detail.get('location'))}", normal))
    story.append(Paragraph(f"Course: {_safe_text(detail.get('course_name'))}", normal))
    story.append(Paragraph(f"Intake: {_safe_text(detail.get('intake'))}", normal))
    story.append(Paragraph(f"Submitted: {_safe_text(detail.get('submitted_at'))}", normal))
    if detail.get("description"):
        story.append(Paragraph(f"Description: {_safe_text(detail['description'])}", normal))
    story.append(Spacer(1, 8))

    story.append(Paragraph("Timeline", heading))
    for stage in detail.get("timeline", []):
        line = f"{stage.get('position', 0) + 1}. {_safe_text(stage.get('title'))}: {_label(stage.get('status'))}"
        if stage.get("completed_at"):
            line += f" ({_safe_text(stage['completed_at'])})"
        if stage.get("assigned_to"):
            line += f", assigned to {_safe_text(stage['assigned_to'])}"
        story.append(Paragraph(line, normal))
    story.append(Spacer(1, 8))

    verification = detail.get("verification", {})
    story.append(Paragraph("Document Verification", heading))
    story.append(
        Paragraph(
            f"Progress: {_safe_text(verification.get('progress'))}% "
            f"({_safe_text(verification.get('approved'))} approved, "
            f"{_safe_text(verification.get('rejected'))} rejected, "
            f"{_safe_text(verification.get('pending'))} pending)",
            normal,
        )
    )
    for item in detail.get("documents", []):
        story.append(Paragraph(f"- {_safe_text(item.get('category'))}: {_label(item.get('status'))}", normal))
    story.append(Spacer(1, 8))

    evaluations = detail.get("evaluations", [])
    story.append(Paragraph("Evaluations", heading))
    if not evaluations:
        story.append(Paragraph("No evaluations recorded yet.", normal))
    for idx, evaluation in enumerate(evaluations, start=1):
        story.append(
            Paragraph(
                f"{idx}. {_safe_text(evaluation.get('recommendation'))} (score {_safe_text(evaluation.get('score'))}/100)",
                styles["Heading3"],
            )
        )
        story.append(Paragraph(_safe_text(evaluation.get("comments")), normal))
        if evaluation.get("site_visit_notes"):
            story.append(Paragraph(f"Site visit: {_safe_text(evaluation['site_visit_notes'])}", normal))
        story.append(Spacer(1, 6))

    doc.build(story)
    buffer.seek(0)
    return buffer.read()


def build_json_summary(detail: dict[str, Any]) -> bytes:
    return json.dumps(detail, indent=2, ensure_ascii=True).encode("utf-8")
