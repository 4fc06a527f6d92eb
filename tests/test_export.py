import json

from export import build_application_report, build_json_summary


def test_report_is_a_pdf(workflow, people, assignment) -> None:
    workflow.record_evaluation(
        people["evaluator"], assignment.id, 85, "Approve", "Labs & library meet <norms>", "Visited on site"
    )
    detail = workflow.get_application(people["admin"], assignment.application_id)

    pdf = build_application_report(detail)

    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 1000


def test_report_handles_sparse_detail() -> None:
    assert build_application_report({"application_number": "AICTE/2025/010"}).startswith(b"%PDF")


def test_json_summary_round_trips_detail(workflow, people, draft) -> None:
    detail = workflow.get_application(people["institution"], draft.application_number)

    payload = json.loads(build_json_summary(detail).decode("utf-8"))

    assert payload["application_number"] == draft.application_number
    assert payload["timeline"][0]["title"] == "Application Submitted"
