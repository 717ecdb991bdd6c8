"""Tests for the case read endpoints: steps, events and report."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from casetrace.api.main import create_app
from casetrace.models.case import Case
from casetrace.services.runs.backoff import BackoffPolicy


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    """Test client with fault injection enabled and zero-delay backoff."""
    monkeypatch.setenv("CASETRACE_ENABLE_FAULT_INJECTION", "1")
    app = create_app(backoff_policy=BackoffPolicy(initial_delay_ms=0, max_delay_ms=0))
    return TestClient(app)


class TestSteps:
    """GET /v1/case/{caseId}/steps."""

    def test_no_steps_before_first_run(self, client: TestClient, case: Case) -> None:
        body = client.get(f"/v1/case/{case.case_id}/steps").json()

        assert body["caseId"] == case.case_id
        assert body["caseStatus"] == "draft"
        assert body["steps"] == []

    def test_steps_after_failed_run(self, client: TestClient, case: Case) -> None:
        client.post(f"/v1/case/{case.case_id}/run", json={"faults": {"failStep": 2}})

        body = client.get(f"/v1/case/{case.case_id}/steps").json()

        assert body["caseStatus"] == "failed"
        assert body["currentRunId"] is None
        first, second = body["steps"]
        assert first["stepNumber"] == 1
        assert first["title"] == "Document Digest"
        assert first["status"] == "completed"
        assert first["schemaVersion"] == 1
        assert first["data"]["has_clear_decision"] is True
        assert first["tokensUsed"] == 300
        assert second["status"] == "failed"
        assert second["data"] is None
        assert "Injected failure" in second["errors"][0]

    def test_unknown_case(self, client: TestClient) -> None:
        response = client.get("/v1/case/missing/steps")

        assert response.status_code == 404
        assert response.json()["code"] == "CASE_NOT_FOUND"


class TestEvents:
    """GET /v1/case/{caseId}/events."""

    def test_events_in_order_with_cursor(self, client: TestClient, case: Case) -> None:
        client.post(f"/v1/case/{case.case_id}/run")

        body = client.get(f"/v1/case/{case.case_id}/events").json()

        events = body["events"]
        assert len(events) == 12
        assert [e["eventType"] for e in events[:2]] == ["step_started", "step_completed"]
        seqs = [e["seq"] for e in events]
        assert seqs == sorted(seqs)
        assert body["nextCursor"] == seqs[-1]

        later = client.get(
            f"/v1/case/{case.case_id}/events", params={"after": seqs[5]}
        ).json()
        assert [e["seq"] for e in later["events"]] == seqs[6:]

    def test_from_step_filter(self, client: TestClient, case: Case) -> None:
        client.post(f"/v1/case/{case.case_id}/run")

        body = client.get(f"/v1/case/{case.case_id}/events", params={"fromStep": 5}).json()

        assert {e["stepNumber"] for e in body["events"]} == {5, 6}

    def test_empty_cursor_is_preserved(self, client: TestClient, case: Case) -> None:
        body = client.get(f"/v1/case/{case.case_id}/events", params={"after": 7}).json()

        assert body["events"] == []
        assert body["nextCursor"] == 7

    def test_invalid_from_step(self, client: TestClient, case: Case) -> None:
        response = client.get(f"/v1/case/{case.case_id}/events", params={"fromStep": 9})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"


class TestReport:
    """GET /v1/case/{caseId}/report."""

    def test_report_after_success(self, client: TestClient, case: Case) -> None:
        client.post(f"/v1/case/{case.case_id}/run")

        response = client.get(f"/v1/case/{case.case_id}/report")

        assert response.status_code == 200
        body = response.json()
        assert body["caseId"] == case.case_id
        assert body["narrative"].startswith("# Case Report")
        assert body["diagram"].startswith("graph TD")
        assert body["tokensUsed"] == 1800

    def test_no_report_after_failure(self, client: TestClient, case: Case) -> None:
        client.post(f"/v1/case/{case.case_id}/run", json={"faults": {"failStep": 6}})

        response = client.get(f"/v1/case/{case.case_id}/report")

        assert response.status_code == 404
        assert response.json()["code"] == "REPORT_NOT_FOUND"

    def test_unknown_case(self, client: TestClient) -> None:
        response = client.get("/v1/case/missing/report")

        assert response.status_code == 404
        assert response.json()["code"] == "CASE_NOT_FOUND"
