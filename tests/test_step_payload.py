"""Tests for StepPayload validation and the case models."""

from __future__ import annotations

import json

import pytest

from casetrace.models.case import Case, CaseStatus
from casetrace.models.case_step import (
    STEP_NAMES,
    STEP_PAYLOAD_SCHEMA_VERSION,
    STEP_TITLES,
    CaseStep,
    StepOutputError,
    StepPayload,
)
from casetrace.models.step_outputs import FinalReportOutput


class TestStepPayloadFromContent:
    """Tests for StepPayload.from_content."""

    def test_envelope_with_data_object(self) -> None:
        content = json.dumps(
            {
                "step": 1,
                "status": "success",
                "data": {"has_clear_decision": True},
                "errors": [],
                "warnings": ["Only one document"],
            }
        )

        payload = StepPayload.from_content(1, content)

        assert payload.step_number == 1
        assert payload.schema_version == STEP_PAYLOAD_SCHEMA_VERSION
        assert payload.data["has_clear_decision"] is True
        assert payload.data["fragments"] == []
        assert payload.warnings == ["Only one document"]
        assert payload.errors == []

    def test_bare_object_becomes_data(self) -> None:
        payload = StepPayload.from_content(3, '{"businessContext": "Routine"}')

        assert payload.data["business_context"] == "Routine"
        assert payload.data["stakeholders"] == []

    def test_code_fence_stripped(self) -> None:
        content = '```json\n{"riskScore": 0.3}\n```'

        payload = StepPayload.from_content(5, content)

        assert payload.data["risk_score"] == 0.3

    def test_invalid_json_rejected(self) -> None:
        with pytest.raises(StepOutputError, match="not valid JSON"):
            StepPayload.from_content(2, "The decision was to proceed.")

    def test_non_object_rejected(self) -> None:
        with pytest.raises(StepOutputError, match="JSON object"):
            StepPayload.from_content(2, "[1, 2, 3]")

    def test_non_list_errors_ignored(self) -> None:
        payload = StepPayload.from_content(4, '{"data": {}, "errors": "bad", "warnings": null}')

        assert payload.errors == []
        assert payload.warnings == []


class TestStepOutputValidation:
    """Per-step output models applied by from_content."""

    def test_final_report_requires_lessons(self) -> None:
        content = json.dumps({"narrative": "Done.", "recommendations": ["Keep going"]})

        with pytest.raises(StepOutputError, match="lessonsLearned"):
            StepPayload.from_content(6, content)

    def test_unknown_decision_type_rejected(self) -> None:
        content = json.dumps({"inferredDecision": "Switch vendor", "decisionType": "merger"})

        with pytest.raises(StepOutputError, match=r"Step 2 output failed validation"):
            StepPayload.from_content(2, content)

    def test_risk_score_out_of_range_rejected(self) -> None:
        with pytest.raises(StepOutputError, match="riskScore"):
            StepPayload.from_content(5, '{"riskScore": 1.5}')

    def test_fragment_classification_checked(self) -> None:
        content = json.dumps(
            {
                "has_clear_decision": True,
                "fragments": [{"quote": "We chose Acme", "classification": "rumour"}],
            }
        )

        with pytest.raises(StepOutputError, match=r"fragments\.0\.classification"):
            StepPayload.from_content(1, content)

    def test_camel_case_normalized_and_extras_kept(self) -> None:
        content = json.dumps(
            {
                "inferredDecision": "Switch vendor",
                "decisionType": "procurement",
                "decisionOwnerCandidates": [{"name": "Ops lead", "confidence": 0.8}],
                "timeline": "Q3",
            }
        )

        payload = StepPayload.from_content(2, content)

        assert payload.data["inferred_decision"] == "Switch vendor"
        assert payload.data["decision_type"] == "procurement"
        assert payload.data["decision_owner_candidates"][0]["name"] == "Ops lead"
        assert payload.data["timeline"] == "Q3"
        assert "inferredDecision" not in payload.data

    def test_output_returns_typed_model(self) -> None:
        content = json.dumps(
            {"narrative": "Done.", "lessonsLearned": ["Plan"], "recommendations": ["Track"]}
        )

        output = StepPayload.from_content(6, content).output()

        assert isinstance(output, FinalReportOutput)
        assert output.lessons_learned == ["Plan"]
        assert output.mermaid_diagram is None

    def test_stored_data_revalidated_by_output(self) -> None:
        payload = StepPayload(step_number=6, data={"narrative": "Done."})

        with pytest.raises(StepOutputError, match="Stored step 6 output is invalid"):
            payload.output()


class TestCaseStep:
    """Tests for CaseStep derived properties."""

    def test_name_and_title(self) -> None:
        step = CaseStep(step_id="s", case_id="c", step_number=6)

        assert step.step_name == "step6" == STEP_NAMES[6]
        assert step.title == STEP_TITLES[6] == "Final Report"

    def test_step_number_out_of_range_rejected(self) -> None:
        with pytest.raises(ValueError):
            CaseStep(step_id="s", case_id="c", step_number=7)


class TestCase:
    """Tests for Case.is_running."""

    def test_is_running_requires_token(self) -> None:
        assert Case(case_id="c", status=CaseStatus.PROCESSING, current_run_id="r").is_running
        assert not Case(case_id="c", status=CaseStatus.PROCESSING).is_running
        assert not Case(case_id="c", status=CaseStatus.FAILED, current_run_id="r").is_running
