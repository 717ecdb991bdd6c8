"""Tests for final report synthesis and its completion gate."""

from __future__ import annotations

import pytest

from casetrace.models.case import Case
from casetrace.models.case_step import CaseStep, StepPayload, StepStatus
from casetrace.services.runs.report import (
    COMPLETED_MARK,
    SKIPPED_MARK,
    ReportGateError,
    build_diagram,
    build_report,
)

CASE = Case(case_id="case-1", title="Vendor switch")

FINAL_DATA = {
    "narrative": "It went fine.",
    "lessons_learned": ["Plan buffers"],
    "recommendations": ["Track risks"],
}


def _steps(*, failed: int | None = None, final_data: dict | None = None) -> list[CaseStep]:
    steps = []
    for n in range(1, 7):
        if n == 6:
            data = FINAL_DATA if final_data is None else final_data
        else:
            data = {"n": n}
        steps.append(
            CaseStep(
                step_id=f"s{n}",
                case_id="case-1",
                step_number=n,
                status=StepStatus.FAILED if n == failed else StepStatus.COMPLETED,
                payload=StepPayload(step_number=n, data=data),
            )
        )
    return steps


class TestReportGate:
    """A report requires all six steps completed."""

    def test_failed_step_blocks_report(self) -> None:
        with pytest.raises(ReportGateError, match=r"\[4\]"):
            build_report(CASE, _steps(failed=4), executed_steps=set(), tokens_used=0, duration_ms=0)

    def test_missing_step_blocks_report(self) -> None:
        with pytest.raises(ReportGateError):
            build_report(CASE, _steps()[:5], executed_steps=set(), tokens_used=0, duration_ms=0)

    def test_final_output_without_lessons_blocks_report(self) -> None:
        steps = _steps(final_data={"narrative": "Fine.", "recommendations": ["Track"]})

        with pytest.raises(ReportGateError, match="Stored step 6 output is invalid"):
            build_report(CASE, steps, executed_steps=set(), tokens_used=0, duration_ms=0)

    def test_final_step_without_payload_blocks_report(self) -> None:
        steps = _steps()
        steps[5].payload = None

        with pytest.raises(ReportGateError, match="no stored output"):
            build_report(CASE, steps, executed_steps=set(), tokens_used=0, duration_ms=0)


class TestReportContent:
    """Narrative sections and totals."""

    def test_sections_from_final_step(self) -> None:
        report = build_report(
            CASE,
            _steps(
                final_data={
                    "narrative": "It went fine.",
                    "lessons_learned": ["Plan buffers"],
                    "recommendations": ["Track risks"],
                    "mermaid_diagram": "graph TD\n  A --> B",
                }
            ),
            executed_steps={1, 2, 3, 4, 5, 6},
            tokens_used=1800,
            duration_ms=42,
        )

        assert report.case_id == "case-1"
        assert "# Case Report: Vendor switch" in report.narrative
        assert "## Narrative\n\nIt went fine." in report.narrative
        assert "- Plan buffers" in report.narrative
        assert "- Track risks" in report.narrative
        assert "```mermaid\ngraph TD\n  A --> B\n```" in report.narrative
        assert "Tokens used: 1800" in report.narrative
        assert report.tokens_used == 1800
        assert report.duration_ms == 42

    def test_decision_flow_omitted_without_diagram(self) -> None:
        report = build_report(CASE, _steps(), executed_steps=set(), tokens_used=0, duration_ms=0)

        assert "## Decision Flow" not in report.narrative
        assert "## Lessons Learned\n\n- Plan buffers" in report.narrative
        assert "(reused)" in report.narrative

    def test_camel_case_keys_accepted(self) -> None:
        report = build_report(
            CASE,
            _steps(
                final_data={
                    "narrative": "Fine.",
                    "lessonsLearned": ["Ask earlier"],
                    "recommendations": ["Ask sooner"],
                }
            ),
            executed_steps={6},
            tokens_used=300,
            duration_ms=1,
        )

        assert "- Ask earlier" in report.narrative


class TestDiagram:
    """Mermaid flow with per-step marks."""

    def test_marks_and_chain(self) -> None:
        diagram = build_diagram({1: SKIPPED_MARK, 2: COMPLETED_MARK})

        lines = diagram.splitlines()
        assert lines[0] == "graph TD"
        assert lines[1] == '    S1["1. Document Digest ⊘"]'
        assert lines[2] == '    S1 --> S2["2. Decision Hypothesis ✓"]'
        assert lines[3] == '    S2 --> S3["3. Context Analysis"]'
        assert lines[-1] == '    S6 --> R(["Report"])'
