"""Final report synthesis from the six completed step rows."""

from __future__ import annotations

from casetrace.models.case import Case
from casetrace.models.case_step import (
    STEP_TITLES,
    TOTAL_STEPS,
    CaseStep,
    StepOutputError,
    StepStatus,
)
from casetrace.models.report import Report
from casetrace.models.step_outputs import FinalReportOutput

COMPLETED_MARK = "✓"
SKIPPED_MARK = "⊘"


class ReportGateError(RuntimeError):
    """Raised when a report is requested for a case whose steps are not all completed."""


def build_diagram(marks: dict[int, str]) -> str:
    """Mermaid flow of the six stages, each annotated with its run mark."""
    lines = ["graph TD"]
    for n in range(1, TOTAL_STEPS + 1):
        label = f"{n}. {STEP_TITLES[n]}"
        if marks.get(n):
            label += f" {marks[n]}"
        node = f'S{n}["{label}"]'
        if n == 1:
            lines.append(f"    {node}")
        else:
            lines.append(f"    S{n - 1} --> {node}")
    lines.append(f'    S{TOTAL_STEPS} --> R(["Report"])')
    return "\n".join(lines)


def build_report(
    case: Case,
    steps: list[CaseStep],
    *,
    executed_steps: set[int],
    tokens_used: int,
    duration_ms: int,
) -> Report:
    """Synthesize the case report.

    Args:
        case: The case being reported on.
        steps: All step rows of the case.
        executed_steps: Step numbers completed by the current run; the rest
            were reused from earlier runs.
        tokens_used: Tokens consumed by the current run.
        duration_ms: Generation time accumulated by the current run.

    Returns:
        Report ready to upsert.

    Raises:
        ReportGateError: Unless all six steps are completed and the final
            step holds a valid report output.
    """
    by_number = {s.step_number: s for s in steps}
    incomplete = [
        n
        for n in range(1, TOTAL_STEPS + 1)
        if n not in by_number or by_number[n].status != StepStatus.COMPLETED
    ]
    if incomplete:
        raise ReportGateError(f"Steps {incomplete} are not completed")

    marks = {
        n: COMPLETED_MARK if n in executed_steps else SKIPPED_MARK
        for n in range(1, TOTAL_STEPS + 1)
    }
    skipped = TOTAL_STEPS - len(executed_steps)

    sections = [
        f"# Case Report: {case.title or case.case_id}",
        "## Summary",
        (
            f"{len(executed_steps)} step(s) completed in this run and {skipped} reused "
            f"from earlier runs. Tokens used: {tokens_used}. "
            f"Generation time: {duration_ms} ms."
        ),
        "## Analysis Steps",
        "\n".join(
            f"- {marks[n]} Step {n}: {STEP_TITLES[n]}"
            + ("" if n in executed_steps else " (reused)")
            for n in range(1, TOTAL_STEPS + 1)
        ),
    ]

    final = by_number[TOTAL_STEPS].payload
    if final is None:
        raise ReportGateError(f"Step {TOTAL_STEPS} has no stored output")
    try:
        output = final.output()
    except StepOutputError as exc:
        raise ReportGateError(str(exc)) from exc
    if not isinstance(output, FinalReportOutput):
        raise ReportGateError(f"Step {TOTAL_STEPS} output is not a final report")

    sections += ["## Narrative", output.narrative.strip()]
    sections += [
        "## Lessons Learned",
        "\n".join(f"- {item}" for item in output.lessons_learned),
    ]
    sections += [
        "## Recommendations",
        "\n".join(f"- {item}" for item in output.recommendations),
    ]
    if output.mermaid_diagram and output.mermaid_diagram.strip():
        sections += ["## Decision Flow", f"```mermaid\n{output.mermaid_diagram.strip()}\n```"]

    return Report(
        case_id=case.case_id,
        narrative="\n\n".join(sections) + "\n",
        diagram=build_diagram(marks),
        tokens_used=tokens_used,
        duration_ms=duration_ms,
    )
