"""Step prompts and the context they are rendered from.

Step 1 reads the case documents. Steps 2-6 see only the structured output
of earlier steps, never the raw document text, so later stages cannot echo
the source verbatim.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from casetrace.models.case_step import STEP_NAMES, STEP_TITLES, StepStatus

logger = logging.getLogger(__name__)

MAX_DOCUMENT_CHARS = 200_000

_JSON_ONLY = "Return structured JSON only. No markdown, no explanation, no code fences."

_NO_RAW_TEXT = """CRITICAL RULES:
1. Reference ONLY the prior step results below
2. DO NOT repeat, quote or paraphrase the original document
3. Generate new structure and reasoning, not copied paragraphs
4. Evidence anchors may cite excerpts of at most 20 words"""

STEP_INSTRUCTIONS: dict[int, str] = {
    1: """You are a decision forensic analyst.

The input is an unstructured document: notes, emails, fragments or partial
thoughts. There may or may not be a clearly stated decision.

Your task:
1. Identify ALL decision candidates (explicit or implicit).
2. Extract evidence fragments as verbatim quotes.
3. Classify fragments as evidence, assumption, risk or stakeholder_signal.
4. If no clear decision exists, say so explicitly.

DO NOT summarize. DO NOT invent facts.

Return JSON in this format:
{"step": 1, "status": "success", "data": {"has_clear_decision": bool,
 "decision_candidates": [{"decision_text": str, "type": "explicit"|"implicit"}],
 "fragments": [{"quote": str, "classification": str, "context": str}],
 "no_decision_message": str}, "errors": [], "warnings": []}""",
    2: """You are a decision analysis expert. Build a Decision Hypothesis.

Your task:
1. Infer the decision being made and describe it in your own words.
2. Classify it: hiring, product_launch, procurement, policy, incident or other.
3. List decision owner candidates with a confidence (0-1) and evidence anchors.
4. Infer the decision criteria and what evidence led to each.
5. Give an overall confidence score with reasons.

Return JSON: {"inferredDecision": str, "decisionType": str,
 "decisionOwnerCandidates": [{"name": str, "confidence": float}],
 "decisionCriteria": [{"criterion": str, "inferredFrom": str}],
 "confidence": {"score": float, "reasons": [str]}}""",
    3: """You are analyzing the decision context.

Your task:
- Analyze business context from evidence and assumption fragments.
- Identify stakeholders from stakeholder_signal fragments.
- Consider organizational factors.

Return JSON: {"businessContext": str,
 "stakeholders": [{"name": str, "signal": str, "influence": "high"|"medium"|"low"}],
 "organizationalFactors": [str]}""",
    4: """You are analyzing outcomes.

Your task:
- Compare expected versus actual outcomes based on evidence fragments.
- Identify success and failure indicators.

Return JSON: {"expectedOutcomes": [str], "actualOutcomes": [str],
 "successIndicators": [str], "failureIndicators": [str]}""",
    5: """You are performing a risk assessment.

Your task:
- Assess which identified risks materialized.
- Identify failure indicators and their likely causes.

Return JSON: {"materializedRisks": [{"risk": str, "severity": str}],
 "unmaterializedRisks": [{"risk": str, "severity": str}], "riskScore": float (0-1)}
Severity is one of critical, high, medium, low.""",
    6: """You are writing the final report from all previous steps.

Your task:
- Write a narrative of the decision and how it played out.
- Derive lessons learned from evidence and risk analysis.
- Give concrete recommendations.
- Provide a Mermaid diagram of the decision flow.

Return JSON: {"narrative": str, "lessons_learned": [str],
 "recommendations": [str], "mermaid_diagram": str}""",
}


@dataclass(frozen=True)
class StepContext:
    """Inputs a prompt is rendered from.

    Attributes:
        case_id: Case being analyzed.
        title: Case title.
        document_text: Concatenated document text (step 1 only).
        prior_outputs: Payload data of completed earlier steps, by step number.
    """

    case_id: str
    title: str = ""
    document_text: str = ""
    prior_outputs: dict[int, dict[str, Any]] = field(default_factory=dict)


class StepContextLoader(Protocol):
    """Loads the context for rendering one step's prompt."""

    def __call__(self, case_id: str, step_number: int) -> StepContext: ...


def step_number_from_name(step_name: str) -> int:
    """Map ``step1``..``step6`` back to its number.

    Raises:
        ValueError: If the name is not a known step.
    """
    for number, name in STEP_NAMES.items():
        if name == step_name:
            return number
    raise ValueError(f"Unknown step name: {step_name}")


def build_prompt(step_number: int, context: StepContext) -> str:
    """Render the full prompt for a step.

    Args:
        step_number: 1..6.
        context: Loaded context for the case.

    Returns:
        Prompt text.

    Raises:
        ValueError: If step_number has no template.
    """
    if step_number not in STEP_INSTRUCTIONS:
        raise ValueError(f"Unknown step number: {step_number}")

    header = f"Case: {context.title or context.case_id}\nStage: {STEP_TITLES[step_number]}\n"

    if step_number == 1:
        document = context.document_text[:MAX_DOCUMENT_CHARS]
        return f"{header}\n{STEP_INSTRUCTIONS[1]}\n\nDocument:\n{document}\n\n{_JSON_ONLY}"

    prior = json.dumps(
        [{"step": n, "data": data} for n, data in sorted(context.prior_outputs.items())],
        indent=2,
        sort_keys=True,
    )
    return (
        f"{header}\n{STEP_INSTRUCTIONS[step_number]}\n\n{_NO_RAW_TEXT}\n\n"
        f"Previous step results:\n{prior}\n\n{_JSON_ONLY}"
    )


class RepositoryContextLoader:
    """StepContextLoader backed by the configured case and step repositories."""

    def __init__(self, cases_repo: Any = None, steps_repo: Any = None) -> None:
        from casetrace.persistence.repositories.case_steps import get_case_steps_repository
        from casetrace.persistence.repositories.cases import get_cases_repository

        self._cases = cases_repo or get_cases_repository()
        self._steps = steps_repo or get_case_steps_repository()

    def __call__(self, case_id: str, step_number: int) -> StepContext:
        case = self._cases.get_with_documents(case_id)
        if case is None:
            raise ValueError(f"Case {case_id} not found")

        if step_number == 1:
            text = "\n\n".join(
                f"--- {doc.file_name} ---\n{doc.content}" for doc in case.documents
            )
            return StepContext(case_id=case_id, title=case.title, document_text=text)

        prior = {
            step.step_number: step.payload.data
            for step in self._steps.list_for_case(case_id)
            if step.step_number < step_number
            and step.status == StepStatus.COMPLETED
            and step.payload is not None
        }
        return StepContext(case_id=case_id, title=case.title, prior_outputs=prior)
