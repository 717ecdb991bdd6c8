"""Typed output models for the six analysis steps.

Each step's generated ``data`` object is validated against the model
registered for its step number before it is stored. Field names are
snake_case; the camelCase spelling of every field is accepted on input.
Unknown fields are kept so that richer model output is not lost.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

Level = Literal["high", "medium", "low"]


class _Output(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class DecisionCandidate(_Output):
    decision_text: str = Field(min_length=1)
    type: Literal["explicit", "implicit"] = "explicit"
    confidence: float | None = Field(default=None, ge=0, le=1)


class Fragment(_Output):
    quote: str = Field(min_length=1)
    classification: Literal["evidence", "assumption", "risk", "stakeholder_signal"]
    context: str = ""


class DocumentDigestOutput(_Output):
    """Step 1: decision candidates and classified verbatim fragments."""

    has_clear_decision: bool
    decision_candidates: list[DecisionCandidate] = Field(default_factory=list)
    fragments: list[Fragment] = Field(default_factory=list)
    no_decision_message: str | None = None


class OwnerCandidate(_Output):
    name: str = Field(min_length=1)
    confidence: float = Field(default=0.0, ge=0, le=1)


class DecisionCriterion(_Output):
    criterion: str = Field(min_length=1)
    inferred_from: str = ""


class Confidence(_Output):
    score: float = Field(ge=0, le=1)
    reasons: list[str] = Field(default_factory=list)


class DecisionHypothesisOutput(_Output):
    """Step 2: the inferred decision, its owners and criteria."""

    inferred_decision: str = Field(min_length=1)
    decision_type: Literal[
        "hiring", "product_launch", "procurement", "policy", "incident", "other"
    ] = "other"
    decision_owner_candidates: list[OwnerCandidate] = Field(default_factory=list)
    decision_criteria: list[DecisionCriterion] = Field(default_factory=list)
    confidence: Confidence | None = None


class Stakeholder(_Output):
    name: str = Field(min_length=1)
    signal: str = ""
    influence: Level | None = None


class ContextAnalysisOutput(_Output):
    """Step 3: business context and stakeholders."""

    business_context: str = Field(min_length=1)
    stakeholders: list[Stakeholder] = Field(default_factory=list)
    organizational_factors: list[str] = Field(default_factory=list)


class OutcomeAnalysisOutput(_Output):
    """Step 4: expected versus actual outcomes."""

    expected_outcomes: list[str] = Field(default_factory=list)
    actual_outcomes: list[str] = Field(default_factory=list)
    success_indicators: list[str] = Field(default_factory=list)
    failure_indicators: list[str] = Field(default_factory=list)


class Risk(_Output):
    risk: str = Field(min_length=1)
    severity: Literal["critical", "high", "medium", "low"] = "medium"


class RiskAssessmentOutput(_Output):
    """Step 5: which risks materialized, and an overall score."""

    materialized_risks: list[Risk] = Field(default_factory=list)
    unmaterialized_risks: list[Risk] = Field(default_factory=list)
    risk_score: float = Field(ge=0, le=1)


class FinalReportOutput(_Output):
    """Step 6: narrative, lessons and recommendations for the report."""

    narrative: str = Field(min_length=1)
    lessons_learned: list[str] = Field(min_length=1)
    recommendations: list[str] = Field(min_length=1)
    mermaid_diagram: str | None = None


StepOutput = (
    DocumentDigestOutput
    | DecisionHypothesisOutput
    | ContextAnalysisOutput
    | OutcomeAnalysisOutput
    | RiskAssessmentOutput
    | FinalReportOutput
)

STEP_OUTPUT_MODELS: dict[int, type[_Output]] = {
    1: DocumentDigestOutput,
    2: DecisionHypothesisOutput,
    3: ContextAnalysisOutput,
    4: OutcomeAnalysisOutput,
    5: RiskAssessmentOutput,
    6: FinalReportOutput,
}


def format_validation_errors(exc: ValidationError) -> list[str]:
    """``path: message`` lines for each validation failure."""
    lines = []
    for error in exc.errors():
        path = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "Validation failed")
        lines.append(f"{path}: {message}" if path else message)
    return lines
