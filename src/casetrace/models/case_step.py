"""CaseStep model: per-case, per-step-number record of the six-step pipeline.

Each case has at most one row per step number (1..6). A row's status only
moves forward: once COMPLETED it is never executed again; a FAILED row is
re-executed by any later run whose start step is at or below it.

Step output is stored as a ``StepPayload``: a schema-versioned envelope
validated when the generated content is received, so downstream consumers
(later prompts, report synthesis) never see unparsed model text.
"""

from __future__ import annotations

import json
import re
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from casetrace.models.step_outputs import (
    STEP_OUTPUT_MODELS,
    StepOutput,
    format_validation_errors,
)

TOTAL_STEPS = 6
STEP_PAYLOAD_SCHEMA_VERSION = 2

STEP_NAMES: dict[int, str] = {n: f"step{n}" for n in range(1, TOTAL_STEPS + 1)}
"""Generation-client step identifiers keyed by step number."""

STEP_TITLES: dict[int, str] = {
    1: "Document Digest",
    2: "Decision Hypothesis",
    3: "Context Analysis",
    4: "Outcome Analysis",
    5: "Risk Assessment",
    6: "Final Report",
}


class StepStatus(StrEnum):
    """Lifecycle status of a single step row."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class StepOutputError(ValueError):
    """Raised when generated content cannot be turned into a StepPayload."""


_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n(?P<body>.*)\n```\s*$", re.DOTALL)


def _strip_code_fence(content: str) -> str:
    """Remove a single surrounding markdown code fence, if present."""
    match = _FENCE_RE.match(content.strip())
    if match:
        return match.group("body")
    return content.strip()


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


class StepPayload(BaseModel):
    """Versioned envelope around a step's structured output.

    Attributes:
        step_number: Step the payload belongs to.
        schema_version: Envelope version; bumped on incompatible changes.
        data: Step output, normalized through the step's output model.
        errors: Errors the generator reported alongside the data.
        warnings: Warnings the generator reported alongside the data.
    """

    step_number: int = Field(ge=1, le=TOTAL_STEPS)
    schema_version: int = STEP_PAYLOAD_SCHEMA_VERSION
    data: dict[str, Any] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_content(cls, step_number: int, content: str) -> StepPayload:
        """Validate raw generated content into a payload.

        Accepts a JSON object, optionally wrapped in a markdown code fence.
        When the object has a ``data`` object, that object becomes the
        payload data and the sibling ``errors``/``warnings`` lists are kept;
        otherwise the whole object is the data. The data is then validated
        against the step's output model and stored in its normalized form.

        Args:
            step_number: Step the content was generated for.
            content: Raw text returned by the generation client.

        Returns:
            Validated StepPayload.

        Raises:
            StepOutputError: If the content is not a JSON object or does not
                match the step's output model.
        """
        try:
            parsed = json.loads(_strip_code_fence(content))
        except (TypeError, ValueError) as exc:
            raise StepOutputError(
                f"Step {step_number} output is not valid JSON: {exc}"
            ) from exc

        if not isinstance(parsed, dict):
            raise StepOutputError(f"Step {step_number} output must be a JSON object")

        data = parsed.get("data")
        if not isinstance(data, dict):
            data = parsed

        try:
            output = STEP_OUTPUT_MODELS[step_number].model_validate(data)
        except ValidationError as exc:
            problems = "; ".join(format_validation_errors(exc))
            raise StepOutputError(
                f"Step {step_number} output failed validation: {problems}"
            ) from exc

        return cls(
            step_number=step_number,
            data=output.model_dump(mode="json"),
            errors=_string_list(parsed.get("errors")),
            warnings=_string_list(parsed.get("warnings")),
        )

    def output(self) -> StepOutput:
        """The data as the typed model for this step.

        Raises:
            StepOutputError: If stored data no longer matches the model.
        """
        try:
            return STEP_OUTPUT_MODELS[self.step_number].model_validate(self.data)  # type: ignore[return-value]
        except ValidationError as exc:
            raise StepOutputError(
                f"Stored step {self.step_number} output is invalid: "
                + "; ".join(format_validation_errors(exc))
            ) from exc


class CaseStep(BaseModel):
    """Single step record for a case.

    Attributes:
        step_id: Unique UUID for the row.
        case_id: Owning case.
        step_number: 1..6, unique per case.
        status: Current lifecycle status.
        started_at: ISO timestamp of the latest start.
        completed_at: ISO timestamp of completion or failure.
        payload: Validated output, present once completed.
        errors: Errors from the output or the failure message.
        warnings: Warnings from the output.
        retry_count: Retries consumed by the latest execution.
        tokens_used: Tokens reported by the generation client.
        duration_ms: Wall-clock duration of the latest execution.
    """

    step_id: str
    case_id: str
    step_number: int = Field(ge=1, le=TOTAL_STEPS)
    status: StepStatus = StepStatus.PENDING
    started_at: str | None = None
    completed_at: str | None = None
    payload: StepPayload | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    retry_count: int = 0
    tokens_used: int = 0
    duration_ms: int = 0

    @property
    def step_name(self) -> str:
        """Generation-client identifier (``step1``..``step6``)."""
        return STEP_NAMES[self.step_number]

    @property
    def title(self) -> str:
        """Human-readable stage title."""
        return STEP_TITLES[self.step_number]
