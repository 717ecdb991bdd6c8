"""casetrace domain models: Pydantic models for persisted entities."""

from casetrace.models.case import (
    TERMINAL_CASE_STATUSES,
    Case,
    CaseDocument,
    CaseStatus,
)
from casetrace.models.case_event import CaseEvent, EventType
from casetrace.models.case_step import (
    STEP_NAMES,
    STEP_PAYLOAD_SCHEMA_VERSION,
    STEP_TITLES,
    TOTAL_STEPS,
    CaseStep,
    StepOutputError,
    StepPayload,
    StepStatus,
)
from casetrace.models.report import Report
from casetrace.models.step_outputs import STEP_OUTPUT_MODELS, FinalReportOutput, StepOutput

__all__ = [
    "Case",
    "CaseDocument",
    "CaseEvent",
    "CaseStatus",
    "CaseStep",
    "EventType",
    "FinalReportOutput",
    "Report",
    "STEP_OUTPUT_MODELS",
    "STEP_NAMES",
    "STEP_PAYLOAD_SCHEMA_VERSION",
    "STEP_TITLES",
    "StepOutput",
    "StepOutputError",
    "StepPayload",
    "StepStatus",
    "TERMINAL_CASE_STATUSES",
    "TOTAL_STEPS",
]
