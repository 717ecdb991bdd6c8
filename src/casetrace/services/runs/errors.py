"""Run failures raised by the orchestrator.

Preconditions carry a stable machine-readable ``code`` that the HTTP layer
maps to a status: CASE_NOT_FOUND (404), NO_DOCUMENTS and INVALID_RESUME
(400), RUN_IN_PROGRESS (409). RunAbortedError wraps an unexpected error
raised after the run started, together with the progress made so far.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from casetrace.services.runs.orchestrator import RunOutcome


class RunPreconditionError(Exception):
    """Base class for errors that prevent a run from starting.

    Attributes:
        code: Stable error code.
        message: Human-readable description.
    """

    code = "RUN_PRECONDITION_FAILED"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CaseNotFoundError(RunPreconditionError):
    """No case exists with the requested id."""

    code = "CASE_NOT_FOUND"

    def __init__(self, case_id: str) -> None:
        super().__init__(f"Case {case_id} not found")
        self.case_id = case_id


class NoDocumentsError(RunPreconditionError):
    """The case has no uploaded documents to analyze."""

    code = "NO_DOCUMENTS"

    def __init__(self, case_id: str) -> None:
        super().__init__("No documents uploaded")
        self.case_id = case_id


class InvalidResumeError(RunPreconditionError):
    """The requested start step is out of range or skips incomplete steps."""

    code = "INVALID_RESUME"


class RunConflictError(RunPreconditionError):
    """Another run currently holds the case's guard.

    Attributes:
        current_run_id: The run holding the guard.
    """

    code = "RUN_IN_PROGRESS"

    def __init__(self, case_id: str, current_run_id: str | None) -> None:
        super().__init__("Another orchestration run is already in progress")
        self.case_id = case_id
        self.current_run_id = current_run_id


class RunAbortedError(Exception):
    """An unexpected error ended a run after the guard was taken.

    The guard has already been released and the case marked failed.

    Attributes:
        code: Always INTERNAL_ERROR.
        outcome: Steps handled before the error.
    """

    code = "INTERNAL_ERROR"

    def __init__(self, outcome: RunOutcome, cause: Exception) -> None:
        super().__init__(f"Run {outcome.run_id} aborted: {cause}")
        self.outcome = outcome

