"""Run orchestration: backoff, guard, step ledger, fault plans and the orchestrator."""

from casetrace.services.runs.backoff import (
    BackoffPolicy,
    BackoffResult,
    OperationFailedError,
    compute_backoff_ms,
    execute_with_backoff,
    get_retry_schedule,
)
from casetrace.services.runs.errors import (
    CaseNotFoundError,
    InvalidResumeError,
    NoDocumentsError,
    RunAbortedError,
    RunConflictError,
    RunPreconditionError,
)
from casetrace.services.runs.faults import FaultPlan, InjectedFailureError
from casetrace.services.runs.guard import RunGuard
from casetrace.services.runs.ledger import StepLedger
from casetrace.services.runs.orchestrator import (
    RunContext,
    RunOrchestrator,
    RunOutcome,
    StepErrorKind,
    StepOutcome,
    StepOutcomeStatus,
)

__all__ = [
    "BackoffPolicy",
    "BackoffResult",
    "CaseNotFoundError",
    "FaultPlan",
    "InjectedFailureError",
    "InvalidResumeError",
    "NoDocumentsError",
    "OperationFailedError",
    "RunAbortedError",
    "RunConflictError",
    "RunContext",
    "RunGuard",
    "RunOrchestrator",
    "RunOutcome",
    "RunPreconditionError",
    "StepErrorKind",
    "StepLedger",
    "StepOutcome",
    "StepOutcomeStatus",
    "compute_backoff_ms",
    "execute_with_backoff",
    "get_retry_schedule",
]
