"""Persistence repositories for casetrace.

Each repository has a Postgres implementation (used when
CASETRACE_DATABASE_URL is set) and an in-memory fallback for development
and tests.
"""

from casetrace.persistence.repositories.case_events import (
    CaseEventsRepo,
    InMemoryCaseEventsRepository,
    PostgresCaseEventsRepository,
    clear_case_events_store,
    get_case_events_repository,
)
from casetrace.persistence.repositories.case_steps import (
    CaseStepsRepo,
    InMemoryCaseStepsRepository,
    PostgresCaseStepsRepository,
    clear_case_steps_store,
    get_case_steps_repository,
)
from casetrace.persistence.repositories.cases import (
    AcquireResult,
    CasesRepo,
    InMemoryCasesRepository,
    PostgresCasesRepository,
    clear_cases_store,
    get_cases_repository,
    seed_case_in_memory,
)
from casetrace.persistence.repositories.reports import (
    InMemoryReportsRepository,
    PostgresReportsRepository,
    ReportsRepo,
    clear_reports_store,
    get_reports_repository,
)


def clear_all_in_memory_stores() -> None:
    """Reset every in-memory store. For testing only."""
    clear_cases_store()
    clear_case_steps_store()
    clear_case_events_store()
    clear_reports_store()


__all__ = [
    "AcquireResult",
    "CaseEventsRepo",
    "CaseStepsRepo",
    "CasesRepo",
    "InMemoryCaseEventsRepository",
    "InMemoryCaseStepsRepository",
    "InMemoryCasesRepository",
    "InMemoryReportsRepository",
    "PostgresCaseEventsRepository",
    "PostgresCaseStepsRepository",
    "PostgresCasesRepository",
    "PostgresReportsRepository",
    "ReportsRepo",
    "clear_all_in_memory_stores",
    "clear_case_events_store",
    "clear_case_steps_store",
    "clear_cases_store",
    "clear_reports_store",
    "get_case_events_repository",
    "get_case_steps_repository",
    "get_cases_repository",
    "get_reports_repository",
    "seed_case_in_memory",
]
