"""Postgres integration tests for the case run repositories.

Proves the Postgres implementations honor the same contracts as the
in-memory ones, in particular the single-statement guard acquisition.

These tests require a real PostgreSQL instance and use
CASETRACE_DATABASE_ADMIN_URL for migrations and queries. They are skipped
when it is unset unless CASETRACE_REQUIRE_POSTGRES=1.

Run with: pytest -q tests/test_postgres_repositories.py
"""

from __future__ import annotations

import asyncio
import os
import threading
import uuid
from collections.abc import Generator
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine, text

from casetrace.models.case import Case, CaseDocument, CaseStatus
from casetrace.models.case_event import EventType
from casetrace.models.case_step import StepPayload, StepStatus
from casetrace.models.report import Report
from casetrace.persistence.migrate import (
    get_current_revision,
    get_head_revision,
    run_downgrade,
    run_upgrade,
)
from casetrace.persistence.repositories.case_events import PostgresCaseEventsRepository
from casetrace.persistence.repositories.case_steps import PostgresCaseStepsRepository
from casetrace.persistence.repositories.cases import PostgresCasesRepository
from casetrace.persistence.repositories.reports import PostgresReportsRepository
from casetrace.services.generation.deterministic import DeterministicGenerationClient
from casetrace.services.runs.backoff import BackoffPolicy
from casetrace.services.runs.faults import FaultPlan
from casetrace.services.runs.orchestrator import RunContext, RunOrchestrator

if TYPE_CHECKING:
    from sqlalchemy import Engine

ADMIN_URL_ENV = "CASETRACE_DATABASE_ADMIN_URL"
REQUIRE_POSTGRES_ENV = "CASETRACE_REQUIRE_POSTGRES"

# Captured at import: the autouse fixture strips database variables per test.
ADMIN_URL = os.environ.get(ADMIN_URL_ENV)
REQUIRE_POSTGRES = os.environ.get(REQUIRE_POSTGRES_ENV, "0") == "1"


@pytest.fixture(scope="module")
def engine() -> Generator[Engine, None, None]:
    """Migrated database engine; schema is dropped after the module."""
    if not ADMIN_URL:
        msg = f"PostgreSQL integration tests require {ADMIN_URL_ENV}"
        if REQUIRE_POSTGRES:
            pytest.fail(f"REQUIRED: {msg} ({REQUIRE_POSTGRES_ENV}=1)")
        pytest.skip(msg)

    eng = create_engine(ADMIN_URL.replace("postgres://", "postgresql://", 1))
    run_upgrade(eng)
    yield eng
    run_downgrade(eng)
    eng.dispose()


@pytest.fixture
def case(engine: Engine) -> Case:
    case_id = str(uuid.uuid4())
    return PostgresCasesRepository(engine).create(
        Case(
            case_id=case_id,
            title="Postgres case",
            documents=[
                CaseDocument(
                    document_id=str(uuid.uuid4()),
                    case_id=case_id,
                    file_name="notes.txt",
                    content="We agreed to proceed.",
                    metadata={"pages": 1},
                )
            ],
        )
    )


def test_migrated_to_head(engine: Engine) -> None:
    assert get_current_revision(engine) == get_head_revision()


class TestCases:
    """PostgresCasesRepository."""

    def test_documents_round_trip(self, engine: Engine, case: Case) -> None:
        loaded = PostgresCasesRepository(engine).get_with_documents(case.case_id)

        assert loaded is not None
        assert loaded.status == CaseStatus.DRAFT
        assert [d.metadata for d in loaded.documents] == [{"pages": 1}]

    def test_acquire_conflict_and_release(self, engine: Engine, case: Case) -> None:
        repo = PostgresCasesRepository(engine)

        assert repo.try_acquire_run(case.case_id, "run-1").acquired is True
        conflict = repo.try_acquire_run(case.case_id, "run-2")
        assert conflict.acquired is False
        assert conflict.current_run_id == "run-1"

        assert repo.release_run(case.case_id, "run-2", CaseStatus.FAILED) is False
        assert repo.release_run(case.case_id, "run-1", CaseStatus.FAILED) is True
        loaded = repo.get(case.case_id)
        assert loaded is not None
        assert loaded.status == CaseStatus.FAILED
        assert loaded.current_run_id is None

    def test_unknown_case(self, engine: Engine) -> None:
        result = PostgresCasesRepository(engine).try_acquire_run(str(uuid.uuid4()), "run-1")

        assert result.case_exists is False

    def test_concurrent_acquire_single_winner(self, engine: Engine, case: Case) -> None:
        repo = PostgresCasesRepository(engine)
        barrier = threading.Barrier(4)
        results: list[bool] = []
        lock = threading.Lock()

        def contend(n: int) -> None:
            barrier.wait()
            acquired = repo.try_acquire_run(case.case_id, f"run-{n}").acquired
            with lock:
                results.append(acquired)

        threads = [threading.Thread(target=contend, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1


class TestStepsEventsReports:
    """Step, event and report repositories."""

    def test_step_get_or_create_and_update(self, engine: Engine, case: Case) -> None:
        repo = PostgresCaseStepsRepository(engine)

        step, created = repo.get_or_create(case.case_id, 1)
        again, created_again = repo.get_or_create(case.case_id, 1)
        assert created is True
        assert created_again is False
        assert again.step_id == step.step_id

        repo.update(
            step.model_copy(
                update={
                    "status": StepStatus.COMPLETED,
                    "payload": StepPayload(step_number=1, data={"k": "v"}),
                    "tokens_used": 300,
                }
            )
        )
        loaded = repo.get(case.case_id, 1)
        assert loaded is not None
        assert loaded.status == StepStatus.COMPLETED
        assert loaded.payload is not None
        assert loaded.payload.data == {"k": "v"}
        assert loaded.tokens_used == 300

    def test_events_ordered_and_filtered(self, engine: Engine, case: Case) -> None:
        repo = PostgresCaseEventsRepository(engine)
        first = repo.append(
            case_id=case.case_id,
            run_id="run-1",
            event_type=EventType.STEP_STARTED,
            step_number=1,
            payload={"step_number": 1},
        )
        repo.append(
            case_id=case.case_id,
            run_id="run-1",
            event_type=EventType.STEP_STARTED,
            step_number=2,
            payload={"step_number": 2},
        )

        after = repo.list_for_case(case.case_id, after_seq=first.seq)
        assert [e.step_number for e in after] == [2]
        assert [e.step_number for e in repo.list_for_case(case.case_id, from_step=2)] == [2]

    def test_report_upsert_keeps_created_at(self, engine: Engine, case: Case) -> None:
        repo = PostgresReportsRepository(engine)
        first = repo.upsert(Report(case_id=case.case_id, narrative="one", diagram="graph TD"))
        second = repo.upsert(Report(case_id=case.case_id, narrative="two", diagram="graph TD"))

        assert second.created_at == first.created_at
        loaded = repo.get(case.case_id)
        assert loaded is not None
        assert loaded.narrative == "two"


class TestOrchestratorOnPostgres:
    """End-to-end run, halt and resume against Postgres."""

    def test_fail_then_resume(self, engine: Engine, case: Case) -> None:
        async def no_sleep(_seconds: float) -> None:
            return None

        orchestrator = RunOrchestrator(
            cases_repo=PostgresCasesRepository(engine),
            steps_repo=PostgresCaseStepsRepository(engine),
            events_repo=PostgresCaseEventsRepository(engine),
            reports_repo=PostgresReportsRepository(engine),
            generation_client=DeterministicGenerationClient(),
            backoff_policy=BackoffPolicy(),
            sleep=no_sleep,
        )

        failed = asyncio.run(
            orchestrator.execute(
                RunContext(case_id=case.case_id, run_id="run-a", faults=FaultPlan(fail_step=4))
            )
        )
        resumed = asyncio.run(
            orchestrator.execute(RunContext(case_id=case.case_id, run_id="run-b", start_step=4))
        )

        assert failed.failed_at_step == 4
        assert resumed.success is True
        assert resumed.steps_skipped == 3
        with engine.connect() as conn:
            status = conn.execute(
                text("SELECT status FROM cases WHERE case_id = :case_id"),
                {"case_id": case.case_id},
            ).scalar_one()
        assert status == "completed"
        assert PostgresReportsRepository(engine).get(case.case_id) is not None
