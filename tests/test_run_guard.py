"""Tests for the case run guard and the in-memory case repository."""

from __future__ import annotations

import threading

import pytest

from casetrace.models.case import Case, CaseStatus
from casetrace.persistence.repositories.cases import InMemoryCasesRepository
from casetrace.services.runs.guard import RunGuard


class TestTryAcquire:
    """Tests for RunGuard.try_acquire."""

    def test_acquire_sets_processing_and_token(self, case: Case) -> None:
        guard = RunGuard(InMemoryCasesRepository())

        result = guard.try_acquire(case.case_id, "run-1")

        assert result.acquired is True
        stored = InMemoryCasesRepository().get(case.case_id)
        assert stored is not None
        assert stored.status == CaseStatus.PROCESSING
        assert stored.current_run_id == "run-1"

    def test_second_acquire_conflicts_with_holder(self, case: Case) -> None:
        guard = RunGuard(InMemoryCasesRepository())
        guard.try_acquire(case.case_id, "run-1")

        result = guard.try_acquire(case.case_id, "run-2")

        assert result.acquired is False
        assert result.case_exists is True
        assert result.current_run_id == "run-1"

    def test_unknown_case(self) -> None:
        result = RunGuard(InMemoryCasesRepository()).try_acquire("missing", "run-1")

        assert result.acquired is False
        assert result.case_exists is False

    def test_reacquire_after_release(self, case: Case) -> None:
        guard = RunGuard(InMemoryCasesRepository())
        guard.try_acquire(case.case_id, "run-1")
        guard.release(case.case_id, "run-1", CaseStatus.FAILED)

        assert guard.try_acquire(case.case_id, "run-2").acquired is True

    def test_concurrent_acquire_single_winner(self, case: Case) -> None:
        guard = RunGuard(InMemoryCasesRepository())
        barrier = threading.Barrier(8)
        results: list[bool] = []
        lock = threading.Lock()

        def contend(n: int) -> None:
            barrier.wait()
            acquired = guard.try_acquire(case.case_id, f"run-{n}").acquired
            with lock:
                results.append(acquired)

        threads = [threading.Thread(target=contend, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1


class TestRelease:
    """Tests for RunGuard.release."""

    def test_release_sets_terminal_status(self, case: Case) -> None:
        guard = RunGuard(InMemoryCasesRepository())
        guard.try_acquire(case.case_id, "run-1")

        assert guard.release(case.case_id, "run-1", CaseStatus.COMPLETED) is True

        stored = InMemoryCasesRepository().get(case.case_id)
        assert stored is not None
        assert stored.status == CaseStatus.COMPLETED
        assert stored.current_run_id is None

    def test_release_by_non_holder_is_noop(self, case: Case) -> None:
        guard = RunGuard(InMemoryCasesRepository())
        guard.try_acquire(case.case_id, "run-1")

        assert guard.release(case.case_id, "run-2", CaseStatus.FAILED) is False

        stored = InMemoryCasesRepository().get(case.case_id)
        assert stored is not None
        assert stored.current_run_id == "run-1"
        assert stored.status == CaseStatus.PROCESSING

    def test_non_terminal_status_rejected(self, case: Case) -> None:
        guard = RunGuard(InMemoryCasesRepository())
        guard.try_acquire(case.case_id, "run-1")

        with pytest.raises(ValueError, match="terminal"):
            guard.release(case.case_id, "run-1", CaseStatus.PROCESSING)
