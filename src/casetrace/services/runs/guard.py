"""Run guard: case-scoped mutual exclusion for orchestration runs."""

from __future__ import annotations

import logging

from casetrace.models.case import TERMINAL_CASE_STATUSES, CaseStatus
from casetrace.persistence.repositories.cases import AcquireResult, CasesRepo

logger = logging.getLogger(__name__)


class RunGuard:
    """Acquire and release the ``current_run_id`` token on a case.

    Acquisition is delegated to the repository's single conditional update,
    so two concurrent callers can never both succeed.

    Args:
        cases_repo: Repository providing the atomic compare-and-set.
    """

    def __init__(self, cases_repo: CasesRepo) -> None:
        self._cases = cases_repo

    def try_acquire(self, case_id: str, run_id: str) -> AcquireResult:
        """Claim the case for ``run_id``.

        Returns:
            AcquireResult; on a conflict ``current_run_id`` names the holder.
        """
        result = self._cases.try_acquire_run(case_id, run_id)
        if result.acquired:
            logger.info("Run %s acquired case %s", run_id, case_id)
        elif result.case_exists:
            logger.info(
                "Run %s rejected for case %s: run %s in progress",
                run_id,
                case_id,
                result.current_run_id,
            )
        return result

    def release(self, case_id: str, run_id: str, terminal_status: CaseStatus) -> bool:
        """Clear the token and set a terminal case status.

        Only the run that holds the token can clear it.

        Returns:
            True if released, False if ``run_id`` no longer held the guard.

        Raises:
            ValueError: If terminal_status is not completed or failed.
        """
        if terminal_status not in TERMINAL_CASE_STATUSES:
            raise ValueError(f"Release status must be terminal, got {terminal_status}")
        released = self._cases.release_run(case_id, run_id, terminal_status)
        if released:
            logger.info("Run %s released case %s as %s", run_id, case_id, terminal_status)
        else:
            logger.warning("Run %s did not hold the guard on case %s", run_id, case_id)
        return released
