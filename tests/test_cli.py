"""Tests for the casetrace CLI."""

from __future__ import annotations

import json

import pytest

from casetrace.cli import EXIT_BLOCKED, EXIT_FAILED, EXIT_OK, main
from casetrace.models.case import Case
from casetrace.models.report import Report
from casetrace.persistence.repositories.case_steps import InMemoryCaseStepsRepository
from casetrace.persistence.repositories.reports import InMemoryReportsRepository


def _stdout_json(capsys: pytest.CaptureFixture[str]) -> dict:
    return json.loads(capsys.readouterr().out)


class TestRunCommand:
    """casetrace run <case_id>."""

    def test_run_completes(self, case: Case, capsys: pytest.CaptureFixture[str]) -> None:
        exit_code = main(["run", case.case_id])

        assert exit_code == EXIT_OK
        out = _stdout_json(capsys)
        assert out["pass"] is True
        assert out["steps_completed"] == 6
        assert len(InMemoryCaseStepsRepository().list_for_case(case.case_id)) == 6

    def test_unknown_case_blocked(self, capsys: pytest.CaptureFixture[str]) -> None:
        exit_code = main(["run", "missing"])

        assert exit_code == EXIT_BLOCKED
        assert _stdout_json(capsys)["error"]["code"] == "CASE_NOT_FOUND"

    def test_invalid_resume_blocked(
        self, case: Case, capsys: pytest.CaptureFixture[str]
    ) -> None:
        exit_code = main(["run", case.case_id, "--resume-from", "3"])

        assert exit_code == EXIT_BLOCKED
        assert _stdout_json(capsys)["error"]["code"] == "INVALID_RESUME"

    def test_misconfigured_backend_blocked(
        self,
        case: Case,
        capsys: pytest.CaptureFixture[str],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("CASETRACE_GENERATION_BACKEND", "anthropic")

        exit_code = main(["run", case.case_id])

        assert exit_code == EXIT_BLOCKED
        assert _stdout_json(capsys)["error"]["code"] == "GENERATION_NOT_CONFIGURED"


class TestMigrateCommand:
    """casetrace migrate."""

    def test_missing_database_url_blocked(self, capsys: pytest.CaptureFixture[str]) -> None:
        exit_code = main(["migrate"])

        assert exit_code == EXIT_BLOCKED
        assert _stdout_json(capsys)["error"]["code"] == "DATABASE_NOT_CONFIGURED"


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == EXIT_OK
    assert "casetrace" in capsys.readouterr().out


def test_exit_codes_distinct() -> None:
    assert len({EXIT_OK, EXIT_FAILED, EXIT_BLOCKED}) == 3


class TestRunAborted:
    """Unexpected errors after the run started report progress and exit 1."""

    def test_aborted_run_reports_counts(
        self,
        case: Case,
        capsys: pytest.CaptureFixture[str],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def explode(self: InMemoryReportsRepository, report: Report) -> Report:
            raise RuntimeError("disk full")

        monkeypatch.setattr(InMemoryReportsRepository, "upsert", explode)

        exit_code = main(["run", case.case_id])

        assert exit_code == EXIT_FAILED
        error = _stdout_json(capsys)["error"]
        assert error["code"] == "INTERNAL_ERROR"
        assert error["steps_completed"] == 6
        assert error["steps_failed"] == 0
