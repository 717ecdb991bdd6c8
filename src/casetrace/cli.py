"""casetrace CLI.

Usage:
    casetrace migrate [--revision REV]
    casetrace run <case_id> [--resume-from N]
    casetrace serve [--host HOST] [--port PORT]

Output of ``migrate`` and ``run`` is a single JSON object on stdout.

Exit codes:
    0: Success / run completed
    1: Run halted on a failed step / internal error
    2: Run could not start (unknown case, no documents, invalid resume,
       run in progress) or configuration error
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from typing import Any

from casetrace.persistence.db import DatabaseConfigError

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BLOCKED = 2


def _output_json(data: dict[str, Any]) -> None:
    """Write deterministic JSON to stdout."""
    print(json.dumps(data, sort_keys=True, indent=2))


def _make_error_result(code: str, message: str, **extra: Any) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, **extra}, "pass": False}


def cmd_migrate(args: argparse.Namespace) -> int:
    """Apply migrations up to ``--revision`` using the admin database URL."""
    from casetrace.persistence.migrate import run_upgrade

    run_upgrade(revision=args.revision)
    _output_json({"migrated_to": args.revision, "pass": True})
    return EXIT_OK


def cmd_run(args: argparse.Namespace) -> int:
    """Run (or resume) a case from the command line."""
    from casetrace.persistence.repositories import (
        get_case_events_repository,
        get_case_steps_repository,
        get_cases_repository,
        get_reports_repository,
    )
    from casetrace.services.generation import build_generation_client
    from casetrace.services.runs import (
        BackoffPolicy,
        RunContext,
        RunAbortedError,
        RunOrchestrator,
        RunPreconditionError,
    )

    try:
        client = build_generation_client()
    except ValueError as e:
        _output_json(_make_error_result("GENERATION_NOT_CONFIGURED", str(e)))
        return EXIT_BLOCKED

    orchestrator = RunOrchestrator(
        cases_repo=get_cases_repository(),
        steps_repo=get_case_steps_repository(),
        events_repo=get_case_events_repository(),
        reports_repo=get_reports_repository(),
        generation_client=client,
        backoff_policy=BackoffPolicy.from_env(),
    )
    ctx = RunContext(
        case_id=args.case_id,
        run_id=str(uuid.uuid4()),
        start_step=args.resume_from,
    )

    try:
        outcome = asyncio.run(orchestrator.execute(ctx))
    except RunPreconditionError as e:
        _output_json(_make_error_result(e.code, e.message))
        return EXIT_BLOCKED
    except RunAbortedError as e:
        _output_json(
            _make_error_result(
                e.code,
                str(e),
                run_id=e.outcome.run_id,
                steps_completed=e.outcome.steps_completed,
                steps_skipped=e.outcome.steps_skipped,
                steps_failed=e.outcome.steps_failed,
            )
        )
        return EXIT_FAILED

    _output_json(
        {
            "case_id": outcome.case_id,
            "run_id": outcome.run_id,
            "pass": outcome.success,
            "steps_completed": outcome.steps_completed,
            "steps_skipped": outcome.steps_skipped,
            "steps_failed": outcome.steps_failed,
            "failed_at_step": outcome.failed_at_step,
            "error": outcome.error,
            "error_kind": outcome.error_kind.value if outcome.error_kind else None,
            "tokens_used": outcome.tokens_used,
            "duration_ms": outcome.duration_ms,
        }
    )
    return EXIT_OK if outcome.success else EXIT_FAILED


def cmd_serve(args: argparse.Namespace) -> int:
    """Serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("casetrace.app:app", host=args.host, port=args.port)
    return EXIT_OK


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="casetrace",
        description="casetrace - six-step case analysis runs",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default INFO)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    migrate_parser = subparsers.add_parser("migrate", help="Apply database migrations")
    migrate_parser.add_argument(
        "--revision",
        default="head",
        metavar="REV",
        help="Target revision (default: head)",
    )

    run_parser = subparsers.add_parser("run", help="Run the analysis steps for a case")
    run_parser.add_argument("case_id", help="Case to run")
    run_parser.add_argument(
        "--resume-from",
        type=int,
        default=1,
        metavar="N",
        help="First step to execute (earlier steps must be completed)",
    )

    serve_parser = subparsers.add_parser("serve", help="Serve the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point. Returns the process exit code."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    try:
        if args.command == "migrate":
            return cmd_migrate(args)
        if args.command == "run":
            return cmd_run(args)
        if args.command == "serve":
            return cmd_serve(args)
        return EXIT_OK
    except DatabaseConfigError as e:
        _output_json(_make_error_result("DATABASE_NOT_CONFIGURED", str(e)))
        return EXIT_BLOCKED
    except Exception as e:
        # Fail-closed: unexpected errors return exit code 1
        _output_json(_make_error_result("INTERNAL_ERROR", str(e)))
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
