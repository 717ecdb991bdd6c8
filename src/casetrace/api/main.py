"""casetrace FastAPI application factory."""

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from casetrace import __version__
from casetrace.api.errors import (
    CaseTraceHttpError,
    casetrace_http_error_handler,
    generic_exception_handler,
    http_exception_handler,
    request_validation_error_handler,
)
from casetrace.api.middleware.request_id import RequestIdMiddleware
from casetrace.api.routes.cases import router as cases_router
from casetrace.api.routes.health import router as health_router
from casetrace.api.routes.runs import router as runs_router
from casetrace.observability.tracing import configure_tracing, instrument_fastapi, instrument_httpx
from casetrace.services.generation.client import GenerationClient
from casetrace.services.runs.backoff import BackoffPolicy


def create_app(
    generation_client: GenerationClient | None = None,
    backoff_policy: BackoffPolicy | None = None,
) -> FastAPI:
    """Create and configure the casetrace FastAPI application.

    This factory:
    - Configures tracing and instruments outbound httpx calls
    - Registers RequestIdMiddleware (outermost)
    - Registers the exception handlers for the error envelope
    - Mounts the health router and the /v1 case routers

    Args:
        generation_client: Optional client for testing. If None, each run
            builds one from CASETRACE_GENERATION_BACKEND.
        backoff_policy: Optional retry policy for testing. If None, read
            from the CASETRACE_BACKOFF_* environment variables.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="casetrace API",
        description="Six-step case analysis runs with resume and final reports",
        version=__version__,
    )

    app.state.generation_client = generation_client
    app.state.backoff_policy = backoff_policy

    configure_tracing()
    instrument_httpx()

    app.add_middleware(RequestIdMiddleware)

    instrument_fastapi(app)

    app.add_exception_handler(CaseTraceHttpError, casetrace_http_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    app.include_router(runs_router)
    app.include_router(cases_router)

    return app
