"""Error responses for the run and case endpoints.

Routes raise CaseTraceHttpError with a code from api.error_model; the
handlers registered in create_app render it, and any other failure, as
``{code, message, details, request_id}``. A 500 never carries a traceback.
"""

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from casetrace.api.error_model import get_error_code_for_status, make_error_response

logger = logging.getLogger(__name__)


class CaseTraceHttpError(Exception):
    """A run or case request that ends in a non-2xx envelope.

    Attributes:
        status_code: Response status, e.g. 409 while another run holds the case.
        code: Envelope code such as RUN_IN_PROGRESS or CASE_NOT_FOUND.
        message: Text shown to the caller.
        details: Run progress or field errors, when there are any.
        extra: Fields placed beside the envelope, such as ``currentRunId``.
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        self.extra = extra


async def casetrace_http_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render a CaseTraceHttpError raised by a route."""
    assert isinstance(exc, CaseTraceHttpError)

    return make_error_response(
        request,
        code=exc.code,
        message=exc.message,
        http_status=exc.status_code,
        details=exc.details,
        extra=exc.extra,
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unknown paths and disallowed methods get the same envelope as route errors."""
    assert isinstance(exc, HTTPException)

    code = get_error_code_for_status(exc.status_code)
    message = str(exc.detail) if exc.detail else f"HTTP {exc.status_code}"

    return make_error_response(
        request,
        code=code,
        message=message,
        http_status=exc.status_code,
    )


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Bad path, query or body values become 400 INVALID_REQUEST.

    Each entry names the field (without the body/query/path prefix) and the
    validator message; input values are not echoed back.
    """
    assert isinstance(exc, RequestValidationError)

    safe_details: list[dict[str, Any]] = []
    for error in exc.errors():
        loc = error.get("loc", ())
        safe_loc = [str(part) for part in loc if part not in ("body", "query", "path")]
        safe_details.append(
            {
                "field": ".".join(safe_loc) if safe_loc else "request",
                "message": error.get("msg", "Validation error"),
            }
        )

    return make_error_response(
        request,
        code="INVALID_REQUEST",
        message="Request validation failed",
        http_status=400,
        details={"errors": safe_details} if safe_details else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log anything a route did not map and answer 500 INTERNAL_ERROR."""
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Request failed with %s",
        type(exc).__name__,
        extra={"request_id": request_id},
    )

    return make_error_response(
        request,
        code="INTERNAL_ERROR",
        message="An internal error occurred",
        http_status=500,
    )
