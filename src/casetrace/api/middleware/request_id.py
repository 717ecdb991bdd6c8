"""Request ID middleware for the casetrace API.

The id ties a run request to its error envelope and to the log lines the
orchestrator writes while serving it.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"
MAX_REQUEST_ID_LENGTH = 128


def _resolve_request_id(incoming: str | None) -> str:
    """Reuse a usable incoming id, otherwise mint a uuid4."""
    candidate = (incoming or "").strip()
    if not candidate:
        return str(uuid.uuid4())
    if len(candidate) > MAX_REQUEST_ID_LENGTH or not candidate.isprintable():
        logger.debug("Ignoring unusable %s header", REQUEST_ID_HEADER)
        return str(uuid.uuid4())
    return candidate


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Store the request id on request.state and echo it in the response header."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = _resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id

        response: Response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
