"""Health check endpoint."""

import os
from datetime import UTC, datetime

from fastapi import APIRouter
from pydantic import BaseModel

from casetrace import __version__
from casetrace.persistence.db import is_postgres_configured
from casetrace.services.generation.client import GENERATION_BACKEND_ENV

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Liveness plus the storage and generation backends this process selected."""

    status: str
    time: str
    version: str
    storage: str
    generation_backend: str


@router.get("/health", response_model=HealthResponse)
def get_health() -> HealthResponse:
    """Report liveness without touching the database or the generation provider."""
    return HealthResponse(
        status="ok",
        time=datetime.now(UTC).isoformat(),
        version=__version__,
        storage="postgres" if is_postgres_configured() else "memory",
        generation_backend=os.environ.get(GENERATION_BACKEND_ENV, "deterministic")
        .strip()
        .lower(),
    )
