"""Pytest configuration and fixtures for casetrace tests.

Every test starts with empty in-memory stores and without the environment
variables that would switch the app to Postgres or a networked backend.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator

import pytest

from casetrace.models.case import Case, CaseDocument
from casetrace.persistence.db import reset_engines
from casetrace.persistence.repositories import clear_all_in_memory_stores, seed_case_in_memory

_ISOLATED_ENV = (
    "CASETRACE_DATABASE_URL",
    "CASETRACE_DATABASE_ADMIN_URL",
    "CASETRACE_GENERATION_BACKEND",
    "CASETRACE_ENABLE_FAULT_INJECTION",
    "CASETRACE_BACKOFF_MAX_RETRIES",
    "CASETRACE_BACKOFF_INITIAL_DELAY_MS",
    "CASETRACE_BACKOFF_MAX_DELAY_MS",
    "CASETRACE_OTEL_ENABLED",
    "GEMINI_API_KEY",
    "ANTHROPIC_API_KEY",
)


@pytest.fixture(autouse=True)
def _isolate(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Reset in-memory stores and strip backend-selecting env vars."""
    for name in _ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
    clear_all_in_memory_stores()
    yield
    clear_all_in_memory_stores()
    reset_engines()


def _make_case(*, with_document: bool = True, title: str = "Vendor switch") -> Case:
    """Seed a draft case, optionally with one document, and return it."""
    case_id = str(uuid.uuid4())
    documents = []
    if with_document:
        documents.append(
            CaseDocument(
                document_id=str(uuid.uuid4()),
                case_id=case_id,
                file_name="notes.txt",
                content="We agreed to proceed with the new vendor. Timeline may slip.",
            )
        )
    return seed_case_in_memory(Case(case_id=case_id, title=title, documents=documents))


@pytest.fixture
def case() -> Case:
    """A draft case with one document."""
    return _make_case()


@pytest.fixture
def case_factory() -> Callable[..., Case]:
    """Factory seeding cases; pass with_document=False for an empty case."""
    return _make_case
