"""Cases repository: case lookup and the run guard's compare-and-set.

Provides Postgres and in-memory implementations behind the CasesRepo
protocol. The guard operations (``try_acquire_run`` / ``release_run``) are
single conditional updates in both backends: the in-memory store performs
its check-and-set under a lock, and Postgres performs it as one
``UPDATE ... WHERE ... RETURNING`` statement.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import text

from casetrace.clock import to_iso, utc_now_iso
from casetrace.models.case import Case, CaseDocument, CaseStatus
from casetrace.persistence.db import get_app_engine, is_postgres_configured

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AcquireResult:
    """Outcome of a guard acquisition attempt.

    Attributes:
        acquired: True if the caller's run now holds the guard.
        current_run_id: Run holding the guard after the attempt. On a
            conflict this is the blocking run.
        case_exists: False if no case with the id exists.
    """

    acquired: bool
    current_run_id: str | None
    case_exists: bool = True


@runtime_checkable
class CasesRepo(Protocol):
    """Structural interface for case repositories."""

    def create(self, case: Case) -> Case: ...

    def add_document(self, document: CaseDocument) -> CaseDocument: ...

    def get(self, case_id: str) -> Case | None: ...

    def get_with_documents(self, case_id: str) -> Case | None: ...

    def try_acquire_run(self, case_id: str, run_id: str) -> AcquireResult: ...

    def release_run(self, case_id: str, run_id: str, status: CaseStatus) -> bool: ...


_cases_store: dict[str, dict[str, Any]] = {}
"""Global in-memory case store keyed by case_id."""

_case_documents_store: dict[str, list[dict[str, Any]]] = {}
"""Global in-memory document store keyed by case_id."""

_cases_lock = threading.Lock()


class InMemoryCasesRepository:
    """In-memory case repository for development and tests."""

    def create(self, case: Case) -> Case:
        """Store a new case (documents are stored separately).

        Raises:
            ValueError: If a case with the same id already exists.
        """
        now = utc_now_iso()
        stored = case.model_copy(
            update={
                "created_at": case.created_at or now,
                "updated_at": case.updated_at or now,
                "documents": [],
            }
        )
        with _cases_lock:
            if case.case_id in _cases_store:
                raise ValueError(f"Case {case.case_id} already exists")
            _cases_store[case.case_id] = stored.model_dump(exclude={"documents"})
        for document in case.documents:
            self.add_document(document)
        return self.get_with_documents(case.case_id) or stored

    def add_document(self, document: CaseDocument) -> CaseDocument:
        """Attach a document to an existing case.

        Raises:
            KeyError: If the case does not exist.
        """
        stored = document.model_copy(update={"created_at": document.created_at or utc_now_iso()})
        with _cases_lock:
            if document.case_id not in _cases_store:
                raise KeyError(f"Case {document.case_id} not found")
            _case_documents_store.setdefault(document.case_id, []).append(stored.model_dump())
        return stored

    def get(self, case_id: str) -> Case | None:
        """Return the case without documents, or None."""
        data = _cases_store.get(case_id)
        if data is None:
            return None
        return Case.model_validate(data)

    def get_with_documents(self, case_id: str) -> Case | None:
        """Return the case with its documents in upload order, or None."""
        case = self.get(case_id)
        if case is None:
            return None
        documents = [
            CaseDocument.model_validate(d) for d in _case_documents_store.get(case_id, [])
        ]
        return case.model_copy(update={"documents": documents})

    def try_acquire_run(self, case_id: str, run_id: str) -> AcquireResult:
        """Atomically claim the case for run_id unless another run holds it."""
        with _cases_lock:
            data = _cases_store.get(case_id)
            if data is None:
                return AcquireResult(acquired=False, current_run_id=None, case_exists=False)
            if data["status"] == CaseStatus.PROCESSING and data["current_run_id"] is not None:
                return AcquireResult(acquired=False, current_run_id=data["current_run_id"])
            data["status"] = CaseStatus.PROCESSING.value
            data["current_run_id"] = run_id
            data["updated_at"] = utc_now_iso()
            return AcquireResult(acquired=True, current_run_id=run_id)

    def release_run(self, case_id: str, run_id: str, status: CaseStatus) -> bool:
        """Clear the guard and set a terminal status if run_id still holds it.

        Returns:
            True if the guard was released, False if run_id did not hold it.
        """
        with _cases_lock:
            data = _cases_store.get(case_id)
            if data is None or data["current_run_id"] != run_id:
                return False
            data["status"] = CaseStatus(status).value
            data["current_run_id"] = None
            data["updated_at"] = utc_now_iso()
            return True


class PostgresCasesRepository:
    """Postgres case repository.

    Every method runs in its own short transaction on the given engine.

    Args:
        engine: SQLAlchemy engine for the application database.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def create(self, case: Case) -> Case:
        """Insert a new case and its documents in one transaction."""
        with self._engine.begin() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO cases (case_id, title, status, current_run_id)
                    VALUES (:case_id, :title, :status, :current_run_id)
                    """
                ),
                {
                    "case_id": case.case_id,
                    "title": case.title,
                    "status": CaseStatus(case.status).value,
                    "current_run_id": case.current_run_id,
                },
            )
            for document in case.documents:
                self._insert_document(conn, document)
        created = self.get_with_documents(case.case_id)
        assert created is not None
        return created

    def add_document(self, document: CaseDocument) -> CaseDocument:
        """Attach a document to an existing case."""
        with self._engine.begin() as conn:
            self._insert_document(conn, document)
        return document

    def _insert_document(self, conn: Any, document: CaseDocument) -> None:
        conn.execute(
            text(
                """
                INSERT INTO case_documents (document_id, case_id, file_name, content, metadata)
                VALUES (:document_id, :case_id, :file_name, :content, CAST(:metadata AS JSONB))
                """
            ),
            {
                "document_id": document.document_id,
                "case_id": document.case_id,
                "file_name": document.file_name,
                "content": document.content,
                "metadata": json.dumps(document.metadata),
            },
        )

    def get(self, case_id: str) -> Case | None:
        """Return the case without documents, or None."""
        with self._engine.begin() as conn:
            row = conn.execute(
                text(
                    """
                    SELECT case_id, title, status, current_run_id, created_at, updated_at
                    FROM cases
                    WHERE case_id = :case_id
                    """
                ),
                {"case_id": case_id},
            ).fetchone()
        if row is None:
            return None
        return self._row_to_case(row)

    def get_with_documents(self, case_id: str) -> Case | None:
        """Return the case with its documents in upload order, or None."""
        case = self.get(case_id)
        if case is None:
            return None
        with self._engine.begin() as conn:
            rows = conn.execute(
                text(
                    """
                    SELECT document_id, case_id, file_name, content, metadata, created_at
                    FROM case_documents
                    WHERE case_id = :case_id
                    ORDER BY created_at, document_id
                    """
                ),
                {"case_id": case_id},
            ).fetchall()
        documents = [
            CaseDocument(
                document_id=str(row.document_id),
                case_id=str(row.case_id),
                file_name=row.file_name,
                content=row.content or "",
                metadata=(
                    json.loads(row.metadata) if isinstance(row.metadata, str) else row.metadata
                )
                or {},
                created_at=to_iso(row.created_at),
            )
            for row in rows
        ]
        return case.model_copy(update={"documents": documents})

    def try_acquire_run(self, case_id: str, run_id: str) -> AcquireResult:
        """Atomically claim the case for run_id unless another run holds it."""
        with self._engine.begin() as conn:
            acquired = conn.execute(
                text(
                    """
                    UPDATE cases
                    SET status = 'processing', current_run_id = :run_id, updated_at = now()
                    WHERE case_id = :case_id
                      AND NOT (status = 'processing' AND current_run_id IS NOT NULL)
                    RETURNING current_run_id
                    """
                ),
                {"case_id": case_id, "run_id": run_id},
            ).fetchone()
            if acquired is not None:
                return AcquireResult(acquired=True, current_run_id=str(acquired.current_run_id))

            holder = conn.execute(
                text("SELECT current_run_id FROM cases WHERE case_id = :case_id"),
                {"case_id": case_id},
            ).fetchone()

        if holder is None:
            return AcquireResult(acquired=False, current_run_id=None, case_exists=False)
        current = str(holder.current_run_id) if holder.current_run_id is not None else None
        return AcquireResult(acquired=False, current_run_id=current)

    def release_run(self, case_id: str, run_id: str, status: CaseStatus) -> bool:
        """Clear the guard and set a terminal status if run_id still holds it."""
        with self._engine.begin() as conn:
            result = conn.execute(
                text(
                    """
                    UPDATE cases
                    SET status = :status, current_run_id = NULL, updated_at = now()
                    WHERE case_id = :case_id AND current_run_id = :run_id
                    """
                ),
                {"case_id": case_id, "run_id": run_id, "status": CaseStatus(status).value},
            )
        return bool(result.rowcount)

    def _row_to_case(self, row: Any) -> Case:
        return Case(
            case_id=str(row.case_id),
            title=row.title or "",
            status=row.status,
            current_run_id=str(row.current_run_id) if row.current_run_id is not None else None,
            created_at=to_iso(row.created_at),
            updated_at=to_iso(row.updated_at),
        )


def seed_case_in_memory(case: Case) -> Case:
    """Insert a case (and its documents) into the in-memory store. For testing."""
    return InMemoryCasesRepository().create(case)


def clear_cases_store() -> None:
    """Clear the in-memory case and document stores. For testing only."""
    with _cases_lock:
        _cases_store.clear()
        _case_documents_store.clear()


def get_cases_repository(
    engine: Engine | None = None,
) -> PostgresCasesRepository | InMemoryCasesRepository:
    """Factory returning the Postgres repository when configured, else in-memory.

    Args:
        engine: Engine override; defaults to the application engine.
    """
    if is_postgres_configured():
        return PostgresCasesRepository(engine or get_app_engine())
    return InMemoryCasesRepository()
