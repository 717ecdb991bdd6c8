"""Case model: the decision record a run operates on.

A case is created by an upstream collaborator (upload + text extraction) and
carries at least one document before it can be run. From the moment a run
starts, only the orchestrator mutates ``status`` and ``current_run_id``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class CaseStatus(StrEnum):
    """Lifecycle status of a case."""

    DRAFT = "draft"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_CASE_STATUSES: frozenset[CaseStatus] = frozenset(
    {CaseStatus.COMPLETED, CaseStatus.FAILED}
)
"""Statuses a run may leave a case in when it releases the guard."""


class CaseDocument(BaseModel):
    """Uploaded document attached to a case, with its extracted text.

    Attributes:
        document_id: Unique document identifier.
        case_id: Owning case.
        file_name: Original upload file name.
        content: Extracted plain text.
        metadata: Free-form extraction metadata (page count, mime type, ...).
        created_at: ISO timestamp of upload.
    """

    document_id: str
    case_id: str
    file_name: str
    content: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None


class Case(BaseModel):
    """A decision case.

    Attributes:
        case_id: Unique case identifier.
        title: Human-readable case title.
        status: Current lifecycle status.
        current_run_id: Run holding the guard, if any.
        created_at: ISO timestamp of creation.
        updated_at: ISO timestamp of last mutation.
        documents: Attached documents (populated by get_with_documents).
    """

    case_id: str
    title: str = ""
    status: CaseStatus = CaseStatus.DRAFT
    current_run_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    documents: list[CaseDocument] = Field(default_factory=list)

    @property
    def is_running(self) -> bool:
        """True when a run currently holds the guard for this case."""
        return self.status == CaseStatus.PROCESSING and self.current_run_id is not None
