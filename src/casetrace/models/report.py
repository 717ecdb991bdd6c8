"""Report model: the final narrative produced by a fully successful run."""

from __future__ import annotations

from pydantic import BaseModel


class Report(BaseModel):
    """Final case report. At most one per case; replaced on re-run.

    Attributes:
        case_id: Case the report summarizes.
        narrative: Markdown narrative.
        diagram: Mermaid flow diagram of the analysis stages.
        tokens_used: Tokens consumed by the run that produced the report.
        duration_ms: Generation time accumulated by that run.
        created_at: ISO timestamp of first write.
        updated_at: ISO timestamp of latest upsert.
    """

    case_id: str
    narrative: str
    diagram: str
    tokens_used: int = 0
    duration_ms: int = 0
    created_at: str | None = None
    updated_at: str | None = None
