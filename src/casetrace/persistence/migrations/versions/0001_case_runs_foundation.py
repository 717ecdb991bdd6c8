"""Create case, step ledger, event log and report tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Tables created:
- cases: Case records with the run guard (status, current_run_id)
- case_documents: Uploaded documents with extracted text
- case_steps: Step ledger, unique per (case_id, step_number)
- case_events: Append-only lifecycle events with a BIGSERIAL cursor
- reports: One final report per case

All child tables cascade on case deletion.
"""

from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS cases (
            case_id TEXT PRIMARY KEY,
            title TEXT NOT NULL DEFAULT '',
            status VARCHAR(20) NOT NULL DEFAULT 'draft'
                CHECK (status IN ('draft', 'processing', 'completed', 'failed')),
            current_run_id TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS case_documents (
            document_id TEXT PRIMARY KEY,
            case_id TEXT NOT NULL REFERENCES cases(case_id) ON DELETE CASCADE,
            file_name TEXT NOT NULL,
            content TEXT NOT NULL DEFAULT '',
            metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_case_documents_case ON case_documents(case_id)"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS case_steps (
            step_id TEXT PRIMARY KEY,
            case_id TEXT NOT NULL REFERENCES cases(case_id) ON DELETE CASCADE,
            step_number INTEGER NOT NULL CHECK (step_number BETWEEN 1 AND 6),
            status VARCHAR(20) NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
            started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            payload JSONB,
            errors JSONB NOT NULL DEFAULT '[]'::jsonb,
            warnings JSONB NOT NULL DEFAULT '[]'::jsonb,
            retry_count INTEGER NOT NULL DEFAULT 0,
            tokens_used INTEGER NOT NULL DEFAULT 0,
            duration_ms INTEGER NOT NULL DEFAULT 0,
            UNIQUE (case_id, step_number)
        )
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS case_events (
            seq BIGSERIAL PRIMARY KEY,
            event_id TEXT NOT NULL UNIQUE,
            case_id TEXT NOT NULL REFERENCES cases(case_id) ON DELETE CASCADE,
            run_id TEXT NOT NULL,
            event_type VARCHAR(32) NOT NULL
                CHECK (event_type IN ('step_started', 'step_completed', 'step_failed')),
            step_number INTEGER NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_case_events_case_seq ON case_events(case_id, seq)"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS reports (
            case_id TEXT PRIMARY KEY REFERENCES cases(case_id) ON DELETE CASCADE,
            narrative TEXT NOT NULL,
            diagram TEXT NOT NULL,
            tokens_used INTEGER NOT NULL DEFAULT 0,
            duration_ms INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS reports")
    op.execute("DROP TABLE IF EXISTS case_events")
    op.execute("DROP TABLE IF EXISTS case_steps")
    op.execute("DROP TABLE IF EXISTS case_documents")
    op.execute("DROP TABLE IF EXISTS cases")
