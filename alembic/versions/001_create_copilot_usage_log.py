"""Create copilot_usage_log table

Revision ID: 001
Revises:
Create Date: 2026-01-06

"""
from alembic import op

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS copilot_usage_log (
            id BIGSERIAL PRIMARY KEY,
            contact_id UUID NOT NULL,
            project_id UUID NULL,
            tokens_used INTEGER NOT NULL DEFAULT 0,
            credits_deducted INTEGER NOT NULL DEFAULT 0,
            model_used VARCHAR(100) NULL,
            scope VARCHAR(20) NOT NULL DEFAULT 'portal'
                CHECK (scope IN ('global', 'project', 'portal', 'admin')),
            success BOOLEAN NOT NULL,
            error_kind VARCHAR(50) NULL,
            error_message TEXT NULL,
            context_sources JSONB NOT NULL DEFAULT '{}'::jsonb,
            response_time_ms INTEGER NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    # Quota counts scan one subject's rows since the window start
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_copilot_usage_log_contact_created
        ON copilot_usage_log (contact_id, created_at DESC)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_copilot_usage_log_project
        ON copilot_usage_log (project_id)
        WHERE project_id IS NOT NULL
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_copilot_usage_log_project")
    op.execute("DROP INDEX IF EXISTS idx_copilot_usage_log_contact_created")
    op.execute("DROP TABLE IF EXISTS copilot_usage_log")
