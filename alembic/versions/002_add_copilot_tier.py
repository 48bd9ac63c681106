"""Add copilot tier and model override to organizations

Revision ID: 002
Revises: 001
Create Date: 2026-01-06

"""
from alembic import op

# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("""
        ALTER TABLE organizations
        ADD COLUMN IF NOT EXISTS copilot_tier VARCHAR(20) NOT NULL DEFAULT 'free'
            CHECK (copilot_tier IN ('free', 'standard', 'premium', 'unlimited'))
    """)
    op.execute("""
        ALTER TABLE organizations
        ADD COLUMN IF NOT EXISTS copilot_model VARCHAR(100) NULL
    """)


def downgrade() -> None:
    op.execute("ALTER TABLE organizations DROP COLUMN IF EXISTS copilot_model")
    op.execute("ALTER TABLE organizations DROP COLUMN IF EXISTS copilot_tier")
