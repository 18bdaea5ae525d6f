"""add entities table

Revision ID: c3d4e5f6a7b8
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "c3d4e5f6a7b8"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "entities",
        sa.Column("pk", sa.String(255), nullable=False),
        sa.Column("sk", sa.String(255), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("data", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("pk", "sk"),
    )

    # Cross-partition scans (schedule fan-out) filter by type
    op.create_index("ix_entities_entity_type", "entities", ["entity_type"])
    # Retention purge
    op.create_index("ix_entities_expires_at", "entities", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_entities_expires_at", table_name="entities")
    op.drop_index("ix_entities_entity_type", table_name="entities")
    op.drop_table("entities")
