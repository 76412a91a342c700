"""Create exceptions table for error persistence."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op as alembic_op  # type: ignore[import-untyped]

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the exceptions table and the indexes used by rollups and listings."""

    alembic_op.create_table(
        "exceptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guid", sa.String(length=36), nullable=False, unique=True),
        sa.Column("application_name", sa.String(length=50), nullable=True),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("machine_name", sa.String(length=50), nullable=True),
        sa.Column("creation_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("type", sa.String(length=100), nullable=True),
        sa.Column("is_protected", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("host", sa.String(length=100), nullable=True),
        sa.Column("url", sa.String(length=500), nullable=True),
        sa.Column("http_method", sa.String(length=10), nullable=True),
        sa.Column("ip_address", sa.String(length=40), nullable=True),
        sa.Column("source", sa.String(length=100), nullable=True),
        sa.Column("message", sa.String(length=1000), nullable=True),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("error_hash", sa.Integer(), nullable=True),
        sa.Column("duplicate_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_log_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deletion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("full_json", sa.Text(), nullable=True),
    )

    alembic_op.create_index(
        "ix_exceptions_application_name",
        "exceptions",
        ["application_name"],
    )
    alembic_op.create_index(
        "ix_exceptions_error_hash",
        "exceptions",
        ["error_hash"],
    )


def downgrade() -> None:
    """Drop the exceptions table and related indexes."""

    alembic_op.drop_index("ix_exceptions_error_hash", table_name="exceptions")
    alembic_op.drop_index("ix_exceptions_application_name", table_name="exceptions")
    alembic_op.drop_table("exceptions")
