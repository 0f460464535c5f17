"""create location tracking tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "a1b2c3d4e5f6"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="employee"),
        sa.Column("team", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_username", "users", ["username"])
    op.create_index("ix_users_team", "users", ["team"])

    op.create_table(
        "location_consents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "subject_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("has_consent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("consent_level", sa.String(20), nullable=False, server_default="none"),
        sa.Column("consent_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_location_consents_id", "location_consents", ["id"])
    op.create_index("ix_location_consents_subject_id", "location_consents", ["subject_id"], unique=True)

    op.create_table(
        "location_samples",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "subject_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("accuracy_meters", sa.Float(), nullable=True),
        sa.Column("accuracy", sa.String(10), nullable=False, server_default="low"),
        sa.Column("source", sa.String(10), nullable=False, server_default="other"),
        sa.Column("city", sa.String(120), nullable=True),
        sa.Column("region", sa.String(120), nullable=True),
        sa.Column("country", sa.String(120), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("subject_id", "timestamp", name="uq_location_sample_subject_timestamp"),
    )
    op.create_index("ix_location_samples_id", "location_samples", ["id"])
    op.create_index("idx_location_sample_timestamp", "location_samples", ["timestamp"])

    op.create_table(
        "location_audit_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("operator_id", sa.Integer(), nullable=False),
        sa.Column("subject_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
    )
    op.create_index("ix_location_audit_entries_id", "location_audit_entries", ["id"])
    op.create_index("idx_audit_operator_timestamp", "location_audit_entries", ["operator_id", "timestamp"])
    op.create_index("idx_audit_subject_timestamp", "location_audit_entries", ["subject_id", "timestamp"])


def downgrade() -> None:
    op.drop_index("idx_audit_subject_timestamp", table_name="location_audit_entries")
    op.drop_index("idx_audit_operator_timestamp", table_name="location_audit_entries")
    op.drop_index("ix_location_audit_entries_id", table_name="location_audit_entries")
    op.drop_table("location_audit_entries")

    op.drop_index("idx_location_sample_timestamp", table_name="location_samples")
    op.drop_index("ix_location_samples_id", table_name="location_samples")
    op.drop_table("location_samples")

    op.drop_index("ix_location_consents_subject_id", table_name="location_consents")
    op.drop_index("ix_location_consents_id", table_name="location_consents")
    op.drop_table("location_consents")

    op.drop_index("ix_users_team", table_name="users")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_index("ix_users_id", table_name="users")
    op.drop_table("users")
