"""Credential pool: credentials table

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    circuit_state = sa.Enum("CLOSED", "OPEN", "HALF_OPEN", name="circuitstate")
    failure_reason = sa.Enum(
        "RATE_LIMITED", "AUTH_REJECTED", "TIMEOUT", "UNKNOWN", name="failurereason"
    )

    op.create_table(
        "credentials",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("service_name", sa.String(64), nullable=False),
        sa.Column("key_name", sa.String(255), nullable=False),
        sa.Column("encrypted_secret", sa.Text(), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("circuit_state", circuit_state, nullable=False, server_default="CLOSED"),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cooldown_seconds", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("last_failure_reason", failure_reason, nullable=True),
        sa.Column("last_failure_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_tested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("usage_count >= 0", name="ck_credentials_usage_nonnegative"),
    )
    op.create_index(
        "ix_credentials_service_active", "credentials", ["service_name", "is_active"]
    )


def downgrade() -> None:
    op.drop_index("ix_credentials_service_active", table_name="credentials")
    op.drop_table("credentials")
    sa.Enum(name="failurereason").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="circuitstate").drop(op.get_bind(), checkfirst=True)
