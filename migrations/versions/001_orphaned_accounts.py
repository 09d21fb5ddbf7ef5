"""Orphaned-account ledger

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Changes:
  - Create orphaned_accounts table: phase-1 accounts whose compensating
    delete failed, retried on every bot launch
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "orphaned_accounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(64), nullable=False),
        sa.Column("account_role", sa.String(20), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
    )

    op.create_index(
        "ix_orphaned_accounts_account_id",
        "orphaned_accounts",
        ["account_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_orphaned_accounts_account_id", table_name="orphaned_accounts")
    op.drop_table("orphaned_accounts")
