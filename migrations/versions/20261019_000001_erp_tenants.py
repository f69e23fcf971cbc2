"""Create erp_tenants registry table.

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # init_db may already have bootstrapped the table on sqlite.
    if sa.inspect(op.get_bind()).has_table("erp_tenants"):
        return
    op.create_table(
        "erp_tenants",
        sa.Column("tenant_id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("erp", sa.Text(), nullable=False, server_default=sa.text("'PROTHEUS'")),
        sa.Column("base_url", sa.Text(), nullable=False),
        sa.Column("query_path", sa.Text(), nullable=False, server_default=sa.text("'/DocAprov/documentos'")),
        sa.Column("action_path", sa.Text(), nullable=False, server_default=sa.text("'/aprova_documento'")),
        sa.Column("username", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("password", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("timeout_seconds", sa.Float(), nullable=False, server_default=sa.text("30")),
        sa.Column("company_code", sa.Text(), nullable=False, server_default=sa.text("'01'")),
        sa.Column("is_active", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("is_default", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("tenant_id", name="pk_erp_tenants"),
    )
    op.create_index(
        "idx_erp_tenants_active",
        "erp_tenants",
        ["is_active"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_erp_tenants_active", table_name="erp_tenants")
    op.drop_table("erp_tenants")
