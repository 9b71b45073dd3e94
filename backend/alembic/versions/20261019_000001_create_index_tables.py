from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "sort_codes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("code", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("parent_code", sa.Integer(), nullable=True),
        sa.Column("report_type", sa.String(length=20), nullable=True),
        sa.Column("sort_order", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("1"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("tenant_id", "code", name="uq_sort_codes_tenant_code"),
    )
    op.create_index("ix_sort_codes_tenant_id", "sort_codes", ["tenant_id"])

    op.create_table(
        "accounts_index",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("account_key", sa.Integer(), nullable=False),
        sa.Column("account_name", sa.String(length=255), nullable=False),
        sa.Column("sort_code", sa.Integer(), nullable=True),
        sa.Column("account_type", sa.String(length=20), nullable=True),
        sa.Column("id_number", sa.String(length=32), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("current_balance", sa.Numeric(14, 2), server_default=sa.text("0"), nullable=False),
        sa.Column("balance_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("1"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("tenant_id", "account_key", name="uq_accounts_index_tenant_key"),
    )
    op.create_index("ix_accounts_index_tenant_id", "accounts_index", ["tenant_id"])
    op.create_index("ix_accounts_index_sort_code", "accounts_index", ["sort_code"])

    op.create_table(
        "index_sync_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("index_type", sa.String(length=20), nullable=False),
        sa.Column("source", sa.String(length=50), nullable=False),
        sa.Column("total_records", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("added_records", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("updated_records", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("deleted_records", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("synced_by", sa.String(length=255), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_index_sync_history_tenant_id", "index_sync_history", ["tenant_id"])

    op.create_table(
        "cash_flow_classifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("prefixes", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("cash_flow_classifications")
    op.drop_index("ix_index_sync_history_tenant_id", table_name="index_sync_history")
    op.drop_table("index_sync_history")
    op.drop_index("ix_accounts_index_sort_code", table_name="accounts_index")
    op.drop_index("ix_accounts_index_tenant_id", table_name="accounts_index")
    op.drop_table("accounts_index")
    op.drop_index("ix_sort_codes_tenant_id", table_name="sort_codes")
    op.drop_table("sort_codes")
