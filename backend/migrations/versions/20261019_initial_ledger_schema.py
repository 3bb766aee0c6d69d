"""Initial cash ledger and invoicing schema

Revision ID: 20261019_initial_ledger
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("legal_name", sa.String(255), nullable=True),
        sa.Column("tax_id", sa.String(32), nullable=True),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("postal_code", sa.String(16), nullable=True),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("province", sa.String(128), nullable=True),
        sa.Column("country_code", sa.String(3), nullable=False, server_default="ESP"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_tenants"),
        sa.UniqueConstraint("code", name="uq_tenants_code"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("tenants", schema=None) as batch_op:
        batch_op.create_index("ix_tenants_code", ["code"], unique=False)
        batch_op.create_index("ix_tenants_is_active", ["is_active"], unique=False)

    op.create_table(
        "cash_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="open"),
        sa.Column("initial_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("final_amount_counted_cents", sa.Integer(), nullable=True),
        sa.Column("expected_cash_cents", sa.Integer(), nullable=True),
        sa.Column("difference_cents", sa.Integer(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_movement_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opened_by", sa.String(128), nullable=True),
        sa.Column("closed_by", sa.String(128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("closing_notes", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], name="fk_cash_sessions_tenant_id_tenants"),
        sa.PrimaryKeyConstraint("id", name="pk_cash_sessions"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("cash_sessions", schema=None) as batch_op:
        batch_op.create_index("ix_cash_sessions_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_cash_sessions_status", ["status"], unique=False)
        batch_op.create_index("ix_cash_sessions_opened_at", ["opened_at"], unique=False)
        batch_op.create_index("ix_cash_sessions_tenant_opened", ["tenant_id", "opened_at"], unique=False)

    # At most one open session per tenant
    op.create_index(
        "uq_cash_sessions_one_open_per_tenant",
        "cash_sessions",
        ["tenant_id"],
        unique=True,
        sqlite_where=sa.text("status = 'open'"),
        postgresql_where=sa.text("status = 'open'"),
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("number", sa.String(64), nullable=False),
        sa.Column("series", sa.String(8), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("period_key", sa.String(16), nullable=False),
        sa.Column("invoice_type", sa.String(16), nullable=False, server_default="ordinary"),
        sa.Column("status", sa.String(16), nullable=False, server_default="issued"),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("customer_tax_id", sa.String(32), nullable=True),
        sa.Column("customer_address", sa.String(255), nullable=True),
        sa.Column("customer_postal_code", sa.String(16), nullable=True),
        sa.Column("customer_city", sa.String(128), nullable=True),
        sa.Column("customer_province", sa.String(128), nullable=True),
        sa.Column("customer_country", sa.String(3), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("customer_phone", sa.String(32), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("tax_rate_code", sa.String(16), nullable=False),
        sa.Column("tax_rate_bps", sa.Integer(), nullable=False),
        sa.Column("global_discount_bps", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("taxable_base_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("amount_paid_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_method_hint", sa.String(16), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("voided_by", sa.String(128), nullable=True),
        sa.Column("corrects_invoice_id", sa.Integer(), nullable=True),
        sa.Column("correction_reason", sa.Text(), nullable=True),
        sa.Column("source_reference", sa.String(64), nullable=True),
        sa.Column("document_hash", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("created_by", sa.String(128), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], name="fk_invoices_tenant_id_tenants"),
        sa.ForeignKeyConstraint(["corrects_invoice_id"], ["invoices.id"], name="fk_invoices_corrects_invoice_id_invoices"),
        sa.PrimaryKeyConstraint("id", name="pk_invoices"),
        sa.UniqueConstraint("tenant_id", "number", name="uq_invoices_tenant_number"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("invoices", schema=None) as batch_op:
        batch_op.create_index("ix_invoices_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_invoices_invoice_type", ["invoice_type"], unique=False)
        batch_op.create_index("ix_invoices_status", ["status"], unique=False)
        batch_op.create_index("ix_invoices_payment_status", ["payment_status"], unique=False)
        batch_op.create_index("ix_invoices_issue_date", ["issue_date"], unique=False)
        batch_op.create_index("ix_invoices_corrects_invoice_id", ["corrects_invoice_id"], unique=False)
        batch_op.create_index("ix_invoices_source_reference", ["source_reference"], unique=False)
        batch_op.create_index("ix_invoices_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_invoices_tenant_status_issue", ["tenant_id", "status", "issue_date"], unique=False)
        batch_op.create_index("ix_invoices_tenant_due", ["tenant_id", "due_date"], unique=False)

    op.create_table(
        "invoice_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("quantity_milli", sa.Integer(), nullable=False),
        sa.Column("unit", sa.String(16), nullable=True),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_discount_bps", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("base_cents", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], name="fk_invoice_lines_invoice_id_invoices"),
        sa.PrimaryKeyConstraint("id", name="pk_invoice_lines"),
        sa.UniqueConstraint("invoice_id", "position", name="uq_invoice_lines_invoice_position"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("invoice_lines", schema=None) as batch_op:
        batch_op.create_index("ix_invoice_lines_invoice_id", ["invoice_id"], unique=False)

    op.create_table(
        "invoice_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(16), nullable=False),
        sa.Column("reference", sa.String(128), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("received_by", sa.String(128), nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], name="fk_invoice_payments_tenant_id_tenants"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], name="fk_invoice_payments_invoice_id_invoices"),
        sa.PrimaryKeyConstraint("id", name="pk_invoice_payments"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("invoice_payments", schema=None) as batch_op:
        batch_op.create_index("ix_invoice_payments_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_invoice_payments_invoice_id", ["invoice_id"], unique=False)
        batch_op.create_index("ix_invoice_payments_method", ["method"], unique=False)
        batch_op.create_index("ix_invoice_payments_tenant_received", ["tenant_id", "received_at"], unique=False)

    op.create_table(
        "cash_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("movement_type", sa.String(16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(16), nullable=False, server_default="cash"),
        sa.Column("concept", sa.String(255), nullable=True),
        sa.Column("category", sa.String(64), nullable=True),
        sa.Column("invoice_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("created_by", sa.String(128), nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], name="fk_cash_movements_tenant_id_tenants"),
        sa.ForeignKeyConstraint(["session_id"], ["cash_sessions.id"], name="fk_cash_movements_session_id_cash_sessions"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], name="fk_cash_movements_invoice_id_invoices"),
        sa.PrimaryKeyConstraint("id", name="pk_cash_movements"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("cash_movements", schema=None) as batch_op:
        batch_op.create_index("ix_cash_movements_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_cash_movements_session_id", ["session_id"], unique=False)
        batch_op.create_index("ix_cash_movements_movement_type", ["movement_type"], unique=False)
        batch_op.create_index("ix_cash_movements_payment_method", ["payment_method"], unique=False)
        batch_op.create_index("ix_cash_movements_invoice_id", ["invoice_id"], unique=False)
        batch_op.create_index("ix_cash_movements_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_cash_movements_session_created", ["session_id", "created_at"], unique=False)
        batch_op.create_index("ix_cash_movements_tenant_created", ["tenant_id", "created_at"], unique=False)

    op.create_table(
        "reconciliation_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("expected_cash_cents", sa.Integer(), nullable=False),
        sa.Column("counted_cash_cents", sa.Integer(), nullable=False),
        sa.Column("difference_cents", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(16), nullable=False),
        sa.Column("is_closing", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("initial_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cash_sales_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expenses_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cash_in_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cash_out_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("performed_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("performed_by", sa.String(128), nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], name="fk_reconciliation_records_tenant_id_tenants"),
        sa.ForeignKeyConstraint(["session_id"], ["cash_sessions.id"], name="fk_reconciliation_records_session_id_cash_sessions"),
        sa.PrimaryKeyConstraint("id", name="pk_reconciliation_records"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("reconciliation_records", schema=None) as batch_op:
        batch_op.create_index("ix_reconciliation_records_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_reconciliation_records_session_id", ["session_id"], unique=False)
        batch_op.create_index("ix_reconciliation_records_state", ["state"], unique=False)
        batch_op.create_index("ix_reconciliations_tenant_performed", ["tenant_id", "performed_at"], unique=False)

    op.create_table(
        "sequence_counters",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("period_key", sa.String(16), nullable=False),
        sa.Column("next_value", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], name="fk_sequence_counters_tenant_id_tenants"),
        sa.PrimaryKeyConstraint("id", name="pk_sequence_counters"),
        sa.UniqueConstraint(
            "tenant_id", "document_type", "period_key",
            name="uq_sequence_counters_tenant_type_period",
        ),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("sequence_counters", schema=None) as batch_op:
        batch_op.create_index("ix_sequence_counters_tenant_id", ["tenant_id"], unique=False)


def downgrade():
    op.drop_table("sequence_counters")
    op.drop_table("reconciliation_records")
    op.drop_table("cash_movements")
    op.drop_table("invoice_payments")
    op.drop_table("invoice_lines")
    op.drop_table("invoices")
    op.drop_index("uq_cash_sessions_one_open_per_tenant", table_name="cash_sessions")
    op.drop_table("cash_sessions")
    op.drop_table("tenants")
