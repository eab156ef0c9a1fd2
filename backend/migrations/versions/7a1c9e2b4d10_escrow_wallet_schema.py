"""escrow wallet schema

Revision ID: 7a1c9e2b4d10
Revises:
Create Date: 2026-10-19 09:12:44.118302

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7a1c9e2b4d10'
down_revision = None
branch_labels = None
depends_on = None

_COMPLETED_REFERENCE = sa.text("status = 'completed' AND gateway_reference IS NOT NULL")


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="student"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("available_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("escrow_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_earnings", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="BDT"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("available_balance >= 0", name="ck_wallets_available_non_negative"),
        sa.CheckConstraint("escrow_balance >= 0", name="ck_wallets_escrow_non_negative"),
    )
    op.create_index("ix_wallets_user_id", "wallets", ["user_id"], unique=True)

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="BDT"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="completed"),
        sa.Column("related_assignment_id", sa.String(length=64), nullable=True),
        sa.Column("gateway_reference", sa.String(length=128), nullable=True),
        sa.Column("meta", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_ledger_entries_amount_positive"),
    )
    op.create_index("ix_ledger_entries_user_id", "ledger_entries", ["user_id"])
    op.create_index("ix_ledger_entries_related_assignment_id", "ledger_entries", ["related_assignment_id"])
    op.create_index("ix_ledger_entries_gateway_reference", "ledger_entries", ["gateway_reference"])
    op.create_index("ix_ledger_entries_created_at", "ledger_entries", ["created_at"])
    op.create_index(
        "uq_ledger_entries_completed_reference",
        "ledger_entries",
        ["gateway_reference"],
        unique=True,
        sqlite_where=_COMPLETED_REFERENCE,
        postgresql_where=_COMPLETED_REFERENCE,
    )

    op.create_table(
        "escrow_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assignment_id", sa.String(length=64), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("tutor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="BDT"),
        sa.Column("state", sa.String(length=16), nullable=False, server_default="unpaid"),
        sa.Column("gateway_invoice_id", sa.String(length=128), nullable=True),
        sa.Column("resolution_meta", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("held_at", sa.DateTime(), nullable=True),
        sa.Column("settled_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_escrow_records_assignment_id", "escrow_records", ["assignment_id"], unique=True)
    op.create_index("ix_escrow_records_student_id", "escrow_records", ["student_id"])
    op.create_index("ix_escrow_records_tutor_id", "escrow_records", ["tutor_id"])
    op.create_index("ix_escrow_records_state", "escrow_records", ["state"])
    op.create_index("ix_escrow_records_gateway_invoice_id", "escrow_records", ["gateway_invoice_id"])

    op.create_table(
        "payment_intents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("assignment_id", sa.String(length=64), nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False, server_default="uddoktapay"),
        sa.Column("reference", sa.String(length=128), nullable=False, unique=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="BDT"),
        sa.Column("checkout_url", sa.String(length=512), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("meta", sa.Text(), nullable=True),
    )
    op.create_index("ix_payment_intents_user_id", "payment_intents", ["user_id"])
    op.create_index("ix_payment_intents_assignment_id", "payment_intents", ["assignment_id"])

    op.create_table(
        "platform_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("platform_fee_rate", sa.Numeric(6, 4), nullable=False, server_default="0.1"),
        sa.Column("min_transaction_fee", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("updated_by", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "withdrawal_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("account_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("account_number", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("bank_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("branch_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("routing_number", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("completed_by", sa.Integer(), nullable=True),
    )
    op.create_index("ix_withdrawal_requests_transaction_id", "withdrawal_requests", ["transaction_id"], unique=True)
    op.create_index("ix_withdrawal_requests_user_id", "withdrawal_requests", ["user_id"])
    op.create_index("ix_withdrawal_requests_requested_at", "withdrawal_requests", ["requested_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("target_type", sa.String(length=64), nullable=True),
        sa.Column("target_id", sa.String(length=64), nullable=True),
        sa.Column("meta", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])

    op.create_table(
        "idempotency_keys",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("route", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("request_hash", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("response_json", sa.Text(), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "key", name="uq_idempotency_keys_user_key"),
    )


def downgrade():
    op.drop_table("idempotency_keys")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("withdrawal_requests")
    op.drop_table("platform_settings")
    op.drop_table("payment_intents")
    op.drop_table("escrow_records")
    op.drop_index("uq_ledger_entries_completed_reference", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_table("wallets")
    op.drop_table("users")
