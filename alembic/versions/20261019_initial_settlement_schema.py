"""initial settlement schema"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_initial_settlement"
down_revision = None
branch_labels = None
depends_on = None

TIER = ("FREE", "PRO", "ENTERPRISE")


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _fee_columns() -> list[sa.Column]:
    return [
        sa.Column("tier", sa.Enum(*TIER, name="tier", native_enum=False), nullable=False),
        sa.Column("transaction_fee", sa.Numeric(18, 2), nullable=False),
        sa.Column("gst_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("total_fees", sa.Numeric(18, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(18, 2), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "user_accounts",
        *_base_columns(),
        sa.Column("ref", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("tier", sa.Enum(*TIER, name="tier", native_enum=False), nullable=False),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_user_accounts_ref", "user_accounts", ["ref"], unique=True)

    op.create_table(
        "wallets",
        *_base_columns(),
        sa.Column("ref", sa.String(length=64), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("available", sa.Numeric(18, 2), nullable=False),
        sa.Column("pending", sa.Numeric(18, 2), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint("available >= 0", name="ck_wallet_available_non_negative"),
        sa.CheckConstraint("pending >= 0", name="ck_wallet_pending_non_negative"),
    )
    op.create_index("ix_wallets_ref", "wallets", ["ref"], unique=True)

    op.create_table(
        "ledger_entries",
        *_base_columns(),
        sa.Column("wallet_id", sa.Integer(), sa.ForeignKey("wallets.id"), nullable=False),
        sa.Column(
            "direction",
            sa.Enum("DEBIT", "CREDIT", name="entry_direction", native_enum=False),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("idempotency_key", sa.String(length=128), nullable=False),
        sa.Column("memo", sa.String(length=255), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_ledger_entry_positive_amount"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index("ix_ledger_entries_wallet_id", "ledger_entries", ["wallet_id"], unique=False)

    op.create_table(
        "transactions",
        *_base_columns(),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("buyer_ref", sa.String(length=64), nullable=False),
        sa.Column("seller_ref", sa.String(length=64), nullable=False),
        sa.Column(
            "path_kind",
            sa.Enum("DIRECT", "ESCROW", name="path_kind", native_enum=False),
            nullable=False,
        ),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_transaction_positive_amount"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index("ix_transactions_created_at", "transactions", ["created_at"], unique=False)
    op.create_index("ix_transactions_buyer_ref", "transactions", ["buyer_ref"], unique=False)
    op.create_index("ix_transactions_seller_ref", "transactions", ["seller_ref"], unique=False)

    op.create_table(
        "direct_transfers",
        *_base_columns(),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transactions.id"), nullable=False),
        sa.Column("buyer_ref", sa.String(length=64), nullable=False),
        sa.Column("seller_ref", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        *_fee_columns(),
        sa.Column(
            "status",
            sa.Enum(
                "VALIDATION",
                "CONFIRMATION",
                "PROCESSING",
                "COMPLETE",
                "FAILED",
                "CANCELLED",
                name="transfer_status",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.String(length=255), nullable=True),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_direct_transfer_positive_amount"),
        sa.CheckConstraint("net_amount >= 0", name="ck_direct_transfer_net_non_negative"),
        sa.CheckConstraint("attempts >= 0", name="ck_direct_transfer_attempts_non_negative"),
        sa.UniqueConstraint("transaction_id"),
    )
    op.create_index("ix_direct_transfers_status", "direct_transfers", ["status"], unique=False)

    op.create_table(
        "escrows",
        *_base_columns(),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transactions.id"), nullable=False),
        sa.Column("buyer_ref", sa.String(length=64), nullable=False),
        sa.Column("seller_ref", sa.String(length=64), nullable=False),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        *_fee_columns(),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING",
                "ACTIVE",
                "COMPLETED",
                "DISPUTED",
                "CANCELLED",
                "FAILED",
                name="escrow_status",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("release_attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.String(length=255), nullable=True),
        sa.Column("funded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint("total_amount > 0", name="ck_escrow_total_positive"),
        sa.CheckConstraint("net_amount >= 0", name="ck_escrow_net_non_negative"),
        sa.CheckConstraint("release_attempts >= 0", name="ck_escrow_release_attempts_non_negative"),
        sa.UniqueConstraint("transaction_id"),
    )
    op.create_index("ix_escrows_status", "escrows", ["status"], unique=False)
    op.create_index("ix_escrows_buyer_ref", "escrows", ["buyer_ref"], unique=False)
    op.create_index("ix_escrows_seller_ref", "escrows", ["seller_ref"], unique=False)

    op.create_table(
        "milestones",
        *_base_columns(),
        sa.Column("escrow_id", sa.Integer(), sa.ForeignKey("escrows.id"), nullable=False),
        sa.Column("idx", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("percentage", sa.Numeric(7, 4), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING",
                "IN_PROGRESS",
                "COMPLETED",
                "APPROVED",
                name="milestone_status",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("required_confirmations", sa.Integer(), nullable=False),
        sa.Column("current_confirmations", sa.Integer(), nullable=False),
        sa.Column("evidence", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.UniqueConstraint("escrow_id", "idx", name="uq_milestone_idx"),
        sa.CheckConstraint("amount > 0", name="ck_milestone_positive_amount"),
        sa.CheckConstraint("percentage > 0 AND percentage <= 100", name="ck_milestone_percentage_range"),
        sa.CheckConstraint("idx > 0", name="ck_milestone_positive_idx"),
        sa.CheckConstraint("required_confirmations >= 1", name="ck_milestone_required_confirmations"),
        sa.CheckConstraint(
            "current_confirmations >= 0 AND current_confirmations <= required_confirmations",
            name="ck_milestone_confirmations_bounded",
        ),
    )
    op.create_index("ix_milestones_escrow_id", "milestones", ["escrow_id"], unique=False)

    op.create_table(
        "disputes",
        *_base_columns(),
        sa.Column("escrow_id", sa.Integer(), sa.ForeignKey("escrows.id"), nullable=False),
        sa.Column("milestone_id", sa.Integer(), sa.ForeignKey("milestones.id"), nullable=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("OPEN", "UNDER_REVIEW", "RESOLVED", name="dispute_status", native_enum=False),
            nullable=False,
        ),
        sa.Column("opened_by", sa.String(length=100), nullable=False),
        sa.Column(
            "outcome",
            sa.Enum("resume", "cancel", name="dispute_outcome", native_enum=False),
            nullable=True,
        ),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        sa.Column("resolved_by", sa.String(length=100), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_disputes_escrow_id", "disputes", ["escrow_id"], unique=False)
    unresolved = sa.text("status != 'RESOLVED'")
    op.create_index(
        "uq_disputes_unresolved_escrow",
        "disputes",
        ["escrow_id"],
        unique=True,
        sqlite_where=unresolved,
        postgresql_where=unresolved,
    )

    op.create_table(
        "domain_events",
        *_base_columns(),
        sa.Column("aggregate_type", sa.String(length=50), nullable=False),
        sa.Column("aggregate_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=50), nullable=False),
        sa.Column("from_status", sa.String(length=30), nullable=True),
        sa.Column("to_status", sa.String(length=30), nullable=True),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_domain_events_aggregate", "domain_events", ["aggregate_type", "aggregate_id"], unique=False)
    op.create_index("ix_domain_events_dispatched_at", "domain_events", ["dispatched_at"], unique=False)
    op.create_index("ix_domain_events_kind", "domain_events", ["kind"], unique=False)

    op.create_table(
        "audit_logs",
        *_base_columns(),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"], unique=False)

    op.create_table(
        "alerts",
        *_base_columns(),
        sa.Column("type", sa.String(length=100), nullable=False),
        sa.Column("message", sa.String(length=255), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
    )
    op.create_index("ix_alerts_created_at", "alerts", ["created_at"], unique=False)
    op.create_index("ix_alerts_entity", "alerts", ["entity", "entity_id"], unique=False)
    op.create_index("ix_alerts_type", "alerts", ["type"], unique=False)


def downgrade() -> None:
    op.drop_table("alerts")
    op.drop_table("audit_logs")
    op.drop_table("domain_events")
    op.drop_index("uq_disputes_unresolved_escrow", table_name="disputes")
    op.drop_table("disputes")
    op.drop_table("milestones")
    op.drop_table("escrows")
    op.drop_table("direct_transfers")
    op.drop_table("transactions")
    op.drop_table("ledger_entries")
    op.drop_table("wallets")
    op.drop_table("user_accounts")
