"""create payment saga tables"""
from alembic import op
import sqlalchemy as sa

revision = "20260301_create_payment_tables"
down_revision = None
branch_labels = None
depends_on = None

payment_status = sa.Enum(
    "PENDING",
    "PROCESSING",
    "COMPLETED",
    "FAILED",
    "CANCELLED",
    "REFUNDED",
    name="paymentstatus",
)
payment_method = sa.Enum("CARD", "WALLET", "OTHER", name="paymentmethod")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("transaction_id", sa.String(length=64), nullable=False),
        sa.Column("payer_id", sa.Integer(), nullable=False),
        sa.Column("trip_id", sa.Integer(), nullable=True),
        sa.Column("manager_id", sa.Integer(), nullable=True),
        sa.Column("participant_count", sa.Integer(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("method", payment_method, nullable=False),
        sa.Column("status", payment_status, nullable=False),
        sa.Column("psp_intent_ref", sa.String(length=128), nullable=True),
        sa.Column("psp_session_ref", sa.String(length=128), nullable=True),
        sa.Column("psp_ref", sa.String(length=128), nullable=True),
        sa.Column("booking_id", sa.Integer(), nullable=True),
        sa.Column("pending_booking_details", sa.JSON(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("booking_attempted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_payment_non_negative_amount"),
        sa.UniqueConstraint("transaction_id"),
        sa.UniqueConstraint("psp_ref"),
    )
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index("ix_payments_payer_id", "payments", ["payer_id"])
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])
    op.create_index("ix_payments_psp_session_ref", "payments", ["psp_session_ref"])
    op.create_index("ix_payments_psp_intent_ref", "payments", ["psp_intent_ref"])

    op.create_table(
        "saved_payment_methods",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("method_type", payment_method, nullable=False),
        sa.Column("provider_method_id", sa.String(length=128), nullable=False),
        sa.Column("brand", sa.String(length=50), nullable=True),
        sa.Column("last4", sa.String(length=4), nullable=True),
        sa.Column("exp_month", sa.String(length=2), nullable=True),
        sa.Column("exp_year", sa.String(length=4), nullable=True),
        sa.Column("cardholder_name", sa.String(length=100), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "provider_method_id", name="uq_saved_payment_methods_user_token"),
    )
    op.create_index("ix_saved_payment_methods_user_id", "saved_payment_methods", ["user_id"])

    op.create_table(
        "psp_webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("kind", sa.String(length=100), nullable=False),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("raw_json", sa.JSON(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("provider", "event_id", name="uq_psp_webhook_events_provider_event_id"),
    )
    op.create_index("ix_psp_webhook_events_received", "psp_webhook_events", ["received_at"])
    op.create_index("ix_psp_webhook_events_kind", "psp_webhook_events", ["kind"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_psp_webhook_events_kind", table_name="psp_webhook_events")
    op.drop_index("ix_psp_webhook_events_received", table_name="psp_webhook_events")
    op.drop_table("psp_webhook_events")
    op.drop_index("ix_saved_payment_methods_user_id", table_name="saved_payment_methods")
    op.drop_table("saved_payment_methods")
    for index in (
        "ix_payments_psp_intent_ref",
        "ix_payments_psp_session_ref",
        "ix_payments_booking_id",
        "ix_payments_payer_id",
        "ix_payments_status",
    ):
        op.drop_index(index, table_name="payments")
    op.drop_table("payments")
    payment_status.drop(op.get_bind(), checkfirst=True)
    payment_method.drop(op.get_bind(), checkfirst=True)
