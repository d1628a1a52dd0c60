"""auto-gift baseline

Revision ID: 5e0c1a7b9d21
Revises:
Create Date: 2026-03-02

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from app.models.enums import (
    TERMINAL_EXECUTION_STATUSES,
    ExecutionStatus,
    FundingAlertType,
    FundingScheduleStatus,
    FundingStatus,
    OnboardingState,
    OrderStatus,
    PaymentStatus,
    status_enum,
)


revision = "5e0c1a7b9d21"
down_revision = None
branch_labels = None
depends_on = None


_TERMINAL_SQL = ", ".join(f"'{s.value}'" for s in sorted(TERMINAL_EXECUTION_STATUSES, key=lambda s: s.value))


def _table_exists(bind, table_name: str) -> bool:
    insp = sa.inspect(bind)
    return table_name in insp.get_table_names()


def _timestamps(updated: bool = True):
    cols = [sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True)]
    if updated:
        cols.append(sa.Column("updated_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True))
    return cols


def upgrade() -> None:
    bind = op.get_bind()

    if not _table_exists(bind, "occasions"):
        op.create_table(
            "occasions",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("user_id", sa.String(length=100), nullable=False),
            sa.Column("recipient_id", sa.String(length=100), nullable=True),
            sa.Column("recipient_email", sa.String(length=255), nullable=True),
            sa.Column("recipient_name", sa.String(length=200), nullable=True),
            sa.Column("date_type", sa.String(length=30), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=True),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("recurring", sa.String(length=10), nullable=False, server_default="yearly"),
            *_timestamps(),
        )
        op.create_index("ix_occasions_user_date_type", "occasions", ["user_id", "date_type"])

    if not _table_exists(bind, "wishlist_items"):
        op.create_table(
            "wishlist_items",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("user_id", sa.String(length=100), nullable=False),
            sa.Column("product_id", sa.String(length=100), nullable=False),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("price", sa.Numeric(10, 2), nullable=True),
            sa.Column("category", sa.String(length=100), nullable=True),
            sa.Column("retailer", sa.String(length=50), nullable=True),
            sa.Column("image_url", sa.String(length=1000), nullable=True),
            sa.Column("rating", sa.Float(), nullable=True),
            sa.Column("review_count", sa.Integer(), nullable=True),
            sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(updated=False),
            sa.UniqueConstraint("user_id", "product_id", name="uq_wishlist_items_user_product"),
        )
        op.create_index("ix_wishlist_items_user_id", "wishlist_items", ["user_id"])

    if not _table_exists(bind, "auto_gifting_settings"):
        op.create_table(
            "auto_gifting_settings",
            sa.Column("user_id", sa.String(length=100), primary_key=True, nullable=False),
            sa.Column("auto_approve_gifts", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("default_budget_limit", sa.Numeric(10, 2), nullable=True),
            sa.Column("default_notification_days", sa.JSON(), nullable=True),
            sa.Column("payment_customer_id", sa.String(length=100), nullable=True),
            sa.Column("notification_email", sa.String(length=255), nullable=True),
            *_timestamps(),
        )

    if not _table_exists(bind, "auto_gifting_rules"):
        op.create_table(
            "auto_gifting_rules",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("user_id", sa.String(length=100), nullable=False),
            sa.Column("recipient_id", sa.String(length=100), nullable=True),
            sa.Column("pending_recipient_email", sa.String(length=255), nullable=True),
            sa.Column("occasion_id", UUID(as_uuid=True), sa.ForeignKey("occasions.id", ondelete="SET NULL"), nullable=True),
            sa.Column("date_type", sa.String(length=30), nullable=False),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("budget_limit", sa.Numeric(10, 2), nullable=False),
            sa.Column("gift_selection_criteria", sa.JSON(), nullable=False),
            sa.Column("notification_days", sa.JSON(), nullable=False),
            sa.Column("payment_method_id", sa.String(length=100), nullable=True),
            sa.Column("require_approval", sa.Boolean(), nullable=True),
            sa.Column("gift_message", sa.String(length=500), nullable=True),
            sa.Column("shipping_address", sa.JSON(), nullable=True),
            sa.Column("deactivated_at", sa.TIMESTAMP(), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_auto_gifting_rules_user_id", "auto_gifting_rules", ["user_id"])
        op.create_index("ix_auto_gifting_rules_active", "auto_gifting_rules", ["active"])

    if not _table_exists(bind, "automated_gift_executions"):
        op.create_table(
            "automated_gift_executions",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("user_id", sa.String(length=100), nullable=False),
            sa.Column("rule_id", UUID(as_uuid=True), sa.ForeignKey("auto_gifting_rules.id"), nullable=False),
            sa.Column("occasion_id", UUID(as_uuid=True), sa.ForeignKey("occasions.id", ondelete="SET NULL"), nullable=True),
            sa.Column("occasion_date", sa.Date(), nullable=False),
            sa.Column("execution_date", sa.Date(), nullable=False),
            sa.Column("status", status_enum(ExecutionStatus, "execution_status"), nullable=False),
            sa.Column("selected_products", sa.JSON(), nullable=True),
            sa.Column("total_amount", sa.Numeric(10, 2), nullable=True),
            sa.Column("gift_message", sa.String(length=500), nullable=True),
            sa.Column("ai_agent", sa.String(length=50), nullable=True),
            sa.Column("confidence_score", sa.Float(), nullable=True),
            sa.Column("discovery_method", sa.String(length=30), nullable=True),
            sa.Column("order_id", UUID(as_uuid=True), nullable=True),
            sa.Column("error_message", sa.String(length=2000), nullable=True),
            sa.Column("claimed_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("claimed_by", sa.String(length=100), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_automated_gift_executions_user_id", "automated_gift_executions", ["user_id"])
        op.create_index("ix_automated_gift_executions_status", "automated_gift_executions", ["status"])

    insp = sa.inspect(bind)
    indexes = {ix["name"] for ix in insp.get_indexes("automated_gift_executions")}
    if "uq_automated_gift_executions_active_occurrence" not in indexes:
        where = sa.text(f"status NOT IN ({_TERMINAL_SQL})")
        op.create_index(
            "uq_automated_gift_executions_active_occurrence",
            "automated_gift_executions",
            ["rule_id", "occasion_date"],
            unique=True,
            postgresql_where=where,
            sqlite_where=where,
        )

    if not _table_exists(bind, "email_approval_tokens"):
        op.create_table(
            "email_approval_tokens",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("user_id", sa.String(length=100), nullable=False),
            sa.Column("execution_id", UUID(as_uuid=True), sa.ForeignKey("automated_gift_executions.id"), nullable=False),
            sa.Column("token", sa.String(length=128), nullable=False, unique=True),
            sa.Column("approved_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("rejected_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("approved_via", sa.String(length=20), nullable=True),
            sa.Column("rejection_reason", sa.String(length=500), nullable=True),
            sa.Column("expires_at", sa.TIMESTAMP(), nullable=False),
            sa.Column("email_sent_at", sa.TIMESTAMP(), nullable=True),
            *_timestamps(updated=False),
            sa.CheckConstraint("approved_at IS NULL OR rejected_at IS NULL", name="ck_email_approval_tokens_single_outcome"),
        )
        op.create_index("ix_email_approval_tokens_execution_id", "email_approval_tokens", ["execution_id"])

    if not _table_exists(bind, "gift_orders"):
        op.create_table(
            "gift_orders",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("user_id", sa.String(length=100), nullable=False),
            sa.Column("execution_id", UUID(as_uuid=True), sa.ForeignKey("automated_gift_executions.id"), nullable=False, unique=True),
            sa.Column("status", status_enum(OrderStatus, "gift_order_status"), nullable=False),
            sa.Column("payment_status", status_enum(PaymentStatus, "gift_order_payment_status"), nullable=False),
            sa.Column("payment_authorization_id", sa.String(length=100), nullable=True),
            sa.Column("payment_capture_id", sa.String(length=100), nullable=True),
            sa.Column("payment_idempotency_key", sa.String(length=150), nullable=False),
            sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="usd"),
            sa.Column("products", sa.JSON(), nullable=False),
            sa.Column("shipping_address", sa.JSON(), nullable=True),
            sa.Column("gift_message", sa.String(length=500), nullable=True),
            sa.Column("delivery_date", sa.Date(), nullable=False),
            sa.Column("capture_date", sa.Date(), nullable=False),
            sa.Column("funding_status", status_enum(FundingStatus, "gift_order_funding_status"), nullable=False),
            sa.Column("funding_hold_reason", sa.String(length=50), nullable=True),
            sa.Column("funds_allocated_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("expected_funds_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("vendor_order_id", sa.String(length=100), nullable=True),
            sa.Column("vendor_idempotency_key", sa.String(length=150), nullable=True),
            sa.Column("submitted_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("needs_intervention", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("error_message", sa.String(length=2000), nullable=True),
            sa.Column("claimed_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("claimed_by", sa.String(length=100), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_gift_orders_user_id", "gift_orders", ["user_id"])
        op.create_index("ix_gift_orders_status_capture_date", "gift_orders", ["status", "capture_date"])
        op.create_index("ix_gift_orders_status_funding", "gift_orders", ["status", "funding_status"])

    if not _table_exists(bind, "zma_funding_schedule"):
        op.create_table(
            "zma_funding_schedule",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("status", status_enum(FundingScheduleStatus, "zma_funding_schedule_status"), nullable=False),
            sa.Column("expected_payout_date", sa.Date(), nullable=True),
            sa.Column("expected_amount", sa.Numeric(12, 2), nullable=True),
            sa.Column("actual_payout_date", sa.Date(), nullable=True),
            sa.Column("actual_amount", sa.Numeric(12, 2), nullable=True),
            sa.Column("transfer_date", sa.TIMESTAMP(), nullable=True),
            sa.Column("transfer_amount", sa.Numeric(12, 2), nullable=True),
            sa.Column("transferred_to_vendor", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("zma_balance_before", sa.Numeric(12, 2), nullable=True),
            sa.Column("admin_confirmed_by", sa.String(length=100), nullable=True),
            sa.Column("notes", sa.String(length=1000), nullable=True),
            *_timestamps(updated=False),
        )

    if not _table_exists(bind, "zma_funding_alerts"):
        op.create_table(
            "zma_funding_alerts",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("alert_type", status_enum(FundingAlertType, "zma_funding_alert_type"), nullable=False),
            sa.Column("zma_current_balance", sa.Numeric(12, 2), nullable=False),
            sa.Column("projected_balance", sa.Numeric(12, 2), nullable=False),
            sa.Column("pending_orders_value", sa.Numeric(12, 2), nullable=False),
            sa.Column("recommended_transfer_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("orders_count_waiting", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("alert_sent_at", sa.TIMESTAMP(), nullable=False),
            sa.Column("resolved_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("resolved_by", sa.String(length=100), nullable=True),
        )

    if not _table_exists(bind, "internal_jobs"):
        op.create_table(
            "internal_jobs",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("job_key", sa.String(length=100), nullable=False, unique=True),
            sa.Column("stage", sa.String(length=50), nullable=False),
            sa.Column("params", sa.JSON(), nullable=False),
            sa.Column("active", sa.Boolean(), nullable=True, server_default=sa.true()),
            sa.Column("schedule", sa.JSON(), nullable=True),
            sa.Column("next_run_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("last_run_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("locked_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("locked_by", sa.String(length=100), nullable=True),
            sa.Column("last_status", sa.String(length=20), nullable=True),
            sa.Column("last_error", sa.String(length=2000), nullable=True),
            sa.Column("last_stats", sa.JSON(), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_internal_jobs_next_run_at", "internal_jobs", ["next_run_at"], unique=False)

    if not _table_exists(bind, "onboarding_progress"):
        op.create_table(
            "onboarding_progress",
            sa.Column("user_id", sa.String(length=100), primary_key=True, nullable=False),
            sa.Column("state", status_enum(OnboardingState, "onboarding_state"), nullable=False),
            sa.Column("skipped_steps", sa.JSON(), nullable=False),
            sa.Column("completed_at", sa.TIMESTAMP(), nullable=True),
            *_timestamps(),
        )


def downgrade() -> None:
    bind = op.get_bind()

    for table_name in (
        "onboarding_progress",
        "internal_jobs",
        "zma_funding_alerts",
        "zma_funding_schedule",
        "gift_orders",
        "email_approval_tokens",
        "automated_gift_executions",
        "auto_gifting_rules",
        "auto_gifting_settings",
        "wishlist_items",
        "occasions",
    ):
        if _table_exists(bind, table_name):
            op.drop_table(table_name)
