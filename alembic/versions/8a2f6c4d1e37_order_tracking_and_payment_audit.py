"""order tracking and payment audit

Revision ID: 8a2f6c4d1e37
Revises: 5e0c1a7b9d21
Create Date: 2026-03-16

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from app.models.enums import TERMINAL_EXECUTION_STATUSES, ExecutionStatus, OrderStatus


revision = "8a2f6c4d1e37"
down_revision = "5e0c1a7b9d21"
branch_labels = None
depends_on = None


ACTIVE_OCCURRENCE_INDEX = "uq_automated_gift_executions_active_occurrence"

NEW_ORDER_STATUSES = {OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.FULFILLMENT_FAILED}
NEW_EXECUTION_STATUSES = {ExecutionStatus.COMPLETED, ExecutionStatus.FULFILLMENT_FAILED}

TRACKING_COLUMNS = (
    ("vendor_status", lambda: sa.String(length=50)),
    ("last_synced_at", sa.TIMESTAMP),
    ("tracking_number", lambda: sa.String(length=100)),
    ("carrier", lambda: sa.String(length=100)),
    ("tracking_url", lambda: sa.String(length=500)),
    ("shipped_at", sa.TIMESTAMP),
    ("delivered_at", sa.TIMESTAMP),
)


def _in_list(values) -> str:
    return ", ".join(f"'{v.value}'" for v in sorted(values, key=lambda s: s.value))


def _replace_status_check(table: str, name: str, values) -> None:
    # non-native enums are plain strings guarded by a CHECK named after the type
    op.execute(f'ALTER TABLE {table} DROP CONSTRAINT IF EXISTS "{name}"')
    op.create_check_constraint(name, table, sa.text(f"status IN ({_in_list(values)})"))


def _recreate_active_occurrence_index(bind, terminal) -> None:
    insp = sa.inspect(bind)
    indexes = {ix["name"] for ix in insp.get_indexes("automated_gift_executions")}
    if ACTIVE_OCCURRENCE_INDEX in indexes:
        op.drop_index(ACTIVE_OCCURRENCE_INDEX, table_name="automated_gift_executions")
    where = sa.text(f"status NOT IN ({_in_list(terminal)})")
    op.create_index(
        ACTIVE_OCCURRENCE_INDEX,
        "automated_gift_executions",
        ["rule_id", "occasion_date"],
        unique=True,
        postgresql_where=where,
        sqlite_where=where,
    )


def upgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)

    cols = {c["name"] for c in insp.get_columns("gift_orders")}
    for name, type_ in TRACKING_COLUMNS:
        if name not in cols:
            op.add_column("gift_orders", sa.Column(name, type_(), nullable=True))

    existing_indexes = {ix["name"] for ix in insp.get_indexes("gift_orders")}
    if "ix_gift_orders_status_submitted_at" not in existing_indexes:
        op.create_index("ix_gift_orders_status_submitted_at", "gift_orders", ["status", "submitted_at"], unique=False)

    if "auto_gift_payment_audit" not in insp.get_table_names():
        op.create_table(
            "auto_gift_payment_audit",
            sa.Column("id", UUID(as_uuid=True), primary_key=True),
            sa.Column("execution_id", UUID(as_uuid=True), sa.ForeignKey("automated_gift_executions.id"), nullable=False),
            sa.Column("order_id", UUID(as_uuid=True), sa.ForeignKey("gift_orders.id"), nullable=True),
            sa.Column("operation", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("amount", sa.Numeric(10, 2), nullable=True),
            sa.Column("payment_intent_id", sa.String(length=100), nullable=True),
            sa.Column("payment_method_id", sa.String(length=100), nullable=True),
            sa.Column("idempotency_key", sa.String(length=150), nullable=False),
            sa.Column("error_message", sa.String(length=2000), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        )
        op.create_index("ix_auto_gift_payment_audit_execution_id", "auto_gift_payment_audit", ["execution_id"])

    if bind.dialect.name == "postgresql":
        _replace_status_check("gift_orders", "gift_order_status", set(OrderStatus))
        _replace_status_check("automated_gift_executions", "execution_status", set(ExecutionStatus))

    _recreate_active_occurrence_index(bind, TERMINAL_EXECUTION_STATUSES)


def downgrade() -> None:
    bind = op.get_bind()

    _recreate_active_occurrence_index(bind, TERMINAL_EXECUTION_STATUSES - NEW_EXECUTION_STATUSES)

    if bind.dialect.name == "postgresql":
        _replace_status_check("automated_gift_executions", "execution_status", set(ExecutionStatus) - NEW_EXECUTION_STATUSES)
        _replace_status_check("gift_orders", "gift_order_status", set(OrderStatus) - NEW_ORDER_STATUSES)

    insp = sa.inspect(bind)
    if "auto_gift_payment_audit" in insp.get_table_names():
        op.drop_table("auto_gift_payment_audit")

    existing_indexes = {ix["name"] for ix in insp.get_indexes("gift_orders")}
    if "ix_gift_orders_status_submitted_at" in existing_indexes:
        op.drop_index("ix_gift_orders_status_submitted_at", table_name="gift_orders")

    cols = {c["name"] for c in insp.get_columns("gift_orders")}
    for name, _ in reversed(TRACKING_COLUMNS):
        if name in cols:
            op.drop_column("gift_orders", name)
