import uuid

from sqlalchemy import Boolean, Column, Date, ForeignKey, Index, JSON, Numeric, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from app.db import Base
from app.models.enums import FundingStatus, OrderStatus, PaymentStatus, status_enum


class GiftOrder(Base):
    __tablename__ = "gift_orders"

    __table_args__ = (
        Index("ix_gift_orders_status_capture_date", "status", "capture_date"),
        Index("ix_gift_orders_status_funding", "status", "funding_status"),
        Index("ix_gift_orders_status_submitted_at", "status", "submitted_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    user_id = Column(String(100), nullable=False, index=True)
    execution_id = Column(UUID(as_uuid=True), ForeignKey("automated_gift_executions.id"), nullable=False, unique=True)

    status = Column(status_enum(OrderStatus, "gift_order_status"), nullable=False, default=OrderStatus.SCHEDULED)

    # ─── payment ─────────────────────────────────────────────────
    payment_status = Column(status_enum(PaymentStatus, "gift_order_payment_status"), nullable=False)
    payment_authorization_id = Column(String(100), nullable=True)
    payment_capture_id = Column(String(100), nullable=True)
    payment_idempotency_key = Column(String(150), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="usd")

    # ─── gift ────────────────────────────────────────────────────
    products = Column(JSON, nullable=False)
    shipping_address = Column(JSON, nullable=True)
    gift_message = Column(String(500), nullable=True)
    delivery_date = Column(Date, nullable=False)
    capture_date = Column(Date, nullable=False)

    # ─── funding ─────────────────────────────────────────────────
    funding_status = Column(status_enum(FundingStatus, "gift_order_funding_status"), nullable=False)
    funding_hold_reason = Column(String(50), nullable=True)
    funds_allocated_at = Column(TIMESTAMP, nullable=True)
    expected_funds_at = Column(TIMESTAMP, nullable=True)

    # ─── vendor ──────────────────────────────────────────────────
    vendor_order_id = Column(String(100), nullable=True)
    vendor_idempotency_key = Column(String(150), nullable=True)
    submitted_at = Column(TIMESTAMP, nullable=True)
    vendor_status = Column(String(50), nullable=True)
    last_synced_at = Column(TIMESTAMP, nullable=True)

    # ─── shipment ────────────────────────────────────────────────
    tracking_number = Column(String(100), nullable=True)
    carrier = Column(String(100), nullable=True)
    tracking_url = Column(String(500), nullable=True)
    shipped_at = Column(TIMESTAMP, nullable=True)
    delivered_at = Column(TIMESTAMP, nullable=True)

    needs_intervention = Column(Boolean, nullable=False, default=False)
    error_message = Column(String(2000), nullable=True)

    claimed_at = Column(TIMESTAMP, nullable=True)
    claimed_by = Column(String(100), nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
