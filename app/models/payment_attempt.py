import uuid

from sqlalchemy import Column, ForeignKey, Numeric, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from app.db import Base


class PaymentAttempt(Base):
    """One row per call to the payment processor. Rows are never updated."""

    __tablename__ = "auto_gift_payment_audit"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    execution_id = Column(UUID(as_uuid=True), ForeignKey("automated_gift_executions.id"), nullable=False, index=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("gift_orders.id"), nullable=True)

    # authorize | capture
    operation = Column(String(20), nullable=False)
    # succeeded | declined | failed | unknown | recovered
    status = Column(String(20), nullable=False)

    amount = Column(Numeric(10, 2), nullable=True)
    payment_intent_id = Column(String(100), nullable=True)
    payment_method_id = Column(String(100), nullable=True)
    idempotency_key = Column(String(150), nullable=False)
    error_message = Column(String(2000), nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, server_default=func.now())
