import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Index, JSON, Numeric, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from app.db import Base


class AutoGiftRule(Base):
    __tablename__ = "auto_gifting_rules"

    __table_args__ = (Index("ix_auto_gifting_rules_active", "active"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    user_id = Column(String(100), nullable=False, index=True)

    recipient_id = Column(String(100), nullable=True)
    pending_recipient_email = Column(String(255), nullable=True)

    occasion_id = Column(UUID(as_uuid=True), ForeignKey("occasions.id", ondelete="SET NULL"), nullable=True)
    date_type = Column(String(30), nullable=False)

    active = Column(Boolean, nullable=False, default=True)

    budget_limit = Column(Numeric(10, 2), nullable=False)
    gift_selection_criteria = Column(JSON, nullable=False, default=dict)
    notification_days = Column(JSON, nullable=False, default=list)

    payment_method_id = Column(String(100), nullable=True)
    # NULL = inherit from auto_gifting_settings.auto_approve_gifts
    require_approval = Column(Boolean, nullable=True)

    gift_message = Column(String(500), nullable=True)
    shipping_address = Column(JSON, nullable=True)

    deactivated_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
