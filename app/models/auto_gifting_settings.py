from sqlalchemy import Boolean, Column, JSON, Numeric, String, TIMESTAMP
from sqlalchemy.sql import func

from app.db import Base


class AutoGiftingSettings(Base):
    __tablename__ = "auto_gifting_settings"

    user_id = Column(String(100), primary_key=True)

    auto_approve_gifts = Column(Boolean, nullable=False, default=False)
    default_budget_limit = Column(Numeric(10, 2), nullable=True)
    default_notification_days = Column(JSON, nullable=True)

    # processor-side customer that owns the saved payment methods
    payment_customer_id = Column(String(100), nullable=True)
    notification_email = Column(String(255), nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
