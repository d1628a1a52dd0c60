import uuid

from sqlalchemy import Column, Integer, Numeric, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID

from app.db import Base
from app.models.enums import FundingAlertType, status_enum


class ZMAFundingAlert(Base):
    __tablename__ = "zma_funding_alerts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    alert_type = Column(status_enum(FundingAlertType, "zma_funding_alert_type"), nullable=False)

    zma_current_balance = Column(Numeric(12, 2), nullable=False)
    projected_balance = Column(Numeric(12, 2), nullable=False)
    pending_orders_value = Column(Numeric(12, 2), nullable=False)
    recommended_transfer_amount = Column(Numeric(12, 2), nullable=False, default=0)
    orders_count_waiting = Column(Integer, nullable=False, default=0)

    alert_sent_at = Column(TIMESTAMP, nullable=False)
    resolved_at = Column(TIMESTAMP, nullable=True)
    resolved_by = Column(String(100), nullable=True)
