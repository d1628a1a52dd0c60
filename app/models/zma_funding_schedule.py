import uuid

from sqlalchemy import Boolean, Column, Date, Numeric, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from app.db import Base
from app.models.enums import FundingScheduleStatus, status_enum


class ZMAFundingSchedule(Base):
    __tablename__ = "zma_funding_schedule"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    status = Column(status_enum(FundingScheduleStatus, "zma_funding_schedule_status"), nullable=False, default=FundingScheduleStatus.EXPECTED)

    # processor payout into the operating account
    expected_payout_date = Column(Date, nullable=True)
    expected_amount = Column(Numeric(12, 2), nullable=True)
    actual_payout_date = Column(Date, nullable=True)
    actual_amount = Column(Numeric(12, 2), nullable=True)

    # operator transfer into the vendor account
    transfer_date = Column(TIMESTAMP, nullable=True)
    transfer_amount = Column(Numeric(12, 2), nullable=True)
    transferred_to_vendor = Column(Boolean, nullable=False, default=False)
    zma_balance_before = Column(Numeric(12, 2), nullable=True)
    admin_confirmed_by = Column(String(100), nullable=True)

    notes = Column(String(1000), nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
