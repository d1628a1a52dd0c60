from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from uuid import UUID

from pydantic import BaseModel, Field

from app.models.enums import FundingAlertType, FundingScheduleStatus


class FundingStatusOut(BaseModel):
    current_balance: Decimal
    expected_payouts: Decimal
    projected_balance: Decimal
    pending_orders_value: Decimal
    shortfall: Decimal
    recommended_transfer: Decimal
    orders_waiting: int

    class Config:
        from_attributes = True


class FundingAlertOut(BaseModel):
    id: UUID
    alert_type: FundingAlertType
    zma_current_balance: Decimal
    projected_balance: Decimal
    pending_orders_value: Decimal
    recommended_transfer_amount: Decimal
    orders_count_waiting: int
    alert_sent_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    class Config:
        from_attributes = True


class TransferCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    notes: Optional[str] = Field(default=None, max_length=1000)
    balance_before: Optional[Decimal] = None


class ExpectedPayoutCreate(BaseModel):
    expected_payout_date: date
    expected_amount: Decimal = Field(gt=0)
    notes: Optional[str] = Field(default=None, max_length=1000)


class PayoutReceived(BaseModel):
    actual_amount: Decimal = Field(gt=0)
    actual_payout_date: Optional[date] = None


class FundingScheduleOut(BaseModel):
    id: UUID
    status: FundingScheduleStatus

    expected_payout_date: Optional[date] = None
    expected_amount: Optional[Decimal] = None
    actual_payout_date: Optional[date] = None
    actual_amount: Optional[Decimal] = None

    transfer_date: Optional[datetime] = None
    transfer_amount: Optional[Decimal] = None
    transferred_to_vendor: bool
    zma_balance_before: Optional[Decimal] = None
    admin_confirmed_by: Optional[str] = None

    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
