from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from uuid import UUID

from pydantic import BaseModel

from app.models.enums import FundingStatus, OrderStatus, PaymentStatus


class GiftOrderOut(BaseModel):
    id: UUID
    user_id: str
    execution_id: UUID

    status: OrderStatus
    payment_status: PaymentStatus
    total_amount: Decimal
    currency: str

    products: list[Dict[str, Any]]
    gift_message: Optional[str] = None
    delivery_date: date
    capture_date: date

    funding_status: FundingStatus
    funding_hold_reason: Optional[str] = None
    expected_funds_at: Optional[datetime] = None

    vendor_order_id: Optional[str] = None
    submitted_at: Optional[datetime] = None
    vendor_status: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    tracking_url: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    needs_intervention: bool
    error_message: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
