from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class AutoGiftingSettingsUpdate(BaseModel):
    auto_approve_gifts: Optional[bool] = None
    default_budget_limit: Optional[Decimal] = Field(default=None, gt=0)
    default_notification_days: Optional[list[int]] = None
    payment_customer_id: Optional[str] = None
    notification_email: Optional[str] = None


class AutoGiftingSettingsOut(BaseModel):
    user_id: str
    auto_approve_gifts: bool
    default_budget_limit: Optional[Decimal] = None
    default_notification_days: Optional[list[int]] = None
    payment_customer_id: Optional[str] = None
    notification_email: Optional[str] = None

    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
