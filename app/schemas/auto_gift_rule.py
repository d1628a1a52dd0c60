from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Literal, Optional

from uuid import UUID

from pydantic import BaseModel, Field


class GiftSelectionCriteria(BaseModel):
    source: Literal["wishlist", "ai", "both"] = "both"
    min_price: Optional[Decimal] = Field(default=None, ge=0)
    max_price: Optional[Decimal] = Field(default=None, gt=0)
    categories: list[str] = Field(default_factory=list)
    exclude_product_ids: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)
    max_items: int = Field(default=1, ge=1, le=10)


class AutoGiftRuleCreate(BaseModel):
    recipient_id: Optional[str] = None
    pending_recipient_email: Optional[str] = None

    occasion_id: Optional[UUID] = None
    date_type: str

    budget_limit: Optional[Decimal] = Field(default=None, gt=0)
    gift_selection_criteria: GiftSelectionCriteria = Field(default_factory=GiftSelectionCriteria)
    notification_days: Optional[list[int]] = None

    payment_method_id: Optional[str] = None
    require_approval: Optional[bool] = None

    gift_message: Optional[str] = Field(default=None, max_length=500)
    shipping_address: Optional[Dict[str, Any]] = None

    active: bool = True


class AutoGiftRuleUpdate(BaseModel):
    occasion_id: Optional[UUID] = None
    date_type: Optional[str] = None

    budget_limit: Optional[Decimal] = Field(default=None, gt=0)
    gift_selection_criteria: Optional[GiftSelectionCriteria] = None
    notification_days: Optional[list[int]] = None

    payment_method_id: Optional[str] = None
    require_approval: Optional[bool] = None

    gift_message: Optional[str] = Field(default=None, max_length=500)
    shipping_address: Optional[Dict[str, Any]] = None

    active: Optional[bool] = None


class AutoGiftRuleOut(BaseModel):
    id: UUID
    user_id: str

    recipient_id: Optional[str] = None
    pending_recipient_email: Optional[str] = None

    occasion_id: Optional[UUID] = None
    date_type: str

    budget_limit: Decimal
    gift_selection_criteria: Dict[str, Any] = Field(default_factory=dict)
    notification_days: list[int] = Field(default_factory=list)

    payment_method_id: Optional[str] = None
    require_approval: Optional[bool] = None

    gift_message: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None

    active: bool
    deactivated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RetriggerRequest(BaseModel):
    occasion_date: date
