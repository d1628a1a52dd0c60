from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from uuid import UUID

from pydantic import BaseModel

from app.models.enums import ExecutionStatus


class ExecutionOut(BaseModel):
    id: UUID
    user_id: str
    rule_id: UUID
    occasion_id: Optional[UUID] = None

    occasion_date: date
    execution_date: date
    status: ExecutionStatus

    selected_products: Optional[list[Dict[str, Any]]] = None
    total_amount: Optional[Decimal] = None
    gift_message: Optional[str] = None

    ai_agent: Optional[str] = None
    confidence_score: Optional[float] = None
    discovery_method: Optional[str] = None

    order_id: Optional[UUID] = None
    error_message: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ApproveRequest(BaseModel):
    # keep only these products from the proposed selection
    selected_product_ids: Optional[list[str]] = None


class RejectRequest(BaseModel):
    reason: str


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class PaymentAttemptOut(BaseModel):
    id: UUID
    execution_id: UUID
    order_id: Optional[UUID] = None
    operation: str
    status: str
    amount: Optional[Decimal] = None
    payment_intent_id: Optional[str] = None
    idempotency_key: str
    error_message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
