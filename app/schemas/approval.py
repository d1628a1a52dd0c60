from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from uuid import UUID

from pydantic import BaseModel

from app.models.enums import ExecutionStatus


class ApprovalDetailsOut(BaseModel):
    execution_id: UUID
    status: ExecutionStatus
    occasion_date: date

    selected_products: list[Dict[str, Any]]
    total_amount: Optional[Decimal] = None
    gift_message: Optional[str] = None

    expires_at: datetime
    expired: bool
    used: bool
