from datetime import datetime
from decimal import Decimal
from typing import Optional

from uuid import UUID

from pydantic import BaseModel, Field


class WishlistItemCreate(BaseModel):
    product_id: str
    title: str
    price: Optional[Decimal] = Field(default=None, ge=0)
    category: Optional[str] = None
    retailer: Optional[str] = None
    image_url: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    priority: int = 0


class WishlistItemUpdate(BaseModel):
    title: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    category: Optional[str] = None
    priority: Optional[int] = None


class WishlistItemOut(BaseModel):
    id: UUID
    user_id: str
    product_id: str
    title: str
    price: Optional[Decimal] = None
    category: Optional[str] = None
    retailer: Optional[str] = None
    image_url: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    priority: int

    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
