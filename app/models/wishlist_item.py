import uuid

from sqlalchemy import Column, Float, Integer, Numeric, String, TIMESTAMP, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from app.db import Base


class WishlistItem(Base):
    __tablename__ = "wishlist_items"

    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_wishlist_items_user_product"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    user_id = Column(String(100), nullable=False, index=True)

    # identifier in the fulfillment API, not an internal id
    product_id = Column(String(100), nullable=False)
    title = Column(String(500), nullable=False)
    price = Column(Numeric(10, 2), nullable=True)
    category = Column(String(100), nullable=True)
    retailer = Column(String(50), nullable=True)
    image_url = Column(String(1000), nullable=True)
    rating = Column(Float, nullable=True)
    review_count = Column(Integer, nullable=True)

    # higher first
    priority = Column(Integer, nullable=False, default=0)

    created_at = Column(TIMESTAMP, server_default=func.now())
