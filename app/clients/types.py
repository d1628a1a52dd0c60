from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping


def parse_price(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        price = Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        return None
    return price


def _as_float(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


@dataclass
class ProductCandidate:
    product_id: str
    title: str
    price: Decimal | None
    category: str | None = None
    retailer: str | None = None
    image_url: str | None = None
    rating: float | None = None
    review_count: int | None = None
    confidence: float | None = None
    sources: set[str] = field(default_factory=set)

    @classmethod
    def from_api(cls, raw: Mapping[str, Any], *, source: str, retailer: str | None = None) -> "ProductCandidate":
        return cls(
            product_id=str(raw.get("product_id") or raw.get("id")),
            title=str(raw.get("title") or ""),
            price=parse_price(raw.get("price")),
            category=raw.get("category"),
            retailer=raw.get("retailer") or retailer,
            image_url=raw.get("image") or raw.get("image_url"),
            rating=_as_float(raw.get("stars", raw.get("rating"))),
            review_count=_as_int(raw.get("num_reviews", raw.get("review_count"))),
            confidence=_as_float(raw.get("confidence") or raw.get("confidence_score")),
            sources={source},
        )

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "title": self.title,
            "price": str(self.price) if self.price is not None else None,
            "category": self.category,
            "retailer": self.retailer,
            "image_url": self.image_url,
            "rating": self.rating,
            "review_count": self.review_count,
            "confidence": self.confidence,
            "sources": sorted(self.sources),
        }
