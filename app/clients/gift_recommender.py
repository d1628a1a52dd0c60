from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping

import httpx

from app.clients.types import ProductCandidate
from app.config import GIFT_RECOMMENDER_AGENT, GIFT_RECOMMENDER_API_KEY, GIFT_RECOMMENDER_URL


logger = logging.getLogger(__name__)


class RecommendationError(Exception):
    pass


class GiftRecommender:
    """AI gift advisor: ranked products with a confidence score per product."""

    agent_name = GIFT_RECOMMENDER_AGENT

    def __init__(
        self,
        *,
        url: str | None = None,
        api_key: str | None = None,
        http_client: httpx.Client | None = None,
        timeout: float = 20.0,
    ):
        self.url = url or GIFT_RECOMMENDER_URL
        headers = {}
        key = api_key or GIFT_RECOMMENDER_API_KEY
        if key:
            headers["Authorization"] = f"Bearer {key}"
        self._client = http_client or httpx.Client(timeout=timeout, headers=headers)

    def close(self) -> None:
        self._client.close()

    def recommend(
        self,
        *,
        recipient: Mapping[str, Any],
        occasion_type: str,
        criteria: Mapping[str, Any],
        budget: Decimal,
        limit: int = 20,
    ) -> list[ProductCandidate]:
        if not self.url:
            return []

        body = {
            "recipient": dict(recipient),
            "occasion": occasion_type,
            "budget": str(budget),
            "categories": list(criteria.get("categories") or []),
            "min_price": criteria.get("min_price"),
            "max_price": criteria.get("max_price"),
            "limit": limit,
        }

        # side-effect free, so one retry on a dropped connection is safe
        response = None
        for attempt in (1, 2):
            try:
                response = self._client.post(self.url, json=body)
                break
            except httpx.TransportError as exc:
                if attempt == 2:
                    raise RecommendationError(str(exc)) from exc
                logger.warning("recommendation request failed; retrying", extra={"error": str(exc)})

        if response.status_code >= 400:
            raise RecommendationError(f"recommender returned {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise RecommendationError("recommender returned invalid JSON") from exc

        items = payload.get("recommendations") or payload.get("products") or []
        return [ProductCandidate.from_api(item, source="ai") for item in items if item.get("product_id") or item.get("id")]
