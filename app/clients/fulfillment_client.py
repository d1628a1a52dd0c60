from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

import httpx

from app.clients.types import ProductCandidate, parse_price
from app.config import FULFILLMENT_API_KEY, FULFILLMENT_API_URL, FULFILLMENT_RETAILER, FULFILLMENT_TIMEOUT_SECONDS


logger = logging.getLogger(__name__)


class FulfillmentError(Exception):
    pass


class FulfillmentRejectedError(FulfillmentError):
    """Vendor refused the order; it was definitely not placed."""


class FulfillmentAmbiguousError(FulfillmentError):
    """The order request may have been accepted; query before doing anything else."""


@dataclass
class VendorOrder:
    vendor_order_id: str
    status: str
    raw: Mapping[str, Any]
    tracking_number: str | None = None
    carrier: str | None = None
    tracking_url: str | None = None


# Lifecycle states reported by get_order.
VENDOR_PROCESSING = "processing"
VENDOR_SHIPPED = "shipped"
VENDOR_DELIVERED = "delivered"
VENDOR_FAILED = "failed"
VENDOR_CANCELLED = "cancelled"


def _latest_tracking(body: Mapping[str, Any]) -> Mapping[str, Any]:
    tracking = body.get("tracking") or []
    if isinstance(tracking, Mapping):
        return tracking
    if tracking and isinstance(tracking[-1], Mapping):
        return tracking[-1]
    return {}


def derive_vendor_status(body: Mapping[str, Any]) -> str:
    """Collapse a vendor order document into one lifecycle state.

    Delivery confirmation wins over everything else; after that the most
    recent status update decides, and an explicit cancellation is honoured
    last. Anything unrecognised is still in progress.
    """
    tracking = _latest_tracking(body)
    if str(tracking.get("delivery_status") or "").lower() == "delivered":
        return VENDOR_DELIVERED

    updates = body.get("status_updates") or []
    latest = str(updates[-1].get("type") or "") if updates and isinstance(updates[-1], Mapping) else ""
    if latest == "shipment.shipped" or tracking.get("tracking_number"):
        return VENDOR_SHIPPED
    if latest == "request.failed" or body.get("code") == "request_failed":
        return VENDOR_FAILED

    status = str(body.get("status") or "").lower()
    if status in (VENDOR_CANCELLED, "canceled"):
        return VENDOR_CANCELLED
    if status in (VENDOR_SHIPPED, VENDOR_DELIVERED, VENDOR_FAILED):
        return status
    return VENDOR_PROCESSING


def _parse_body(response: httpx.Response) -> Mapping[str, Any]:
    content_type = response.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            parsed = response.json()
            if isinstance(parsed, Mapping):
                return parsed
            return {"data": parsed}
        except ValueError:
            return {"text": response.text}
    return {"text": response.text}


def _error_message(body: Mapping[str, Any], fallback: str) -> str:
    return str(body.get("message") or body.get("error") or body.get("text") or fallback)


class FulfillmentClient:
    """Product search/detail and order placement against the fulfillment vendor."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        retailer: str | None = None,
        http_client: httpx.Client | None = None,
        timeout: float | None = None,
    ):
        self.base_url = (base_url or FULFILLMENT_API_URL).rstrip("/")
        self.retailer = retailer or FULFILLMENT_RETAILER
        self._client = http_client or httpx.Client(
            timeout=timeout or FULFILLMENT_TIMEOUT_SECONDS,
            headers={"Authorization": f"Bearer {api_key or FULFILLMENT_API_KEY}"},
        )

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str, params: dict | None = None) -> Mapping[str, Any]:
        try:
            response = self._client.get(f"{self.base_url}{path}", params=params)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FulfillmentError(str(exc)) from exc
        return _parse_body(response)

    # ─── read-only lookups ───────────────────────────────────────

    def search_products(
        self,
        query: str,
        *,
        min_price: Decimal | None = None,
        max_price: Decimal | None = None,
        limit: int = 20,
    ) -> list[ProductCandidate]:
        params: dict[str, Any] = {"query": query, "retailer": self.retailer, "page": 1}
        body = self._get("/products/search", params=params)

        products = []
        for raw in body.get("results") or body.get("products") or []:
            candidate = ProductCandidate.from_api(raw, source="catalog", retailer=self.retailer)
            if candidate.price is None:
                continue
            if min_price is not None and candidate.price < min_price:
                continue
            if max_price is not None and candidate.price > max_price:
                continue
            products.append(candidate)
            if len(products) >= limit:
                break
        return products

    def get_product(self, product_id: str) -> ProductCandidate:
        body = self._get(f"/products/{product_id}", params={"retailer": self.retailer})
        return ProductCandidate.from_api(body, source="catalog", retailer=self.retailer)

    def find_order(self, idempotency_key: str) -> VendorOrder | None:
        try:
            response = self._client.get(f"{self.base_url}/orders", params={"idempotency_key": idempotency_key})
        except httpx.TransportError as exc:
            raise FulfillmentAmbiguousError(str(exc)) from exc

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise FulfillmentAmbiguousError(f"order lookup failed with status {response.status_code}")

        body = _parse_body(response)
        data = body.get("data")
        if isinstance(data, list):
            items = data
        elif body.get("id") or body.get("request_id"):
            items = [body]
        else:
            items = []
        if not items:
            return None
        first = items[0]
        return VendorOrder(vendor_order_id=str(first.get("id") or first.get("request_id")), status=str(first.get("status") or "placed"), raw=first)

    def get_order(self, vendor_order_id: str) -> VendorOrder:
        body = self._get(f"/orders/{vendor_order_id}")
        tracking = _latest_tracking(body)
        tracking_url = tracking.get("tracking_url")
        if not tracking_url:
            # some retailers only expose the link on the merchant order
            for merchant in body.get("merchant_order_ids") or []:
                if isinstance(merchant, Mapping) and merchant.get("tracking_url"):
                    tracking_url = merchant["tracking_url"]
                    break
        return VendorOrder(
            vendor_order_id=str(body.get("id") or body.get("request_id") or vendor_order_id),
            status=derive_vendor_status(body),
            raw=body,
            tracking_number=tracking.get("tracking_number"),
            carrier=tracking.get("carrier"),
            tracking_url=tracking_url,
        )

    def get_account_balance(self) -> Decimal:
        body = self._get("/account/balance")
        balance = parse_price(body.get("balance", body.get("available_funds")))
        if balance is None:
            raise FulfillmentError("balance missing from vendor response")
        return balance

    # ─── order placement ─────────────────────────────────────────

    def submit_order(
        self,
        *,
        products: list[Mapping[str, Any]],
        shipping_address: Mapping[str, Any] | None,
        idempotency_key: str,
        gift_message: str | None = None,
    ) -> VendorOrder:
        lines = []
        for p in products:
            lines.append(
                {
                    "product_id": p["product_id"],
                    "quantity": int(p.get("quantity") or 1),
                    "max_price": str(p.get("price")) if p.get("price") is not None else None,
                }
            )

        address = dict(shipping_address or {})
        payload = {
            "retailer": self.retailer,
            "products": lines,
            "shipping_address": address,
            "is_gift": True,
            "gift_message": gift_message,
            "idempotency_key": idempotency_key,
            "max_price": str(sum((parse_price(p.get("price")) or Decimal("0")) * int(p.get("quantity") or 1) for p in products)),
        }

        try:
            response = self._client.post(f"{self.base_url}/orders", json=payload)
        except httpx.TransportError as exc:
            raise FulfillmentAmbiguousError(str(exc)) from exc

        body = _parse_body(response)
        if response.status_code >= 500:
            raise FulfillmentAmbiguousError(_error_message(body, f"vendor returned {response.status_code}"))
        if response.status_code >= 400:
            raise FulfillmentRejectedError(_error_message(body, f"vendor returned {response.status_code}"))

        vendor_order_id = body.get("id") or body.get("request_id")
        if not vendor_order_id:
            raise FulfillmentAmbiguousError("vendor response missing order id")

        logger.info("vendor order placed", extra={"vendor_order_id": vendor_order_id, "idempotency_key": idempotency_key})
        return VendorOrder(vendor_order_id=str(vendor_order_id), status=str(body.get("status") or "placed"), raw=body)
