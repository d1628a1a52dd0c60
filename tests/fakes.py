"""In-memory stand-ins for the processor, the fulfillment vendor, the AI advisor and the notifier."""

from datetime import datetime
from decimal import Decimal

from app.clients.fulfillment_client import FulfillmentClient, VendorOrder
from app.clients.gift_recommender import GiftRecommender
from app.clients.payment_gateway import (
    INTENT_CANCELED,
    INTENT_REQUIRES_CAPTURE,
    INTENT_SUCCEEDED,
    PaymentAuthorization,
    PaymentCapture,
    PaymentGateway,
)
from app.clients.types import ProductCandidate
from app.services.notification_service import Notifier


NOW = datetime(2025, 12, 18, 9, 0, 0)
USER_ID = "user-1"
RECIPIENT_ID = "friend-1"


def product(product_id="B001", price="40.00", title="Wireless Headphones", **extra):
    return {"product_id": product_id, "title": title, "price": price, "quantity": 1, **extra}


def candidate(product_id, price, *, source="ai", title=None, category=None, confidence=None, rating=None):
    return ProductCandidate(
        product_id=product_id,
        title=title or f"Product {product_id}",
        price=Decimal(price),
        category=category,
        rating=rating,
        confidence=confidence,
        sources={source},
    )


class FakePaymentGateway(PaymentGateway):
    """Keeps PaymentIntents in a dict.

    ``*_error`` makes the next calls raise; with ``*_lands`` set the operation
    still takes effect before the error, like a timeout after the processor
    committed.
    """

    def __init__(self):
        self.intents: dict[str, PaymentAuthorization] = {}
        self.by_key: dict[str, PaymentAuthorization] = {}
        self.calls: list[tuple] = []

        self.authorize_error: Exception | None = None
        self.authorize_lands = False
        self.capture_error: Exception | None = None
        self.capture_lands = False
        self.retrieve_error: Exception | None = None

    def seed_authorization(self, amount: Decimal, *, status: str = INTENT_REQUIRES_CAPTURE) -> str:
        intent_id = f"pi_{len(self.intents) + 1}"
        self.intents[intent_id] = PaymentAuthorization(
            authorization_id=intent_id, status=status, amount=Decimal(amount), currency="usd"
        )
        return intent_id

    def authorize(self, *, amount, payment_method_id, customer_id, idempotency_key, metadata=None):
        self.calls.append(("authorize", idempotency_key))
        if idempotency_key in self.by_key and self.authorize_error is None:
            return self.by_key[idempotency_key]

        if self.authorize_error is not None and not self.authorize_lands:
            raise self.authorize_error

        intent_id = self.seed_authorization(amount)
        self.by_key[idempotency_key] = self.intents[intent_id]

        if self.authorize_error is not None:
            raise self.authorize_error
        return self.intents[intent_id]

    def capture(self, authorization_id, *, idempotency_key):
        self.calls.append(("capture", authorization_id, idempotency_key))
        if self.capture_error is not None and not self.capture_lands:
            raise self.capture_error

        intent = self.intents[authorization_id]
        intent.status = INTENT_SUCCEEDED

        if self.capture_error is not None:
            raise self.capture_error
        return PaymentCapture(authorization_id=authorization_id, capture_id=f"ch_{authorization_id}", amount=intent.amount)

    def cancel(self, authorization_id, *, reason=None):
        self.calls.append(("cancel", authorization_id))
        self.intents[authorization_id].status = INTENT_CANCELED

    def retrieve(self, authorization_id):
        self.calls.append(("retrieve", authorization_id))
        if self.retrieve_error is not None:
            raise self.retrieve_error
        return self.intents[authorization_id]

    def find_by_idempotency_key(self, idempotency_key):
        self.calls.append(("find", idempotency_key))
        return self.by_key.get(idempotency_key)

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]


class FakeFulfillmentClient(FulfillmentClient):
    def __init__(self):
        self.balance = Decimal("1000.00")
        self.search_results: list[ProductCandidate] = []
        self.searches: list[str] = []
        self.orders: dict[str, VendorOrder] = {}
        self.submitted: list[dict] = []
        # vendor_order_id -> what get_order reports
        self.tracked: dict[str, VendorOrder] = {}

        self.search_error: Exception | None = None
        self.submit_error: Exception | None = None
        self.submit_lands = False
        self.find_error: Exception | None = None
        self.get_error: Exception | None = None

    def search_products(self, query, *, min_price=None, max_price=None, limit=20):
        self.searches.append(query)
        if self.search_error is not None:
            raise self.search_error
        return [c for c in self.search_results if max_price is None or c.price <= max_price][:limit]

    def get_account_balance(self):
        return self.balance

    def find_order(self, idempotency_key):
        if self.find_error is not None:
            raise self.find_error
        return self.orders.get(idempotency_key)

    def get_order(self, vendor_order_id):
        if self.get_error is not None:
            raise self.get_error
        return self.tracked.get(vendor_order_id) or VendorOrder(vendor_order_id=vendor_order_id, status="processing", raw={})

    def report(self, vendor_order_id, status, **tracking):
        self.tracked[vendor_order_id] = VendorOrder(vendor_order_id=vendor_order_id, status=status, raw={}, **tracking)

    def submit_order(self, *, products, shipping_address, idempotency_key, gift_message=None):
        self.submitted.append({"idempotency_key": idempotency_key, "products": products})
        if self.submit_error is not None and not self.submit_lands:
            raise self.submit_error

        vendor_order = VendorOrder(vendor_order_id=f"zinc_{len(self.orders) + 1}", status="placed", raw={})
        self.orders[idempotency_key] = vendor_order

        if self.submit_error is not None:
            raise self.submit_error
        return vendor_order


class FakeRecommender(GiftRecommender):
    agent_name = "nicole"

    def __init__(self):
        self.results: list[ProductCandidate] = []
        self.error: Exception | None = None
        self.requests: list[dict] = []

    def recommend(self, *, recipient, occasion_type, criteria, budget, limit=20):
        self.requests.append({"recipient": recipient, "occasion_type": occasion_type, "budget": budget})
        if self.error is not None:
            raise self.error
        return list(self.results)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent: list[tuple[str, dict]] = []
        self.fail = False

    def send(self, kind, payload):
        if self.fail:
            raise RuntimeError("mail relay down")
        self.sent.append((kind, payload))

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.sent]
