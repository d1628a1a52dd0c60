"""Payment processor client used by the payment capture stage.

Authorizations are manual-capture PaymentIntents: the hold is placed when an
execution is approved and converted into a charge a few days before delivery.
Every call that can move money carries an idempotency key so that a retry after
an ambiguous failure can never produce a second charge.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

import stripe

from app.config import PAYMENT_CURRENCY, STRIPE_SECRET_KEY


logger = logging.getLogger(__name__)


class PaymentError(Exception):
    """Processor refused the operation for a reason other than a decline."""


class PaymentDeclinedError(PaymentError):
    """The payment method was declined; never retry the same authorization."""


class PaymentAmbiguousError(PaymentError):
    """The request may or may not have taken effect (timeout, connection reset)."""


@dataclass
class PaymentAuthorization:
    authorization_id: str
    status: str
    amount: Decimal
    currency: str


@dataclass
class PaymentCapture:
    authorization_id: str
    capture_id: str | None
    amount: Decimal


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int | None) -> Decimal:
    return (Decimal(amount or 0) / 100).quantize(Decimal("0.01"))


class PaymentGateway(ABC):
    @abstractmethod
    def authorize(
        self,
        *,
        amount: Decimal,
        payment_method_id: str,
        customer_id: str | None,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> PaymentAuthorization: ...

    @abstractmethod
    def capture(self, authorization_id: str, *, idempotency_key: str) -> PaymentCapture: ...

    @abstractmethod
    def cancel(self, authorization_id: str, *, reason: str | None = None) -> None: ...

    @abstractmethod
    def retrieve(self, authorization_id: str) -> PaymentAuthorization: ...

    @abstractmethod
    def find_by_idempotency_key(self, idempotency_key: str) -> PaymentAuthorization | None: ...


# PaymentIntent statuses
INTENT_REQUIRES_CAPTURE = "requires_capture"
INTENT_SUCCEEDED = "succeeded"
INTENT_CANCELED = "canceled"


class StripePaymentGateway(PaymentGateway):
    def __init__(self, api_key: str | None = None, currency: str | None = None):
        stripe.api_key = api_key or STRIPE_SECRET_KEY
        self.currency = (currency or PAYMENT_CURRENCY).lower()

    def _to_authorization(self, intent) -> PaymentAuthorization:
        return PaymentAuthorization(
            authorization_id=intent["id"],
            status=intent["status"],
            amount=from_minor_units(intent.get("amount")),
            currency=intent.get("currency") or self.currency,
        )

    def authorize(
        self,
        *,
        amount: Decimal,
        payment_method_id: str,
        customer_id: str | None,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> PaymentAuthorization:
        intent_metadata = {"idempotency_key": idempotency_key}
        if metadata:
            intent_metadata.update(metadata)

        params = {
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "payment_method": payment_method_id,
            "capture_method": "manual",
            "confirm": True,
            "off_session": True,
            "metadata": intent_metadata,
        }
        if customer_id:
            params["customer"] = customer_id

        try:
            intent = stripe.PaymentIntent.create(idempotency_key=idempotency_key, **params)
        except stripe.CardError as e:
            logger.info("payment authorization declined", extra={"idempotency_key": idempotency_key, "decline_code": e.code})
            raise PaymentDeclinedError(e.user_message or str(e)) from e
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            raise PaymentAmbiguousError(str(e)) from e
        except stripe.StripeError as e:
            raise PaymentError(str(e)) from e

        if intent["status"] != INTENT_REQUIRES_CAPTURE:
            raise PaymentDeclinedError(f"Unexpected authorization status: {intent['status']}")

        return self._to_authorization(intent)

    def capture(self, authorization_id: str, *, idempotency_key: str) -> PaymentCapture:
        try:
            intent = stripe.PaymentIntent.capture(authorization_id, idempotency_key=idempotency_key)
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            raise PaymentAmbiguousError(str(e)) from e
        except stripe.StripeError as e:
            raise PaymentError(str(e)) from e

        return PaymentCapture(
            authorization_id=intent["id"],
            capture_id=intent.get("latest_charge"),
            amount=from_minor_units(intent.get("amount_received")),
        )

    def cancel(self, authorization_id: str, *, reason: str | None = None) -> None:
        try:
            stripe.PaymentIntent.cancel(authorization_id, cancellation_reason=reason or "requested_by_customer")
        except stripe.StripeError as e:
            raise PaymentError(str(e)) from e

    def retrieve(self, authorization_id: str) -> PaymentAuthorization:
        try:
            intent = stripe.PaymentIntent.retrieve(authorization_id)
        except stripe.StripeError as e:
            raise PaymentAmbiguousError(str(e)) from e
        return self._to_authorization(intent)

    def find_by_idempotency_key(self, idempotency_key: str) -> PaymentAuthorization | None:
        try:
            result = stripe.PaymentIntent.search(query=f"metadata['idempotency_key']:'{idempotency_key}'", limit=1)
        except stripe.StripeError as e:
            raise PaymentAmbiguousError(str(e)) from e

        data = result.get("data") or []
        if not data:
            return None
        return self._to_authorization(data[0])
