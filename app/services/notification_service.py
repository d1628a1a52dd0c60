from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from app.config import NOTIFICATION_WEBHOOK_URL


logger = logging.getLogger(__name__)


# user-facing
APPROVAL_REQUESTED = "auto_gift_approval_requested"
SELECTION_FAILED = "auto_gift_selection_failed"
PAYMENT_FAILED = "auto_gift_payment_failed"
ORDER_PLACED = "auto_gift_order_placed"
ORDER_SHIPPED = "auto_gift_order_shipped"
ORDER_DELIVERED = "auto_gift_order_delivered"
EXECUTION_EXPIRED = "auto_gift_execution_expired"

# operator-facing
CAPTURE_NEEDS_ATTENTION = "auto_gift_capture_needs_attention"
SUBMISSION_FAILED = "auto_gift_submission_failed"
FULFILLMENT_FAILED = "auto_gift_fulfillment_failed"
FUNDING_ALERT = "zma_funding_alert"


class Notifier(ABC):
    @abstractmethod
    def send(self, kind: str, payload: dict[str, Any]) -> None: ...


class LoggingNotifier(Notifier):
    def send(self, kind: str, payload: dict[str, Any]) -> None:
        logger.info("notification", extra={"kind": kind, **{f"n_{k}": v for k, v in payload.items()}})


class WebhookNotifier(Notifier):
    """Hands notifications to the email/push orchestrator over HTTP."""

    def __init__(self, url: str | None = None, http_client: httpx.Client | None = None):
        self.url = url or NOTIFICATION_WEBHOOK_URL
        self._client = http_client or httpx.Client(timeout=10.0)

    def send(self, kind: str, payload: dict[str, Any]) -> None:
        response = self._client.post(self.url, json={"type": kind, "data": payload})
        response.raise_for_status()


def get_default_notifier() -> Notifier:
    if NOTIFICATION_WEBHOOK_URL:
        return WebhookNotifier()
    return LoggingNotifier()


def notify(notifier: Notifier | None, kind: str, **payload: Any) -> bool:
    """Fire-and-forget; a failed notification never blocks a state transition."""
    if notifier is None:
        return False
    clean = {k: (str(v) if v is not None and not isinstance(v, (int, float, bool, str, list, dict)) else v) for k, v in payload.items()}
    try:
        notifier.send(kind, clean)
        return True
    except Exception:
        logger.exception("notification delivery failed", extra={"kind": kind})
        return False
