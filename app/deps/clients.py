"""Client dependencies; tests override these with fakes via ``app.dependency_overrides``."""

from functools import lru_cache

from fastapi import Depends

from app.clients.fulfillment_client import FulfillmentClient
from app.clients.gift_recommender import GiftRecommender
from app.clients.payment_gateway import PaymentGateway, StripePaymentGateway
from app.services.internal_job_runner import StageClients
from app.services.notification_service import Notifier, get_default_notifier


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    return StripePaymentGateway()


@lru_cache
def get_fulfillment_client() -> FulfillmentClient:
    return FulfillmentClient()


@lru_cache
def get_recommender() -> GiftRecommender:
    return GiftRecommender()


@lru_cache
def get_notifier() -> Notifier:
    return get_default_notifier()


def get_stage_clients(
    gateway: PaymentGateway = Depends(get_payment_gateway),
    fulfillment: FulfillmentClient = Depends(get_fulfillment_client),
    recommender: GiftRecommender = Depends(get_recommender),
    notifier: Notifier = Depends(get_notifier),
) -> StageClients:
    return StageClients(gateway=gateway, fulfillment=fulfillment, recommender=recommender, notifier=notifier)
