"""
Test configuration and fixtures.

Provides:
- In-memory SQLite session, fresh schema per test
- Fake payment, fulfillment, recommender and notifier clients
- TestClient with the fakes wired in through dependency overrides
- Row factories for rules, executions and orders
"""
import os
from datetime import date, timedelta
from decimal import Decimal

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite://")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base, get_db
from app.deps.clients import get_fulfillment_client, get_notifier, get_payment_gateway, get_recommender
from app.main import app
from app.models.approval_token import ApprovalToken
from app.models.auto_gift_execution import AutoGiftExecution
from app.models.auto_gift_rule import AutoGiftRule
from app.models.enums import ExecutionStatus, FundingStatus, OrderStatus, PaymentStatus
from app.models.gift_order import GiftOrder
from app.models.occasion import Occasion
from app.services.internal_job_runner import StageClients

from tests.fakes import (
    NOW,
    RECIPIENT_ID,
    USER_ID,
    FakeFulfillmentClient,
    FakePaymentGateway,
    FakeRecommender,
    RecordingNotifier,
    product,
)

SHIPPING_ADDRESS = {
    "first_name": "Sam",
    "last_name": "Lee",
    "address_line1": "1 Main St",
    "city": "Springfield",
    "state": "IL",
    "zip_code": "62701",
    "country": "US",
}


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


# =============================================================================
# External clients
# =============================================================================

@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def fulfillment():
    return FakeFulfillmentClient()


@pytest.fixture
def recommender():
    return FakeRecommender()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clients(gateway, fulfillment, recommender, notifier):
    return StageClients(gateway=gateway, fulfillment=fulfillment, recommender=recommender, notifier=notifier)


# =============================================================================
# HTTP
# =============================================================================

@pytest.fixture
def client(db, gateway, fulfillment, recommender, notifier):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_fulfillment_client] = lambda: fulfillment
    app.dependency_overrides[get_recommender] = lambda: recommender
    app.dependency_overrides[get_notifier] = lambda: notifier
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def user_headers():
    return {"X-User-Id": USER_ID}


@pytest.fixture
def operator_headers():
    return {"X-Operator-Id": "ops-1"}


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_rule(db):
    def _make(
        *,
        user_id=USER_ID,
        recipient_id=RECIPIENT_ID,
        date_type="birthday",
        occasion_date=date(1990, 12, 25),
        recurring="yearly",
        budget=Decimal("50.00"),
        notification_days=(7,),
        criteria=None,
        require_approval=None,
        payment_method_id="pm_card_visa",
        active=True,
    ):
        occasion = Occasion(
            user_id=user_id,
            recipient_id=recipient_id,
            recipient_name="Sam",
            date_type=date_type,
            date=occasion_date,
            recurring=recurring,
        )
        db.add(occasion)
        db.flush()

        rule = AutoGiftRule(
            user_id=user_id,
            recipient_id=recipient_id,
            occasion_id=occasion.id,
            date_type=date_type,
            active=active,
            budget_limit=budget,
            gift_selection_criteria=criteria or {},
            notification_days=list(notification_days),
            payment_method_id=payment_method_id,
            require_approval=require_approval,
            gift_message="Happy birthday!",
            shipping_address=SHIPPING_ADDRESS,
        )
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule

    return _make


@pytest.fixture
def make_execution(db):
    def _make(
        rule,
        *,
        status=ExecutionStatus.PENDING_SELECTION,
        occasion_date=date(2025, 12, 25),
        products=None,
        total=None,
    ):
        if products is None and status != ExecutionStatus.PENDING_SELECTION:
            products = [product()]
        if total is None and products:
            total = sum((Decimal(p["price"]) for p in products), Decimal("0"))

        execution = AutoGiftExecution(
            user_id=rule.user_id,
            rule_id=rule.id,
            occasion_id=rule.occasion_id,
            occasion_date=occasion_date,
            execution_date=occasion_date - timedelta(days=7),
            status=status,
            selected_products=products,
            total_amount=total,
            gift_message=rule.gift_message,
        )
        db.add(execution)
        db.commit()
        db.refresh(execution)
        return execution

    return _make


@pytest.fixture
def make_token(db):
    def _make(execution, *, token="tok-123", expires_at=NOW + timedelta(hours=72)):
        row = ApprovalToken(
            user_id=execution.user_id,
            execution_id=execution.id,
            token=token,
            expires_at=expires_at,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

    return _make


@pytest.fixture
def make_order(db, gateway):
    def _make(
        execution,
        *,
        status=OrderStatus.SCHEDULED,
        payment_status=PaymentStatus.AUTHORIZED,
        funding_status=FundingStatus.AWAITING_FUNDS,
        funding_hold_reason="payment_not_captured",
        delivery_date=None,
        capture_date=None,
        authorization_id="auto",
        total=None,
        expected_funds_at=None,
        funds_allocated_at=None,
    ):
        delivery_date = delivery_date or execution.occasion_date
        amount = Decimal(total if total is not None else execution.total_amount)
        if authorization_id == "auto":
            authorization_id = gateway.seed_authorization(amount)

        order = GiftOrder(
            user_id=execution.user_id,
            execution_id=execution.id,
            status=status,
            payment_status=payment_status,
            payment_authorization_id=authorization_id,
            payment_idempotency_key=f"autogift-auth-{execution.id}",
            total_amount=amount,
            currency="usd",
            products=execution.selected_products or [product()],
            shipping_address=SHIPPING_ADDRESS,
            gift_message=execution.gift_message,
            delivery_date=delivery_date,
            capture_date=capture_date or (delivery_date - timedelta(days=4)),
            funding_status=funding_status,
            funding_hold_reason=funding_hold_reason,
            expected_funds_at=expected_funds_at,
            funds_allocated_at=funds_allocated_at,
        )
        db.add(order)
        db.flush()
        execution.order_id = order.id
        db.commit()
        db.refresh(order)
        return order

    return _make
