import asyncio
import hashlib
import hmac
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Union

import pytest
from fastapi.testclient import TestClient

from app.core.security import TokenData, get_current_user
from app.schemas.payment import PaymentOrder, PaymentStatus
from app.schemas.user import User
from app.services.gateway import GatewayOrder, PaymentGateway
from app.services.order_store import InMemoryOrderStore
from app.services.payment_service import PaymentService
from app.services.user_store import InMemoryUserStore
from app.services.webhook_service import WebhookService

KEY_ID = "rzp_test_key"
KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"

USER_ID = "user-0001"
OTHER_USER_ID = "user-0002"
PREMIUM_USER_ID = "user-0003"


def compute_signature(message: Union[str, bytes], secret: str) -> str:
    """Signs the way Razorpay does: hex HMAC-SHA256 keyed with the secret."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign(order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    return compute_signature(f"{order_id}|{payment_id}", secret)


class FakeGateway(PaymentGateway):
    key_id = KEY_ID

    def __init__(self):
        self.calls: List[Dict] = []
        self.error: Optional[Exception] = None

    async def create_order(self, amount, currency, receipt, notes) -> GatewayOrder:
        self.calls.append({"amount": amount, "currency": currency, "receipt": receipt, "notes": notes})
        if self.error:
            raise self.error
        return GatewayOrder(external_order_id=f"order_{len(self.calls):04d}", amount=amount, currency=currency)


class RecordingOrderStore(InMemoryOrderStore):
    """Keeps a log of every transition that actually changed a record."""

    def __init__(self):
        super().__init__()
        self.applied: List[tuple] = []

    async def _transition(self, order_id, changes, user_id=None):
        record, applied = await super()._transition(order_id, changes, user_id)
        if applied:
            self.applied.append((order_id, changes["status"]))
        return record, applied


class YieldingOrderStore(RecordingOrderStore):
    """Yields to the event loop after every read and before every transition, like a database round trip."""

    async def find_by_external_order_id(self, order_id):
        record = await super().find_by_external_order_id(order_id)
        await asyncio.sleep(0)
        return record

    async def _transition(self, order_id, changes, user_id=None):
        await asyncio.sleep(0)
        return await super()._transition(order_id, changes, user_id)


class YieldingUserStore(InMemoryUserStore):
    async def get(self, user_id):
        user = await super().get(user_id)
        await asyncio.sleep(0)
        return user

    async def set_premium(self, user_id):
        await asyncio.sleep(0)
        await super().set_premium(user_id)


def make_order(
    order_id: str = "order_seed",
    user_id: str = USER_ID,
    amount: int = 99900,
    plan_type: str = "premium_monthly",
    status: PaymentStatus = PaymentStatus.PENDING,
    created_at: Optional[datetime] = None,
) -> PaymentOrder:
    created_at = created_at or datetime.now(timezone.utc)
    return PaymentOrder(
        id=str(uuid.uuid4()),
        user_id=user_id,
        razorpay_order_id=order_id,
        amount=amount,
        currency="INR",
        plan_type=plan_type,
        description="Premium Monthly Subscription",
        status=status,
        created_at=created_at,
        updated_at=created_at,
    )


def days_ago(n: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=n)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def orders():
    return YieldingOrderStore()


@pytest.fixture
def users():
    return YieldingUserStore([
        User(id=USER_ID, email="asha@example.com", first_name="Asha", last_name="Rao"),
        User(id=OTHER_USER_ID, email="ravi@example.com", first_name="Ravi", last_name="K"),
        User(id=PREMIUM_USER_ID, email="meera@example.com", first_name="Meera", last_name="S", is_premium=True),
    ])


@pytest.fixture
def payment_service(orders, users, gateway):
    return PaymentService(orders=orders, users=users, gateway=gateway, key_secret=KEY_SECRET)


@pytest.fixture
def webhook_service(orders, users):
    return WebhookService(orders=orders, users=users, webhook_secret="")


@pytest.fixture
def app(payment_service, orders, users):
    from app.main import create_app

    application = create_app()
    application.state.payment_service = payment_service
    application.state.webhook_service = WebhookService(orders=orders, users=users, webhook_secret=WEBHOOK_SECRET)
    application.dependency_overrides[get_current_user] = lambda: TokenData(id=USER_ID, email="asha@example.com")
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def as_user(app):
    def _as(user_id: str, role: Optional[str] = None):
        app.dependency_overrides[get_current_user] = lambda: TokenData(id=user_id, role=role)
    return _as
