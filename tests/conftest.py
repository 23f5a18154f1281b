import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_momo.db")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
import requests
from sqlalchemy.orm import sessionmaker

from momo_payments.config import AirtelSettings, MTNSettings, PaymentSettings
from momo_payments.database import Base, make_engine
from momo_payments.enums import PaymentMethod, Provider
from momo_payments.models import Order
from momo_payments.notifications import CompletionNotifier
from momo_payments.order_store import OrderStore
from momo_payments.providers.airtel import AirtelMoneyProvider
from momo_payments.providers.base import AttemptStatus, MobileMoneyProvider, PaymentAttempt
from momo_payments.providers.mtn import MTNMomoProvider
from momo_payments.state_machine import PaymentStateMachine

MTN_SECRET = "mtn-webhook-secret"
AIRTEL_SECRET = "airtel-webhook-secret"


def make_response(status_code=200, body=None, headers=None):
    """A real requests.Response carrying ``body`` as JSON."""
    response = requests.Response()
    response.status_code = status_code
    if body is None:
        response._content = b""
    elif isinstance(body, (bytes, str)):
        response._content = body if isinstance(body, bytes) else body.encode("utf-8")
    else:
        response._content = json.dumps(body).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    response.headers.update(headers or {})
    response.encoding = "utf-8"
    return response


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'orders.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return OrderStore(session_factory)


@pytest.fixture
def notifier():
    return CompletionNotifier()


@pytest.fixture
def state_machine(store, notifier):
    return PaymentStateMachine(store, notifier)


@pytest.fixture
def make_order(store):
    def _make(**overrides):
        fields = {
            "user_id": "user-1",
            "total_price": 15000,
            "customer_name": "Aline Uwase",
            "customer_email": "aline@example.com",
            "payment_method": PaymentMethod.MOBILE_MONEY.value,
            "payment_provider": Provider.MTN_MOBILE_MONEY.value,
            "payment_phone": "0788123456",
        }
        fields.update(overrides)
        return store.add(Order(**fields))

    return _make


@pytest.fixture
def payment_settings():
    return PaymentSettings()


@pytest.fixture
def mtn_settings():
    return MTNSettings(
        base_url="https://momo.test",
        subscription_key="sub-key",
        api_user="api-user",
        api_key="api-key",
        callback_url="https://shop.test/payments/mtn/callback",
        webhook_secret=MTN_SECRET,
    )


@pytest.fixture
def airtel_settings():
    return AirtelSettings(
        base_url="https://airtel.test",
        client_id="client-id",
        client_secret="client-secret",
        webhook_secret=AIRTEL_SECRET,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def http(mocker):
    return mocker.Mock(spec=requests.Session)


@pytest.fixture
def mtn(mtn_settings, payment_settings, http, sleeps, clock):
    return MTNMomoProvider(mtn_settings, payment_settings, session=http, sleep=sleeps.append, clock=clock)


@pytest.fixture
def airtel(airtel_settings, payment_settings, http, sleeps, clock):
    return AirtelMoneyProvider(airtel_settings, payment_settings, session=http, sleep=sleeps.append, clock=clock)


@pytest.fixture
def provider(mocker):
    """Provider double for orchestrator-level tests."""
    provider = mocker.Mock(spec=MobileMoneyProvider)
    provider.name = Provider.MTN_MOBILE_MONEY.value
    provider.validate_account.return_value = True
    provider.request_payment.return_value = PaymentAttempt(
        success=True, status=AttemptStatus.PENDING, transaction_id="ref-1"
    )
    return provider
