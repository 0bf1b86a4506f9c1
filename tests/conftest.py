import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault('APP_ENV', 'test')
os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')
os.environ.setdefault('SUPABASE_JWT_SECRET', 'test-jwt-secret-with-at-least-32-bytes!')
os.environ.setdefault('PUSHINPAY_TOKEN', 'x')
os.environ.setdefault('PIX_WEBHOOK_TOKEN', 'test-webhook-token')

from manuflix.config import CheckoutTimings  # noqa: E402
from manuflix.core.exceptions import ProviderError, StoreError  # noqa: E402
from manuflix.database import build_engine, build_session_factory, init_db  # noqa: E402
from manuflix.schemas.checkout import Charge  # noqa: E402
from manuflix.services.payment_confirmation import PaymentConfirmationService  # noqa: E402
from manuflix.services.subscription_store import SubscriptionStore  # noqa: E402

FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class RecordingStore(SubscriptionStore):
    """SubscriptionStore that remembers which write operations were called."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.writes = []
        self.fail_on = set()

    def _record(self, name):
        self.writes.append(name)
        if name in self.fail_on:
            raise StoreError(f"{name} rejected")

    def create_transaction(self, *args, **kwargs):
        self._record("create_transaction")
        return super().create_transaction(*args, **kwargs)

    def update_transaction_status(self, *args, **kwargs):
        self._record("update_transaction_status")
        return super().update_transaction_status(*args, **kwargs)

    def mark_transaction_terminal(self, *args, **kwargs):
        self._record("mark_transaction_terminal")
        return super().mark_transaction_terminal(*args, **kwargs)

    def create_user_subscription(self, *args, **kwargs):
        self._record("create_user_subscription")
        return super().create_user_subscription(*args, **kwargs)

    def update_subscription_status(self, *args, **kwargs):
        self._record("update_subscription_status")
        return super().update_subscription_status(*args, **kwargs)


class FakePixProvider:
    """In-memory stand-in for the PIX provider with scripted statuses."""

    def __init__(self, statuses=None, expiration_date=None, fail_create=False):
        self.statuses = list(statuses or ["PENDING"])
        self.expiration_date = expiration_date
        self.fail_create = fail_create
        self.create_calls = []
        self.status_calls = 0
        self._counter = 0

    async def create_charge(self, amount, description, customer):
        self.create_calls.append({"amount": Decimal(amount), "description": description, "customer": customer})
        if self.fail_create:
            raise ProviderError("provider unavailable", status_code=503)
        self._counter += 1
        return Charge(
            id=f"charge-{self._counter}",
            qrcode_image="data:image/png;base64,AAAA",
            copy_paste="00020101021226880014br.gov.bcb.pix",
            expiration_date=self.expiration_date,
            status="CREATED",
        )

    async def get_charge_status(self, charge_id):
        self.status_calls += 1
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]


@pytest.fixture
def engine():
    engine = build_engine("sqlite:///:memory:")
    init_db(engine, build_session_factory(engine))
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return RecordingStore(session_factory)


@pytest.fixture
def confirmation(store):
    return PaymentConfirmationService(store)


@pytest.fixture
def timings():
    return CheckoutTimings(poll_interval_seconds=0.01, countdown_tick_seconds=0.01, default_countdown_seconds=3600)


@pytest.fixture
def provider():
    return FakePixProvider(expiration_date=FIXED_NOW + timedelta(seconds=3600))


@pytest.fixture
def clock():
    return lambda: FIXED_NOW
