"""
Shared fixtures: settings environment, in-memory SQLite session, fake processor A client.
Environment variables must be set before any paygate module is imported.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-0123456789")
os.environ.setdefault("MERCADOPAGO_ACCESS_TOKEN", "")
os.environ.setdefault("KIWIFY_API_KEY", "")
os.environ.setdefault("MAILER_URL", "")

from datetime import datetime, timezone  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from paygate.core.errors import UpstreamError  # noqa: E402
from paygate.db.base import Base  # noqa: E402
from paygate.models import (  # noqa: E402,F401
    account,
    audit_log,
    entitlement_profile,
    kiwify_customer,
    purchase_intent,
    subscription_record,
)
from paygate.models.purchase_intent import PurchaseIntent  # noqa: E402
from paygate.services.notifications.service import FulfillmentNotifier  # noqa: E402
from paygate.services.processors.kiwify import KiwifyApiOrder  # noqa: E402
from paygate.services.processors.mercadopago import (  # noqa: E402
    MercadoPagoPayment,
    MercadoPagoPreference,
)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite: let SQLAlchemy emit BEGIN itself so SAVEPOINT (begin_nested) works.
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_intent(db):
    def _make(**kwargs) -> PurchaseIntent:
        values = {
            "processor": "mercadopago",
            "amount": 97.0,
            "currency": "BRL",
            "plan_type": "lifetime",
            "status": "pending",
        }
        values.update(kwargs)
        intent = PurchaseIntent(**values)
        db.add(intent)
        db.commit()
        return intent

    return _make


def build_payment(
    payment_id: str = "pay_1",
    status: str = "approved",
    email: str | None = "a@b.com",
    preference_id: str | None = None,
    external_reference: str | None = None,
    amount: float = 97.0,
) -> MercadoPagoPayment:
    return MercadoPagoPayment.model_validate(
        {
            "id": payment_id,
            "status": status,
            "payer": {"email": email},
            "preference_id": preference_id,
            "external_reference": external_reference,
            "transaction_amount": amount,
            "currency_id": "BRL",
        }
    )


class FakeMercadoPagoClient:
    """In-memory processor A: payments by id, search results by external_reference."""

    def __init__(self) -> None:
        self.payments: dict[str, MercadoPagoPayment] = {}
        self.search_results: dict[str, list[MercadoPagoPayment]] = {}
        self.preferences: list[dict] = []
        self.fail_preference = False
        self.fail_search_for: set[str] = set()

    def is_available(self) -> bool:
        return True

    def add_payment(self, payment: MercadoPagoPayment) -> MercadoPagoPayment:
        self.payments[payment.id] = payment
        if payment.external_reference:
            self.search_results.setdefault(payment.external_reference, []).append(payment)
        return payment

    def get_payment(self, payment_id: str) -> MercadoPagoPayment:
        if payment_id not in self.payments:
            raise UpstreamError("Mercado Pago API error: 404", context={"method": "get_payment"})
        return self.payments[payment_id]

    def search_payments(self, external_reference: str) -> list[MercadoPagoPayment]:
        if external_reference in self.fail_search_for:
            raise UpstreamError("Mercado Pago temporarily unavailable")
        return list(self.search_results.get(external_reference, []))

    def create_preference(self, **kwargs) -> MercadoPagoPreference:
        if self.fail_preference:
            raise UpstreamError("Mercado Pago API error: 500")
        self.preferences.append(kwargs)
        return MercadoPagoPreference(
            id=f"pref_{len(self.preferences)}",
            init_point="https://www.mercadopago.com.br/checkout/v1/redirect",
        )

    def close(self) -> None:
        pass


class FakeKiwifyClient:
    """In-memory processor B: orders by customer email."""

    def __init__(self) -> None:
        self.available = True
        self.fail = False
        self.orders: dict[str, list[KiwifyApiOrder]] = {}
        self.calls: list[str] = []

    def is_available(self) -> bool:
        return self.available

    def add_order(
        self,
        order_id: str,
        email: str,
        status: str = "paid",
        name: str | None = "Cliente Kiwify",
        amount: float | None = 97.0,
    ) -> KiwifyApiOrder:
        order = KiwifyApiOrder.model_validate(
            {
                "id": order_id,
                "status": status,
                "customer": {"id": f"cus_{order_id}", "email": email, "name": name},
                "product": {"id": "prod_1", "name": "DinDin Pro"},
                "amount": amount,
                "created_at": "2025-03-10T12:00:00Z",
            }
        )
        self.orders.setdefault(email, []).append(order)
        return order

    def list_orders(self, email: str) -> list[KiwifyApiOrder]:
        self.calls.append(email)
        if self.fail:
            raise UpstreamError("Kiwify temporarily unavailable")
        return list(self.orders.get(email, []))

    def close(self) -> None:
        pass


@pytest.fixture
def make_payment():
    return build_payment


@pytest.fixture
def mp_client():
    return FakeMercadoPagoClient()


@pytest.fixture
def kiwify_client():
    return FakeKiwifyClient()


@pytest.fixture
def notifier():
    notifier = MagicMock(spec=FulfillmentNotifier)
    notifier.request.return_value = True
    return notifier


@pytest.fixture
def now():
    return datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
