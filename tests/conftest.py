import os
import tempfile
from datetime import datetime, timezone

# Settings are read at import time: configure before anything imports config.*
os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{os.path.join(tempfile.gettempdir(), 'teemplot_billing_app.db')}"
)
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("PAYMENT_PROVIDER", "paystack")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_paystack")
os.environ.setdefault("FLUTTERWAVE_SECRET_HASH", "flw_test_hash")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["GATEWAY_RETRY_WAIT_SECONDS"] = "0"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config.database import Base, get_db
from common.exceptions import ProviderError
from common.security import create_token
from modules.company.models import Company, SubscriptionStatus
from modules.user.models import User, UserRole
from modules.payment.models import PaymentIntent  # noqa: F401
from modules.payment.gateways import (
    BaseGateway, GatewayInitRequest, GatewayInitResult, GatewayVerifyResult,
)
from modules.payment.service import PaymentService, get_payment_service

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeGateway(BaseGateway):
    """
    Scripted gateway. verify() pops from verify_queue: an exception is raised,
    a callable is invoked with the reference (then the charge succeeds), and
    an empty queue means the charge succeeds for the initialized amount.
    """
    name = "fake"
    label = "Fake"
    signature_header = "x-fake-signature"

    def __init__(self):
        super().__init__("sk_fake")
        self.charges = {}
        self.init_calls = []
        self.init_error = None
        self.verify_queue = []
        self.verify_calls = 0
        self.amount_override = None

    def initialize(self, req: GatewayInitRequest) -> GatewayInitResult:
        self.init_calls.append(req)
        if self.init_error:
            raise self.init_error
        self.charges[req.reference] = (req.amount, req.currency)
        return GatewayInitResult(
            authorization_url=f"https://checkout.fake/{req.reference}",
            reference=req.reference,
            access_code="ac_fake",
        )

    def verify(self, reference: str) -> GatewayVerifyResult:
        self.verify_calls += 1
        item = self.verify_queue.pop(0) if self.verify_queue else None
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item(reference)
        if reference not in self.charges:
            raise ProviderError("Transaction reference not found", provider=self.name)
        amount, currency = self.charges[reference]
        return GatewayVerifyResult(
            success=True,
            reference=reference,
            amount=self.amount_override if self.amount_override is not None else amount,
            currency=currency,
            paid_at=NOW,
            channel="card",
        )

    def verify_webhook_signature(self, raw_body, headers) -> bool:
        return False

    def extract_successful_reference(self, event):
        return None


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'billing.db'}", connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def payment_service(gateway):
    return PaymentService(
        gateway,
        callback_base_url="https://app.teemplot.test",
        verify_attempts=3,
        retry_wait_seconds=0,
        clock=lambda: NOW,
    )


@pytest.fixture
def make_company(db):
    def factory(**kwargs):
        values = {
            "name": "Acme Ltd",
            "subscription_status": SubscriptionStatus.TRIAL.value,
            "employee_limit": 1,
        }
        values.update(kwargs)
        company = Company(**values)
        db.add(company)
        db.commit()
        return company
    return factory


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def factory(company, role=UserRole.OWNER.value, is_active=True):
        counter["n"] += 1
        user = User(
            company_id=company.id,
            email=f"user{counter['n']}@{company.name.split()[0].lower()}.test",
            first_name="Test",
            last_name=f"User{counter['n']}",
            role=role,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        return user
    return factory


@pytest.fixture
def company(make_company):
    return make_company()


@pytest.fixture
def owner(make_user, company):
    return make_user(company)


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_token({'sub': user.id})}"}


@pytest.fixture
def client(monkeypatch, session_factory, payment_service):
    import main
    import config.database
    import modules.subscription.routes
    from fastapi.testclient import TestClient

    monkeypatch.setattr(config.database, "SessionLocal", session_factory)
    monkeypatch.setattr(modules.subscription.routes, "SessionLocal", session_factory)
    monkeypatch.setattr(main, "SessionLocal", session_factory)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    main.app.dependency_overrides[get_db] = override_get_db
    main.app.dependency_overrides[get_payment_service] = lambda: payment_service
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()
