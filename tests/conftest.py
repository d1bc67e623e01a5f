import hashlib
import hmac
import json
import os
import time
from datetime import date, timedelta

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["ENV"] = "test"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["LOG_JSON"] = "false"

import pytest
import stripe
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.api.deps import get_gateway, get_notifier
from app.core.rate_limit import SlidingWindowRateLimiter
from app.core.security import create_access_token
from app.database import get_db
from app.main import app as fastapi_app
from app.models.base import Base
from app.models.event import Event, PricingConfig
from app.schemas.registration import GroupRegistrationCreate, PersonIn, RegistrationCreate
from app.services.gateway import CheckoutGateway, GatewaySession
from app.services.registration_store import RegistrationStore
from app.services.registrations import RegistrationService


WEBHOOK_SECRET = "whsec_test"

ADULT_DOB = date(1990, 3, 15)
YOUTH_DOB = date(2011, 1, 1)
CHILD_DOB = date(2018, 1, 1)
INFANT_DOB = date(2024, 1, 1)


engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)




class FakeGateway(CheckoutGateway):
    """Stripe stand-in; webhook verification still runs the real signature check."""

    def __init__(self):
        super().__init__(api_key="sk_test_fake")
        self.created = []
        self.expired = []
        self.sessions = {}
        self.fail_create = False
        self.expire_fails = set()

    def create_session(self, **kwargs):
        if self.fail_create:
            raise stripe.APIConnectionError("connection refused")
        session_id = f"cs_test_{len(self.created) + 1}"
        self.created.append(kwargs)
        self.sessions[session_id] = GatewaySession(
            id=session_id,
            url=f"https://checkout.stripe.test/{session_id}",
            status="open",
            payment_status="unpaid",
        )
        return self.sessions[session_id]

    def retrieve_session(self, session_id):
        if session_id not in self.sessions:
            raise stripe.InvalidRequestError("No such checkout session", param="id")
        return self.sessions[session_id]

    def expire_session(self, session_id):
        # Stripe only expires open sessions
        session = self.sessions.get(session_id)
        if session_id in self.expire_fails or (session and session.status != "open"):
            return False
        self.expired.append(session_id)
        if session:
            session.status = "expired"
        return True

    def pay(self, session_id):
        self.sessions[session_id].status = "complete"
        self.sessions[session_id].payment_status = "paid"




class RecordingNotifier:

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, notice):
        if self.fail:
            raise RuntimeError("smtp unavailable")
        self.sent.append(notice)
        return True




def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_event(event_type: str, session_id: str, event_id: str, metadata=None, payment_intent="pi_test_1") -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_intent": payment_intent,
                "metadata": metadata or {},
            }
        },
    }).encode("utf-8")




@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db):
    return RegistrationStore(db)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(gateway, notifier):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_gateway] = lambda: gateway
    fastapi_app.dependency_overrides[get_notifier] = lambda: notifier
    fastapi_app.state.rate_limiter = SlidingWindowRateLimiter(1000, 60)
    yield TestClient(fastapi_app)
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    token = create_access_token({"sub": "admin@example.com", "role": "admin", "user_id": "admin-1"})
    return {"Authorization": f"Bearer {token}"}




def make_event(db, surcharge_tiers=None, motel_stay_free=True, **overrides) -> Event:
    values = dict(
        name="Summer Conference",
        start_date=date(2026, 7, 10),
        end_date=date(2026, 7, 14),
        adult_age_threshold=18,
        youth_age_threshold=13,
        infant_age_threshold=3,
        is_active=True,
    )
    values.update(overrides)
    event = Event(**values)
    event.pricing = PricingConfig(
        adult_full_price=100,
        adult_daily_price=30,
        youth_full_price=80,
        youth_daily_price=25,
        child_full_price=50,
        child_daily_price=15,
        motel_stay_free=motel_stay_free,
        late_surcharge_tiers=surcharge_tiers or [],
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


def window_around_today(amount="20", label="Late Fee"):
    today = date.today()
    return {
        "start_date": (today - timedelta(days=2)).isoformat(),
        "end_date": (today + timedelta(days=2)).isoformat(),
        "amount": amount,
        "label": label,
    }


@pytest.fixture
def event(db):
    return make_event(db)


def person(**overrides) -> dict:
    values = dict(
        first_name="Ada",
        last_name="Lovelace",
        date_of_birth=ADULT_DOB,
        is_full_duration=True,
    )
    values.update(overrides)
    return values


def register(store, event, **overrides):
    values = person(**overrides)
    values.setdefault("email", "ada@example.com")
    registration, notices = RegistrationService(store).create(
        RegistrationCreate(event_id=event.id, **values)
    )
    return registration


def register_group(store, event, people, email="family@example.com"):
    group_id, registrations, group, notices = RegistrationService(store).create_group(
        GroupRegistrationCreate(
            event_id=event.id,
            email=email,
            registrants=[PersonIn(**person(**p)) for p in people],
        )
    )
    return group_id, registrations
