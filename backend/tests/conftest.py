# backend/tests/conftest.py
"""
Pytest configuration for the booking core.

Each test gets its own file-backed SQLite database. SQLite transactions start
with BEGIN IMMEDIATE (see ``database.create_db_engine``), so a session that
has read anything holds the write lock until it commits or closes: commit the
shared ``db`` session before another session or thread writes.
"""

import json
import os
import sys

# CRITICAL: Set the environment BEFORE any booking_core imports!
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_booking_core"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_booking_core"
os.environ["SITE_URL"] = "https://tutors.example.com"
os.environ["PRICING_TIERS"] = json.dumps(
    {
        "GCSE_standard": {"price_id": "price_gcse_standard", "unit_amount": 4500},
        "GCSE_discount": {"price_id": "price_gcse_discount", "unit_amount": 3000},
        "A-Level_standard": {"price_id": "price_alevel_standard", "unit_amount": 5500},
    }
)

# Add the backend directory to Python path so imports work
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)

from datetime import timedelta
from typing import Callable, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker
import ulid

from booking_core.api.dependencies.services import get_stripe_gateway
from booking_core.database import Base, create_db_engine, get_db
from booking_core.main import app
from booking_core.models.booking import Booking, BookingStatus
from booking_core.models.slot import Slot
from booking_core.models.types import utc_now
from booking_core.models.user import DiscountStatus, User
from booking_core.services.stripe_gateway import StripeGateway
from tests.helpers.auth import auth_headers_for
from tests.helpers.clock import FrozenClock
from tests.helpers.stripe_events import WEBHOOK_SECRET


@pytest.fixture(scope="function")
def engine(tmp_path):
    db_engine = create_db_engine(f"sqlite:///{tmp_path / 'booking_core_test.db'}")
    Base.metadata.create_all(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    """Independent sessions, e.g. one per thread in concurrency tests."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture(scope="function")
def db(session_factory):
    """
    Create a new database session for each test.
    This version works with TestClient.
    """
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def clock() -> FrozenClock:
    # Anchored at real time so route-level code using utc_now agrees with fixtures
    return FrozenClock(utc_now().replace(microsecond=0))


@pytest.fixture
def gateway() -> StripeGateway:
    return StripeGateway(secret_key="sk_test_booking_core", webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def client(db: Session, gateway: StripeGateway):
    """Create a test client with the test database."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway

    # Don't use context manager - create directly
    test_client = TestClient(app)

    yield test_client

    # Cleanup
    app.dependency_overrides.clear()
    test_client.close()


# ============================================================================
# Data factories
# ============================================================================


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    def _make_user(discount_status: str = DiscountStatus.NONE.value, **kwargs) -> User:
        user_id = str(ulid.ULID())
        user = User(
            id=user_id,
            email=kwargs.pop("email", f"buyer_{user_id.lower()}@example.com"),
            display_name=kwargs.pop("display_name", "Test Buyer"),
            discount_status=discount_status,
            **kwargs,
        )
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def make_slot(db: Session, clock: FrozenClock) -> Callable[..., Slot]:
    def _make_slot(
        starts_in: timedelta = timedelta(days=3),
        duration: timedelta = timedelta(hours=1),
        level: str = "GCSE",
        subject: str = "Mathematics",
        exam_boards: Optional[list] = None,
        **kwargs,
    ) -> Slot:
        start = clock.now + starts_in
        slot = Slot(
            id=str(ulid.ULID()),
            provider_id=kwargs.pop("provider_id", str(ulid.ULID())),
            start=start,
            end=start + duration,
            subject=subject,
            level=level,
            exam_boards=exam_boards if exam_boards is not None else ["AQA", "Edexcel"],
            **kwargs,
        )
        db.add(slot)
        db.commit()
        return slot

    return _make_slot


@pytest.fixture
def make_booking(db: Session, clock: FrozenClock) -> Callable[..., Booking]:
    def _make_booking(
        slot: Slot,
        buyer: User,
        status: str = BookingStatus.PENDING_PAYMENT.value,
        payment_id: Optional[str] = None,
        **kwargs,
    ) -> Booking:
        booking = Booking(
            id=str(ulid.ULID()),
            buyer_id=buyer.id,
            provider_id=slot.provider_id,
            slot_id=slot.id,
            subject=slot.subject,
            level=slot.level,
            exam_board=kwargs.pop("exam_board", "AQA"),
            start=slot.start,
            end=slot.end,
            price=kwargs.pop("price", 4500),
            currency="GBP",
            status=status,
            payment_id=payment_id,
            created_at=clock.now,
            paid_at=kwargs.pop(
                "paid_at", clock.now if status == BookingStatus.CONFIRMED.value else None
            ),
            **kwargs,
        )
        db.add(booking)
        db.commit()
        return booking

    return _make_booking


@pytest.fixture
def buyer(make_user) -> User:
    return make_user()


@pytest.fixture
def other_buyer(make_user) -> User:
    return make_user()


@pytest.fixture
def slot(make_slot) -> Slot:
    return make_slot()


@pytest.fixture
def auth_headers(buyer: User) -> dict:
    """Get auth headers for the default test buyer."""
    return auth_headers_for(buyer)


@pytest.fixture
def other_auth_headers(other_buyer: User) -> dict:
    return auth_headers_for(other_buyer)
