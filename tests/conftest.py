"""
Pytest configuration.

Tests run against a throwaway SQLite file (not ``:memory:``) so that the
concurrency tests can open one connection per thread. The environment must be
set before anything from ``slotbook`` is imported: settings and the engine are
module-level singletons.
"""

import os
import tempfile

_test_dir = tempfile.mkdtemp(prefix="slotbook-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_test_dir, "test.db")
os.environ["CREATE_DATABASE_ON_STARTUP"] = "false"
os.environ["SLOT_SWEEP_INTERVAL_SECONDS"] = "0"
os.environ["PAYMENT_GATEWAY"] = "stub"
os.environ["REQUIRE_PARTNER_APPROVAL"] = "false"
os.environ["STRIPE_WEBHOOK_SECRET"] = ""
os.environ["SECRET_KEY"] = "test-secret-key"

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from slotbook.api.deps import get_notifier
from slotbook.core.security import Principal, ROLE_PARTNER, ROLE_USER, create_access_token
from slotbook.db.base import Base
from slotbook.db.session import SessionLocal, engine, get_db
from slotbook.main import app
from slotbook.models.listing import Listing
from slotbook.models.promotion import Promotion, PromotionType
from slotbook.models.schedule_slot import ScheduleSlot
from slotbook.services.notifier import ConnectionRegistry, Notifier
from slotbook.services.orchestrator import ReservationOrchestrator
from slotbook.services.payment_gateway import StubPaymentGateway, get_payment_gateway
from slotbook.services.reconciliation import PaymentReconciliationService


class RecordingPublisher:
    """Publisher that keeps every batch of events it is handed."""

    def __init__(self):
        self.events = []
        self.batches = 0

    def __call__(self, events):
        self.batches += 1
        self.events.extend(events)

    @property
    def types(self):
        return [event.type for event in self.events]


# ============================================================================
# Database
# ============================================================================


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


# ============================================================================
# Catalog data
# ============================================================================


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


@pytest.fixture
def user():
    return Principal(user_id=uuid4(), role=ROLE_USER)


@pytest.fixture
def other_user():
    return Principal(user_id=uuid4(), role=ROLE_USER)


@pytest.fixture
def partner():
    return Principal(user_id=uuid4(), role=ROLE_PARTNER)


@pytest.fixture
def listing(db, partner):
    listing = Listing(partner_id=partner.user_id, title="Sunset Kayak Tour", currency="MAD")
    db.add(listing)
    db.commit()
    db.refresh(listing)
    return listing


@pytest.fixture
def make_slot(db, listing, now):
    def _make_slot(capacity=5, price="100.00", booked_slots=0, is_available=True, start_time=None, duration_hours=2):
        start = start_time or now + timedelta(days=1)
        slot = ScheduleSlot(
            listing_id=listing.id,
            start_time=start,
            end_time=start + timedelta(hours=duration_hours),
            price=Decimal(price),
            currency="MAD",
            capacity=capacity,
            booked_slots=booked_slots,
            is_available=is_available,
        )
        db.add(slot)
        db.commit()
        db.refresh(slot)
        return slot

    return _make_slot


@pytest.fixture
def slot(make_slot):
    return make_slot()


@pytest.fixture
def make_promotion(db, listing, now):
    def _make_promotion(kind, value, is_active=True, start_date=None, end_date=None, created_at=None):
        promotion = Promotion(
            partner_id=listing.partner_id,
            type=kind,
            value=Decimal(value),
            is_active=is_active,
            start_date=start_date or now - timedelta(days=1),
            end_date=end_date or now + timedelta(days=1),
        )
        if created_at is not None:
            promotion.created_at = created_at
        promotion.listings.append(listing)
        db.add(promotion)
        db.commit()
        db.refresh(promotion)
        return promotion

    return _make_promotion


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def gateway():
    return StubPaymentGateway()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def orchestrator(gateway):
    return ReservationOrchestrator(gateway)


@pytest.fixture
def approval_orchestrator(gateway):
    return ReservationOrchestrator(gateway, require_partner_approval=True)


@pytest.fixture
def reconciliation(gateway, orchestrator):
    return PaymentReconciliationService(gateway, orchestrator)


# ============================================================================
# HTTP
# ============================================================================


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def client(gateway, registry):
    def override_get_db():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: Notifier(SessionLocal, registry)

    # Not used as a context manager: the lifespan (DB bootstrap, sweep loop) is skipped
    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _auth_headers(principal):
        token = create_access_token(str(principal.user_id), role=principal.role)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
