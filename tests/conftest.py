"""
Shared fixtures: an in-memory SQLite database per test, a TestClient wired
to it, and small factories for marketplace rows.
"""
import os

# Must be set before the app (and its engine) is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PENDING_BLOCKS_AVAILABILITY"] = "true"
os.environ["SECRET_KEY"] = "test-secret-key"

from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace import models
from marketplace.audit_service import get_audit_sink
from marketplace.database import Base, enable_sqlite_transactions, get_db
from marketplace.main import app
from marketplace.security import create_access_token

TENANT_ID = "tenant-demo"
OTHER_TENANT_ID = "tenant-other"

# A Tuesday far enough ahead to never be in the past
SLOT = datetime(2030, 1, 15, 10, 0)


class RecordingAuditSink:
    """Keeps audit events in memory instead of writing them"""

    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)
        return True


class MarketplaceFactory:
    def __init__(self, db):
        self.db = db
        self._counter = 0

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def user(self, role=models.UserRole.CUSTOMER, tenant_id=TENANT_ID, full_name=None):
        self._counter += 1
        return self._save(models.User(
            tenant_id=tenant_id,
            email=f"user{self._counter}@example.com",
            full_name=full_name or f"User {self._counter}",
            role=role
        ))

    def provider(self, commission_rate="15.00", tenant_id=TENANT_ID, user=None):
        user = user or self.user(role=models.UserRole.PROVIDER, tenant_id=tenant_id)
        return self._save(models.ServiceProvider(
            tenant_id=tenant_id,
            user_id=user.id,
            business_name=f"{user.full_name} Services",
            commission_rate=Decimal(commission_rate)
        ))

    def service(
        self,
        provider,
        name="Home Cleaning",
        base_price="10.00",
        duration_minutes=60,
        allow_urgent=False,
        urgent_fee=None,
        payment_methods=None,
        is_active=True,
        **kwargs
    ):
        return self._save(models.Service(
            tenant_id=provider.tenant_id,
            provider_id=provider.id,
            name=name,
            base_price=Decimal(base_price),
            duration_minutes=duration_minutes,
            allow_urgent=allow_urgent,
            urgent_fee=Decimal(urgent_fee) if urgent_fee is not None else None,
            payment_methods=payment_methods,
            is_active=is_active,
            **kwargs
        ))

    def addon(self, service, name="Eco detergent", price="2.00", is_required=False):
        return self._save(models.ServiceAddon(
            service_id=service.id,
            name=name,
            price=Decimal(price),
            is_required=is_required
        ))

    def booking(
        self,
        customer,
        service,
        scheduled_at=SLOT,
        status=models.BookingStatus.PENDING,
        payment_type=models.PaymentType.CASH_ON_DELIVERY,
        total_amount="10.00",
        commission_amount="1.50",
    ):
        return self._save(models.Booking(
            tenant_id=service.tenant_id,
            customer_id=customer.id,
            provider_id=service.provider_id,
            service_id=service.id,
            booking_type=models.BookingType.ONE_TIME,
            status=status,
            scheduled_at=scheduled_at,
            total_amount=Decimal(total_amount),
            urgent_fee=Decimal("0.00"),
            commission_amount=Decimal(commission_amount),
            currency=service.currency,
            payment_status=models.PaymentStatus.PENDING,
            payment_type=payment_type
        ))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    enable_sqlite_transactions(engine)
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
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def factory(db):
    return MarketplaceFactory(db)


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def client(db, audit_sink):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_sink] = lambda: audit_sink
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token({
            "sub": user.id,
            "tenant_id": user.tenant_id,
            "role": user.role.value
        })
        return {"Authorization": f"Bearer {token}"}
    return _headers
