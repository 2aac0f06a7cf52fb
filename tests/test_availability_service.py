from datetime import datetime, timedelta

import pytest

from marketplace import availability_service, models
from marketplace.exceptions import ConflictError, NotFoundError

from conftest import SLOT, TENANT_ID


@pytest.fixture
def timeline(factory):
    """Provider with a 60 minute service booked 10:00-11:00"""
    provider = factory.provider()
    service = factory.service(provider, duration_minutes=60)
    customer = factory.user()
    booking = factory.booking(customer, service, scheduled_at=SLOT)
    return provider, service, customer, booking


def test_touching_intervals_do_not_overlap():
    ten, eleven, noon = SLOT, SLOT + timedelta(hours=1), SLOT + timedelta(hours=2)
    assert not availability_service.intervals_overlap(ten, eleven, eleven, noon)
    assert availability_service.intervals_overlap(ten, noon, eleven, noon)


def test_blocking_statuses_policy():
    assert models.BookingStatus.PENDING in availability_service.blocking_statuses(True)
    assert models.BookingStatus.PENDING not in availability_service.blocking_statuses(False)
    for pending_blocks in (True, False):
        statuses = availability_service.blocking_statuses(pending_blocks)
        assert models.BookingStatus.COMPLETED in statuses
        assert models.BookingStatus.CANCELLED not in statuses
        assert models.BookingStatus.REFUNDED not in statuses


@pytest.mark.parametrize("start, available", [
    (SLOT + timedelta(minutes=30), False),
    (SLOT - timedelta(minutes=30), False),
    (SLOT, False),
    (SLOT + timedelta(hours=1), True),
    (SLOT - timedelta(hours=1), True),
])
def test_overlap_against_existing_booking(db, timeline, start, available):
    provider = timeline[0]
    assert availability_service.is_available(db, TENANT_ID, provider.id, start, 60) is available


def test_cancelled_booking_frees_the_slot(db, factory, timeline):
    provider, service, customer, booking = timeline
    booking.status = models.BookingStatus.CANCELLED
    db.commit()

    assert availability_service.is_available(db, TENANT_ID, provider.id, SLOT, 60)


def test_pending_booking_blocks_only_when_policy_says_so(db, timeline):
    provider = timeline[0]
    assert not availability_service.is_available(db, TENANT_ID, provider.id, SLOT, 60, pending_blocks=True)
    assert availability_service.is_available(db, TENANT_ID, provider.id, SLOT, 60, pending_blocks=False)


def test_completed_booking_always_blocks(db, timeline):
    provider, service, customer, booking = timeline
    booking.status = models.BookingStatus.COMPLETED
    db.commit()

    assert not availability_service.is_available(db, TENANT_ID, provider.id, SLOT, 60, pending_blocks=False)


def test_existing_booking_uses_its_own_service_duration(db, factory, timeline):
    provider, _, customer, _ = timeline
    long_service = factory.service(provider, name="Deep Cleaning", duration_minutes=180)
    factory.booking(customer, long_service, scheduled_at=datetime(2030, 1, 16, 8, 0))

    # 08:00 + 180 minutes reaches 11:00, so 10:30 on that day is taken
    assert not availability_service.is_available(db, TENANT_ID, provider.id, datetime(2030, 1, 16, 10, 30), 30)
    assert availability_service.is_available(db, TENANT_ID, provider.id, datetime(2030, 1, 16, 11, 0), 30)


def test_other_provider_is_independent(db, factory, timeline):
    other = factory.provider()
    factory.service(other)
    assert availability_service.is_available(db, TENANT_ID, other.id, SLOT, 60)


def test_find_conflicts_returns_overlapping_bookings(db, timeline):
    provider, _, _, booking = timeline
    conflicts = availability_service.find_conflicts(db, TENANT_ID, provider.id, SLOT, 60)
    assert [c.id for c in conflicts] == [booking.id]


def test_ensure_available_names_the_service(db, timeline):
    provider = timeline[0]
    with pytest.raises(ConflictError) as exc_info:
        availability_service.ensure_available(db, TENANT_ID, provider.id, SLOT, 60, "Window Washing")

    assert "Window Washing" in exc_info.value.message
    assert exc_info.value.details["serviceName"] == "Window Washing"


def test_ensure_available_returns_locked_provider(db, timeline):
    provider = timeline[0]
    locked = availability_service.ensure_available(
        db, TENANT_ID, provider.id, SLOT + timedelta(hours=2), 60, "Home Cleaning"
    )
    assert locked.id == provider.id


def test_unknown_provider(db):
    with pytest.raises(NotFoundError):
        availability_service.lock_provider_timeline(db, TENANT_ID, "missing-provider")
