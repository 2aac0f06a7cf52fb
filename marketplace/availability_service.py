"""
Provider availability checks.

Every function here runs inside the caller's transaction and takes row
locks that are held until the caller commits or rolls back.
"""
import logging
import os
from datetime import datetime, timedelta
from typing import List, Optional

from dotenv import load_dotenv
from sqlalchemy import func
from sqlalchemy.orm import Session, contains_eager

from . import models
from .exceptions import ConflictError, NotFoundError

load_dotenv()

logger = logging.getLogger(__name__)

# Whether bookings still awaiting completion hold their slot
PENDING_BLOCKS_AVAILABILITY = os.getenv("PENDING_BLOCKS_AVAILABILITY", "true").lower() in ("1", "true", "yes")

NON_BLOCKING_STATUSES = (models.BookingStatus.CANCELLED, models.BookingStatus.REFUNDED)


def blocking_statuses(pending_blocks: Optional[bool] = None) -> List[models.BookingStatus]:
    """Statuses whose bookings occupy the provider's timeline"""
    if pending_blocks is None:
        pending_blocks = PENDING_BLOCKS_AVAILABILITY

    statuses = [s for s in models.BookingStatus if s not in NON_BLOCKING_STATUSES]
    if not pending_blocks:
        statuses.remove(models.BookingStatus.PENDING)
    return statuses


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open [start, end) overlap; touching intervals do not overlap"""
    return start_a < end_b and end_a > start_b


def lock_provider_timeline(db: Session, tenant_id: str, provider_id: str) -> models.ServiceProvider:
    """Lock the provider row so concurrent checkouts for one provider run one at a time"""
    provider = db.query(models.ServiceProvider).filter(
        models.ServiceProvider.id == provider_id,
        models.ServiceProvider.tenant_id == tenant_id
    ).with_for_update().first()

    if provider is None:
        raise NotFoundError(f"Provider {provider_id} not found", details={"providerId": provider_id})

    return provider


def _longest_service_duration(db: Session, tenant_id: str, provider_id: str) -> int:
    longest = db.query(
        func.max(func.coalesce(models.Service.duration_minutes, models.DEFAULT_SERVICE_DURATION_MINUTES))
    ).filter(
        models.Service.provider_id == provider_id,
        models.Service.tenant_id == tenant_id
    ).scalar()
    return int(longest or models.DEFAULT_SERVICE_DURATION_MINUTES)


def find_conflicts(
    db: Session,
    tenant_id: str,
    provider_id: str,
    start: datetime,
    duration_minutes: int,
    pending_blocks: Optional[bool] = None,
) -> List[models.Booking]:
    """Blocking bookings of the provider overlapping [start, start + duration)"""
    end = start + timedelta(minutes=duration_minutes)
    # No existing booking can reach past start if it began earlier than this
    lookback = start - timedelta(minutes=_longest_service_duration(db, tenant_id, provider_id))

    query = db.query(models.Booking).join(
        models.Service, models.Booking.service_id == models.Service.id
    ).options(
        contains_eager(models.Booking.service)
    ).filter(
        models.Booking.tenant_id == tenant_id,
        models.Booking.provider_id == provider_id,
        models.Booking.status.in_(blocking_statuses(pending_blocks)),
        models.Booking.scheduled_at < end,
        models.Booking.scheduled_at > lookback
    )

    candidates = query.with_for_update(of=models.Booking).all()

    conflicts = []
    for booking in candidates:
        existing_end = booking.scheduled_at + timedelta(minutes=booking.service.effective_duration)
        if intervals_overlap(start, end, booking.scheduled_at, existing_end):
            conflicts.append(booking)
    return conflicts


def is_available(
    db: Session,
    tenant_id: str,
    provider_id: str,
    start: datetime,
    duration_minutes: int,
    pending_blocks: Optional[bool] = None,
) -> bool:
    lock_provider_timeline(db, tenant_id, provider_id)
    return not find_conflicts(db, tenant_id, provider_id, start, duration_minutes, pending_blocks=pending_blocks)


def ensure_available(
    db: Session,
    tenant_id: str,
    provider_id: str,
    start: datetime,
    duration_minutes: int,
    service_name: str,
    pending_blocks: Optional[bool] = None,
) -> models.ServiceProvider:
    """Lock the provider timeline and raise ConflictError naming the service when the slot is taken"""
    provider = lock_provider_timeline(db, tenant_id, provider_id)
    conflicts = find_conflicts(db, tenant_id, provider_id, start, duration_minutes, pending_blocks=pending_blocks)

    if conflicts:
        logger.warning(
            f"Slot conflict for provider {provider_id} at {start.isoformat()} "
            f"({len(conflicts)} overlapping booking(s))"
        )
        raise ConflictError(
            f"Time slot not available for service: {service_name}",
            details={"serviceName": service_name, "scheduledAt": start.isoformat()}
        )

    return provider
