"""
Booking state machine and reads.

pending -> completed | cancelled. Completed, cancelled and refunded are
terminal here; refunds are issued by a separate flow.
"""
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from . import models, wallet_service
from .audit_service import AuditEvent
from .exceptions import (
    ConflictError, DomainError, ForbiddenError, NotFoundError, PersistenceError, ValidationError,
)
from .permissions import BookingAction, action_for_status, can_perform
from .pricing_service import to_decimal
from .schemas import Principal

logger = logging.getLogger(__name__)

REQUESTABLE_STATUSES = (models.BookingStatus.COMPLETED, models.BookingStatus.CANCELLED)

ALLOWED_TRANSITIONS = {
    models.BookingStatus.PENDING: {models.BookingStatus.COMPLETED, models.BookingStatus.CANCELLED},
}

_FORBIDDEN_MESSAGES = {
    BookingAction.COMPLETE: "Only provider or admin can mark booking as completed",
    BookingAction.CANCEL: "Unauthorized to cancel this booking",
    BookingAction.VIEW: "Unauthorized to view this booking",
}


def can_transition(current: models.BookingStatus, target: models.BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _provider_user_id(db: Session, booking: models.Booking) -> Optional[str]:
    provider = db.query(models.ServiceProvider).filter(
        models.ServiceProvider.id == booking.provider_id
    ).first()
    return provider.user_id if provider else None


def _authorize(principal: Principal, action: BookingAction, booking: models.Booking, provider_user_id: Optional[str]):
    allowed = can_perform(
        principal.role,
        action,
        is_customer=booking.customer_id == principal.user_id,
        is_provider=provider_user_id is not None and provider_user_id == principal.user_id
    )
    if not allowed:
        raise ForbiddenError(_FORBIDDEN_MESSAGES[action], details={"bookingId": booking.id})


def get_booking(db: Session, booking_id: str, principal: Principal) -> models.Booking:
    """Booking visible to its customer, its provider or an admin of the tenant"""
    booking = db.query(models.Booking).options(
        selectinload(models.Booking.addons).selectinload(models.BookingAddon.addon),
        selectinload(models.Booking.service)
    ).filter(
        models.Booking.id == booking_id,
        models.Booking.tenant_id == principal.tenant_id
    ).first()

    if booking is None:
        raise NotFoundError("Booking not found", details={"bookingId": booking_id})

    _authorize(principal, BookingAction.VIEW, booking, _provider_user_id(db, booking))
    return booking


def _settle_cash_commission(db: Session, booking: models.Booking, provider_user_id: str) -> None:
    """Provider collected the cash, so the platform takes its commission from the provider's wallet"""
    if booking.payment_type != models.PaymentType.CASH_ON_DELIVERY:
        return
    if to_decimal(booking.commission_amount) <= 0:
        return

    wallet_service.debit(
        db,
        booking.tenant_id,
        provider_user_id,
        booking.commission_amount,
        reference_type="booking",
        reference_id=booking.id,
        description=f"Commission deduction for completed booking {booking.id}",
        currency=booking.currency
    )


def transition_booking_status(
    db: Session,
    booking_id: str,
    principal: Principal,
    requested_status: Any,
    audit: Optional[Callable[[AuditEvent], Any]] = None,
    client: Optional[Dict[str, Optional[str]]] = None,
) -> models.Booking:
    """Move a pending booking to completed or cancelled in one transaction"""
    try:
        target = models.BookingStatus(requested_status)
    except ValueError:
        target = None

    if target not in REQUESTABLE_STATUSES:
        raise ValidationError('Invalid status. Must be "completed" or "cancelled"')

    try:
        booking = db.query(models.Booking).filter(
            models.Booking.id == booking_id,
            models.Booking.tenant_id == principal.tenant_id
        ).with_for_update().first()

        if booking is None:
            raise NotFoundError("Booking not found", details={"bookingId": booking_id})

        provider_user_id = _provider_user_id(db, booking)
        _authorize(principal, action_for_status(target), booking, provider_user_id)

        if not can_transition(booking.status, target):
            raise ConflictError(
                f"Cannot change booking status from {booking.status.value} to {target.value}",
                details={"bookingId": booking.id, "status": booking.status.value}
            )

        previous_status = booking.status
        booking.status = target
        db.flush()

        if target == models.BookingStatus.COMPLETED:
            _settle_cash_commission(db, booking, provider_user_id)

        db.commit()
    except DomainError as exc:
        db.rollback()
        logger.warning(f"Status change of booking {booking_id} to {target.value} rejected: {exc.message}")
        raise
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Failed to update booking {booking_id}")
        raise PersistenceError("Failed to update booking")
    except Exception:
        db.rollback()
        logger.exception(f"Unexpected error while updating booking {booking_id}")
        raise PersistenceError("Failed to update booking")

    logger.info(f"Booking {booking_id} {previous_status.value} -> {target.value} by user {principal.user_id}")

    if audit is not None:
        client = client or {}
        audit(AuditEvent(
            tenant_id=principal.tenant_id,
            user_id=principal.user_id,
            action=f"booking.{target.value}",
            resource_type="booking",
            resource_id=booking_id,
            changes={"status": target.value},
            ip_address=client.get("ip_address"),
            user_agent=client.get("user_agent")
        ))

    return booking
