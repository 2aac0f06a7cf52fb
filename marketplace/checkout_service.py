"""
Basket checkout: turns every basket item into a pending booking inside one
database transaction. Either all bookings of the basket are committed or
none are.
"""
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, schemas
from .audit_service import AuditEvent
from .availability_service import ensure_available
from .exceptions import DomainError, NotFoundError, PersistenceError, ValidationError
from .pricing_service import calculate_commission, calculate_total, round_money, urgent_fee_applies

logger = logging.getLogger(__name__)

AuditCallback = Callable[[AuditEvent], Any]


def classify_booking_type(is_urgent: bool, recurrence: Optional[schemas.Recurrence]) -> models.BookingType:
    if is_urgent:
        return models.BookingType.EMERGENCY
    if recurrence is not None:
        return models.BookingType.RECURRING
    return models.BookingType.ONE_TIME


def compose_notes(item_notes: Optional[str], general_notes: Optional[str]) -> Optional[str]:
    """Item notes followed by the basket's general notes on a new line"""
    notes = item_notes or ""
    if general_notes:
        notes += f"\n{general_notes}"
    return notes or None


def load_service_for_booking(db: Session, tenant_id: str, item: schemas.BasketItem) -> models.Service:
    """Active service of the given provider, locked for the rest of the transaction"""
    service = db.query(models.Service).filter(
        models.Service.id == item.service_id,
        models.Service.provider_id == item.provider_id,
        models.Service.tenant_id == tenant_id,
        models.Service.is_active.is_(True)
    ).with_for_update().first()

    if service is None:
        raise NotFoundError(
            f"Service {item.service_id} not found or not available",
            details={"serviceId": item.service_id, "providerId": item.provider_id}
        )
    return service


def resolve_addons(db: Session, service: models.Service, addon_ids: List[str]) -> List[models.ServiceAddon]:
    """Selected add-ons of this service, in the order the customer picked them"""
    unique_ids = list(dict.fromkeys(addon_ids))
    if not unique_ids:
        return []

    found = db.query(models.ServiceAddon).filter(
        models.ServiceAddon.service_id == service.id,
        models.ServiceAddon.id.in_(unique_ids)
    ).all()
    by_id = {addon.id: addon for addon in found}

    missing = [addon_id for addon_id in unique_ids if addon_id not in by_id]
    if missing:
        raise ValidationError(
            f"Unknown add-ons for service: {service.name}",
            details={"serviceId": service.id, "serviceName": service.name, "addonIds": missing}
        )

    return [by_id[addon_id] for addon_id in unique_ids]


def write_booking(
    db: Session,
    tenant_id: str,
    customer_id: str,
    payment_type: models.PaymentType,
    item: schemas.BasketItem,
    service: models.Service,
    provider: models.ServiceProvider,
    addons: List[models.ServiceAddon],
    general_notes: Optional[str] = None,
) -> models.Booking:
    """Stage one pending booking and its add-on links; flushed, not committed"""
    apply_urgent = urgent_fee_applies(item.is_urgent, service.allow_urgent)
    total_amount = calculate_total(
        service.base_price,
        apply_urgent,
        service.urgent_fee,
        [addon.price for addon in addons]
    )
    commission_amount = calculate_commission(total_amount, provider.commission_rate)
    recurrence = schemas.Recurrence.from_recurring_type(item.recurring_type)

    booking = models.Booking(
        tenant_id=tenant_id,
        customer_id=customer_id,
        provider_id=provider.id,
        service_id=service.id,
        booking_type=classify_booking_type(item.is_urgent, recurrence),
        status=models.BookingStatus.PENDING,
        scheduled_at=item.scheduled_at,
        total_amount=total_amount,
        urgent_fee=round_money(service.urgent_fee) if apply_urgent else Decimal("0.00"),
        commission_amount=commission_amount,
        currency=service.currency or models.DEFAULT_CURRENCY,
        payment_status=models.PaymentStatus.PENDING,
        payment_type=payment_type,
        notes=compose_notes(item.notes, general_notes),
        customer_address=item.customer_address,
        is_urgent=item.is_urgent,
        min_advance_hours=service.min_advance_hours or 0,
        cancellation_type=service.cancellation_type,
        cancellation_value=service.cancellation_value,
        free_cancellation_hours=service.free_cancellation_hours or 0,
        recurrence=recurrence.to_stored() if recurrence else None
    )
    db.add(booking)
    # Later items of the same basket must see this booking in their availability check
    db.flush()

    for addon in addons:
        db.add(models.BookingAddon(booking_id=booking.id, addon_id=addon.id, price=addon.price))
    db.flush()

    return booking


def _book_item(
    db: Session,
    tenant_id: str,
    customer_id: str,
    payment_type: models.PaymentType,
    item: schemas.BasketItem,
    general_notes: Optional[str],
) -> schemas.CheckoutLine:
    service = load_service_for_booking(db, tenant_id, item)

    if payment_type not in service.allowed_payment_types:
        raise ValidationError(
            f"Payment type '{payment_type.value}' not allowed for service: {service.name}",
            details={"serviceId": service.id, "serviceName": service.name}
        )

    provider = ensure_available(
        db,
        tenant_id,
        item.provider_id,
        item.scheduled_at,
        service.effective_duration,
        service.name
    )

    addons = resolve_addons(db, service, item.addons)
    booking = write_booking(
        db, tenant_id, customer_id, payment_type, item, service, provider, addons, general_notes
    )

    return schemas.CheckoutLine(
        booking_id=booking.id,
        service_id=service.id,
        service_name=service.name,
        total_amount=float(booking.total_amount)
    )


def checkout_basket(
    db: Session,
    tenant_id: str,
    customer_id: str,
    request: schemas.BasketCheckoutRequest,
    audit: Optional[AuditCallback] = None,
    client: Optional[Dict[str, Optional[str]]] = None,
) -> schemas.BasketCheckoutResponse:
    """Create one pending booking per basket item, all or nothing"""
    if not request.items:
        raise ValidationError("Basket items are required")

    # Unknown payment types are rejected by the request schema
    payment_type = request.payment_type

    lines: List[schemas.CheckoutLine] = []
    grand_total = Decimal("0.00")
    index = 0

    try:
        for index, item in enumerate(request.items):
            line = _book_item(db, tenant_id, customer_id, payment_type, item, request.general_notes)
            lines.append(line)
            grand_total += round_money(line.total_amount)
        db.commit()
    except DomainError as exc:
        db.rollback()
        exc.details.setdefault("itemIndex", index)
        logger.warning(f"Basket checkout rejected for customer {customer_id} at item {index}: {exc.message}")
        raise
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Basket checkout failed for customer {customer_id}")
        raise PersistenceError("Failed to create bookings")
    except Exception:
        db.rollback()
        logger.exception(f"Unexpected error during basket checkout for customer {customer_id}")
        raise PersistenceError("Failed to create bookings")

    logger.info(
        f"Basket checkout committed for customer {customer_id}: "
        f"{len(lines)} booking(s), grand total {grand_total}"
    )

    if audit is not None:
        client = client or {}
        for line in lines:
            audit(AuditEvent(
                tenant_id=tenant_id,
                user_id=customer_id,
                action="customer.booking.create",
                resource_type="booking",
                resource_id=line.booking_id,
                changes={
                    "serviceId": line.service_id,
                    "totalAmount": line.total_amount,
                    "paymentType": payment_type.value,
                    "batchBooking": True,
                },
                ip_address=client.get("ip_address"),
                user_agent=client.get("user_agent")
            ))

    return schemas.BasketCheckoutResponse(
        bookings=lines,
        total_bookings=len(lines),
        grand_total=float(grand_total)
    )
