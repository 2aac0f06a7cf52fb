from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.orm import Session

from .. import schemas
from ..audit_service import AuditSink, client_info, get_audit_sink
from ..booking_service import get_booking, transition_booking_status
from ..checkout_service import checkout_basket
from ..database import get_db
from ..security import get_current_principal

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])


@router.post("/basket", response_model=schemas.BasketCheckoutResponse, status_code=status.HTTP_201_CREATED)
def create_basket_bookings(
    checkout: schemas.BasketCheckoutRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    principal: schemas.Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    audit_sink: AuditSink = Depends(get_audit_sink)
):
    """Create bookings for every basket item in a single transaction"""
    return checkout_basket(
        db,
        tenant_id=principal.tenant_id,
        customer_id=principal.user_id,
        request=checkout,
        # Audit rows are written after the response, outside the booking transaction
        audit=lambda event: background_tasks.add_task(audit_sink.record, event),
        client=client_info(request)
    )


@router.get("/{booking_id}", response_model=schemas.BookingResponse)
def read_booking(
    booking_id: str,
    principal: schemas.Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Booking details for its customer, its provider or an admin"""
    booking = get_booking(db, booking_id, principal)
    return schemas.BookingResponse.from_booking(booking)


@router.put("/{booking_id}", response_model=schemas.BookingStatusResponse)
def update_booking_status(
    booking_id: str,
    update: schemas.BookingStatusUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    principal: schemas.Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    audit_sink: AuditSink = Depends(get_audit_sink)
):
    """Complete or cancel a pending booking"""
    booking = transition_booking_status(
        db,
        booking_id,
        principal,
        update.status,
        audit=lambda event: background_tasks.add_task(audit_sink.record, event),
        client=client_info(request)
    )

    return schemas.BookingStatusResponse(
        message=f"Booking {booking.status.value} successfully",
        booking_id=booking_id,
        status=booking.status
    )
