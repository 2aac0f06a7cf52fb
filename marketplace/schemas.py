from pydantic import BaseModel, Field, validator
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .models import (
    BookingStatus, BookingType, PaymentStatus, PaymentType, RecurringType,
    TransactionType, UserRole,
)


class CamelModel(BaseModel):
    class Config:
        populate_by_name = True
        from_attributes = True


class Principal(BaseModel):
    """Authenticated caller as supplied by the auth/tenant layer"""
    user_id: str
    tenant_id: str
    role: UserRole


# Structured booking fields

class Recurrence(BaseModel):
    type: RecurringType

    @classmethod
    def from_recurring_type(cls, recurring_type: Optional[RecurringType]) -> Optional["Recurrence"]:
        """None for one-off bookings, otherwise the descriptor stored on the booking"""
        if recurring_type is None or recurring_type == RecurringType.NONE:
            return None
        return cls(type=recurring_type)

    @classmethod
    def from_stored(cls, value: Optional[Dict[str, Any]]) -> Optional["Recurrence"]:
        if not value:
            return None
        return cls.from_recurring_type(RecurringType(value.get("type", RecurringType.NONE.value)))

    def to_stored(self) -> Dict[str, Any]:
        return {"type": self.type.value}


class CancellationPolicy(CamelModel):
    type: Optional[str] = None
    value: Optional[float] = None
    free_cancellation_hours: int = Field(0, alias="freeCancellationHours")


# Basket checkout

class BasketItem(CamelModel):
    service_id: str = Field(..., alias="serviceId", min_length=1)
    provider_id: str = Field(..., alias="providerId", min_length=1)
    scheduled_at: datetime = Field(..., alias="scheduledAt")
    notes: Optional[str] = None
    addons: List[str] = Field(default_factory=list)
    is_urgent: bool = Field(False, alias="isUrgent")
    recurring_type: RecurringType = Field(RecurringType.NONE, alias="recurringType")
    customer_address: Optional[Dict[str, Any]] = Field(None, alias="customerAddress")

    @validator("scheduled_at")
    def store_as_naive_utc(cls, v):
        # Timeline comparisons run on naive UTC timestamps
        if v.tzinfo is not None:
            v = v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @validator("addons", pre=True)
    def addons_default(cls, v):
        return v or []

    @validator("recurring_type", pre=True)
    def recurring_type_default(cls, v):
        return v or RecurringType.NONE


class BasketCheckoutRequest(CamelModel):
    items: List[BasketItem] = Field(default_factory=list)
    general_notes: Optional[str] = Field(None, alias="generalNotes")
    payment_type: PaymentType = Field(PaymentType.CASH_ON_DELIVERY, alias="paymentType")


class CheckoutLine(CamelModel):
    booking_id: str = Field(..., alias="bookingId")
    service_id: str = Field(..., alias="serviceId")
    service_name: str = Field(..., alias="serviceName")
    total_amount: float = Field(..., alias="totalAmount")


class BasketCheckoutResponse(CamelModel):
    success: bool = True
    bookings: List[CheckoutLine]
    total_bookings: int = Field(..., alias="totalBookings")
    grand_total: float = Field(..., alias="grandTotal")


# Booking status and detail

class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class BookingStatusResponse(CamelModel):
    success: bool = True
    message: str
    booking_id: str = Field(..., alias="bookingId")
    status: BookingStatus


class BookingAddonResponse(CamelModel):
    addon_id: str = Field(..., alias="addonId")
    name: Optional[str] = None
    price: float


class BookingResponse(CamelModel):
    id: str
    customer_id: str = Field(..., alias="customerId")
    provider_id: str = Field(..., alias="providerId")
    service_id: str = Field(..., alias="serviceId")
    service_name: Optional[str] = Field(None, alias="serviceName")
    booking_type: BookingType = Field(..., alias="bookingType")
    status: BookingStatus
    scheduled_at: datetime = Field(..., alias="scheduledAt")
    total_amount: float = Field(..., alias="totalAmount")
    urgent_fee: float = Field(..., alias="urgentFee")
    commission_amount: float = Field(..., alias="commissionAmount")
    currency: str
    payment_status: PaymentStatus = Field(..., alias="paymentStatus")
    payment_type: PaymentType = Field(..., alias="paymentType")
    is_urgent: bool = Field(..., alias="isUrgent")
    notes: Optional[str] = None
    recurrence: Optional[Recurrence] = None
    cancellation_policy: CancellationPolicy = Field(..., alias="cancellationPolicy")
    addons: List[BookingAddonResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    @classmethod
    def from_booking(cls, booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            customer_id=booking.customer_id,
            provider_id=booking.provider_id,
            service_id=booking.service_id,
            service_name=booking.service.name if booking.service else None,
            booking_type=booking.booking_type,
            status=booking.status,
            scheduled_at=booking.scheduled_at,
            total_amount=float(booking.total_amount),
            urgent_fee=float(booking.urgent_fee or 0),
            commission_amount=float(booking.commission_amount or 0),
            currency=booking.currency,
            payment_status=booking.payment_status,
            payment_type=booking.payment_type,
            is_urgent=booking.is_urgent,
            notes=booking.notes,
            recurrence=Recurrence.from_stored(booking.recurrence),
            cancellation_policy=CancellationPolicy(
                type=booking.cancellation_type,
                value=float(booking.cancellation_value) if booking.cancellation_value is not None else None,
                free_cancellation_hours=booking.free_cancellation_hours or 0
            ),
            addons=[
                BookingAddonResponse(
                    addon_id=link.addon_id,
                    name=link.addon.name if link.addon else None,
                    price=float(link.price)
                )
                for link in booking.addons
            ],
            created_at=booking.created_at
        )


# Wallet

class WalletTransactionResponse(CamelModel):
    id: str
    type: TransactionType
    amount: float
    balance_after: float = Field(..., alias="balanceAfter")
    reference_type: Optional[str] = Field(None, alias="referenceType")
    reference_id: Optional[str] = Field(None, alias="referenceId")
    description: Optional[str] = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")


class WalletResponse(CamelModel):
    wallet_id: Optional[str] = Field(None, alias="walletId")
    user_id: str = Field(..., alias="userId")
    balance: float
    currency: str
    transactions: List[WalletTransactionResponse] = Field(default_factory=list)


class WalletCreditRequest(CamelModel):
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    description: Optional[str] = Field(None, max_length=500)
    reference_type: Optional[str] = Field("adjustment", alias="referenceType", max_length=32)
    reference_id: Optional[str] = Field(None, alias="referenceId", max_length=36)
