"""
Database models for the service marketplace booking core
"""
import enum
import os
import uuid

from sqlalchemy import (
    Boolean, Column, DateTime, Enum, ForeignKey, Integer, JSON, Numeric,
    String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import relationship
from dotenv import load_dotenv

from .database import Base

load_dotenv()

DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "OMR")
DEFAULT_SERVICE_DURATION_MINUTES = int(os.getenv("DEFAULT_SERVICE_DURATION_MINUTES", "60"))


def generate_id() -> str:
    return str(uuid.uuid4())


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def money_column(**kwargs):
    """Two-decimal monetary column"""
    return Column(Numeric(10, 2), **kwargs)


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class BookingType(str, enum.Enum):
    ONE_TIME = "one_time"
    EMERGENCY = "emergency"
    RECURRING = "recurring"


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentType(str, enum.Enum):
    INSTANT = "instant"
    CASH_ON_DELIVERY = "cash_on_delivery"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class RecurringType(str, enum.Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class TransactionType(str, enum.Enum):
    DEBIT = "debit"
    CREDIT = "credit"


def _enum_column(enum_cls, name, **kwargs):
    return Column(
        Enum(enum_cls, name=name, native_enum=False, values_callable=_enum_values, length=32),
        **kwargs
    )


class User(Base):
    """Tenant user (customer, provider account owner or admin)"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    tenant_id = Column(String(36), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    full_name = Column(String(200), nullable=True)
    role = _enum_column(UserRole, "user_role", nullable=False, default=UserRole.CUSTOMER)
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
    )


class ServiceProvider(Base):
    """Provider business profile; its row guards the provider's booking timeline"""
    __tablename__ = "service_providers"

    id = Column(String(36), primary_key=True, default=generate_id)
    tenant_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    business_name = Column(String(200), nullable=False)
    commission_rate = Column(Numeric(5, 2), nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User")
    services = relationship("Service", back_populates="provider")


class Service(Base):
    __tablename__ = "services"

    id = Column(String(36), primary_key=True, default=generate_id)
    tenant_id = Column(String(36), nullable=False, index=True)
    provider_id = Column(String(36), ForeignKey("service_providers.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    base_price = money_column(nullable=False)
    currency = Column(String(8), nullable=False, default=DEFAULT_CURRENCY)
    duration_minutes = Column(Integer, nullable=True)
    allow_urgent = Column(Boolean, nullable=False, default=False)
    urgent_fee = money_column(nullable=True)
    # list of PaymentType values; null means every method is accepted
    payment_methods = Column(JSON, nullable=True)
    cancellation_type = Column(String(32), nullable=True)
    cancellation_value = money_column(nullable=True)
    free_cancellation_hours = Column(Integer, nullable=False, default=0)
    min_advance_hours = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())

    provider = relationship("ServiceProvider", back_populates="services")
    addons = relationship("ServiceAddon", back_populates="service")

    @property
    def effective_duration(self) -> int:
        return self.duration_minutes or DEFAULT_SERVICE_DURATION_MINUTES

    @property
    def allowed_payment_types(self) -> list:
        if not self.payment_methods:
            return list(PaymentType)
        return [PaymentType(method) for method in self.payment_methods]


class ServiceAddon(Base):
    __tablename__ = "service_addons"

    id = Column(String(36), primary_key=True, default=generate_id)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    price = money_column(nullable=False)
    is_required = Column(Boolean, nullable=False, default=False)

    service = relationship("Service", back_populates="addons")


class Booking(Base):
    """Booking of one service with one provider"""
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=generate_id)
    tenant_id = Column(String(36), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(String(36), ForeignKey("service_providers.id"), nullable=False, index=True)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=False)
    booking_type = _enum_column(BookingType, "booking_type", nullable=False, default=BookingType.ONE_TIME)
    status = _enum_column(BookingStatus, "booking_status", nullable=False, default=BookingStatus.PENDING)
    scheduled_at = Column(DateTime, nullable=False, index=True)

    # Price composition, frozen at creation
    total_amount = money_column(nullable=False)
    urgent_fee = money_column(nullable=False, default=0)
    commission_amount = money_column(nullable=False, default=0)
    currency = Column(String(8), nullable=False, default=DEFAULT_CURRENCY)

    payment_status = _enum_column(PaymentStatus, "payment_status", nullable=False, default=PaymentStatus.PENDING)
    payment_type = _enum_column(PaymentType, "payment_type", nullable=False)
    notes = Column(Text, nullable=True)
    customer_address = Column(JSON, nullable=True)

    # Snapshots copied from the service at booking time
    is_urgent = Column(Boolean, nullable=False, default=False)
    min_advance_hours = Column(Integer, nullable=False, default=0)
    cancellation_type = Column(String(32), nullable=True)
    cancellation_value = money_column(nullable=True)
    free_cancellation_hours = Column(Integer, nullable=False, default=0)

    # {"type": "daily" | "weekly" | "monthly"} or null
    recurrence = Column(JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    service = relationship("Service")
    provider = relationship("ServiceProvider")
    customer = relationship("User", foreign_keys=[customer_id])
    addons = relationship("BookingAddon", back_populates="booking", order_by="BookingAddon.id")


class BookingAddon(Base):
    """Add-on selected for a booking with the price charged at booking time"""
    __tablename__ = "booking_addons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    addon_id = Column(String(36), ForeignKey("service_addons.id"), nullable=False)
    price = money_column(nullable=False)

    booking = relationship("Booking", back_populates="addons")
    addon = relationship("ServiceAddon")


class Wallet(Base):
    """Running balance per (tenant, user); may go negative"""
    __tablename__ = "wallets"

    id = Column(String(36), primary_key=True, default=generate_id)
    tenant_id = Column(String(36), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    balance = money_column(nullable=False, default=0)
    currency = Column(String(8), nullable=False, default=DEFAULT_CURRENCY)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    transactions = relationship("WalletTransaction", back_populates="wallet")

    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_wallets_tenant_user"),
    )


class WalletTransaction(Base):
    """Append-only ledger entry"""
    __tablename__ = "wallet_transactions"

    id = Column(String(36), primary_key=True, default=generate_id)
    # insertion order; ties on created_at are common within one second
    sequence = Column(Integer, nullable=False)
    wallet_id = Column(String(36), ForeignKey("wallets.id"), nullable=False, index=True)
    type = _enum_column(TransactionType, "wallet_transaction_type", nullable=False)
    amount = money_column(nullable=False)
    balance_after = money_column(nullable=False)
    reference_type = Column(String(32), nullable=True)
    reference_id = Column(String(36), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    wallet = relationship("Wallet", back_populates="transactions")

    __table_args__ = (
        UniqueConstraint("wallet_id", "sequence", name="uq_wallet_transactions_sequence"),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=generate_id)
    tenant_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=True)
    action = Column(String(100), nullable=False)
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(String(36), nullable=True)
    changes = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
