"""
Database models for TravelPi
"""
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, Integer, String, Boolean, Text, JSON, Float, DateTime,
    ForeignKey, Enum
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from travelpi.db.session import Base


# Enums
class UserTier(str, PyEnum):
    """Subscription tier, drives the API rate limit"""
    FREE = "free"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class BookingStatus(str, PyEnum):
    """Booking status enumeration"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class BookingPaymentStatus(str, PyEnum):
    """Payment state as seen from the booking"""
    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentStatus(str, PyEnum):
    """Payment status enumeration"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    REFUNDED = "refunded"


# Statuses that block a second payment for the same booking
ACTIVE_PAYMENT_STATUSES = (
    PaymentStatus.PENDING,
    PaymentStatus.PROCESSING,
    PaymentStatus.COMPLETED,
)


# Models
class User(Base):
    """User account"""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    firstname = Column(String, nullable=False)
    lastname = Column(String, nullable=False)
    hashed_password = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    tier = Column(Enum(UserTier), default=UserTier.FREE, nullable=False)
    pi_uid = Column(String, unique=True, nullable=True, index=True)  # linked Pi Network identity
    pi_username = Column(String, nullable=True)
    pi_balance = Column(Float, default=0.0, nullable=False)  # cumulative cashback
    created_at = Column(DateTime, server_default=func.now(), nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=True)

    bookings = relationship("Booking", back_populates="user")
    payments = relationship("Payment", back_populates="user")


class Hotel(Base):
    """Bookable hotel"""
    __tablename__ = 'hotels'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    city = Column(String, nullable=False, index=True)
    address = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    price_per_night = Column(Float, nullable=False)
    currency = Column(String, default="PI", nullable=False)
    rating = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)

    bookings = relationship("Booking", back_populates="hotel")


class Booking(Base):
    """Reservation against a hotel; status-only transitions, never deleted"""
    __tablename__ = 'bookings'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    hotel_id = Column(Integer, ForeignKey('hotels.id'), nullable=False, index=True)
    status = Column(Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False)
    payment_status = Column(
        Enum(BookingPaymentStatus),
        default=BookingPaymentStatus.UNPAID,
        nullable=False
    )
    check_in = Column(DateTime, nullable=False)
    check_out = Column(DateTime, nullable=False)
    guests = Column(Integer, default=1, nullable=False)
    rooms = Column(Integer, default=1, nullable=False)
    subtotal = Column(Float, nullable=False)
    discount = Column(Float, default=0.0, nullable=False)
    tax = Column(Float, default=0.0, nullable=False)
    service_fee = Column(Float, default=0.0, nullable=False)
    total_price = Column(Float, nullable=False)
    currency = Column(String, default="PI", nullable=False)
    special_requests = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=True)

    user = relationship("User", back_populates="bookings")
    hotel = relationship("Hotel", back_populates="bookings")
    payments = relationship("Payment", back_populates="booking")


class Payment(Base):
    """One attempt to move money for a booking"""
    __tablename__ = 'payments'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey('bookings.id'), nullable=True, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String, default="PI", nullable=False)
    payment_method = Column(String, default="pi_network", nullable=False)
    pi_payment_id = Column(String, unique=True, nullable=True, index=True)
    status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    payment_metadata = Column("metadata", JSON, nullable=True)
    transaction_id = Column(String, nullable=True)
    memo = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=True)

    user = relationship("User", back_populates="payments")
    booking = relationship("Booking", back_populates="payments")


class PiTransaction(Base):
    """Reward ledger entry written alongside each balance credit"""
    __tablename__ = 'pi_transactions'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    type = Column(String, nullable=False)  # cashback
    amount = Column(Float, nullable=False)
    description = Column(String, nullable=True)
    balance_after = Column(Float, nullable=True)
    pi_payment_id = Column(String, nullable=True, index=True)
    status = Column(String, default="completed", nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)

    user = relationship("User")


class Notification(Base):
    """User notifications"""
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    type = Column(String, nullable=False)  # booking, payment
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)

    user = relationship("User")


class AuditLog(Base):
    """Append-only record of state transitions"""
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)
    action = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=True)
    entity_id = Column(String, nullable=True, index=True)
    changes = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)


class SecurityLog(Base):
    """Append-only record of security events"""
    __tablename__ = 'security_logs'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)
    action = Column(String, nullable=False)
    success = Column(Boolean, nullable=False)
    failure_reason = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    event_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)


class ProcessedWebhook(Base):
    """One row per external payment whose webhook has been applied"""
    __tablename__ = 'processed_webhooks'

    id = Column(Integer, primary_key=True, index=True)
    pi_payment_id = Column(String, unique=True, nullable=False)
    event = Column(String, nullable=False)
    request_id = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)
