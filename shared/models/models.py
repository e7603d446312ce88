"""
shared/models/models.py
All SQLAlchemy ORM models for the NextDrive Bihar booking platform.
Column types are portable (PostgreSQL in production, SQLite in tests);
UUID primary keys are generated client-side.
"""

import random
import time
import uuid
from datetime import date, datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from config.database import Base, UTCDateTime, utcnow


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    USER = "user"
    ADMIN = "admin"


class AuthProvider(str, PyEnum):
    LOCAL = "local"
    GOOGLE = "google"


class PackageStatus(str, PyEnum):
    DRAFT = "Draft"
    PUBLISHED = "Published"
    ARCHIVED = "Archived"
    SOLD_OUT = "Sold Out"


class Difficulty(str, PyEnum):
    EASY = "Easy"
    MODERATE = "Moderate"
    CHALLENGING = "Challenging"
    EXPERT = "Expert"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class CarBookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    REFUNDED = "refunded"


class ActorType(str, PyEnum):
    USER = "user"
    ADMIN = "admin"


class CarType(str, PyEnum):
    SEDAN = "Sedan"
    SUV = "SUV"
    HATCHBACK = "Hatchback"
    LUXURY = "Luxury"
    TEMPO_TRAVELLER = "Tempo Traveller"
    BUS = "Bus"


class TripType(str, PyEnum):
    ONE_WAY = "one-way"
    ROUND_TRIP = "round-trip"
    MULTI_CITY = "multi-city"


class QueryCategory(str, PyEnum):
    CAR_BOOKING = "car-booking"
    TOUR_PACKAGE = "tour-package"
    OTHERS = "others"


class QueryStatus(str, PyEnum):
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"


class QueryPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class QueryRating(str, PyEnum):
    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"


class NotificationType(str, PyEnum):
    BOOKING_UPDATE = "booking_update"
    QUERY_RESPONSE = "query_response"
    NEW_QUERY = "new_query"
    SYSTEM = "system"
    GENERAL = "general"


class NotificationPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


QUERY_CATEGORY_LABELS = {
    QueryCategory.CAR_BOOKING: "Car Booking",
    QueryCategory.TOUR_PACKAGE: "Tour Package",
    QueryCategory.OTHERS: "Others",
}

QUERY_STATUS_LABELS = {
    QueryStatus.PENDING: "Pending",
    QueryStatus.RESOLVED: "Resolved",
    QueryStatus.CLOSED: "Closed",
}


def _enum(enum_cls: type[PyEnum]) -> Enum:
    """String-backed enum column storing the member values."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


def generate_booking_reference(prefix: str) -> str:
    """Type-prefixed epoch milliseconds plus a 0-999 random suffix, e.g. TOUR1718000000000417."""
    return f"{prefix}{int(time.time() * 1000)}{random.randint(0, 999)}"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


# ── Models ────────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Account record. Local (email + password + OTP) or Google-federated."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole), default=UserRole.USER, nullable=False)
    auth_provider: Mapped[AuthProvider] = mapped_column(
        _enum(AuthProvider), default=AuthProvider.LOCAL, nullable=False
    )
    google_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Email verification
    otp_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    otp_expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    otp_resend_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    otp_last_sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Profile
    phone: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    avatar_public_id: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    __table_args__ = (
        Index("ix_users_role", "role"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class RefreshToken(Base):
    """Opaque refresh tokens. Only the SHA-256 hash is stored."""
    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("ix_refresh_tokens_user_id", "user_id"),)


class TourPackage(TimestampMixin, Base):
    """Bookable tour product, managed by admins."""
    __tablename__ = "tour_packages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(220), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    short_description: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    duration_days: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    duration_nights: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Pricing
    base_price: Mapped[float] = mapped_column(Float, nullable=False)
    original_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)
    discount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    # Images: the public id is the key of the asset in image storage
    featured_image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    featured_image_public_id: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    gallery: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    destinations: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    highlights: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    category: Mapped[str] = mapped_column(String(100), default="Heritage & Culture", nullable=False)
    difficulty: Mapped[Difficulty] = mapped_column(
        _enum(Difficulty), default=Difficulty.EASY, nullable=False
    )
    max_group_size: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    min_group_size: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    status: Mapped[PackageStatus] = mapped_column(
        _enum(PackageStatus), default=PackageStatus.DRAFT, nullable=False
    )
    featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    inclusions: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    exclusions: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    pickup_locations: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    drop_locations: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    booking_info: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    last_modified_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (
        Index("ix_tour_packages_status", "status"),
        Index("ix_tour_packages_category", "category"),
    )

    def asset_public_ids(self) -> list[str]:
        """Featured + gallery asset ids, deduplicated, in display order."""
        ids = [self.featured_image_public_id]
        ids.extend(image.get("publicId") for image in self.gallery or [])
        return list(dict.fromkeys(i for i in ids if i))


class Booking(TimestampMixin, Base):
    """
    Tour booking.
    Status transitions: pending → confirmed → completed, pending | confirmed → cancelled
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_reference: Mapped[str] = mapped_column(
        String(32),
        unique=True,
        nullable=False,
        default=lambda: generate_booking_reference("TOUR"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    tour_package_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("tour_packages.id", ondelete="SET NULL"), nullable=True
    )
    number_of_travelers: Mapped[int] = mapped_column(Integer, nullable=False)
    travel_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, nullable=False)

    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus), default=BookingStatus.PENDING, nullable=False
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )

    special_requests: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    contact_number: Mapped[str] = mapped_column(String(10), nullable=False)
    emergency_contact: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    pickup_location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    drop_location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Cancellation
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    cancelled_by_type: Mapped[Optional[ActorType]] = mapped_column(_enum(ActorType), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    __table_args__ = (
        Index("ix_bookings_user_id", "user_id"),
        Index("ix_bookings_tour_package_id", "tour_package_id"),
        Index("ix_bookings_status", "status"),
    )


class CarBooking(TimestampMixin, Base):
    """
    Car rental booking.
    Status transitions: pending → confirmed → in-progress → completed,
    with cancellation allowed until completion.
    """
    __tablename__ = "car_bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_reference: Mapped[str] = mapped_column(
        String(32),
        unique=True,
        nullable=False,
        default=lambda: generate_booking_reference("CAR"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    car_type: Mapped[CarType] = mapped_column(_enum(CarType), nullable=False)
    pickup_location: Mapped[str] = mapped_column(String(255), nullable=False)
    dropoff_location: Mapped[str] = mapped_column(String(255), nullable=False)
    pickup_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    dropoff_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    pickup_time: Mapped[str] = mapped_column(String(5), nullable=False)  # "09:30"
    number_of_passengers: Mapped[int] = mapped_column(Integer, nullable=False)
    trip_type: Mapped[TripType] = mapped_column(
        _enum(TripType), default=TripType.ONE_WAY, nullable=False
    )
    total_amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    status: Mapped[CarBookingStatus] = mapped_column(
        _enum(CarBookingStatus), default=CarBookingStatus.PENDING, nullable=False
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )

    driver_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    vehicle_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    special_requests: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    contact_number: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    cancelled_by_type: Mapped[Optional[ActorType]] = mapped_column(_enum(ActorType), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    __table_args__ = (
        Index("ix_car_bookings_user_id", "user_id"),
        Index("ix_car_bookings_status", "status"),
    )


class Query(TimestampMixin, Base):
    """
    Support ticket.
    Status transitions: pending → resolved (admin response) → closed (owner rating).
    """
    __tablename__ = "queries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(10), nullable=False)
    whatsapp: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[QueryCategory] = mapped_column(_enum(QueryCategory), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[QueryStatus] = mapped_column(
        _enum(QueryStatus), default=QueryStatus.PENDING, nullable=False
    )
    priority: Mapped[QueryPriority] = mapped_column(
        _enum(QueryPriority), default=QueryPriority.MEDIUM, nullable=False
    )
    assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    responded_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    rating: Mapped[Optional[QueryRating]] = mapped_column(_enum(QueryRating), nullable=True)
    rated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Null for tickets that were never linked to an account
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    tags: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    __table_args__ = (
        Index("ix_queries_user_id", "user_id"),
        Index("ix_queries_email", "email"),
        Index("ix_queries_status", "status"),
    )

    @property
    def category_label(self) -> str:
        return QUERY_CATEGORY_LABELS[QueryCategory(self.category)]

    @property
    def status_label(self) -> str:
        return QUERY_STATUS_LABELS[QueryStatus(self.status)]


class Notification(Base):
    """In-app inbox item. Mutated only by its recipient."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    type: Mapped[NotificationType] = mapped_column(_enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    related_query_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("queries.id", ondelete="SET NULL"), nullable=True
    )
    related_booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    priority: Mapped[NotificationPriority] = mapped_column(
        _enum(NotificationPriority), default=NotificationPriority.MEDIUM, nullable=False
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    action_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_notifications_recipient_read", "recipient_id", "is_read"),
        Index("ix_notifications_sender_id", "sender_id"),
    )
