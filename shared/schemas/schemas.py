"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
JSON uses camelCase keys; Python code uses snake_case attribute names.
"""

import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from shared.models.models import (
    ActorType,
    AuthProvider,
    BookingStatus,
    CarBookingStatus,
    CarType,
    Difficulty,
    NotificationPriority,
    NotificationType,
    PackageStatus,
    PaymentStatus,
    QueryCategory,
    QueryPriority,
    QueryRating,
    QueryStatus,
    TripType,
    UserRole,
)

PHONE_PATTERN = r"^\d{10}$"


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class RequestSchema(BaseSchema):
    """Request bodies reject unknown keys and trim surrounding whitespace."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class MessageResponse(BaseSchema):
    success: bool = True
    message: str


class Pagination(BaseSchema):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = -(-total // limit) if limit else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


def split_lines(value: Union[str, List[str], None]) -> Optional[List[str]]:
    """Accept a list or newline-separated text; drop blank entries."""
    if value is None:
        return None
    items = value.split("\n") if isinstance(value, str) else value
    return [item.strip() for item in items if item and item.strip()]


def _must_be_future(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if value <= datetime.now(timezone.utc):
        raise ValueError("must be in the future")
    return value


# ── Auth ──────────────────────────────────────────────────────

class RegisterRequest(RequestSchema):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class LoginRequest(RequestSchema):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class ResendOtpRequest(RequestSchema):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class VerifyOtpRequest(RequestSchema):
    email: EmailStr
    otp: str = Field(..., pattern=r"^\d{4,8}$")
    auto_login: bool = False

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class RefreshTokenRequest(RequestSchema):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(RequestSchema):
    refresh_token: Optional[str] = None


class ProfileUpdateRequest(RequestSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, pattern=r"^(\d{10})?$")
    address: Optional[str] = Field(None, max_length=500)
    date_of_birth: Optional[date] = None
    bio: Optional[str] = Field(None, max_length=500)


class DeleteAccountRequest(RequestSchema):
    confirm_text: str
    password: Optional[str] = None


class TokenPair(BaseSchema):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int  # seconds


class TokenResponse(BaseSchema):
    success: bool = True
    message: str = "Tokens refreshed successfully"
    tokens: TokenPair


class UserResponse(BaseSchema):
    id: uuid.UUID
    name: str
    email: str
    role: UserRole
    auth_provider: AuthProvider
    is_verified: bool
    avatar_url: Optional[str] = None
    avatar_public_id: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[date] = None
    bio: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AuthResponse(BaseSchema):
    success: bool = True
    message: str
    user: Optional[UserResponse] = None
    tokens: Optional[TokenPair] = None
    requires_verification: Optional[bool] = None
    email_issue: Optional[bool] = None
    verified: Optional[bool] = None
    auto_login: Optional[bool] = None


class UserEnvelope(BaseSchema):
    success: bool = True
    message: Optional[str] = None
    user: UserResponse


class DeletedData(BaseSchema):
    user: Optional[str] = None
    tour_bookings: int = 0
    car_bookings: int = 0
    queries: int = 0
    notifications: int = 0
    avatar: str = "No"


class DeleteAccountResponse(BaseSchema):
    success: bool = True
    message: str
    deleted_data: DeletedData


# ── Tour Packages ─────────────────────────────────────────────

class GalleryImage(BaseSchema):
    url: str
    public_id: Optional[str] = None
    caption: str = ""
    alt: str = ""


class Destination(BaseSchema):
    name: str
    description: Optional[str] = None
    attractions: List[str] = []


class TourPackageResponse(BaseSchema):
    id: uuid.UUID
    title: str
    slug: str
    description: str
    summary: Optional[str] = None
    short_description: Optional[str] = None
    duration_days: int
    duration_nights: int
    base_price: float
    original_price: Optional[float] = None
    currency: str
    discount: float
    featured_image: Optional[str] = None
    featured_image_public_id: Optional[str] = None
    gallery: List[GalleryImage] = []
    destinations: List[Destination] = []
    highlights: List[str] = []
    category: str
    difficulty: Difficulty
    max_group_size: int
    min_group_size: int
    status: PackageStatus
    featured: bool
    inclusions: List[str] = []
    exclusions: List[str] = []
    pickup_locations: List[str] = []
    drop_locations: List[str] = []
    booking_info: Dict[str, Any] = {}
    created_by_id: Optional[uuid.UUID] = None
    last_modified_by_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime


class PackageBookingStats(BaseSchema):
    total_bookings: int = 0
    total_travelers: int = 0
    total_revenue: float = 0.0


class AdminTourPackageResponse(TourPackageResponse):
    booking_stats: PackageBookingStats = PackageBookingStats()


class TourPackageEnvelope(BaseSchema):
    success: bool = True
    message: Optional[str] = None
    package: TourPackageResponse


class TourPackageListResponse(BaseSchema):
    success: bool = True
    count: int
    packages: List[TourPackageResponse]


class AdminTourPackageListResponse(BaseSchema):
    success: bool = True
    count: int
    packages: List[AdminTourPackageResponse]


class CategoriesResponse(BaseSchema):
    success: bool = True
    categories: List[str]


class TourPackageCreateRequest(RequestSchema):
    name: str = Field(..., min_length=1, max_length=200)
    duration: str = Field(..., min_length=1, examples=["5 Days / 4 Nights"])
    summary: str = Field(..., min_length=1)
    highlights: Union[List[str], str]
    price: float = Field(..., gt=0)
    discount: float = Field(0, ge=0)
    inclusions: Union[List[str], str, None] = None
    exclusions: Union[List[str], str, None] = None
    pickup_locations: Union[List[str], str, None] = None
    drop_locations: Union[List[str], str, None] = None
    category: Optional[str] = Field(None, max_length=100)
    difficulty: Optional[Difficulty] = None
    status: PackageStatus = PackageStatus.PUBLISHED
    featured: bool = False
    max_group_size: int = Field(50, ge=1)
    min_group_size: int = Field(2, ge=1)

    @field_validator("highlights", "inclusions", "exclusions", "pickup_locations", "drop_locations")
    @classmethod
    def normalize_lines(cls, v):
        return split_lines(v)

    @model_validator(mode="after")
    def check_group_sizes(self):
        if not self.highlights:
            raise ValueError("highlights must contain at least one entry")
        if self.min_group_size > self.max_group_size:
            raise ValueError("minGroupSize cannot exceed maxGroupSize")
        return self


class TourPackageUpdateRequest(RequestSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1)
    summary: Optional[str] = Field(None, min_length=1)
    duration: Optional[str] = Field(None, min_length=1)
    highlights: Union[List[str], str, None] = None
    price: Optional[float] = Field(None, gt=0)
    discount: Optional[float] = Field(None, ge=0)
    inclusions: Union[List[str], str, None] = None
    exclusions: Union[List[str], str, None] = None
    pickup_locations: Union[List[str], str, None] = None
    drop_locations: Union[List[str], str, None] = None
    category: Optional[str] = Field(None, max_length=100)
    difficulty: Optional[Difficulty] = None
    status: Optional[PackageStatus] = None
    featured: Optional[bool] = None
    max_group_size: Optional[int] = Field(None, ge=1)
    min_group_size: Optional[int] = Field(None, ge=1)

    @field_validator("highlights", "inclusions", "exclusions", "pickup_locations", "drop_locations")
    @classmethod
    def normalize_lines(cls, v):
        return split_lines(v)


# ── Bookings ──────────────────────────────────────────────────

class TourBookingCreateRequest(RequestSchema):
    tour_package_id: uuid.UUID
    number_of_travelers: int = Field(..., ge=1)
    travel_date: datetime
    total_amount: float = Field(..., ge=0)
    contact_number: str = Field(..., pattern=PHONE_PATTERN)
    emergency_contact: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    special_requests: Optional[str] = Field(None, max_length=1000)
    pickup_location: Optional[str] = Field(None, max_length=255)
    drop_location: Optional[str] = Field(None, max_length=255)

    @field_validator("travel_date")
    @classmethod
    def travel_date_must_be_future(cls, v: datetime) -> datetime:
        return _must_be_future(v)


class CarBookingCreateRequest(RequestSchema):
    car_type: CarType
    pickup_location: str = Field(..., min_length=1, max_length=255)
    dropoff_location: str = Field(..., min_length=1, max_length=255)
    pickup_date: datetime
    dropoff_date: Optional[datetime] = None
    pickup_time: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    number_of_passengers: int = Field(..., ge=1)
    trip_type: TripType = TripType.ONE_WAY
    total_amount: float = Field(0, ge=0)
    contact_number: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    special_requests: Optional[str] = Field(None, max_length=1000)

    @field_validator("pickup_date")
    @classmethod
    def pickup_date_must_be_future(cls, v: datetime) -> datetime:
        return _must_be_future(v)

    @model_validator(mode="after")
    def check_dropoff(self):
        if self.dropoff_date is not None:
            dropoff = self.dropoff_date
            if dropoff.tzinfo is None:
                dropoff = dropoff.replace(tzinfo=timezone.utc)
                self.dropoff_date = dropoff
            if dropoff < self.pickup_date:
                raise ValueError("dropoffDate cannot be before pickupDate")
        return self


class BookingCancelRequest(RequestSchema):
    reason: str = Field(..., min_length=1, max_length=1000)


class BookingStatusUpdateRequest(RequestSchema):
    status: BookingStatus
    reason: Optional[str] = Field(None, max_length=1000)


class CarBookingStatusUpdateRequest(RequestSchema):
    status: CarBookingStatus
    reason: Optional[str] = Field(None, max_length=1000)


class BookingResponse(BaseSchema):
    id: uuid.UUID
    booking_reference: str
    user_id: uuid.UUID
    tour_package_id: Optional[uuid.UUID] = None
    number_of_travelers: int
    travel_date: datetime
    total_amount: float
    status: BookingStatus
    payment_status: PaymentStatus
    special_requests: Optional[str] = None
    contact_number: str
    emergency_contact: Optional[str] = None
    pickup_location: Optional[str] = None
    drop_location: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by_id: Optional[uuid.UUID] = None
    cancelled_by_type: Optional[ActorType] = None
    cancelled_at: Optional[datetime] = None
    assigned_to_id: Optional[uuid.UUID] = None
    notes: List[Dict[str, Any]] = []
    created_at: datetime
    updated_at: datetime


class CarBookingResponse(BaseSchema):
    id: uuid.UUID
    booking_reference: str
    user_id: uuid.UUID
    car_type: CarType
    pickup_location: str
    dropoff_location: str
    pickup_date: datetime
    dropoff_date: Optional[datetime] = None
    pickup_time: str
    number_of_passengers: int
    trip_type: TripType
    total_amount: float
    status: CarBookingStatus
    payment_status: PaymentStatus
    driver_details: Optional[Dict[str, Any]] = None
    vehicle_details: Optional[Dict[str, Any]] = None
    special_requests: Optional[str] = None
    contact_number: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by_id: Optional[uuid.UUID] = None
    cancelled_by_type: Optional[ActorType] = None
    cancelled_at: Optional[datetime] = None
    assigned_to_id: Optional[uuid.UUID] = None
    notes: List[Dict[str, Any]] = []
    created_at: datetime
    updated_at: datetime


class BookingEnvelope(BaseSchema):
    success: bool = True
    message: Optional[str] = None
    booking: BookingResponse


class CarBookingEnvelope(BaseSchema):
    success: bool = True
    message: Optional[str] = None
    booking: CarBookingResponse


class BookingListResponse(BaseSchema):
    success: bool = True
    count: int
    bookings: List[BookingResponse]


class CarBookingListResponse(BaseSchema):
    success: bool = True
    count: int
    bookings: List[CarBookingResponse]


class MyBookingsResponse(BaseSchema):
    success: bool = True
    bookings: List[BookingResponse]
    car_bookings: List[CarBookingResponse]


# ── Support Queries ───────────────────────────────────────────

class QueryCreateRequest(RequestSchema):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(..., pattern=PHONE_PATTERN)
    whatsapp: Optional[str] = Field(None, pattern=r"^(\d{10})?$")
    subject: str = Field(..., min_length=1, max_length=200)
    category: QueryCategory
    message: str = Field(..., min_length=1, max_length=5000)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("whatsapp")
    @classmethod
    def blank_whatsapp(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class QueryRespondRequest(RequestSchema):
    response: str = Field(..., min_length=1, max_length=5000)
    status: QueryStatus = QueryStatus.RESOLVED


class QueryRateRequest(RequestSchema):
    rating: QueryRating
    feedback: Optional[str] = Field(None, max_length=1000)


class QueryResponse(BaseSchema):
    id: uuid.UUID
    name: str
    email: str
    phone: str
    whatsapp: Optional[str] = None
    subject: str
    category: QueryCategory
    category_label: str
    message: str
    status: QueryStatus
    status_label: str
    priority: QueryPriority
    assigned_to_id: Optional[uuid.UUID] = None
    response: Optional[str] = None
    responded_at: Optional[datetime] = None
    responded_by_id: Optional[uuid.UUID] = None
    rating: Optional[QueryRating] = None
    rated_at: Optional[datetime] = None
    feedback: Optional[str] = None
    user_id: Optional[uuid.UUID] = None
    tags: List[str] = []
    created_at: datetime
    updated_at: datetime


class QueryEnvelope(BaseSchema):
    success: bool = True
    message: Optional[str] = None
    query: QueryResponse


class QueryStats(BaseSchema):
    pending: int = 0
    resolved: int = 0
    closed: int = 0
    car_booking: int = 0
    tour_package: int = 0
    others: int = 0
    total: int = 0
    active: int = 0


class QueryListResponse(BaseSchema):
    success: bool = True
    count: int
    queries: List[QueryResponse]
    stats: Optional[QueryStats] = None


# ── Notifications ─────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    recipient_id: uuid.UUID
    sender_id: Optional[uuid.UUID] = None
    type: NotificationType
    title: str
    message: str
    related_query_id: Optional[uuid.UUID] = None
    related_booking_id: Optional[uuid.UUID] = None
    priority: NotificationPriority
    is_read: bool
    read_at: Optional[datetime] = None
    action_url: Optional[str] = None
    created_at: datetime


class NotificationEnvelope(BaseSchema):
    success: bool = True
    message: Optional[str] = None
    notification: NotificationResponse


class NotificationListResponse(BaseSchema):
    success: bool = True
    notifications: List[NotificationResponse]
    unread_count: int
    pagination: Pagination


class UnreadCountResponse(BaseSchema):
    success: bool = True
    count: int


class AdminNotificationCreateRequest(RequestSchema):
    recipient_id: Optional[uuid.UUID] = None
    recipient_email: Optional[EmailStr] = None
    type: NotificationType = NotificationType.GENERAL
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    related_query_id: Optional[uuid.UUID] = None
    related_booking_id: Optional[uuid.UUID] = None
    priority: NotificationPriority = NotificationPriority.MEDIUM
    action_url: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def require_recipient(self):
        if not self.recipient_id and not self.recipient_email:
            raise ValueError("recipientId or recipientEmail is required")
        return self


class SendToUserRequest(RequestSchema):
    user_email: EmailStr
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    related_query_id: Optional[uuid.UUID] = None
    priority: NotificationPriority = NotificationPriority.MEDIUM


# ── Admin ─────────────────────────────────────────────────────

class DashboardStats(BaseSchema):
    total_users: int
    total_queries: int
    total_tour_bookings: int
    total_car_bookings: int
    total_tour_packages: int


class StatsResponse(BaseSchema):
    success: bool = True
    stats: DashboardStats


class UserListResponse(BaseSchema):
    success: bool = True
    users: List[UserResponse]
    pagination: Pagination


class CreateAdminRequest(RequestSchema):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    role: UserRole = UserRole.ADMIN

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

