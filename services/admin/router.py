"""
services/admin/router.py
Admin-only endpoints: dashboard stats, support queue, booking transitions,
tour package management, and user moderation.

Status changes are committed before the affected customer is notified.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query as QueryParam, UploadFile, status
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.booking import lifecycle as booking_lifecycle
from services.cascade.coordinator import delete_tour_package, delete_user
from services.catalog import service as catalog
from services.notification import service as notifications
from services.query import lifecycle as query_lifecycle
from shared.middleware.auth import get_optional_user, require_admin
from shared.models.models import (
    ActorType,
    AuthProvider,
    Booking,
    BookingStatus,
    CarBooking,
    CarBookingStatus,
    Query,
    QueryCategory,
    QueryStatus,
    TourPackage,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    AdminTourPackageListResponse,
    AdminTourPackageResponse,
    BookingCancelRequest,
    BookingEnvelope,
    BookingListResponse,
    BookingResponse,
    BookingStatusUpdateRequest,
    CarBookingEnvelope,
    CarBookingListResponse,
    CarBookingResponse,
    CarBookingStatusUpdateRequest,
    CreateAdminRequest,
    DashboardStats,
    DeleteAccountResponse,
    DeletedData,
    MessageResponse,
    PackageBookingStats,
    Pagination,
    QueryEnvelope,
    QueryListResponse,
    QueryRespondRequest,
    QueryResponse,
    QueryStats,
    StatsResponse,
    TourPackageCreateRequest,
    TourPackageEnvelope,
    TourPackageResponse,
    TourPackageUpdateRequest,
    UserEnvelope,
    UserListResponse,
    UserResponse,
)
from shared.utils.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ServiceUnavailableError,
    ValidationError,
)
from shared.utils.security import hash_password
from shared.utils.storage import InvalidImageError, StorageError, upload_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_or_404(db: AsyncSession, model, entity_id: UUID, label: str):
    entity = await db.get(model, entity_id)
    if not entity:
        raise NotFoundError(f"{label} not found")
    return entity


async def _package_title(db: AsyncSession, booking: Booking) -> Optional[str]:
    if not booking.tour_package_id:
        return None
    package = await db.get(TourPackage, booking.tour_package_id)
    return package.title if package else None


async def _count(db: AsyncSession, model, *where) -> int:
    stmt = select(func.count()).select_from(model)
    if where:
        stmt = stmt.where(*where)
    return await db.scalar(stmt) or 0


_NOTIFY_ON = {
    "confirmed": notifications.booking_confirmed,
    "cancelled": notifications.booking_cancelled,
    "completed": notifications.booking_completed,
}


async def _notify_owner(db: AsyncSession, booking, admin: User) -> None:
    """Tell the customer about the status their booking just moved to."""
    target = booking_lifecycle.current_status(booking)
    async with notifications.best_effort(db, f"Status notification for {booking.booking_reference}"):
        if target == CarBookingStatus.IN_PROGRESS:
            await notifications.notify(db, **notifications.booking_in_progress(booking, admin))
            return
        builder = _NOTIFY_ON.get(target.value)
        if builder is None:
            return
        title = await _package_title(db, booking) if isinstance(booking, Booking) else None
        await notifications.notify(db, **builder(booking, admin, title))


async def _notify_submitter(db: AsyncSession, query: Query, admin: User) -> None:
    async with notifications.best_effort(db, f"Response notification for query {query.id}"):
        result = await db.execute(select(User).where(User.email == query.email.lower()))
        submitter = result.scalar_one_or_none()
        if submitter:
            await notifications.notify(db, **notifications.query_answered(query, submitter, admin))


# ── Dashboard ─────────────────────────────────────────────────

@router.get("/stats", response_model=StatsResponse)
async def dashboard_stats(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return StatsResponse(
        stats=DashboardStats(
            total_users=await _count(db, User),
            total_queries=await _count(db, Query),
            total_tour_bookings=await _count(db, Booking),
            total_car_bookings=await _count(db, CarBooking),
            total_tour_packages=await _count(db, TourPackage),
        )
    )


# ── Support Queries ───────────────────────────────────────────

@router.get("/queries", response_model=QueryListResponse)
async def list_queries(
    filter: Optional[str] = QueryParam(None, pattern="^(active|closed)$"),
    status_: Optional[QueryStatus] = QueryParam(None, alias="status"),
    category: Optional[QueryCategory] = QueryParam(None),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """`filter=active` is pending + resolved; `filter=closed` is rated tickets."""
    stmt = select(Query)
    if filter == "active":
        stmt = stmt.where(Query.status.in_([QueryStatus.PENDING, QueryStatus.RESOLVED]))
    elif filter == "closed":
        stmt = stmt.where(Query.status == QueryStatus.CLOSED)
    if status_:
        stmt = stmt.where(Query.status == status_)
    if category:
        stmt = stmt.where(Query.category == category)
    queries = (await db.execute(stmt.order_by(Query.created_at.desc()))).scalars().all()

    by_status = dict((await db.execute(select(Query.status, func.count()).group_by(Query.status))).all())
    by_category = dict(
        (await db.execute(select(Query.category, func.count()).group_by(Query.category))).all()
    )
    pending = by_status.get(QueryStatus.PENDING, 0)
    resolved = by_status.get(QueryStatus.RESOLVED, 0)
    closed = by_status.get(QueryStatus.CLOSED, 0)

    return QueryListResponse(
        count=len(queries),
        queries=[QueryResponse.model_validate(q) for q in queries],
        stats=QueryStats(
            pending=pending,
            resolved=resolved,
            closed=closed,
            car_booking=by_category.get(QueryCategory.CAR_BOOKING, 0),
            tour_package=by_category.get(QueryCategory.TOUR_PACKAGE, 0),
            others=by_category.get(QueryCategory.OTHERS, 0),
            total=pending + resolved + closed,
            active=pending + resolved,
        ),
    )


@router.patch("/queries/{query_id}/respond", response_model=QueryEnvelope)
async def respond_to_query(
    query_id: UUID,
    data: QueryRespondRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = await _get_or_404(db, Query, query_id, "Query")
    query_lifecycle.respond(query, data.response, admin, data.status)
    await db.commit()
    logger.info(f"Admin {admin.id} responded to query {query.id}")

    await _notify_submitter(db, query, admin)

    return QueryEnvelope(
        message="Query response sent successfully",
        query=QueryResponse.model_validate(query),
    )


# ── Bookings ──────────────────────────────────────────────────

@router.get("/tour-bookings", response_model=BookingListResponse)
async def list_tour_bookings(
    status_: Optional[BookingStatus] = QueryParam(None, alias="status"),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Booking).order_by(Booking.created_at.desc())
    if status_:
        stmt = stmt.where(Booking.status == status_)
    bookings = (await db.execute(stmt)).scalars().all()
    return BookingListResponse(
        count=len(bookings),
        bookings=[BookingResponse.model_validate(b) for b in bookings],
    )


@router.get("/car-bookings", response_model=CarBookingListResponse)
async def list_car_bookings(
    status_: Optional[CarBookingStatus] = QueryParam(None, alias="status"),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(CarBooking).order_by(CarBooking.created_at.desc())
    if status_:
        stmt = stmt.where(CarBooking.status == status_)
    bookings = (await db.execute(stmt)).scalars().all()
    return CarBookingListResponse(
        count=len(bookings),
        bookings=[CarBookingResponse.model_validate(b) for b in bookings],
    )


@router.patch("/bookings/{booking_id}/confirm", response_model=BookingEnvelope)
async def confirm_booking(
    booking_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_or_404(db, Booking, booking_id, "Booking")
    booking_lifecycle.confirm(booking)
    await db.commit()
    logger.info(f"Booking {booking.booking_reference} confirmed by {admin.id}")

    await _notify_owner(db, booking, admin)
    return BookingEnvelope(
        message="Booking confirmed successfully",
        booking=BookingResponse.model_validate(booking),
    )


@router.patch("/bookings/{booking_id}/cancel", response_model=BookingEnvelope)
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_or_404(db, Booking, booking_id, "Booking")
    booking_lifecycle.cancel(booking, data.reason, admin, ActorType.ADMIN)
    await db.commit()
    logger.info(f"Booking {booking.booking_reference} cancelled by {admin.id}")

    await _notify_owner(db, booking, admin)
    return BookingEnvelope(
        message="Booking cancelled successfully",
        booking=BookingResponse.model_validate(booking),
    )


@router.patch("/bookings/{booking_id}/complete", response_model=BookingEnvelope)
async def complete_booking(
    booking_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_or_404(db, Booking, booking_id, "Booking")
    booking_lifecycle.complete(booking)
    await db.commit()
    logger.info(f"Booking {booking.booking_reference} completed by {admin.id}")

    await _notify_owner(db, booking, admin)
    return BookingEnvelope(
        message="Booking marked as completed",
        booking=BookingResponse.model_validate(booking),
    )


@router.put("/tour-bookings/{booking_id}/status", response_model=BookingEnvelope)
async def update_tour_booking_status(
    booking_id: UUID,
    data: BookingStatusUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_or_404(db, Booking, booking_id, "Booking")
    booking_lifecycle.transition(booking, data.status, admin, ActorType.ADMIN, data.reason)
    await db.commit()
    logger.info(f"Booking {booking.booking_reference} moved to {data.status} by {admin.id}")

    await _notify_owner(db, booking, admin)
    return BookingEnvelope(
        message="Booking status updated successfully",
        booking=BookingResponse.model_validate(booking),
    )


@router.put("/car-bookings/{booking_id}/status", response_model=CarBookingEnvelope)
async def update_car_booking_status(
    booking_id: UUID,
    data: CarBookingStatusUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_or_404(db, CarBooking, booking_id, "Car booking")
    booking_lifecycle.transition(booking, data.status, admin, ActorType.ADMIN, data.reason)
    await db.commit()
    logger.info(f"Car booking {booking.booking_reference} moved to {data.status} by {admin.id}")

    await _notify_owner(db, booking, admin)
    return CarBookingEnvelope(
        message="Car booking status updated successfully",
        booking=CarBookingResponse.model_validate(booking),
    )


# ── Tour Packages ─────────────────────────────────────────────

@router.get("/tour-packages", response_model=AdminTourPackageListResponse)
async def list_tour_packages(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Every package regardless of status, with booking totals."""
    packages = (
        await db.execute(select(TourPackage).order_by(TourPackage.created_at.desc()))
    ).scalars().all()

    rows = await db.execute(
        select(
            Booking.tour_package_id,
            func.count(Booking.id),
            func.coalesce(func.sum(Booking.number_of_travelers), 0),
            func.coalesce(func.sum(Booking.total_amount), 0),
        )
        .where(Booking.tour_package_id.is_not(None))
        .group_by(Booking.tour_package_id)
    )
    stats = {
        package_id: PackageBookingStats(
            total_bookings=count, total_travelers=travelers, total_revenue=revenue
        )
        for package_id, count, travelers, revenue in rows.all()
    }

    items = []
    for package in packages:
        item = AdminTourPackageResponse.model_validate(package)
        item.booking_stats = stats.get(package.id, PackageBookingStats())
        items.append(item)
    return AdminTourPackageListResponse(count=len(items), packages=items)


@router.post("/tour-packages", response_model=TourPackageEnvelope, status_code=status.HTTP_201_CREATED)
async def create_tour_package(
    data: TourPackageCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    package = await catalog.build_package(db, data, admin)
    await db.commit()
    logger.info(f"Tour package '{package.slug}' created by {admin.id}")
    return TourPackageEnvelope(
        message="Tour package created successfully",
        package=TourPackageResponse.model_validate(package),
    )


@router.put("/tour-packages/{package_id}", response_model=TourPackageEnvelope)
async def update_tour_package(
    package_id: UUID,
    data: TourPackageUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    package = await _get_or_404(db, TourPackage, package_id, "Tour package")
    catalog.apply_update(package, data, admin)
    await db.commit()
    logger.info(f"Tour package '{package.slug}' updated by {admin.id}")
    return TourPackageEnvelope(
        message="Tour package updated successfully",
        package=TourPackageResponse.model_validate(package),
    )


@router.post("/tour-packages/{package_id}/images", response_model=TourPackageEnvelope)
async def upload_tour_package_images(
    package_id: UUID,
    images: list[UploadFile] = File(...),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    package = await _get_or_404(db, TourPackage, package_id, "Tour package")
    if len(images) > catalog.MAX_GALLERY_UPLOAD:
        raise ValidationError(f"At most {catalog.MAX_GALLERY_UPLOAD} images can be uploaded at once")

    stored = []
    for image in images:
        content = await image.read()
        try:
            stored.append(await upload_image(content, settings.STORAGE_TOUR_FOLDER))
        except InvalidImageError as e:
            raise ValidationError(f"{image.filename}: {e}")
        except StorageError as e:
            logger.error(f"Image upload for package {package.id} failed: {e}")
            raise ServiceUnavailableError("Failed to upload images. Please try again.")

    catalog.add_gallery_images(package, stored)
    package.last_modified_by_id = admin.id
    await db.commit()
    logger.info(f"{len(stored)} images added to tour package '{package.slug}'")
    return TourPackageEnvelope(
        message=f"{len(stored)} image(s) uploaded successfully",
        package=TourPackageResponse.model_validate(package),
    )


@router.delete("/tour-packages/{package_id}", response_model=MessageResponse)
async def remove_tour_package(
    package_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    package = await _get_or_404(db, TourPackage, package_id, "Tour package")
    report = await delete_tour_package(db, package)
    await db.commit()
    logger.info(f"Tour package {package_id} deleted by {admin.id}")
    return MessageResponse(
        message=(
            "Tour package deleted successfully"
            if not report.assets_failed
            else "Tour package deleted; some images could not be removed from storage"
        )
    )


# ── Users ─────────────────────────────────────────────────────

@router.get("/users", response_model=UserListResponse)
async def list_users(
    page: int = QueryParam(1, ge=1),
    limit: int = QueryParam(20, ge=1, le=100),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Admins first, then newest accounts."""
    total = await _count(db, User)
    result = await db.execute(
        select(User)
        .order_by(case((User.role == UserRole.ADMIN, 0), else_=1), User.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in result.scalars().all()],
        pagination=Pagination.build(page, limit, total),
    )


@router.delete("/users/{user_id}", response_model=DeleteAccountResponse)
async def remove_user(
    user_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if user_id == admin.id:
        raise ValidationError("You cannot delete your own account")
    user = await _get_or_404(db, User, user_id, "User")
    if user.is_admin:
        raise ValidationError("Cannot delete admin users")

    report = await delete_user(db, user)
    await db.commit()
    logger.info(f"User {user_id} deleted by admin {admin.id}")
    return DeleteAccountResponse(
        message="User account and all associated data deleted successfully",
        deleted_data=DeletedData(**report.deleted_data(user)),
    )


@router.post("/create-admin", response_model=UserEnvelope, status_code=status.HTTP_201_CREATED)
async def create_admin(
    data: CreateAdminRequest,
    caller: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a verified local account (admin by default).
    Open without authentication only until the first admin exists.
    """
    if not (caller and caller.is_admin):
        if await _count(db, User, User.role == UserRole.ADMIN):
            raise AuthorizationError("Only admins can create admin accounts")

    existing = await db.execute(select(User.id).where(User.email == data.email))
    if existing.scalar_one_or_none():
        raise ConflictError("User with this email already exists")

    user = User(
        name=data.name,
        email=data.email,
        password_hash=hash_password(data.password),
        role=UserRole(data.role),
        auth_provider=AuthProvider.LOCAL,
        is_verified=True,
    )
    db.add(user)
    await db.commit()
    logger.info(f"{user.role.value} account {user.id} created")

    label = "Admin" if user.is_admin else "User"
    return UserEnvelope(
        message=f"{label} created successfully",
        user=UserResponse.model_validate(user),
    )
