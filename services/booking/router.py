"""
services/booking/router.py
Customer-facing tour and car bookings.
The booking row is committed first; admin notifications are written afterwards
and never affect the response.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking import lifecycle
from services.notification import service as notifications
from shared.middleware.auth import get_current_user
from shared.models.models import ActorType, Booking, CarBooking, TourPackage, User
from shared.schemas.schemas import (
    BookingCancelRequest,
    BookingEnvelope,
    BookingResponse,
    CarBookingCreateRequest,
    CarBookingEnvelope,
    CarBookingResponse,
    MyBookingsResponse,
    TourBookingCreateRequest,
)
from shared.utils.exceptions import AuthorizationError, NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])


# ── Helpers ───────────────────────────────────────────────────

async def _owned(db: AsyncSession, model, booking_id: UUID, user: User):
    booking = await db.get(model, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    if booking.user_id != user.id:
        raise AuthorizationError("You do not have access to this booking")
    return booking


# ── Tour Bookings ─────────────────────────────────────────────

@router.post("/tour", response_model=BookingEnvelope, status_code=status.HTTP_201_CREATED)
async def create_tour_booking(
    data: TourBookingCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    package = await db.get(TourPackage, data.tour_package_id)
    if not package:
        raise NotFoundError("Tour package not found")

    booking = Booking(
        user_id=current_user.id,
        tour_package_id=package.id,
        number_of_travelers=data.number_of_travelers,
        travel_date=data.travel_date,
        total_amount=data.total_amount,
        contact_number=data.contact_number,
        emergency_contact=data.emergency_contact,
        special_requests=data.special_requests,
        pickup_location=data.pickup_location,
        drop_location=data.drop_location,
    )
    db.add(booking)
    await db.commit()
    logger.info(f"Tour booking {booking.booking_reference} created by {current_user.id}")

    async with notifications.best_effort(db, f"Admin alert for booking {booking.booking_reference}"):
        await notifications.notify_admins(
            db, **notifications.new_tour_booking(booking, package.title, current_user.name)
        )

    return BookingEnvelope(
        message="Booking created successfully",
        booking=BookingResponse.model_validate(booking),
    )


@router.post("/car", response_model=CarBookingEnvelope, status_code=status.HTTP_201_CREATED)
async def create_car_booking(
    data: CarBookingCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = CarBooking(
        user_id=current_user.id,
        car_type=data.car_type,
        pickup_location=data.pickup_location,
        dropoff_location=data.dropoff_location,
        pickup_date=data.pickup_date,
        dropoff_date=data.dropoff_date,
        pickup_time=data.pickup_time,
        number_of_passengers=data.number_of_passengers,
        trip_type=data.trip_type,
        total_amount=data.total_amount,
        contact_number=data.contact_number or current_user.phone,
        special_requests=data.special_requests,
    )
    db.add(booking)
    await db.commit()
    logger.info(f"Car booking {booking.booking_reference} created by {current_user.id}")

    async with notifications.best_effort(db, f"Admin alert for booking {booking.booking_reference}"):
        await notifications.notify_admins(
            db, **notifications.new_car_booking(booking, current_user.name)
        )

    return CarBookingEnvelope(
        message="Car booking created successfully",
        booking=CarBookingResponse.model_validate(booking),
    )


@router.get("/my-bookings", response_model=MyBookingsResponse)
async def my_bookings(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    tours = await db.execute(
        select(Booking).where(Booking.user_id == current_user.id).order_by(Booking.created_at.desc())
    )
    cars = await db.execute(
        select(CarBooking)
        .where(CarBooking.user_id == current_user.id)
        .order_by(CarBooking.created_at.desc())
    )
    return MyBookingsResponse(
        bookings=[BookingResponse.model_validate(b) for b in tours.scalars().all()],
        car_bookings=[CarBookingResponse.model_validate(b) for b in cars.scalars().all()],
    )


# ── Car Bookings (declared before /{booking_id}) ──────────────

@router.get("/car/{booking_id}", response_model=CarBookingEnvelope)
async def get_car_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _owned(db, CarBooking, booking_id, current_user)
    return CarBookingEnvelope(booking=CarBookingResponse.model_validate(booking))


@router.patch("/car/{booking_id}/cancel", response_model=CarBookingEnvelope)
async def cancel_car_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _owned(db, CarBooking, booking_id, current_user)
    lifecycle.cancel(booking, data.reason, current_user, ActorType.USER)
    await db.commit()
    logger.info(f"Car booking {booking.booking_reference} cancelled by owner")

    async with notifications.best_effort(db, f"Cancellation alert for {booking.booking_reference}"):
        await notifications.notify_admins(
            db, **notifications.booking_cancelled_by_user(booking, current_user.name)
        )

    return CarBookingEnvelope(
        message="Booking cancelled successfully",
        booking=CarBookingResponse.model_validate(booking),
    )


# ── Single Tour Booking ───────────────────────────────────────

@router.get("/{booking_id}", response_model=BookingEnvelope)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _owned(db, Booking, booking_id, current_user)
    return BookingEnvelope(booking=BookingResponse.model_validate(booking))


@router.patch("/{booking_id}/cancel", response_model=BookingEnvelope)
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _owned(db, Booking, booking_id, current_user)
    lifecycle.cancel(booking, data.reason, current_user, ActorType.USER)
    await db.commit()
    logger.info(f"Tour booking {booking.booking_reference} cancelled by owner")

    async with notifications.best_effort(db, f"Cancellation alert for {booking.booking_reference}"):
        package = await db.get(TourPackage, booking.tour_package_id) if booking.tour_package_id else None
        await notifications.notify_admins(
            db,
            **notifications.booking_cancelled_by_user(
                booking, current_user.name, package.title if package else None
            ),
        )

    return BookingEnvelope(
        message="Booking cancelled successfully",
        booking=BookingResponse.model_validate(booking),
    )
