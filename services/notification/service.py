"""
services/notification/service.py
In-app notification writes and the message catalogue used by the booking
and query flows.

Every write triggered as a side effect runs in its own savepoint: a failed
insert is rolled back and logged, and the caller carries on.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    Booking,
    CarBooking,
    Notification,
    NotificationPriority,
    NotificationType,
    Query,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)

ADMIN_TOUR_BOOKINGS_URL = "/admin/dashboard?tab=tour-bookings"
ADMIN_CAR_BOOKINGS_URL = "/admin/dashboard?tab=car-bookings"
USER_TOUR_BOOKINGS_URL = "/dashboard?tab=tour-bookings"
USER_CAR_BOOKINGS_URL = "/dashboard?tab=car-bookings"


async def create_notification(
    db: AsyncSession,
    *,
    recipient_id: uuid.UUID,
    type: NotificationType,
    title: str,
    message: str,
    sender_id: Optional[uuid.UUID] = None,
    related_query_id: Optional[uuid.UUID] = None,
    related_booking_id: Optional[uuid.UUID] = None,
    priority: NotificationPriority = NotificationPriority.MEDIUM,
    action_url: Optional[str] = None,
) -> Notification:
    """Insert one notification and flush it. Errors propagate."""
    notification = Notification(
        recipient_id=recipient_id,
        sender_id=sender_id,
        type=type,
        title=title,
        message=message.strip(),
        related_query_id=related_query_id,
        related_booking_id=related_booking_id,
        priority=priority,
        action_url=action_url,
    )
    db.add(notification)
    await db.flush()
    return notification


@asynccontextmanager
async def best_effort(db: AsyncSession, what: str):
    """
    Run the lookups and writes behind a side-effect notification in a savepoint.
    Any failure inside the block is rolled back to the savepoint and logged.
    """
    try:
        async with db.begin_nested():
            yield
    except Exception:
        logger.exception(f"{what} failed")


async def notify(db: AsyncSession, **fields) -> Optional[Notification]:
    """Best-effort single write. Returns None if the insert failed."""
    try:
        async with db.begin_nested():
            return await create_notification(db, **fields)
    except Exception:
        logger.exception(
            f"Notification '{fields.get('title')}' for recipient {fields.get('recipient_id')} failed"
        )
        return None


async def fan_out(
    db: AsyncSession,
    recipient_ids: Iterable[uuid.UUID],
    **fields,
) -> list[Notification]:
    """One independent write per recipient; failed recipients are skipped."""
    delivered = []
    for recipient_id in recipient_ids:
        notification = await notify(db, recipient_id=recipient_id, **fields)
        if notification is not None:
            delivered.append(notification)
    return delivered


async def admin_ids(db: AsyncSession) -> list[uuid.UUID]:
    result = await db.execute(select(User.id).where(User.role == UserRole.ADMIN))
    return list(result.scalars().all())


async def notify_admins(db: AsyncSession, **fields) -> list[Notification]:
    """Fan out to every admin account. Never raises."""
    try:
        recipients = await admin_ids(db)
    except Exception:
        logger.exception("Could not load admin recipients for notification fan-out")
        return []
    delivered = await fan_out(db, recipients, **fields)
    logger.info(f"Notified {len(delivered)}/{len(recipients)} admins: {fields.get('title')}")
    return delivered


# ── Message catalogue ─────────────────────────────────────────

def _day(value: datetime) -> str:
    return value.strftime("%d/%m/%Y")


def _text(value) -> str:
    return getattr(value, "value", value)


def new_tour_booking(booking: Booking, package_title: Optional[str], customer_name: Optional[str]) -> dict:
    return dict(
        sender_id=booking.user_id,
        type=NotificationType.BOOKING_UPDATE,
        title="New Tour Booking Received",
        message=(
            f"New booking for {package_title or 'tour package'} by {customer_name or 'customer'}. "
            f"{booking.number_of_travelers} travelers for {_day(booking.travel_date)}."
        ),
        related_booking_id=booking.id,
        priority=NotificationPriority.HIGH,
        action_url=ADMIN_TOUR_BOOKINGS_URL,
    )


def new_car_booking(booking: CarBooking, customer_name: Optional[str]) -> dict:
    return dict(
        sender_id=booking.user_id,
        type=NotificationType.BOOKING_UPDATE,
        title="New Car Booking Received",
        message=(
            f"New {_text(booking.car_type)} booking by {customer_name or 'customer'}: "
            f"{booking.pickup_location} to {booking.dropoff_location} on "
            f"{_day(booking.pickup_date)} at {booking.pickup_time}."
        ),
        related_booking_id=booking.id,
        priority=NotificationPriority.HIGH,
        action_url=ADMIN_CAR_BOOKINGS_URL,
    )


def _trip_name(booking, package_title: Optional[str]) -> str:
    if isinstance(booking, CarBooking):
        return f"{_text(booking.car_type)} car"
    return package_title or "tour package"


def _user_url(booking) -> str:
    return USER_CAR_BOOKINGS_URL if isinstance(booking, CarBooking) else USER_TOUR_BOOKINGS_URL


def _travel_day(booking) -> datetime:
    return booking.pickup_date if isinstance(booking, CarBooking) else booking.travel_date


def booking_confirmed(booking, admin: User, package_title: Optional[str] = None) -> dict:
    return dict(
        recipient_id=booking.user_id,
        sender_id=admin.id,
        type=NotificationType.BOOKING_UPDATE,
        title="Booking Confirmed!",
        message=(
            f"Great news! Your booking for {_trip_name(booking, package_title)} has been confirmed. "
            f"Get ready for an amazing trip on {_day(_travel_day(booking))}!"
        ),
        related_booking_id=booking.id,
        priority=NotificationPriority.HIGH,
        action_url=_user_url(booking),
    )


def booking_cancelled(booking, admin: User, package_title: Optional[str] = None) -> dict:
    message = f"Your booking for {_trip_name(booking, package_title)} has been cancelled."
    if booking.cancellation_reason:
        message += f" Reason: {booking.cancellation_reason}"
    return dict(
        recipient_id=booking.user_id,
        sender_id=admin.id,
        type=NotificationType.BOOKING_UPDATE,
        title="Booking Cancelled",
        message=message,
        related_booking_id=booking.id,
        priority=NotificationPriority.HIGH,
        action_url=_user_url(booking),
    )


def booking_in_progress(booking: CarBooking, admin: User) -> dict:
    return dict(
        recipient_id=booking.user_id,
        sender_id=admin.id,
        type=NotificationType.BOOKING_UPDATE,
        title="Trip Started",
        message=f"Your {_text(booking.car_type)} trip from {booking.pickup_location} is now in progress.",
        related_booking_id=booking.id,
        priority=NotificationPriority.MEDIUM,
        action_url=USER_CAR_BOOKINGS_URL,
    )


def booking_completed(booking, admin: User, package_title: Optional[str] = None) -> dict:
    return dict(
        recipient_id=booking.user_id,
        sender_id=admin.id,
        type=NotificationType.BOOKING_UPDATE,
        title="Trip Completed!",
        message=(
            f"Hope you had an amazing time on your {_trip_name(booking, package_title)} trip! "
            "We'd love to hear about your experience."
        ),
        related_booking_id=booking.id,
        priority=NotificationPriority.MEDIUM,
        action_url=_user_url(booking),
    )


def booking_cancelled_by_user(
    booking, customer_name: Optional[str], package_title: Optional[str] = None
) -> dict:
    message = (
        f"{customer_name or 'A customer'} cancelled booking {booking.booking_reference} "
        f"for {_trip_name(booking, package_title)} on {_day(_travel_day(booking))}."
    )
    if booking.cancellation_reason:
        message += f" Reason: {booking.cancellation_reason}"
    return dict(
        sender_id=booking.user_id,
        type=NotificationType.BOOKING_UPDATE,
        title="Booking Cancelled by Customer",
        message=message,
        related_booking_id=booking.id,
        priority=NotificationPriority.HIGH,
        action_url=ADMIN_CAR_BOOKINGS_URL if isinstance(booking, CarBooking) else ADMIN_TOUR_BOOKINGS_URL,
    )


def new_query(query: Query) -> dict:
    category = _text(query.category).replace("-", " ")
    return dict(
        sender_id=query.user_id,
        type=NotificationType.NEW_QUERY,
        title="New Query Received",
        message=(
            f'New {category} query from {query.name}: "{query.subject}". '
            "Please check the admin dashboard to respond."
        ),
        related_query_id=query.id,
        priority=NotificationPriority.MEDIUM,
    )


def query_answered(query: Query, recipient: User, admin: User) -> dict:
    return dict(
        recipient_id=recipient.id,
        sender_id=admin.id,
        type=NotificationType.QUERY_RESPONSE,
        title="Response to Your Query",
        message=f'We have responded to your query: "{query.subject}".',
        related_query_id=query.id,
        priority=NotificationPriority.HIGH,
    )
