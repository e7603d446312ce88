"""
services/booking/lifecycle.py
Status machines for tour and car bookings.

Tour:  pending → confirmed → completed, pending | confirmed → cancelled
Car:   pending → confirmed → in-progress → completed,
       pending | confirmed | in-progress → cancelled

Functions mutate the booking in place and raise InvalidTransitionError
(leaving it untouched) for any edge not listed above.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from shared.models.models import (
    ActorType,
    Booking,
    BookingStatus,
    CarBooking,
    CarBookingStatus,
    User,
)
from shared.utils.exceptions import InvalidTransitionError, ValidationError

AnyBooking = Union[Booking, CarBooking]

TOUR_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
}

CAR_TRANSITIONS = {
    CarBookingStatus.PENDING: {CarBookingStatus.CONFIRMED, CarBookingStatus.CANCELLED},
    CarBookingStatus.CONFIRMED: {
        CarBookingStatus.IN_PROGRESS,
        CarBookingStatus.COMPLETED,
        CarBookingStatus.CANCELLED,
    },
    CarBookingStatus.IN_PROGRESS: {CarBookingStatus.COMPLETED, CarBookingStatus.CANCELLED},
    CarBookingStatus.CANCELLED: set(),
    CarBookingStatus.COMPLETED: set(),
}


def _machine(booking: AnyBooking):
    if isinstance(booking, CarBooking):
        return CarBookingStatus, CAR_TRANSITIONS
    return BookingStatus, TOUR_TRANSITIONS


def current_status(booking: AnyBooking):
    status_cls, _ = _machine(booking)
    return status_cls(booking.status)


def allowed_targets(booking: AnyBooking) -> set:
    _, transitions = _machine(booking)
    return transitions[current_status(booking)]


def can_transition(booking: AnyBooking, target) -> bool:
    status_cls, _ = _machine(booking)
    try:
        target = status_cls(target)
    except ValueError:
        return False
    return target in allowed_targets(booking)


def _reject(booking: AnyBooking, target) -> None:
    """Raise with the most specific message for a disallowed edge."""
    status_cls, _ = _machine(booking)
    current = current_status(booking)
    target = status_cls(target)

    if target == status_cls.CANCELLED:
        if current == status_cls.CANCELLED:
            raise InvalidTransitionError("Booking is already cancelled")
        if current == status_cls.COMPLETED:
            raise InvalidTransitionError("Cannot cancel completed booking")
    if target == status_cls.CONFIRMED:
        raise InvalidTransitionError("Only pending bookings can be confirmed")
    if target == status_cls.COMPLETED:
        if status_cls is CarBookingStatus:
            raise InvalidTransitionError(
                "Only confirmed or in-progress bookings can be marked as completed"
            )
        raise InvalidTransitionError("Only confirmed bookings can be marked as completed")
    if status_cls is CarBookingStatus and target == CarBookingStatus.IN_PROGRESS:
        raise InvalidTransitionError("Only confirmed bookings can be started")
    raise InvalidTransitionError(
        f"Cannot change booking status from {current.value} to {target.value}"
    )


def confirm(booking: AnyBooking) -> AnyBooking:
    status_cls, _ = _machine(booking)
    if not can_transition(booking, status_cls.CONFIRMED):
        _reject(booking, status_cls.CONFIRMED)
    booking.status = status_cls.CONFIRMED
    return booking


def start(booking: CarBooking) -> CarBooking:
    if not isinstance(booking, CarBooking):
        raise InvalidTransitionError("Only car bookings can be started")
    if not can_transition(booking, CarBookingStatus.IN_PROGRESS):
        _reject(booking, CarBookingStatus.IN_PROGRESS)
    booking.status = CarBookingStatus.IN_PROGRESS
    return booking


def complete(booking: AnyBooking) -> AnyBooking:
    status_cls, _ = _machine(booking)
    if not can_transition(booking, status_cls.COMPLETED):
        _reject(booking, status_cls.COMPLETED)
    booking.status = status_cls.COMPLETED
    return booking


def cancel(
    booking: AnyBooking,
    reason: Optional[str],
    actor: User,
    actor_type: ActorType,
) -> AnyBooking:
    """Cancel with a mandatory reason and record who did it."""
    status_cls, _ = _machine(booking)
    if not can_transition(booking, status_cls.CANCELLED):
        _reject(booking, status_cls.CANCELLED)
    if not reason or not reason.strip():
        raise ValidationError("Cancellation reason is required")

    booking.status = status_cls.CANCELLED
    booking.cancellation_reason = reason.strip()
    booking.cancelled_by_id = actor.id
    booking.cancelled_by_type = actor_type
    booking.cancelled_at = datetime.now(timezone.utc)
    return booking


def transition(
    booking: AnyBooking,
    target,
    actor: User,
    actor_type: ActorType = ActorType.ADMIN,
    reason: Optional[str] = None,
) -> AnyBooking:
    """Move to an arbitrary target status through the same rules as the named operations."""
    status_cls, _ = _machine(booking)
    try:
        target = status_cls(target)
    except ValueError:
        raise InvalidTransitionError(f"Unknown booking status '{target}'")

    if target == status_cls.CONFIRMED:
        return confirm(booking)
    if target == status_cls.COMPLETED:
        return complete(booking)
    if target == status_cls.CANCELLED:
        return cancel(booking, reason, actor, actor_type)
    if status_cls is CarBookingStatus and target == CarBookingStatus.IN_PROGRESS:
        return start(booking)
    _reject(booking, target)
