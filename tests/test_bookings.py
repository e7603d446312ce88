"""
tests/test_bookings.py
Tests for customer tour bookings: create → view → cancel, plus the
admin notifications a new booking produces.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Booking, BookingStatus, Notification, TourPackage, User
from tests.conftest import auth_headers, in_days, make_tour_booking


def _payload(package: TourPackage, **overrides) -> dict:
    payload = {
        "tourPackageId": str(package.id),
        "numberOfTravelers": 2,
        "travelDate": in_days(14).isoformat(),
        "totalAmount": 9998,
        "contactNumber": "9876543210",
        "specialRequests": "Vegetarian meals",
    }
    payload.update(overrides)
    return payload


# ── Booking Creation ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_tour_booking_success(client: AsyncClient, user: User, package: TourPackage):
    response = await client.post("/api/bookings/tour", headers=auth_headers(user), json=_payload(package))
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Booking created successfully"
    booking = body["booking"]
    assert booking["status"] == "pending"
    assert booking["paymentStatus"] == "pending"
    assert booking["bookingReference"].startswith("TOUR")
    assert booking["userId"] == str(user.id)


@pytest.mark.asyncio
async def test_create_booking_notifies_every_admin(
    client: AsyncClient, db: AsyncSession, user: User, admin: User, package: TourPackage
):
    """Each admin gets a high-priority notification naming the package and customer."""
    response = await client.post("/api/bookings/tour", headers=auth_headers(user), json=_payload(package))
    assert response.status_code == 201

    notes = (await db.execute(select(Notification))).scalars().all()
    assert len(notes) == 1
    note = notes[0]
    assert note.recipient_id == admin.id
    assert note.title == "New Tour Booking Received"
    assert "Patna City Tour" in note.message
    assert "Ravi Kumar" in note.message
    assert note.priority.value == "high"


@pytest.mark.asyncio
async def test_create_booking_survives_notification_failure(
    client: AsyncClient, db: AsyncSession, user: User, admin: User, package: TourPackage, monkeypatch
):
    """A failing notification write does not undo the committed booking."""
    from services.notification import service

    async def _broken(*args, **kwargs):
        raise RuntimeError("notifications table unavailable")

    monkeypatch.setattr(service, "create_notification", _broken)

    response = await client.post("/api/bookings/tour", headers=auth_headers(user), json=_payload(package))
    assert response.status_code == 201
    bookings = (await db.execute(select(Booking))).scalars().all()
    assert len(bookings) == 1


@pytest.mark.asyncio
async def test_create_booking_past_date_rejected(client: AsyncClient, user: User, package: TourPackage):
    response = await client.post(
        "/api/bookings/tour",
        headers=auth_headers(user),
        json=_payload(package, travelDate=in_days(-1).isoformat()),
    )
    assert response.status_code == 400
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_create_booking_invalid_contact(client: AsyncClient, user: User, package: TourPackage):
    response = await client.post(
        "/api/bookings/tour", headers=auth_headers(user), json=_payload(package, contactNumber="12345")
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_booking_unknown_package(client: AsyncClient, user: User, package: TourPackage):
    response = await client.post(
        "/api/bookings/tour",
        headers=auth_headers(user),
        json=_payload(package, tourPackageId=str(uuid.uuid4())),
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_create_booking_rejects_status_field(client: AsyncClient, user: User, package: TourPackage):
    """Clients cannot set server-owned fields."""
    response = await client.post(
        "/api/bookings/tour", headers=auth_headers(user), json=_payload(package, status="confirmed")
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_booking_requires_auth(client: AsyncClient, package: TourPackage):
    response = await client.post("/api/bookings/tour", json=_payload(package))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unverified_user_cannot_book(client: AsyncClient, unverified_user: User, package: TourPackage):
    response = await client.post(
        "/api/bookings/tour", headers=auth_headers(unverified_user), json=_payload(package)
    )
    assert response.status_code == 403
    assert response.json()["requiresVerification"] is True


# ── Listing & Access ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_my_bookings_lists_both_kinds(
    client: AsyncClient, user: User, tour_booking: Booking, car_booking
):
    response = await client.get("/api/bookings/my-bookings", headers=auth_headers(user))
    assert response.status_code == 200
    body = response.json()
    assert [b["id"] for b in body["bookings"]] == [str(tour_booking.id)]
    assert [b["id"] for b in body["carBookings"]] == [str(car_booking.id)]


@pytest.mark.asyncio
async def test_my_bookings_excludes_other_users(
    client: AsyncClient, db: AsyncSession, user: User, other_user: User, package: TourPackage
):
    await make_tour_booking(db, other_user, package)
    response = await client.get("/api/bookings/my-bookings", headers=auth_headers(user))
    assert response.json()["bookings"] == []


@pytest.mark.asyncio
async def test_get_booking(client: AsyncClient, user: User, tour_booking: Booking):
    response = await client.get(f"/api/bookings/{tour_booking.id}", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["booking"]["bookingReference"] == tour_booking.booking_reference


@pytest.mark.asyncio
async def test_get_booking_not_found(client: AsyncClient, user: User):
    response = await client.get(f"/api/bookings/{uuid.uuid4()}", headers=auth_headers(user))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_user_cannot_access_other_users_booking(
    client: AsyncClient, other_user: User, tour_booking: Booking
):
    response = await client.get(f"/api/bookings/{tour_booking.id}", headers=auth_headers(other_user))
    assert response.status_code == 403


# ── Cancellation ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_user_cancel_booking(client: AsyncClient, user: User, tour_booking: Booking):
    response = await client.patch(
        f"/api/bookings/{tour_booking.id}/cancel",
        headers=auth_headers(user),
        json={"reason": "Change of plans"},
    )
    assert response.status_code == 200
    booking = response.json()["booking"]
    assert booking["status"] == "cancelled"
    assert booking["cancellationReason"] == "Change of plans"
    assert booking["cancelledByType"] == "user"
    assert booking["cancelledById"] == str(user.id)
    assert booking["cancelledAt"] is not None


@pytest.mark.asyncio
async def test_user_cancel_notifies_admins(
    client: AsyncClient, db: AsyncSession, user: User, admin: User, tour_booking: Booking
):
    response = await client.patch(
        f"/api/bookings/{tour_booking.id}/cancel",
        headers=auth_headers(user),
        json={"reason": "Change of plans"},
    )
    assert response.status_code == 200

    note = (await db.execute(select(Notification))).scalar_one()
    assert note.recipient_id == admin.id
    assert note.sender_id == user.id
    assert note.title == "Booking Cancelled by Customer"
    assert tour_booking.booking_reference in note.message
    assert "Patna City Tour" in note.message
    assert "Change of plans" in note.message
    assert note.action_url == "/admin/dashboard?tab=tour-bookings"


@pytest.mark.asyncio
async def test_user_cancel_survives_notification_lookup_failure(
    client: AsyncClient, db: AsyncSession, user: User, admin: User, tour_booking: Booking, monkeypatch
):
    """The cancellation stands even when the admin list cannot be read."""
    from services.notification import service

    async def _broken(*args, **kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(service, "admin_ids", _broken)

    response = await client.patch(
        f"/api/bookings/{tour_booking.id}/cancel",
        headers=auth_headers(user),
        json={"reason": "Change of plans"},
    )
    assert response.status_code == 200
    assert response.json()["booking"]["status"] == "cancelled"
    await db.refresh(tour_booking)
    assert tour_booking.status == BookingStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_requires_reason(client: AsyncClient, user: User, tour_booking: Booking):
    response = await client.patch(
        f"/api/bookings/{tour_booking.id}/cancel", headers=auth_headers(user), json={"reason": "   "}
    )
    assert response.status_code == 400
    assert tour_booking.status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_cannot_cancel_twice(client: AsyncClient, user: User, tour_booking: Booking):
    headers = auth_headers(user)
    await client.patch(f"/api/bookings/{tour_booking.id}/cancel", headers=headers, json={"reason": "No"})
    response = await client.patch(
        f"/api/bookings/{tour_booking.id}/cancel", headers=headers, json={"reason": "Again"}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Booking is already cancelled"


@pytest.mark.asyncio
async def test_cannot_cancel_completed_booking(
    client: AsyncClient, db: AsyncSession, user: User, tour_booking: Booking
):
    tour_booking.status = BookingStatus.COMPLETED
    await db.commit()
    response = await client.patch(
        f"/api/bookings/{tour_booking.id}/cancel", headers=auth_headers(user), json={"reason": "Late"}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot cancel completed booking"


@pytest.mark.asyncio
async def test_other_user_cannot_cancel(client: AsyncClient, other_user: User, tour_booking: Booking):
    response = await client.patch(
        f"/api/bookings/{tour_booking.id}/cancel",
        headers=auth_headers(other_user),
        json={"reason": "Not mine"},
    )
    assert response.status_code == 403
