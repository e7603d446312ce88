"""
services/cascade/coordinator.py
Explicit cascade deletes for users and tour packages.

Each dependent step runs once, inside its own savepoint, and a failed step
is logged and recorded on the report without stopping the ones after it.
The primary row is deleted last, whatever happened to its dependents.
External asset release is attempted exactly once and never retried.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import delete, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    Booking,
    CarBooking,
    Notification,
    Query,
    RefreshToken,
    TourPackage,
    User,
)
from shared.utils.storage import delete_image, delete_images

logger = logging.getLogger(__name__)


@dataclass
class CascadeReport:
    subject: str
    counts: dict[str, int] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)
    assets_released: list[str] = field(default_factory=list)
    assets_failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.assets_failed

    def count(self, *steps: str) -> int:
        return sum(self.counts.get(step, 0) for step in steps)

    def deleted_data(self, user: Optional[User] = None) -> dict:
        """Summary used in delete responses."""
        return {
            "user": user.name if user else None,
            "tour_bookings": self.count("tour_bookings"),
            "car_bookings": self.count("car_bookings"),
            "queries": self.count("queries", "orphan_queries"),
            "notifications": self.count("notifications"),
            "avatar": "Yes" if self.assets_released or self.assets_failed else "No",
        }


async def _run_step(db: AsyncSession, report: CascadeReport, name: str, statement) -> None:
    try:
        async with db.begin_nested():
            result = await db.execute(statement)
        report.counts[name] = result.rowcount or 0
        logger.info(f"[{report.subject}] {name}: {report.counts[name]} rows")
    except Exception as e:
        report.failures[name] = str(e)
        logger.exception(f"[{report.subject}] cascade step '{name}' failed")


async def _release_asset(report: CascadeReport, public_id: str) -> None:
    try:
        await delete_image(public_id)
        report.assets_released.append(public_id)
    except Exception as e:
        report.assets_failed[public_id] = str(e)
        logger.warning(f"[{report.subject}] could not release asset {public_id}: {e}")


# ── Users ─────────────────────────────────────────────────────

async def delete_user(db: AsyncSession, user: User) -> CascadeReport:
    """
    Remove a user and everything that hangs off it:
    avatar → tour bookings → car bookings → queries → notifications
    → package creator links → orphan queries by email → refresh tokens → user.
    """
    report = CascadeReport(subject=f"user:{user.id}")
    user_id, email = user.id, user.email.lower()

    if user.avatar_public_id:
        await _release_asset(report, user.avatar_public_id)

    await _run_step(db, report, "tour_bookings", delete(Booking).where(Booking.user_id == user_id))
    await _run_step(db, report, "car_bookings", delete(CarBooking).where(CarBooking.user_id == user_id))
    await _run_step(db, report, "queries", delete(Query).where(Query.user_id == user_id))
    await _run_step(
        db,
        report,
        "notifications",
        delete(Notification).where(
            or_(Notification.recipient_id == user_id, Notification.sender_id == user_id)
        ),
    )
    await _run_step(
        db,
        report,
        "packages_detached",
        update(TourPackage)
        .where(TourPackage.created_by_id == user_id)
        .values(created_by_id=None),
    )
    await _run_step(
        db,
        report,
        "orphan_queries",
        delete(Query).where(Query.email == email, Query.user_id.is_(None)),
    )
    await _run_step(
        db, report, "refresh_tokens", delete(RefreshToken).where(RefreshToken.user_id == user_id)
    )

    await db.delete(user)
    await db.flush()

    if report.ok:
        logger.info(f"[{report.subject}] deleted with all dependents: {report.counts}")
    else:
        logger.warning(
            f"[{report.subject}] deleted with cascade failures: "
            f"steps={report.failures} assets={report.assets_failed}"
        )
    return report


# ── Tour packages ─────────────────────────────────────────────

async def delete_tour_package(db: AsyncSession, package: TourPackage) -> CascadeReport:
    """Release featured + gallery images, detach bookings, delete the package."""
    report = CascadeReport(subject=f"tour_package:{package.id}")

    asset_ids = package.asset_public_ids()
    if asset_ids:
        try:
            result = await delete_images(asset_ids)
            report.assets_released.extend(result.deleted)
            report.assets_failed.update(result.failed)
        except Exception as e:
            for public_id in asset_ids:
                report.assets_failed[public_id] = str(e)
        for public_id, reason in report.assets_failed.items():
            logger.warning(f"[{report.subject}] could not release asset {public_id}: {reason}")

    await _run_step(
        db,
        report,
        "bookings_detached",
        update(Booking).where(Booking.tour_package_id == package.id).values(tour_package_id=None),
    )

    await db.delete(package)
    await db.flush()
    logger.info(
        f"[{report.subject}] deleted; {len(report.assets_released)} assets released, "
        f"{len(report.assets_failed)} failed"
    )
    return report
