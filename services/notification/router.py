"""
services/notification/router.py
In-app inbox. Recipients read, mark and delete their own notifications;
admins can post notifications to a user directly.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.notification import service
from shared.middleware.auth import get_current_user, require_admin
from shared.models.models import Notification, Query as SupportQuery, User
from shared.schemas.schemas import (
    AdminNotificationCreateRequest,
    MessageResponse,
    NotificationEnvelope,
    NotificationListResponse,
    NotificationResponse,
    Pagination,
    SendToUserRequest,
    UnreadCountResponse,
)
from shared.utils.exceptions import NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


async def _unread_count(db: AsyncSession, user: User) -> int:
    return await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.recipient_id == user.id,
            Notification.is_read.is_(False),
        )
    ) or 0


async def _user_by_email(db: AsyncSession, email: str) -> User:
    result = await db.execute(select(User).where(User.email == email.lower()))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFoundError("User not found with this email")
    return user


async def _check_related_query(db: AsyncSession, query_id: Optional[UUID]) -> None:
    if query_id and not await db.get(SupportQuery, query_id):
        raise NotFoundError("Query not found")


# ── Inbox ─────────────────────────────────────────────────────

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Newest first, paginated, with the unread total."""
    base = Notification.recipient_id == current_user.id
    total = await db.scalar(select(func.count(Notification.id)).where(base)) or 0
    result = await db.execute(
        select(Notification)
        .where(base)
        .order_by(Notification.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in result.scalars().all()],
        unread_count=await _unread_count(db, current_user),
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return UnreadCountResponse(count=await _unread_count(db, current_user))


@router.patch("/mark-all-read", response_model=MessageResponse)
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(
        update(Notification)
        .where(Notification.recipient_id == current_user.id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=datetime.now(timezone.utc))
    )
    return MessageResponse(message="All notifications marked as read")


@router.patch("/{notification_id}/read", response_model=NotificationEnvelope)
async def mark_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await db.get(Notification, notification_id)
    if not notification or notification.recipient_id != current_user.id:
        raise NotFoundError("Notification not found")

    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.flush()
    return NotificationEnvelope(
        message="Notification marked as read",
        notification=NotificationResponse.model_validate(notification),
    )


@router.delete("/{notification_id}", response_model=MessageResponse)
async def delete_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        delete(Notification).where(
            Notification.id == notification_id,
            Notification.recipient_id == current_user.id,
        )
    )
    if not result.rowcount:
        raise NotFoundError("Notification not found")
    return MessageResponse(message="Notification deleted successfully")


# ── Admin ─────────────────────────────────────────────────────

@router.post("", response_model=NotificationEnvelope, status_code=status.HTTP_201_CREATED)
async def create_notification(
    data: AdminNotificationCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if data.recipient_id:
        recipient = await db.get(User, data.recipient_id)
        if not recipient:
            raise NotFoundError("Recipient not found")
    else:
        recipient = await _user_by_email(db, data.recipient_email)
    await _check_related_query(db, data.related_query_id)

    notification = await service.create_notification(
        db,
        recipient_id=recipient.id,
        sender_id=admin.id,
        type=data.type,
        title=data.title,
        message=data.message,
        related_query_id=data.related_query_id,
        related_booking_id=data.related_booking_id,
        priority=data.priority,
        action_url=data.action_url,
    )
    logger.info(f"Admin {admin.id} sent notification to {recipient.id}")
    return NotificationEnvelope(
        message="Notification created successfully",
        notification=NotificationResponse.model_validate(notification),
    )


@router.post("/send-to-user", response_model=NotificationEnvelope, status_code=status.HTTP_201_CREATED)
async def send_to_user(
    data: SendToUserRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    recipient = await _user_by_email(db, data.user_email)
    await _check_related_query(db, data.related_query_id)
    notification = await service.create_notification(
        db,
        recipient_id=recipient.id,
        sender_id=admin.id,
        type=data.type,
        title=data.title,
        message=data.message,
        related_query_id=data.related_query_id,
        priority=data.priority,
    )
    logger.info(f"Admin {admin.id} sent notification to {recipient.email}")
    return NotificationEnvelope(
        message="Notification sent successfully",
        notification=NotificationResponse.model_validate(notification),
    )
