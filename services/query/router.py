"""
services/query/router.py
Support tickets from the customer side: submit, list own, rate the answer.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.notification import service as notifications
from services.query import lifecycle
from shared.middleware.auth import get_current_user
from shared.models.models import Query, User
from shared.schemas.schemas import (
    QueryCreateRequest,
    QueryEnvelope,
    QueryListResponse,
    QueryRateRequest,
    QueryResponse,
)
from shared.utils.exceptions import NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/queries", tags=["Queries"])


@router.post("", response_model=QueryEnvelope, status_code=status.HTTP_201_CREATED)
async def submit_query(
    data: QueryCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    query = Query(
        name=data.name,
        email=data.email,
        phone=data.phone,
        whatsapp=data.whatsapp,
        subject=data.subject,
        category=data.category,
        message=data.message,
        user_id=current_user.id,
    )
    db.add(query)
    await db.commit()
    logger.info(f"Query {query.id} submitted by {current_user.id}")

    async with notifications.best_effort(db, f"Admin alert for query {query.id}"):
        await notifications.notify_admins(db, **notifications.new_query(query))

    return QueryEnvelope(
        message="Query submitted successfully. We will get back to you soon!",
        query=QueryResponse.model_validate(query),
    )


@router.get("/my-queries", response_model=QueryListResponse)
async def my_queries(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Tickets linked to the account plus any submitted with the same email."""
    result = await db.execute(
        select(Query)
        .where(or_(Query.user_id == current_user.id, Query.email == current_user.email.lower()))
        .order_by(Query.created_at.desc())
    )
    queries = result.scalars().all()
    return QueryListResponse(
        count=len(queries),
        queries=[QueryResponse.model_validate(q) for q in queries],
    )


@router.patch("/{query_id}/rate", response_model=QueryEnvelope)
async def rate_query(
    query_id: UUID,
    data: QueryRateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    query = await db.get(Query, query_id)
    if not query or not lifecycle.is_owner(query, current_user):
        raise NotFoundError("Query not found")

    lifecycle.rate(query, data.rating, data.feedback)
    await db.commit()
    logger.info(f"Query {query.id} rated {query.rating.value} and closed")

    return QueryEnvelope(
        message="Thank you for your feedback! Your query has been closed.",
        query=QueryResponse.model_validate(query),
    )
