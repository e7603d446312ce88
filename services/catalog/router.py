"""
services/catalog/router.py
Public tour package catalogue. Only Published packages are visible here.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.models.models import PackageStatus, TourPackage
from shared.schemas.schemas import (
    CategoriesResponse,
    TourPackageEnvelope,
    TourPackageListResponse,
    TourPackageResponse,
)
from shared.utils.exceptions import NotFoundError

router = APIRouter(prefix="/api", tags=["Tour Packages"])


@router.get("/tour-packages", response_model=TourPackageListResponse)
async def list_tour_packages(
    featured: Optional[bool] = Query(None),
    category: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Published packages, featured first, then newest."""
    stmt = select(TourPackage).where(TourPackage.status == PackageStatus.PUBLISHED)
    if featured:
        stmt = stmt.where(TourPackage.featured.is_(True))
    if category:
        stmt = stmt.where(TourPackage.category == category)
    stmt = stmt.order_by(TourPackage.featured.desc(), TourPackage.created_at.desc())
    if limit:
        stmt = stmt.limit(limit)

    packages = (await db.execute(stmt)).scalars().all()
    return TourPackageListResponse(
        count=len(packages),
        packages=[TourPackageResponse.model_validate(p) for p in packages],
    )


@router.get("/tour-packages/{identifier}", response_model=TourPackageEnvelope)
async def get_tour_package(identifier: str, db: AsyncSession = Depends(get_db)):
    """Look up by slug first, then by id."""
    stmt = select(TourPackage).where(TourPackage.status == PackageStatus.PUBLISHED)
    package = (await db.execute(stmt.where(TourPackage.slug == identifier))).scalar_one_or_none()

    if package is None:
        try:
            package_id = uuid.UUID(identifier)
        except ValueError:
            package_id = None
        if package_id:
            package = (
                await db.execute(stmt.where(TourPackage.id == package_id))
            ).scalar_one_or_none()

    if package is None:
        raise NotFoundError("Tour package not found")
    return TourPackageEnvelope(package=TourPackageResponse.model_validate(package))


@router.get("/tour-categories", response_model=CategoriesResponse)
async def list_categories(db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(TourPackage.category)
        .where(TourPackage.status == PackageStatus.PUBLISHED)
        .distinct()
        .order_by(TourPackage.category)
    )
    return CategoriesResponse(categories=list(result.scalars().all()))
