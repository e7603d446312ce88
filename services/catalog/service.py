"""
services/catalog/service.py
Tour package construction: slugs, duration parsing, defaults, gallery edits.
"""

import re
from typing import Iterable, Optional

from slugify import slugify
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Difficulty, PackageStatus, TourPackage, User
from shared.schemas.schemas import TourPackageCreateRequest, TourPackageUpdateRequest
from shared.utils.exceptions import ValidationError
from shared.utils.storage import StoredImage

DURATION_PATTERN = re.compile(r"(\d+)\s*days?(?:\s*/?\s*(\d+)\s*nights?)?", re.IGNORECASE)

DEFAULT_CATEGORY = "Heritage & Culture"
DEFAULT_INCLUSIONS = ["Transportation", "Accommodation", "Meals as per itinerary"]
DEFAULT_EXCLUSIONS = ["Personal expenses", "Travel insurance"]
DEFAULT_BOOKING_INFO = {
    "cancellationPolicy": "Cancellation allowed up to 48 hours before travel",
    "paymentTerms": "50% advance payment required",
}
MAX_GALLERY_UPLOAD = 10


def parse_duration(text: Optional[str]) -> tuple[int, int]:
    """
    "5 Days / 4 Nights" → (5, 4); "3 days" → (3, 2).
    Anything unparseable is a one-day trip.
    """
    match = DURATION_PATTERN.search(text or "")
    if not match:
        return 1, 0
    days = max(1, int(match.group(1)))
    nights = int(match.group(2)) if match.group(2) else max(0, days - 1)
    return days, nights


def base_slug(title: str) -> str:
    return slugify(title or "") or "package"


async def unique_slug(db: AsyncSession, title: str) -> str:
    """First free slug among base, base-1, base-2, …"""
    base = base_slug(title)
    result = await db.execute(
        select(TourPackage.slug).where(
            (TourPackage.slug == base) | TourPackage.slug.like(f"{base}-%")
        )
    )
    taken = set(result.scalars().all())

    slug, counter = base, 1
    while slug in taken:
        slug = f"{base}-{counter}"
        counter += 1
    return slug


async def build_package(
    db: AsyncSession,
    data: TourPackageCreateRequest,
    creator: User,
) -> TourPackage:
    days, nights = parse_duration(data.duration)
    highlights = data.highlights or []

    package = TourPackage(
        title=data.name,
        slug=await unique_slug(db, data.name),
        description=data.summary,
        summary=data.summary,
        short_description=data.summary[:200],
        duration_days=days,
        duration_nights=nights,
        base_price=data.price,
        original_price=data.price + (data.discount or 0),
        discount=data.discount or 0,
        currency="INR",
        gallery=[],
        destinations=[{"name": "Bihar", "description": data.summary, "attractions": highlights}],
        highlights=highlights,
        category=data.category or DEFAULT_CATEGORY,
        difficulty=data.difficulty or Difficulty.EASY,
        max_group_size=data.max_group_size,
        min_group_size=data.min_group_size,
        status=data.status or PackageStatus.PUBLISHED,
        featured=data.featured,
        inclusions=data.inclusions or list(DEFAULT_INCLUSIONS),
        exclusions=data.exclusions or list(DEFAULT_EXCLUSIONS),
        pickup_locations=data.pickup_locations or [],
        drop_locations=data.drop_locations or [],
        booking_info=dict(DEFAULT_BOOKING_INFO),
        created_by_id=creator.id,
        last_modified_by_id=creator.id,
    )
    db.add(package)
    await db.flush()
    return package


def apply_update(package: TourPackage, data: TourPackageUpdateRequest, editor: User) -> TourPackage:
    """
    Partial update. Renaming keeps the existing slug so public links stay valid.
    A new price resets the discount.
    """
    fields = data.model_dump(exclude_unset=True)

    if fields.get("name") is not None:
        package.title = data.name
    if fields.get("description") is not None:
        package.description = data.description
    if fields.get("summary") is not None:
        package.summary = data.summary
        package.short_description = data.summary[:200]
    if fields.get("duration") is not None:
        package.duration_days, package.duration_nights = parse_duration(data.duration)
    if data.price is not None:
        discount = data.discount or 0
        package.base_price = data.price
        package.original_price = data.price + discount
        package.discount = discount
    elif data.discount is not None:
        package.discount = data.discount
        package.original_price = package.base_price + data.discount

    for name in ("highlights", "inclusions", "exclusions", "pickup_locations", "drop_locations"):
        if name in fields and fields[name] is not None:
            setattr(package, name, list(fields[name]))

    for name in ("category", "difficulty", "status", "featured", "max_group_size", "min_group_size"):
        if name in fields and fields[name] is not None:
            setattr(package, name, fields[name])

    if package.min_group_size > package.max_group_size:
        raise ValidationError("minGroupSize cannot exceed maxGroupSize")

    package.last_modified_by_id = editor.id
    return package


def add_gallery_images(package: TourPackage, images: Iterable[StoredImage]) -> TourPackage:
    """Append uploads to the gallery; the first one becomes featured if none is set."""
    gallery = list(package.gallery or [])
    for image in images:
        gallery.append({"url": image.url, "publicId": image.public_id, "caption": "", "alt": package.title})
        if not package.featured_image:
            package.featured_image = image.url
            package.featured_image_public_id = image.public_id
    package.gallery = gallery
    return package
