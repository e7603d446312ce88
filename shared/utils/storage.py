"""
shared/utils/storage.py
Image storage on an S3-compatible bucket (aioboto3).

The object key doubles as the asset's public id: it is what gets stored on
User.avatar_public_id / TourPackage gallery entries and what delete calls take.
Calls are attempted once; callers decide whether a failure is fatal.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Iterable

import aioboto3
import filetype
from botocore.exceptions import BotoCoreError, ClientError

from config.settings import settings

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}
_BULK_DELETE_CHUNK = 1000


class StorageError(RuntimeError):
    """Upload or delete against the bucket failed."""


class InvalidImageError(ValueError):
    """Uploaded content is not an accepted image type or is too large."""


@dataclass
class StoredImage:
    url: str
    public_id: str


@dataclass
class BulkDeleteResult:
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def _client():
    session = aioboto3.Session()
    return session.client(
        "s3",
        region_name=settings.S3_REGION,
        endpoint_url=settings.S3_ENDPOINT_URL or None,
        aws_access_key_id=settings.S3_ACCESS_KEY_ID,
        aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
    )


def public_url(public_id: str) -> str:
    return f"{settings.storage_public_base_url}/{public_id}"


def detect_image_type(content: bytes) -> str:
    """
    Sniff the MIME type from the bytes themselves.
    Raises InvalidImageError for non-images and oversized files.
    """
    max_bytes = settings.MAX_IMAGE_SIZE_MB * 1024 * 1024
    if not content:
        raise InvalidImageError("Uploaded file is empty")
    if len(content) > max_bytes:
        raise InvalidImageError(f"Image exceeds {settings.MAX_IMAGE_SIZE_MB} MB limit")

    kind = filetype.guess(content)
    if kind is None or kind.mime not in ALLOWED_IMAGE_TYPES:
        raise InvalidImageError("Only JPEG, PNG, WEBP and GIF images are allowed")
    return kind.mime


async def upload_image(content: bytes, folder: str) -> StoredImage:
    """Upload image bytes under `folder/` with a random name."""
    mime = detect_image_type(content)
    extension = mime.split("/")[1].replace("jpeg", "jpg")
    key = f"{folder.strip('/')}/{uuid.uuid4().hex}.{extension}"

    async with _client() as s3:
        try:
            await s3.put_object(
                Bucket=settings.S3_BUCKET_PUBLIC,
                Key=key,
                Body=content,
                ContentType=mime,
                ACL="public-read",
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to upload image: {e}") from e

    logger.info(f"Image uploaded: {key}")
    return StoredImage(url=public_url(key), public_id=key)


async def delete_image(public_id: str) -> bool:
    """Delete a single asset. Raises StorageError on failure."""
    async with _client() as s3:
        try:
            await s3.delete_object(Bucket=settings.S3_BUCKET_PUBLIC, Key=public_id)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete image {public_id}: {e}") from e

    logger.info(f"Image deleted: {public_id}")
    return True


async def delete_images(public_ids: Iterable[str]) -> BulkDeleteResult:
    """
    Delete many assets, reporting success/failure per id.
    A request-level failure marks every id in that chunk as failed.
    """
    ids = list(dict.fromkeys(i for i in public_ids if i))
    result = BulkDeleteResult()
    if not ids:
        return result

    async with _client() as s3:
        for start in range(0, len(ids), _BULK_DELETE_CHUNK):
            chunk = ids[start:start + _BULK_DELETE_CHUNK]
            try:
                response = await s3.delete_objects(
                    Bucket=settings.S3_BUCKET_PUBLIC,
                    Delete={"Objects": [{"Key": key} for key in chunk], "Quiet": False},
                )
            except (ClientError, BotoCoreError) as e:
                for key in chunk:
                    result.failed[key] = str(e)
                continue

            for item in response.get("Deleted", []):
                result.deleted.append(item["Key"])
            for item in response.get("Errors", []):
                result.failed[item["Key"]] = item.get("Message") or item.get("Code", "unknown error")

    logger.info(f"Bulk image delete: {len(result.deleted)} deleted, {len(result.failed)} failed")
    return result
