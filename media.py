"""Image ingestion: local staging, the remote image host, and reconciliation events."""

from __future__ import annotations
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
from fastapi import UploadFile
from motor.motor_asyncio import AsyncIOMotorDatabase
from starlette.concurrency import run_in_threadpool

from config import settings
from database import utcnow
from errors import UpstreamError, ValidationFailed

logger = logging.getLogger(__name__)

PRODUCT_TRANSFORMATION = [
    {"width": 800, "crop": "limit"},
    {"quality": "auto:good"},
    {"fetch_format": "auto"},
]
BANNER_TRANSFORMATION = [
    {"width": 1600, "crop": "limit"},
    {"quality": "auto"},
]

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class UploadedImage:
    url: str
    public_id: str
    bytes: int = 0


class MediaStore:
    """Thin wrapper over the cloudinary uploader."""

    def __init__(self, cloud_name: Optional[str], api_key: Optional[str], api_secret: Optional[str]):
        cloudinary.config(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret, secure=True)

    def _upload(self, path: str, folder: str, transformation: list[dict[str, Any]]) -> UploadedImage:
        result = cloudinary.uploader.upload(path, folder=folder, transformation=transformation)
        return UploadedImage(url=result["secure_url"], public_id=result["public_id"], bytes=result.get("bytes", 0))

    async def upload(self, path: str, folder: str, transformation: list[dict[str, Any]]) -> UploadedImage:
        try:
            image = await run_in_threadpool(self._upload, path, folder, transformation)
        except (cloudinary.exceptions.Error, OSError, KeyError) as e:
            logger.error("Image upload to %s failed: %s", folder, e)
            raise UpstreamError("Image upload failed", str(e)) from e
        logger.info("Image uploaded: %s (%s bytes)", image.url, image.bytes)
        return image

    async def destroy(self, public_id: str) -> None:
        try:
            result = await run_in_threadpool(cloudinary.uploader.destroy, public_id)
        except cloudinary.exceptions.Error as e:
            logger.error("Image deletion of %s failed: %s", public_id, e)
            raise UpstreamError("Image deletion failed", str(e)) from e
        logger.info("Deleted remote image %s: %s", public_id, result.get("result"))


_media: Optional[MediaStore] = None


def get_media() -> MediaStore:
    global _media
    if _media is None:
        _media = MediaStore(
            settings.CLOUDINARY_CLOUD_NAME,
            settings.CLOUDINARY_API_KEY,
            settings.CLOUDINARY_API_SECRET,
        )
    return _media


def discard(paths: list[Path]) -> None:
    for p in paths:
        try:
            p.unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to delete local file %s: %s", p, e)


async def _stage_one(upload: UploadFile, upload_dir: Path) -> Path:
    if not (upload.content_type or "").startswith("image/"):
        raise ValidationFailed("Only image files are allowed")
    suffix = Path(upload.filename or "").suffix
    fd, name = tempfile.mkstemp(prefix="upload-", suffix=suffix, dir=upload_dir)
    path = Path(name)
    written = 0
    try:
        with os.fdopen(fd, "wb") as out:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > settings.MAX_IMAGE_BYTES:
                    limit_mb = settings.MAX_IMAGE_BYTES // (1024 * 1024)
                    raise ValidationFailed(f"Image exceeds {limit_mb}MB limit")
                out.write(chunk)
    except BaseException:
        discard([path])
        raise
    return path


async def stage_images(uploads: list[UploadFile], max_count: int) -> list[Path]:
    """Write every upload to a temporary file, or none of them.

    Rejects non-image content types, files over MAX_IMAGE_BYTES and batches
    larger than `max_count`; a rejection removes everything staged so far.
    """
    uploads = [u for u in uploads if u.filename]
    if len(uploads) > max_count:
        raise ValidationFailed(f"At most {max_count} images are allowed")
    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    staged: list[Path] = []
    try:
        for upload in uploads:
            staged.append(await _stage_one(upload, upload_dir))
    except BaseException:
        discard(staged)
        raise
    return staged


async def upload_staged(
    media: MediaStore,
    staged: list[Path],
    folder: str,
    transformation: list[dict[str, Any]],
) -> list[UploadedImage]:
    """Upload staged files in order; temp files are always removed.

    If any upload fails, images already uploaded in this batch are destroyed
    before the error propagates.
    """
    uploaded: list[UploadedImage] = []
    try:
        for path in staged:
            uploaded.append(await media.upload(str(path), folder, transformation))
    except UpstreamError:
        for image in uploaded:
            try:
                await media.destroy(image.public_id)
            except UpstreamError:
                logger.error("Could not roll back uploaded image %s", image.public_id)
        raise
    finally:
        discard(staged)
    return uploaded


def public_id_from_url(url: str, folder: str) -> str:
    name = urlparse(url).path.rsplit("/", 1)[-1]
    return f"{folder}/{name.split('.')[0]}"


async def record_reconciliation(
    db: AsyncIOMotorDatabase,
    action: str,
    public_ids: list[str],
    reason: str,
) -> None:
    """Note drift between the image host and the database for later cleanup."""
    event = {
        "action": action,
        "publicIds": public_ids,
        "reason": reason,
        "resolved": False,
        "createdAt": utcnow(),
    }
    logger.error("Reconciliation needed (%s) for %s: %s", action, public_ids, reason)
    try:
        await db["reconciliation_events"].insert_one(event)
    except Exception as e:  # the database is usually what just failed
        logger.error("Could not record reconciliation event: %s", e)
