from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import UploadFile
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from config import settings
from database import create_document, get_documents, parse_object_id, to_client, utcnow
from errors import NotFound, UpstreamError, ValidationFailed
from media import BANNER_TRANSFORMATION, MediaStore, record_reconciliation, stage_images, upload_staged
from schemas import BannerIn

logger = logging.getLogger(__name__)

BANNERS = "banners"
NEWEST_FIRST = [("createdAt", DESCENDING)]


def parse_date(value: Optional[str], field: str) -> Optional[datetime]:
    if not value or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise ValidationFailed(f"Invalid date for field: {field}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_banner_form(url: Optional[str], start_date: Optional[str], end_date: Optional[str]) -> BannerIn:
    banner = BannerIn(
        link=(url or "").strip(),
        startDate=parse_date(start_date, "startDate"),
        endDate=parse_date(end_date, "endDate"),
    )
    if banner.startDate and banner.endDate and banner.endDate < banner.startDate:
        raise ValidationFailed("endDate must not be before startDate")
    return banner


def visible_filter(now: datetime) -> dict[str, Any]:
    # each window bound is optional
    return {
        "active": True,
        "$and": [
            {"$or": [{"startDate": {"$exists": False}}, {"startDate": None}, {"startDate": {"$lte": now}}]},
            {"$or": [{"endDate": {"$exists": False}}, {"endDate": None}, {"endDate": {"$gte": now}}]},
        ],
    }


async def create_banner(
    db: AsyncIOMotorDatabase,
    media: MediaStore,
    banner: BannerIn,
    image: Optional[UploadFile],
) -> dict[str, Any]:
    if image is None or not image.filename:
        raise ValidationFailed("No image uploaded")
    staged = await stage_images([image], 1)
    uploaded = (await upload_staged(media, staged, settings.BANNER_IMAGE_FOLDER, BANNER_TRANSFORMATION))[0]

    doc = {
        "imageUrl": uploaded.url,
        "publicId": uploaded.public_id,
        **banner.model_dump(),
        "active": True,
    }
    try:
        saved = await create_document(db, BANNERS, doc)
    except PyMongoError as e:
        await record_reconciliation(db, "destroy_images", [uploaded.public_id], f"banner not saved: {e}")
        raise UpstreamError("Banner upload failed", str(e)) from e
    logger.info("Banner saved: %s", saved["_id"])
    return to_client(saved)


async def list_public_banners(db: AsyncIOMotorDatabase, now: Optional[datetime] = None) -> list[dict[str, Any]]:
    try:
        return await get_documents(db, BANNERS, visible_filter(now or utcnow()), sort=NEWEST_FIRST)
    except PyMongoError as e:
        raise UpstreamError("Banner fetch failed", str(e)) from e


async def list_all_banners(db: AsyncIOMotorDatabase) -> list[dict[str, Any]]:
    try:
        return await get_documents(db, BANNERS, sort=NEWEST_FIRST)
    except PyMongoError as e:
        raise UpstreamError("Banner fetch failed", str(e)) from e


async def toggle_banner(db: AsyncIOMotorDatabase, banner_id: str) -> bool:
    oid = parse_object_id(banner_id, "banner ID")
    try:
        banner = await db[BANNERS].find_one({"_id": oid})
        if not banner:
            raise NotFound("Banner not found")
        active = not banner.get("active", False)
        await db[BANNERS].update_one({"_id": oid}, {"$set": {"active": active}})
    except PyMongoError as e:
        raise UpstreamError("Banner toggle failed", str(e)) from e
    logger.info("Banner %s active=%s", banner_id, active)
    return active


async def delete_banner(db: AsyncIOMotorDatabase, media: MediaStore, banner_id: str) -> None:
    """Remove the remote image first; the record goes only after that succeeds."""
    oid = parse_object_id(banner_id, "banner ID")
    try:
        banner = await db[BANNERS].find_one({"_id": oid})
    except PyMongoError as e:
        raise UpstreamError("Banner delete failed", str(e)) from e
    if not banner:
        raise NotFound("Banner not found")

    await media.destroy(banner["publicId"])
    try:
        await db[BANNERS].delete_one({"_id": oid})
    except PyMongoError as e:
        await record_reconciliation(db, "delete_banner_record", [banner["publicId"]], f"banner {banner_id}: {e}")
        raise UpstreamError("Banner delete failed", str(e)) from e
    logger.info("Banner deleted: %s", banner_id)
