from __future__ import annotations
import logging
from typing import Any, Optional

from fastapi import UploadFile
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import settings
from database import create_document, get_documents, to_client, utcnow
from errors import NotFound, UpstreamError, ValidationFailed
from media import (
    PRODUCT_TRANSFORMATION,
    MediaStore,
    UploadedImage,
    public_id_from_url,
    record_reconciliation,
    stage_images,
    upload_staged,
)
from schemas import ProductIn

logger = logging.getLogger(__name__)

PRODUCTS = "products"
REQUIRED_FIELDS = ("id", "name", "price", "category")


def split_list(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def parse_product_form(form: dict[str, Optional[str]]) -> ProductIn:
    missing = [f for f in REQUIRED_FIELDS if not (form.get(f) or "").strip()]
    if missing:
        logger.warning("Product rejected, missing fields: %s", missing)
        raise ValidationFailed(f"Missing required fields: {', '.join(missing)}")

    numbers = {}
    for field in ("price", "discount"):
        raw = (form.get(field) or "").strip()
        if not raw:
            continue
        try:
            numbers[field] = float(raw)
        except ValueError:
            raise ValidationFailed(f"Invalid number for field: {field}")

    try:
        return ProductIn(
            id=form["id"].strip(),
            name=form["name"].strip(),
            category=form["category"].strip(),
            mostSell=form.get("mostSell") == "true",
            available=form.get("available") == "true",
            colors=split_list(form.get("colors")),
            sizes=split_list(form.get("sizes")),
            description=form.get("description") or "",
            **numbers,
        )
    except ValidationError as e:
        field = ".".join(str(p) for p in e.errors()[0]["loc"])
        raise ValidationFailed(f"Invalid value for field: {field}")


async def _upload_images(media: MediaStore, images: list[UploadFile]) -> list[UploadedImage]:
    staged = await stage_images(images, settings.MAX_PRODUCT_IMAGES)
    if not staged:
        return []
    return await upload_staged(media, staged, settings.PRODUCT_IMAGE_FOLDER, PRODUCT_TRANSFORMATION)


async def list_products(db: AsyncIOMotorDatabase) -> list[dict[str, Any]]:
    try:
        return await get_documents(db, PRODUCTS)
    except PyMongoError as e:
        logger.error("Loading products failed: %s", e)
        raise UpstreamError("Error loading products", str(e)) from e


async def create_product(
    db: AsyncIOMotorDatabase,
    media: MediaStore,
    product: ProductIn,
    images: list[UploadFile],
) -> dict[str, Any]:
    if await db[PRODUCTS].find_one({"id": product.id}):
        raise ValidationFailed("Product id already exists")

    uploaded = await _upload_images(media, images)
    if not uploaded:
        logger.warning("Product %s created without images", product.id)

    now = utcnow()
    doc = {
        **product.model_dump(),
        "images": [img.url for img in uploaded],
        "imageIds": [img.public_id for img in uploaded],
        "updatedAt": now,
    }
    try:
        saved = await create_document(db, PRODUCTS, doc)
    except DuplicateKeyError:
        await record_reconciliation(db, "destroy_images", doc["imageIds"], f"duplicate product {product.id}")
        raise ValidationFailed("Product id already exists")
    except PyMongoError as e:
        await record_reconciliation(db, "destroy_images", doc["imageIds"], f"product {product.id} not saved: {e}")
        raise UpstreamError("Failed to upload product", str(e)) from e

    logger.info("Product saved: %s (%d images)", product.id, len(uploaded))
    return to_client(saved)


def _stored_public_ids(existing: dict[str, Any]) -> list[str]:
    if existing.get("imageIds"):
        return list(existing["imageIds"])
    urls = existing.get("images") or ([existing["image"]] if existing.get("image") else [])
    return [public_id_from_url(u, settings.PRODUCT_IMAGE_FOLDER) for u in urls]


async def update_product(
    db: AsyncIOMotorDatabase,
    media: MediaStore,
    product_id: str,
    product: ProductIn,
    images: list[UploadFile],
) -> dict[str, Any]:
    existing = await db[PRODUCTS].find_one({"id": product_id})
    if not existing:
        logger.warning("Product not found: %s", product_id)
        raise NotFound("Product not found")
    if product.id != product_id and await db[PRODUCTS].find_one({"id": product.id}):
        raise ValidationFailed("Product id already exists")

    update_fields: dict[str, Any] = {**product.model_dump(), "updatedAt": utcnow()}
    uploaded = await _upload_images(media, images)
    replaced: list[str] = []
    if uploaded:
        update_fields["images"] = [img.url for img in uploaded]
        update_fields["imageIds"] = [img.public_id for img in uploaded]
        replaced = _stored_public_ids(existing)
    else:
        logger.info("No new images for %s, keeping existing ones", product_id)

    try:
        await db[PRODUCTS].update_one({"_id": existing["_id"]}, {"$set": update_fields})
    except PyMongoError as e:
        if uploaded:
            await record_reconciliation(db, "destroy_images", update_fields["imageIds"], f"product {product_id} not updated: {e}")
        raise UpstreamError("Update failed", str(e)) from e

    for public_id in replaced:
        try:
            await media.destroy(public_id)
        except UpstreamError as e:
            await record_reconciliation(db, "destroy_images", [public_id], f"replaced image not deleted: {e.detail}")

    logger.info("Product updated: %s", product_id)
    updated = {**existing, **update_fields}
    return to_client(updated)


async def delete_product(db: AsyncIOMotorDatabase, product_id: str) -> None:
    try:
        result = await db[PRODUCTS].delete_one({"id": product_id})
    except PyMongoError as e:
        raise UpstreamError("Delete failed", str(e)) from e
    if result.deleted_count == 0:
        raise NotFound("Not found")
    logger.info("Product deleted: %s", product_id)
