from __future__ import annotations
import logging
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import create_document, get_documents, parse_object_id
from errors import NotFound, UpstreamError, ValidationFailed
from schemas import OrderIn

logger = logging.getLogger(__name__)

ORDERS = "orders"
REQUIRED_FIELDS = (
    "orderId",
    "name",
    "contact",
    "city",
    "houseNo",
    "Block",
    "Area",
    "landmark",
    "paymentMethod",
    "cartItems",
    "totalAmount",
)
REQUIRED_ITEM_FIELDS = ("name", "price", "quantity")


def validate_order_payload(payload: Any) -> OrderIn:
    """Check an incoming order body and build the typed record.

    Fields are checked in a fixed order and the first missing (or empty)
    one is reported, so clients always get a single actionable message.
    """
    if not isinstance(payload, dict):
        raise ValidationFailed("Order body must be a JSON object")

    for field in REQUIRED_FIELDS:
        if not payload.get(field):
            logger.warning("Order rejected, missing %s", field)
            raise ValidationFailed(f"Missing required field: {field}")

    items = payload["cartItems"]
    if not isinstance(items, list) or not items:
        logger.warning("Order rejected, invalid cartItems")
        raise ValidationFailed("Cart items must be a non-empty array")
    for item in items:
        if not isinstance(item, dict) or not all(item.get(f) for f in REQUIRED_ITEM_FIELDS):
            logger.warning("Order rejected, invalid cart item: %s", item)
            raise ValidationFailed("Each cart item must have name, price, and quantity")

    try:
        return OrderIn.model_validate(payload)
    except ValidationError as e:
        field = ".".join(str(p) for p in e.errors()[0]["loc"])
        raise ValidationFailed(f"Invalid value for field: {field}")


async def create_order(db: AsyncIOMotorDatabase, order: OrderIn) -> dict[str, Any]:
    try:
        if await db[ORDERS].find_one({"orderId": order.orderId}):
            logger.warning("Duplicate orderId %s", order.orderId)
            raise ValidationFailed("Order ID already exists")
        saved = await create_document(db, ORDERS, order.model_dump())
    except DuplicateKeyError:
        logger.warning("Duplicate orderId %s", order.orderId)
        raise ValidationFailed("Order ID already exists")
    except PyMongoError as e:
        logger.error("Saving order %s failed: %s", order.orderId, e)
        raise UpstreamError(f"Order failed: {e}", str(e)) from e
    logger.info("Order saved: %s (%s)", saved["_id"], order.orderId)
    return saved


async def list_orders(db: AsyncIOMotorDatabase) -> list[dict[str, Any]]:
    try:
        return await get_documents(db, ORDERS)
    except PyMongoError as e:
        raise UpstreamError("Fetch failed", str(e)) from e


async def get_order(db: AsyncIOMotorDatabase, order_id: str) -> dict[str, Any]:
    oid = parse_object_id(order_id, "order ID")
    try:
        doc = await db[ORDERS].find_one({"_id": oid})
    except PyMongoError as e:
        raise UpstreamError("Failed to fetch order", str(e)) from e
    if not doc:
        logger.warning("Order not found: %s", order_id)
        raise NotFound("Order not found")
    return doc


async def delete_order(db: AsyncIOMotorDatabase, order_id: str) -> None:
    oid = parse_object_id(order_id, "order ID")
    try:
        result = await db[ORDERS].delete_one({"_id": oid})
    except PyMongoError as e:
        raise UpstreamError("Failed to delete order", str(e)) from e
    if result.deleted_count == 0:
        raise NotFound("Order not found")
    logger.info("Order deleted: %s", order_id)
