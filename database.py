from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING

from config import settings
from errors import ValidationFailed

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(settings.DATABASE_URL)
        _db = _client[settings.DATABASE_NAME]
    return _db


def close_db() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
    _client = None
    _db = None


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await db["products"].create_index("id", unique=True)
    await db["orders"].create_index("orderId", unique=True)
    await db["sessions"].create_index("expiresAt", expireAfterSeconds=0)
    await db["notifications"].create_index([("status", ASCENDING), ("nextAttemptAt", ASCENDING)])


def utcnow() -> datetime:
    # BSON dates come back naive, so everything stored or compared stays naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_object_id(value: str, label: str = "ID") -> ObjectId:
    if not ObjectId.is_valid(value):
        raise ValidationFailed(f"Invalid {label}")
    return ObjectId(value)


def to_client(doc: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if doc is None:
        return None
    d = dict(doc)
    if "_id" in d:
        d["_id"] = str(d["_id"])
    return d


async def create_document(db: AsyncIOMotorDatabase, collection_name: str, data: dict[str, Any]) -> dict[str, Any]:
    now = utcnow()
    data_with_meta = {"createdAt": now, **data}
    result = await db[collection_name].insert_one(data_with_meta)
    data_with_meta["_id"] = result.inserted_id
    return data_with_meta


async def get_documents(
    db: AsyncIOMotorDatabase,
    collection_name: str,
    filter_dict: dict[str, Any] | None = None,
    sort: list[tuple[str, int]] | None = None,
) -> list[dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    docs = []
    async for d in cursor:
        docs.append(to_client(d))
    return docs
