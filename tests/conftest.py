import asyncio
import os

import bcrypt
import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient
from pymongo.errors import PyMongoError

from config import settings
from database import ensure_indexes, get_db
from errors import UpstreamError
from main import app
from media import UploadedImage, get_media
from notifications import get_senders

ADMIN_USER = "admin"
ADMIN_PASSWORD = "correct horse battery"


def run(coro):
    return asyncio.run(coro)


class FakeMedia:
    """Records uploads and deletions instead of calling the image host."""

    def __init__(self):
        self.uploads = []
        self.destroyed = []
        self.fail_upload = False
        self.fail_destroy = False

    async def upload(self, path, folder, transformation):
        if self.fail_upload:
            raise UpstreamError("Image upload failed", "host unavailable")
        assert os.path.exists(path)
        public_id = f"{folder}/img{len(self.uploads) + 1}"
        self.uploads.append({"path": path, "folder": folder, "transformation": transformation})
        return UploadedImage(
            url=f"https://res.example.com/image/upload/{public_id}.jpg",
            public_id=public_id,
            bytes=os.path.getsize(path),
        )

    async def destroy(self, public_id):
        if self.fail_destroy:
            raise UpstreamError("Image deletion failed", "host unavailable")
        self.destroyed.append(public_id)


class FailingWrites:
    """Wraps a database so one method on one collection raises a driver error."""

    def __init__(self, db, collection, method):
        self.db = db
        self.collection = collection
        self.method = method

    def __getitem__(self, name):
        coll = self.db[name]
        if name != self.collection:
            return coll
        return _FailingCollection(coll, self.method)

    def __getattr__(self, name):
        return getattr(self.db, name)


class _FailingCollection:
    def __init__(self, coll, method):
        self.coll = coll
        self.method = method

    def __getattr__(self, name):
        if name != self.method:
            return getattr(self.coll, name)

        async def fail(*args, **kwargs):
            raise PyMongoError("write concern timeout")

        return fail


def fail_writes(db, collection, method):
    app.dependency_overrides[get_db] = lambda: FailingWrites(db, collection, method)


class RecordingSender:
    def __init__(self):
        self.orders = []
        self.fail = False

    async def __call__(self, order):
        if self.fail:
            raise ConnectionError("smtp down")
        self.orders.append(order)


@pytest.fixture
def db():
    database = AsyncMongoMockClient()["storefront_test"]
    run(ensure_indexes(database))
    return database


@pytest.fixture
def media():
    return FakeMedia()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(path))
    return path


@pytest.fixture
def client(db, media, sender, upload_dir, monkeypatch):
    hashed = bcrypt.hashpw(ADMIN_PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")
    monkeypatch.setattr(settings, "ADMIN_USER", ADMIN_USER)
    monkeypatch.setattr(settings, "ADMIN_HASH", hashed)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_media] = lambda: media
    app.dependency_overrides[get_senders] = lambda: {"email": sender}
    # https so the Secure session cookie is sent back
    yield TestClient(app, base_url="https://testserver")
    app.dependency_overrides.clear()


@pytest.fixture
def admin_client(client):
    response = client.post("/login", json={"username": ADMIN_USER, "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return client


def image_file(name="photo.jpg", size=1024, content_type="image/jpeg"):
    return (name, b"\xff" * size, content_type)


def order_payload(**overrides):
    payload = {
        "orderId": "ORD-1001",
        "name": "Ayesha Khan",
        "contact": "03001234567",
        "city": "Lahore",
        "houseNo": "12",
        "Block": "C",
        "Area": "Gulberg",
        "landmark": "Near the park",
        "paymentMethod": "Cash on Delivery",
        "cartItems": [
            {"name": "Stethoscope", "price": 1000, "quantity": 2, "selectedColor": "Black"},
            {"name": "Surgical Gloves", "price": 500, "quantity": 1, "selectedSize": "M"},
        ],
        "totalAmount": 2650,
    }
    payload.update(overrides)
    return payload
