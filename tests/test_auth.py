from datetime import timedelta

import pytest
from bson import ObjectId

from auth import verify_credentials
from config import settings
from conftest import ADMIN_PASSWORD, ADMIN_USER, image_file, run
from database import utcnow


def test_check_auth_without_session(client):
    response = client.get("/check-auth")
    assert response.status_code == 401
    assert response.json() == {"authenticated": False}


def test_login_sets_session_cookie(client, db):
    response = client.post("/login", json={"username": ADMIN_USER, "password": ADMIN_PASSWORD})

    assert response.status_code == 200
    assert response.json() == {"success": True}
    cookie = response.headers["set-cookie"].lower()
    assert "httponly" in cookie
    assert "secure" in cookie
    assert "samesite=none" in cookie
    assert run(db["sessions"].count_documents({"loggedIn": True})) == 1
    assert client.get("/check-auth").json() == {"authenticated": True}


@pytest.mark.parametrize(
    "username,password",
    [(ADMIN_USER, "wrong"), ("root", ADMIN_PASSWORD), ("", "")],
)
def test_bad_credentials_get_the_same_answer(client, db, username, password):
    response = client.post("/login", json={"username": username, "password": password})

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Invalid credentials"}
    assert run(db["sessions"].count_documents({})) == 0


def test_login_body_missing_password_is_400(client):
    response = client.post("/login", json={"username": ADMIN_USER})
    assert response.status_code == 400
    assert "password" in response.json()["message"]


def test_logout_destroys_session(admin_client, db):
    response = admin_client.post("/logout")

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert run(db["sessions"].count_documents({})) == 0
    assert admin_client.get("/check-auth").status_code == 401


def test_expired_session_is_rejected(admin_client, db):
    run(db["sessions"].update_many({}, {"$set": {"expiresAt": utcnow() - timedelta(minutes=1)}}))

    assert admin_client.get("/check-auth").status_code == 401
    assert run(db["sessions"].count_documents({})) == 0


def test_verify_credentials_without_configuration(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_HASH", None)
    assert verify_credentials("admin", "anything") is False


ADMIN_ROUTES = [
    ("post", "/upload"),
    ("put", "/products/P-1"),
    ("delete", "/products/P-1"),
    ("delete", f"/orders/{ObjectId()}"),
    ("post", "/admin/banners"),
    ("get", "/admin/banners"),
    ("patch", f"/admin/banners/{ObjectId()}/toggle"),
    ("delete", f"/admin/banners/{ObjectId()}"),
]


@pytest.mark.parametrize("method,path", ADMIN_ROUTES)
def test_admin_routes_reject_anonymous_requests(client, media, method, path):
    kwargs = {}
    if method in ("post", "put"):
        kwargs = {"data": {"id": "P-1", "name": "X", "price": "1", "category": "c"}, "files": {"images": image_file()}}
    response = getattr(client, method)(path, **kwargs)

    assert response.status_code == 401
    assert response.json() == {"authenticated": False}
    assert media.uploads == []
    assert media.destroyed == []
