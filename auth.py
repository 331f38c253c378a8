"""Admin login and the session-backed guard for admin routes."""

from __future__ import annotations
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import bcrypt
from fastapi import Depends, Request, Response
from motor.motor_asyncio import AsyncIOMotorDatabase

from config import settings
from database import get_db, utcnow
from errors import InvalidCredentials, NotAuthenticated

logger = logging.getLogger(__name__)

SESSIONS = "sessions"


@dataclass(frozen=True)
class AuthContext:
    """Proof of a logged-in admin, handed to every admin handler."""

    session_id: str
    username: str


def verify_credentials(username: str, password: str) -> bool:
    if not settings.ADMIN_USER or not settings.ADMIN_HASH:
        logger.warning("Admin credentials are not configured")
        return False
    if username != settings.ADMIN_USER:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), settings.ADMIN_HASH.encode("utf-8"))
    except ValueError:
        logger.error("ADMIN_HASH is not a valid bcrypt hash")
        return False


def set_session_cookie(response: Response, session_id: str) -> None:
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        session_id,
        max_age=settings.SESSION_TTL_SECONDS,
        path="/",
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="none",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        settings.SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="none",
    )


async def login(db: AsyncIOMotorDatabase, username: str, password: str) -> str:
    if not verify_credentials(username, password):
        logger.warning("Failed admin login attempt for %r", username)
        raise InvalidCredentials()
    now = utcnow()
    session_id = secrets.token_urlsafe(32)
    await db[SESSIONS].insert_one({
        "_id": session_id,
        "loggedIn": True,
        "username": username,
        "createdAt": now,
        "expiresAt": now + timedelta(seconds=settings.SESSION_TTL_SECONDS),
    })
    logger.info("Admin %s logged in", username)
    return session_id


async def logout(db: AsyncIOMotorDatabase, session_id: Optional[str]) -> None:
    if session_id:
        await db[SESSIONS].delete_one({"_id": session_id})


async def load_session(db: AsyncIOMotorDatabase, session_id: Optional[str]) -> Optional[AuthContext]:
    if not session_id:
        return None
    session = await db[SESSIONS].find_one({"_id": session_id})
    if not session or not session.get("loggedIn"):
        return None
    now = utcnow()
    if session.get("expiresAt") and session["expiresAt"] <= now:
        await db[SESSIONS].delete_one({"_id": session_id})
        return None
    # rolling expiry
    await db[SESSIONS].update_one(
        {"_id": session_id},
        {"$set": {"expiresAt": now + timedelta(seconds=settings.SESSION_TTL_SECONDS)}},
    )
    return AuthContext(session_id=session_id, username=session.get("username", ""))


async def optional_admin(request: Request, db: AsyncIOMotorDatabase = Depends(get_db)) -> Optional[AuthContext]:
    return await load_session(db, request.cookies.get(settings.SESSION_COOKIE_NAME))


async def require_admin(response: Response, auth: Optional[AuthContext] = Depends(optional_admin)) -> AuthContext:
    if auth is None:
        raise NotAuthenticated()
    set_session_cookie(response, auth.session_id)
    return auth
