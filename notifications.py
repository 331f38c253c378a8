"""Order notifications through a durable outbox.

Placing an order only enqueues one task per enabled channel in the
``notifications`` collection. Tasks are delivered by ``dispatch_due``, which
runs right after the order response and from the background worker, with
exponential backoff between attempts.
"""

from __future__ import annotations
import asyncio
import html
import logging
import re
import smtplib
from datetime import timedelta
from email.message import EmailMessage
from typing import Any, Awaitable, Callable, Optional

import httpx
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

from config import settings
from database import utcnow

logger = logging.getLogger(__name__)

NOTIFICATIONS = "notifications"
PENDING = "pending"
SENDING = "sending"
SENT = "sent"
FAILED = "failed"

Sender = Callable[[dict[str, Any]], Awaitable[None]]


def esc(value: Any) -> str:
    return html.escape(str(value if value is not None else ""))


def build_order_email(order: dict[str, Any]) -> EmailMessage:
    items_html = "".join(
        f"<li>{esc(item.get('name'))} &times; {esc(item.get('quantity'))} &mdash; Rs {esc(item.get('price'))}</li>"
        for item in order.get("cartItems", [])
    )
    msg = EmailMessage()
    msg["Subject"] = f"New Order Received - {order.get('orderId') or 'No ID'}"
    if settings.SMTP_USER:
        msg["From"] = f'"{settings.MAIL_SENDER_NAME}" <{settings.SMTP_USER}>'
    if settings.ADMIN_EMAIL:
        msg["To"] = settings.ADMIN_EMAIL
    msg.set_content(f"New order {order.get('orderId')} for Rs {order.get('totalAmount')}")
    msg.add_alternative(
        f"""
        <h2>New Order Received</h2>
        <p><strong>Order ID:</strong> {esc(order.get('orderId'))}</p>
        <p><strong>Name:</strong> {esc(order.get('name'))}</p>
        <p><strong>Contact:</strong> {esc(order.get('contact'))}</p>
        <p><strong>City:</strong> {esc(order.get('city'))}</p>
        <p><strong>Payment Method:</strong> {esc(order.get('paymentMethod'))}</p>
        <h3>Order Items</h3>
        <ul>{items_html}</ul>
        <h3>Total Amount: Rs {esc(order.get('totalAmount'))}</h3>
        """,
        subtype="html",
    )
    return msg


def _smtp_send(msg: EmailMessage) -> None:
    with smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as smtp:
        smtp.login(settings.SMTP_USER, settings.SMTP_PASS or "")
        smtp.send_message(msg)


async def send_order_email(order: dict[str, Any]) -> None:
    await run_in_threadpool(_smtp_send, build_order_email(order))


def build_whatsapp_text(order: dict[str, Any]) -> str:
    return (
        "*New Order Received*\n\n"
        f"Order ID: {order.get('orderId')}\n"
        f"Name: {order.get('name')}\n"
        f"Contact: {order.get('contact')}\n"
        f"City: {order.get('city')}\n"
        f"Total: Rs. {order.get('totalAmount')}\n"
        f"Payment: {order.get('paymentMethod')}\n\n"
        f"Items: {len(order.get('cartItems', []))}\n\n"
        "Login to admin panel for details."
    )


async def send_order_whatsapp(order: dict[str, Any]) -> None:
    url = f"https://graph.facebook.com/{settings.WHATSAPP_API_VERSION}/{settings.WHATSAPP_PHONE_ID}/messages"
    payload = {
        "messaging_product": "whatsapp",
        "to": re.sub(r"[^0-9]", "", settings.ADMIN_PHONE or ""),
        "type": "text",
        "text": {"body": build_whatsapp_text(order)},
    }
    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {settings.WHATSAPP_TOKEN}"},
        )
        response.raise_for_status()


def default_senders() -> dict[str, Sender]:
    senders: dict[str, Sender] = {}
    if settings.email_enabled:
        senders["email"] = send_order_email
    if settings.whatsapp_enabled:
        senders["whatsapp"] = send_order_whatsapp
    return senders


def get_senders() -> dict[str, Sender]:
    return default_senders()


async def enqueue_order_notifications(
    db: AsyncIOMotorDatabase,
    order: dict[str, Any],
    channels: list[str],
) -> int:
    """Queue one task per channel; failures are logged and the tasks dropped."""
    now = utcnow()
    snapshot = {k: v for k, v in order.items() if k != "_id"}
    tasks = [
        {
            "kind": kind,
            "orderRef": order.get("_id"),
            "orderId": order.get("orderId"),
            "order": snapshot,
            "status": PENDING,
            "attempts": 0,
            "nextAttemptAt": now,
            "lastError": None,
            "createdAt": now,
            "updatedAt": now,
        }
        for kind in channels
    ]
    if not tasks:
        return 0
    try:
        await db[NOTIFICATIONS].insert_many(tasks)
    except PyMongoError as e:
        logger.error("Dropping notifications for order %s: %s", order.get("orderId"), e)
        return 0
    return len(tasks)


def backoff_delay(attempts: int, base_seconds: Optional[float] = None) -> timedelta:
    base = settings.NOTIFICATION_BACKOFF_SECONDS if base_seconds is None else base_seconds
    return timedelta(seconds=base * 2 ** max(attempts - 1, 0))


async def _claim_next(db: AsyncIOMotorDatabase, now) -> Optional[dict[str, Any]]:
    return await db[NOTIFICATIONS].find_one_and_update(
        {"status": PENDING, "nextAttemptAt": {"$lte": now}},
        {"$set": {"status": SENDING, "updatedAt": now}},
        sort=[("nextAttemptAt", ASCENDING)],
        return_document=ReturnDocument.AFTER,
    )


async def dispatch_due(
    db: AsyncIOMotorDatabase,
    senders: dict[str, Sender],
    now=None,
    limit: int = 50,
    max_attempts: Optional[int] = None,
) -> int:
    """Deliver due tasks; returns how many were sent. Never raises on delivery errors."""
    now = now or utcnow()
    max_attempts = max_attempts or settings.NOTIFICATION_MAX_ATTEMPTS
    sent = 0
    for _ in range(limit):
        task = await _claim_next(db, now)
        if task is None:
            break
        sender = senders.get(task["kind"])
        attempts = task.get("attempts", 0) + 1
        try:
            if sender is None:
                raise LookupError(f"no sender configured for {task['kind']}")
            await sender(task["order"])
        except Exception as e:
            status = FAILED if attempts >= max_attempts or sender is None else PENDING
            logger.error(
                "Notification %s for order %s failed (attempt %d): %s",
                task["kind"], task.get("orderId"), attempts, e,
            )
            await db[NOTIFICATIONS].update_one(
                {"_id": task["_id"]},
                {"$set": {
                    "status": status,
                    "attempts": attempts,
                    "lastError": str(e),
                    "nextAttemptAt": now + backoff_delay(attempts),
                    "updatedAt": now,
                }},
            )
            continue
        await db[NOTIFICATIONS].update_one(
            {"_id": task["_id"]},
            {"$set": {"status": SENT, "attempts": attempts, "lastError": None, "updatedAt": now}},
        )
        logger.info("Notification %s sent for order %s", task["kind"], task.get("orderId"))
        sent += 1
    return sent


async def dispatch_after_response(db: AsyncIOMotorDatabase, senders: dict[str, Sender]) -> None:
    try:
        await dispatch_due(db, senders)
    except PyMongoError as e:
        logger.error("Notification dispatch failed: %s", e)


class NotificationWorker:
    """Polls the outbox in the background for the lifetime of the app."""

    def __init__(self, db: AsyncIOMotorDatabase, senders: dict[str, Sender], poll_seconds: float):
        self.db = db
        self.senders = senders
        self.poll_seconds = poll_seconds
        self._task: Optional[asyncio.Task] = None

    async def requeue_stale(self) -> None:
        # tasks claimed by a process that died mid-delivery
        result = await self.db[NOTIFICATIONS].update_many(
            {"status": SENDING},
            {"$set": {"status": PENDING, "updatedAt": utcnow()}},
        )
        if result.modified_count:
            logger.info("Requeued %d interrupted notifications", result.modified_count)

    async def _run(self) -> None:
        while True:
            try:
                await dispatch_due(self.db, self.senders)
            except PyMongoError as e:
                logger.error("Notification worker pass failed: %s", e)
            await asyncio.sleep(self.poll_seconds)

    async def start(self) -> None:
        try:
            await self.requeue_stale()
        except PyMongoError as e:
            logger.error("Could not requeue notifications: %s", e)
        self._task = asyncio.create_task(self._run())
        logger.info("Notification worker started (channels: %s)", ", ".join(self.senders) or "none")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
