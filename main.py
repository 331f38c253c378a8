from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import BackgroundTasks, Body, Depends, FastAPI, File, Form, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

import auth
import banners
import catalog
import orders
from auth import AuthContext, require_admin
from config import settings
from database import close_db, ensure_indexes, get_db, to_client
from errors import register_error_handlers
from media import MediaStore, get_media
from notifications import (
    NotificationWorker,
    Sender,
    default_senders,
    dispatch_after_response,
    enqueue_order_notifications,
    get_senders,
)
from receipts import iter_receipt
from schemas import LoginRequest, ProductIn

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("storefront")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting storefront API")
    db = await get_db()
    await ensure_indexes(db)
    worker = None
    if settings.NOTIFICATION_WORKER_ENABLED:
        worker = NotificationWorker(db, default_senders(), settings.NOTIFICATION_POLL_SECONDS)
        await worker.start()
    yield
    logger.info("Shutting down storefront API")
    if worker is not None:
        await worker.stop()
    close_db()


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Cookie", "Cache-Control"],
)
register_error_handlers(app)


@app.middleware("http")
async def no_store(request: Request, call_next):
    logger.info("Request: %s %s", request.method, request.url.path)
    response = await call_next(request)
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
    return response


@app.get("/")
async def root():
    return {"message": "Server is running"}


@app.get("/health")
async def health(db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        await db.command("ping")
    except Exception as e:
        logger.error("Health check failed: %s", e)
        return JSONResponse(status_code=503, content={"status": "ERROR", "message": "MongoDB connection failed"})
    return {"status": "OK"}


# Auth

@app.post("/login")
async def login(payload: LoginRequest, response: Response, db: AsyncIOMotorDatabase = Depends(get_db)):
    session_id = await auth.login(db, payload.username, payload.password)
    auth.set_session_cookie(response, session_id)
    return {"success": True}


@app.post("/logout")
async def logout(request: Request, response: Response, db: AsyncIOMotorDatabase = Depends(get_db)):
    await auth.logout(db, request.cookies.get(settings.SESSION_COOKIE_NAME))
    auth.clear_session_cookie(response)
    return {"success": True}


@app.get("/check-auth")
async def check_auth(admin: Optional[AuthContext] = Depends(auth.optional_admin)):
    if admin is None:
        return JSONResponse(status_code=401, content={"authenticated": False})
    return {"authenticated": True}


# Products

async def product_form(
    id: Optional[str] = Form(None),
    name: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    discount: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    mostSell: Optional[str] = Form(None),
    available: Optional[str] = Form(None),
    colors: Optional[str] = Form(None),
    sizes: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
) -> ProductIn:
    return catalog.parse_product_form({
        "id": id,
        "name": name,
        "price": price,
        "discount": discount,
        "category": category,
        "mostSell": mostSell,
        "available": available,
        "colors": colors,
        "sizes": sizes,
        "description": description,
    })


@app.post("/upload")
async def upload_product(
    admin: AuthContext = Depends(require_admin),
    product: ProductIn = Depends(product_form),
    images: Optional[list[UploadFile]] = File(None),
    db: AsyncIOMotorDatabase = Depends(get_db),
    media: MediaStore = Depends(get_media),
):
    saved = await catalog.create_product(db, media, product, images or [])
    return {"message": "Product saved", "product": saved}


@app.get("/products")
async def get_products(db: AsyncIOMotorDatabase = Depends(get_db)):
    return await catalog.list_products(db)


@app.put("/products/{product_id}")
async def update_product(
    product_id: str,
    admin: AuthContext = Depends(require_admin),
    product: ProductIn = Depends(product_form),
    images: Optional[list[UploadFile]] = File(None),
    db: AsyncIOMotorDatabase = Depends(get_db),
    media: MediaStore = Depends(get_media),
):
    updated = await catalog.update_product(db, media, product_id, product, images or [])
    return {"message": "Product updated", "product": updated}


@app.delete("/products/{product_id}")
async def delete_product(
    product_id: str,
    admin: AuthContext = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    await catalog.delete_product(db, product_id)
    return {"message": "Product deleted"}


# Orders

@app.post("/orders", status_code=201)
async def create_order(
    background_tasks: BackgroundTasks,
    payload: Any = Body(None),
    db: AsyncIOMotorDatabase = Depends(get_db),
    senders: dict[str, Sender] = Depends(get_senders),
):
    order = orders.validate_order_payload(payload)
    saved = await orders.create_order(db, order)
    if await enqueue_order_notifications(db, saved, list(senders)):
        background_tasks.add_task(dispatch_after_response, db, senders)
    return {"success": True, "message": "Order placed", "orderId": str(saved["_id"])}


@app.get("/orders")
async def get_orders(db: AsyncIOMotorDatabase = Depends(get_db)):
    return await orders.list_orders(db)


@app.get("/orders/{order_id}")
async def get_order(order_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return to_client(await orders.get_order(db, order_id))


@app.delete("/orders/{order_id}")
async def delete_order(
    order_id: str,
    admin: AuthContext = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    await orders.delete_order(db, order_id)
    return {"message": "Order deleted"}


async def _receipt_response(db: AsyncIOMotorDatabase, order_id: str, disposition: str) -> StreamingResponse:
    order = await orders.get_order(db, order_id)
    return StreamingResponse(
        iter_receipt(order),
        media_type="application/pdf",
        headers={"Content-Disposition": f"{disposition}; filename=receipt-{order_id}.pdf"},
    )


@app.get("/orders/{order_id}/receipt")
async def download_receipt(order_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await _receipt_response(db, order_id, "attachment")


@app.get("/orders/{order_id}/receipt/preview")
async def preview_receipt(order_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await _receipt_response(db, order_id, "inline")


# Banners

@app.post("/admin/banners")
async def upload_banner(
    admin: AuthContext = Depends(require_admin),
    image: Optional[UploadFile] = File(None),
    url: Optional[str] = Form(None),
    startDate: Optional[str] = Form(None),
    endDate: Optional[str] = Form(None),
    db: AsyncIOMotorDatabase = Depends(get_db),
    media: MediaStore = Depends(get_media),
):
    banner = banners.parse_banner_form(url, startDate, endDate)
    saved = await banners.create_banner(db, media, banner, image)
    return {"success": True, "message": "Banner uploaded successfully", "banner": saved}


@app.get("/banners")
async def get_banners(db: AsyncIOMotorDatabase = Depends(get_db)):
    return await banners.list_public_banners(db)


@app.get("/admin/banners")
async def get_all_banners(
    admin: AuthContext = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return await banners.list_all_banners(db)


@app.patch("/admin/banners/{banner_id}/toggle")
async def toggle_banner(
    banner_id: str,
    admin: AuthContext = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    active = await banners.toggle_banner(db, banner_id)
    return {"success": True, "active": active}


@app.delete("/admin/banners/{banner_id}")
async def delete_banner(
    banner_id: str,
    admin: AuthContext = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
    media: MediaStore = Depends(get_media),
):
    await banners.delete_banner(db, media, banner_id)
    return {"success": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
