from __future__ import annotations
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "storefront"

    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["*"]

    SESSION_COOKIE_NAME: str = "sid"
    SESSION_TTL_SECONDS: int = 60 * 60
    SESSION_COOKIE_SECURE: bool = True

    ADMIN_USER: Optional[str] = None
    ADMIN_HASH: Optional[str] = None

    CLOUDINARY_CLOUD_NAME: Optional[str] = None
    CLOUDINARY_API_KEY: Optional[str] = None
    CLOUDINARY_API_SECRET: Optional[str] = None
    PRODUCT_IMAGE_FOLDER: str = "myr-surgical"
    BANNER_IMAGE_FOLDER: str = "myr-banners"
    UPLOAD_DIR: str = "uploads"
    MAX_IMAGE_BYTES: int = 10 * 1024 * 1024
    MAX_PRODUCT_IMAGES: int = 10

    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 465
    SMTP_USER: Optional[str] = None
    SMTP_PASS: Optional[str] = None
    ADMIN_EMAIL: Optional[str] = None
    MAIL_SENDER_NAME: str = "MYR Surgical Orders"

    WHATSAPP_PHONE_ID: Optional[str] = None
    WHATSAPP_TOKEN: Optional[str] = None
    WHATSAPP_API_VERSION: str = "v19.0"
    ADMIN_PHONE: Optional[str] = None

    NOTIFICATION_WORKER_ENABLED: bool = True
    NOTIFICATION_POLL_SECONDS: float = 15
    NOTIFICATION_MAX_ATTEMPTS: int = 5
    NOTIFICATION_BACKOFF_SECONDS: float = 30

    STORE_NAME: str = "MYR SURGICAL"
    CURRENCY_LABEL: str = "Rs."
    DELIVERY_CHARGE: float = 150

    @property
    def email_enabled(self) -> bool:
        return bool(self.SMTP_HOST and self.SMTP_USER and self.ADMIN_EMAIL)

    @property
    def whatsapp_enabled(self) -> bool:
        return bool(self.WHATSAPP_PHONE_ID and self.WHATSAPP_TOKEN and self.ADMIN_PHONE)


settings = Settings()
