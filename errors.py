from __future__ import annotations
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def body(self) -> dict[str, Any]:
        return {"success": False, "message": self.message}


class ValidationFailed(ApiError):
    status_code = 400


class NotFound(ApiError):
    status_code = 404


class NotAuthenticated(ApiError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)

    def body(self) -> dict[str, Any]:
        return {"authenticated": False}


class InvalidCredentials(ApiError):
    status_code = 401

    def __init__(self):
        super().__init__("Invalid credentials")


class UpstreamError(ApiError):
    """A collaborator (database, image host) failed; `detail` carries its error text."""

    status_code = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail

    def body(self) -> dict[str, Any]:
        return {"success": False, "message": self.message, "error": self.detail}


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.body())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    field = None
    if errors and errors[0].get("type") != "json_invalid":
        loc = [str(p) for p in errors[0].get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(loc) or None
    message = f"Invalid or missing field: {field}" if field else "Invalid request body"
    logger.warning("Request validation failed on %s %s: %s", request.method, request.url.path, message)
    return JSONResponse(status_code=400, content={"success": False, "message": message})


async def database_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"success": False, "message": "Database error", "error": str(exc)})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(PyMongoError, database_error_handler)
