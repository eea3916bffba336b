"""
Error taxonomy shared by every handler, plus the FastAPI handlers that turn
it into `{"success": false, "message": ...}` responses.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message}
        body.update({k: v for k, v in self.extra.items() if v is not None})
        return body


class ValidationError(AppError):
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, **extra: Any):
        super().__init__(message, field=field, **extra)
        self.field = field


class AuthError(AppError):
    status_code = 401


class PermissionDenied(AuthError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class UpstreamError(AppError):
    status_code = 500


# Cart / order specific failures

class InsufficientStock(ValidationError):
    def __init__(self, available: int, message: Optional[str] = None):
        super().__init__(message or f"Only {available} units available", available=available)
        self.available = available


class ItemNotInCart(NotFoundError):
    def __init__(self):
        super().__init__("Product not in cart")


class NoCartExists(NotFoundError):
    def __init__(self):
        super().__init__("No cart exists")


class EmptyCart(ValidationError):
    def __init__(self):
        super().__init__("No products in cart")


class AlreadyCancelled(ConflictError):
    def __init__(self):
        super().__init__("Order already cancelled")


class CancellationWindowClosed(ConflictError):
    def __init__(self):
        super().__init__("Order cannot be cancelled after shipping")


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(loc) or None
        message = first.get("msg", "Invalid request")
        if field:
            message = f"{field}: {message}"
        return JSONResponse(status_code=400, content={"success": False, "message": message, "field": field})

    @app.exception_handler(PydanticValidationError)
    async def model_validation_handler(request: Request, exc: PydanticValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        return JSONResponse(status_code=400, content={"success": False, "message": first.get("msg", "Invalid data"),
                                                      "field": field})

    @app.exception_handler(PyMongoError)
    async def database_error_handler(request: Request, exc: PyMongoError):
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"success": False, "message": "Database error"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"success": False, "message": "Internal Server Error"})
