"""Error taxonomy and FastAPI handlers."""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from scribe.core.config import settings
from scribe.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500
    # Errors whose message may carry provider or storage internals.
    expose_message = True

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id

    def payload_fields(self) -> dict:
        return {}


class ConfigurationError(AppError):
    """A provider the operation needs is not configured."""
    code = "service_unavailable"
    status_code = 503


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class AuthenticationError(AppError):
    code = "authentication_failed"
    status_code = 401


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class EntitlementError(AppError):
    """The resolved plan does not include the requested feature."""
    code = "entitlement_required"
    status_code = 403


class QuotaExceededError(AppError):
    code = "quota_exceeded"
    status_code = 403

    def __init__(self, message: str, *, used: int, limit: int, code: Optional[str] = None, request_id: Optional[str] = None):
        super().__init__(message, code=code, request_id=request_id)
        self.used = used
        self.limit = limit

    def payload_fields(self) -> dict:
        return {"used": self.used, "limit": self.limit}


class UpstreamProviderError(AppError):
    """Payment or AI provider call failed or timed out."""
    code = "upstream_error"
    status_code = 502
    expose_message = False


class PersistenceError(AppError):
    code = "persistence_error"
    status_code = 500
    expose_message = False


def _generic_message(exc: AppError) -> str:
    """Client-safe message for errors that hide their details."""
    if isinstance(exc, UpstreamProviderError):
        return "Upstream provider request failed"
    if isinstance(exc, PersistenceError):
        return "Storage operation failed"
    return "Unexpected error"


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str, **fields) -> dict:
    error = {"code": code, "message": message, "request_id": request_id}
    error.update(fields)
    return {"error": error, "detail": message}


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    fields = exc.payload_fields()
    message = exc.message
    if not exc.expose_message:
        message = _generic_message(exc)
        if settings.ENV == "development":
            fields["debug"] = exc.message
    payload = _error_payload(exc.code, message, rid, **fields)
    logger = logging.getLogger("scribe")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        exc_info=exc if exc.status_code >= 500 else None,
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("scribe")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("scribe")
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
