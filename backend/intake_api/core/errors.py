# Error envelope shared by every route: {"success": false, "message", "error": {...}, "meta": {...}}
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from intake_api.core.config import FORM_SCHEMA_VERSION, settings

logger = logging.getLogger(__name__)


def build_meta(request_id: Optional[str] = None) -> dict:  # server-authored metadata with an ISO-8601 UTC timestamp
    now_utc = datetime.now(timezone.utc)
    ts = now_utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    meta = {"version": FORM_SCHEMA_VERSION, "timestamp": ts}
    if request_id:
        meta["requestId"] = request_id
    return meta


class ApiError(HTTPException):
    """An HTTPException that carries a machine-readable code."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=message)
        self.code = code
        self.message = message
        self.errors = errors
        self.extra = extra or {}


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def error_body(
    code: str,
    message: str,
    request_id: Optional[str] = None,
    errors: Optional[List[Dict[str, Any]]] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> dict:
    body = {
        "success": False,
        "message": message,
        "error": {"code": code, "message": message},
        "meta": build_meta(request_id),
    }
    if errors:
        body["errors"] = errors
    if extra:
        body.update(extra)
    return body


def format_validation_errors(raw_errors) -> List[Dict[str, Any]]:
    """Flatten pydantic errors into {field, message, value} rows."""
    out = []
    for err in raw_errors:
        loc = [str(p) for p in err.get("loc", ()) if p != "body"]
        value = err.get("input")
        if not isinstance(value, (str, int, float, bool)) or err.get("type") == "missing":
            value = None  # never echo whole request bodies back
        elif isinstance(value, str):
            value = value[:200]
        out.append({
            "field": ".".join(loc),
            "message": err.get("msg", "Invalid value"),
            "value": value,
        })
    return out


def validation_message(errors: List[Dict[str, Any]]) -> str:
    if not errors:
        return "Validation failed"
    first = errors[0]
    if first["field"]:
        return f"Validation failed: {first['field']}: {first['message']}"
    return f"Validation failed: {first['message']}"


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.code, exc.message, _request_id(request), exc.errors, exc.extra),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(f"HTTP_{exc.status_code}", message, _request_id(request)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        errors = format_validation_errors(exc.errors())
        return JSONResponse(
            status_code=400,
            content=error_body("VALIDATION_FAILED", validation_message(errors), _request_id(request), errors),
        )

    @app.exception_handler(RateLimitExceeded)
    def _rate_limited(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content=error_body(
                "RATE_LIMITED",
                "Too many requests. Please wait and try again.",
                _request_id(request),
            ),
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.error(
            "Unhandled error",
            exc_info=exc,
            extra={"method": request.method, "path": request.url.path, "requestId": _request_id(request)},
        )
        message = "Internal server error" if settings.is_production else str(exc)
        return JSONResponse(status_code=500, content=error_body("INTERNAL_ERROR", message, _request_id(request)))
