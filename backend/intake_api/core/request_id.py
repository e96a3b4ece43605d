"""Request id propagation plus request/response logging."""

import logging
import secrets
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger("intake_api.http")


def generate_request_id() -> str:
    return secrets.token_hex(8)


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = (
            request.headers.get("X-Request-ID")
            or request.headers.get("Request-ID")
            or generate_request_id()
        )
        request.state.request_id = request_id
        started = time.perf_counter()

        logger.info(
            "HTTP Request",
            extra={
                "method": request.method,
                "url": str(request.url.path),
                "ip": request.client.host if request.client else None,
                "userAgent": request.headers.get("user-agent"),
                "requestId": request_id,
            },
        )

        response = await call_next(request)

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        logger.info(
            "HTTP Response",
            extra={
                "method": request.method,
                "url": str(request.url.path),
                "statusCode": response.status_code,
                "duration": duration_ms,
                "requestId": request_id,
            },
        )
        return response
