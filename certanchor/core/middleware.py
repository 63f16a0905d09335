"""
HTTP middleware for CertAnchor Backend: CORS, request logging and
security headers.
"""

import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from ..utils.logger import get_logger

logger = get_logger("middleware")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

# Downloads (rendered PDFs, bulk zips) name themselves through Content-Disposition
EXPOSED_HEADERS = ["X-Request-ID", "X-Process-Time", "Content-Disposition"]


class LoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with a short id and logs its outcome and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = uuid.uuid4().hex[:8]
        started = time.perf_counter()
        route = f"{request.method} {request.url.path}"
        upload_size = request.headers.get("content-length", "0")

        logger.info(f"[{request_id}] {route} ({upload_size} bytes)")
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"[{request_id}] {route} failed after {time.perf_counter() - started:.3f}s: {e}")
            raise

        elapsed = time.perf_counter() - started
        logger.info(f"[{request_id}] {route} -> {response.status_code} in {elapsed:.3f}s")
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)
        return response


def setup_middleware_stack(app: FastAPI) -> None:
    """Register middleware; the last one added runs first."""
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=EXPOSED_HEADERS,
    )
