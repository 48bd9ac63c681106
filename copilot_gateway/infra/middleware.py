"""Request middleware for tracking, CORS, and other cross-cutting concerns."""

import re
import uuid
import time
import logging
from typing import Any, Callable, Dict, Optional
from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from copilot_gateway.infra.metrics import request_count, request_duration

# Accepted form for caller-supplied request ids
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

# Headers the portal frontend reads from copilot responses
EXPOSED_HEADERS = ["X-Request-ID", "X-Response-Time-Ms", "Retry-After"]


def request_id_for(header_value: Optional[str]) -> str:
    """Reuse the caller's X-Request-ID when it is well formed, otherwise mint one."""
    if header_value and REQUEST_ID_PATTERN.match(header_value):
        return header_value
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to add request ID to all requests."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request_id_for(request.headers.get("X-Request-ID"))
        request.state.request_id = request_id

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        return response


def _route_template(request: Request) -> str:
    # Use the route path so metric labels stay bounded (no raw ids)
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log request/response details."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        logger = logging.getLogger("copilot_gateway.request")

        request_id = getattr(request.state, "request_id", "unknown")

        start_time = time.time()
        logger.info(
            "Request started",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else None,
            }
        )

        try:
            response = await call_next(request)
            elapsed = time.time() - start_time
            duration_ms = int(elapsed * 1000)

            logger.info(
                "Request completed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                }
            )

            endpoint = _route_template(request)
            request_count.labels(
                method=request.method, endpoint=endpoint, status=str(response.status_code)
            ).inc()
            request_duration.labels(method=request.method, endpoint=endpoint).observe(elapsed)

            response.headers["X-Response-Time-Ms"] = str(duration_ms)

            return response
        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "duration_ms": duration_ms,
                },
                exc_info=True,
            )
            raise


def cors_options(app_env: str, origins_setting: str) -> Dict[str, Any]:
    """
    CORSMiddleware options for the portal frontend.

    Portal calls authenticate with a bearer header, never cookies, so
    credentials are not allowed. Wildcard origins are only honoured in
    development.
    """
    allowed_origins = [origin.strip() for origin in origins_setting.split(",") if origin.strip()]
    if not allowed_origins and app_env == "development":
        allowed_origins = ["*"]
    elif app_env != "development":
        allowed_origins = [origin for origin in allowed_origins if origin != "*"]

    if app_env == "production":
        allowed_methods = ["GET", "POST", "OPTIONS"]
        allowed_headers = ["Content-Type", "Authorization", "X-Request-ID"]
    else:
        allowed_methods = ["*"]
        allowed_headers = ["*"]

    return {
        "allow_origins": allowed_origins,
        "allow_credentials": False,
        "allow_methods": allowed_methods,
        "allow_headers": allowed_headers,
        "expose_headers": EXPOSED_HEADERS,
    }


def setup_cors(app):
    """Setup CORS middleware."""
    from copilot_gateway.infra.config import config

    app.add_middleware(CORSMiddleware, **cors_options(config.APP_ENV, config.CORS_ORIGINS))
