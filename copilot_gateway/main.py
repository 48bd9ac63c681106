"""FastAPI portal copilot gateway application."""

import uuid
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from copilot_gateway import __version__
from copilot_gateway.infra.config import CopilotSettings, config
from copilot_gateway.infra.error_handler import CopilotError, QuotaError, UpstreamError
from copilot_gateway.infra.logging import app_logger
from copilot_gateway.models.quota import ServiceTier, format_timestamp
from copilot_gateway.services.copilot_service import CopilotService


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    app_logger.info(
        "Application starting up",
        extra={"env": config.APP_ENV, "copilot_enabled": app.state.copilot_settings.enabled},
    )

    yield

    app_logger.info("Application shutting down")

    # Let detached chat pipelines finish their LLM call and usage record
    await app.state.copilot_service.drain()

    app.state.copilot_service.tier_policy.cache.close()

    from copilot_gateway.infra.database import engine
    engine.dispose()


app = FastAPI(
    title="Portal Copilot Gateway",
    description="""
    Answers questions from authenticated client-portal users using only the project
    content they are allowed to see, with tier-based daily quotas and a usage audit log.

    ## Authentication

    Every `/portal/copilot` endpoint requires a portal credential:
    - Header: `Authorization: Bearer <token>`
    """,
    version=__version__,
    lifespan=lifespan,
    tags_metadata=[
        {
            "name": "Copilot",
            "description": "Project-scoped chat, usage and context transparency",
        },
        {
            "name": "Health",
            "description": "Health check and monitoring endpoints",
        },
    ],
)

# Settings are resolved once and handed to the service by reference
app.state.copilot_settings = CopilotSettings.from_config(config)
app.state.copilot_service = CopilotService.from_settings(app.state.copilot_settings)

# Setup middleware
from copilot_gateway.infra.middleware import RequestIDMiddleware, RequestLoggingMiddleware, setup_cors
from copilot_gateway.infra.timeout import TimeoutMiddleware, REQUEST_TIMEOUT

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TimeoutMiddleware, timeout=REQUEST_TIMEOUT)
app.add_middleware(RequestIDMiddleware)
setup_cors(app)

# Import and register routers
from copilot_gateway.api.routers import copilot, health

app.include_router(copilot.router)
app.include_router(health.router)

# Request size limits
MAX_REQUEST_SIZE = 1024 * 1024  # 1MB


def error_envelope(code: str, message: str, retryable=None) -> dict:
    error = {"code": code, "message": message}
    if retryable is not None:
        error["retryable"] = retryable
    return {"success": False, "error": error}


def upgrade_message(tier: ServiceTier) -> str:
    if tier >= ServiceTier.UNLIMITED:
        return "You have reached today's copilot limit. It resets at midnight UTC."
    return (
        "You have reached today's copilot limit. Upgrade your plan for more "
        "requests, or try again after midnight UTC."
    )


@app.middleware("http")
async def request_size_limit_middleware(request: Request, call_next):
    """Enforce request size limits."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_SIZE:
        return JSONResponse(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            content=error_envelope(
                "REQUEST_TOO_LARGE",
                f"Request too large. Maximum size: {MAX_REQUEST_SIZE} bytes",
            ),
        )
    return await call_next(request)


# Error handlers
@app.exception_handler(CopilotError)
async def copilot_exception_handler(request: Request, exc: CopilotError):
    """Render gateway errors in the portal envelope."""
    retryable = exc.retryable if isinstance(exc, UpstreamError) else None
    content = error_envelope(exc.error_code, exc.message, retryable)
    headers = {}

    if isinstance(exc, QuotaError):
        quota = exc.quota_status
        rate_limit = quota.to_rate_limit()
        rate_limit["remaining"] = 0
        content["rateLimit"] = rate_limit
        content["blockedUntil"] = format_timestamp(quota.reset_at)
        content["upgradeMessage"] = upgrade_message(quota.tier)
        headers["Retry-After"] = str(max(0, int((quota.reset_at - datetime.now(timezone.utc)).total_seconds())))
    elif isinstance(exc, UpstreamError) and exc.retry_after:
        headers["Retry-After"] = str(int(exc.retry_after))

    return JSONResponse(status_code=exc.status_code, content=content, headers=headers or None)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else "Invalid request body"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_envelope("VALIDATION_ERROR", message),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(f"HTTP_{exc.status_code}", str(exc.detail)),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    error_id = str(uuid.uuid4())
    app_logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"error_id": error_id})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_envelope("INTERNAL_ERROR", f"Internal server error. Error ID: {error_id}"),
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )
