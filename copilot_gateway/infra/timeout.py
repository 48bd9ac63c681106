"""Request timeout configuration and middleware."""

import asyncio
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce request timeouts."""

    def __init__(self, app, timeout: int = 60):
        """
        Initialize timeout middleware.

        Args:
            app: FastAPI application
            timeout: Request timeout in seconds (default: 60)
        """
        super().__init__(app)
        self.timeout = timeout

    async def dispatch(self, request: Request, call_next):
        """Process request with timeout."""
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            # Copilot handlers shield their LLM call and usage write, so those
            # still finish after the caller receives this response.
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content={
                    "success": False,
                    "error": {
                        "code": "GATEWAY_TIMEOUT",
                        "message": f"Request timeout after {self.timeout} seconds",
                        "retryable": True,
                    },
                },
            )


# Timeout configurations
REQUEST_TIMEOUT = 150  # Must exceed LLM_CALL_TIMEOUT so provider timeouts surface as 503
LLM_CALL_TIMEOUT = 120  # 2 minutes for LLM calls
DATABASE_QUERY_TIMEOUT = 10  # 10 seconds for DB queries
