"""Error taxonomy for the copilot gateway and provider error classification."""

import asyncio
from typing import Optional, Any
from enum import Enum

import openai


class ErrorCategory(str, Enum):
    """Categories of errors for better handling."""
    AUTH = "auth"  # Invalid, expired or malformed credential
    AUTHZ = "authz"  # No portal grant or no accessible scope
    QUOTA = "quota"  # Daily request quota exhausted
    VALIDATION = "validation"  # Malformed request body
    UPSTREAM = "upstream"  # LLM provider failure
    INTERNAL = "internal"  # Database unreachable, misconfiguration, bugs
    DISABLED = "disabled"  # Copilot switched off


class CopilotError(Exception):
    """Base exception for every error surfaced to portal callers."""
    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        error_kind: str,
        retryable: bool = False,
    ):
        self.message = message
        self.category = category
        self.error_kind = error_kind
        self.retryable = retryable
        super().__init__(message)


class AuthFailure(str, Enum):
    """Why a credential was rejected. Logged, never returned to the caller."""
    MISSING_CREDENTIAL = "missing_credential"
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"
    MISSING_CLAIM = "missing_claim"


class AuthError(CopilotError):
    """Credential rejected. Always 401 with the same public message."""
    status_code = 401
    error_code = "UNAUTHORIZED"

    def __init__(self, reason: AuthFailure):
        self.reason = reason
        super().__init__("Invalid or missing credentials", ErrorCategory.AUTH, "auth")


class AuthzError(CopilotError):
    """No portal grant, or nothing accessible in the requested scope."""
    status_code = 403
    error_code = "NO_PORTAL_ACCESS"

    def __init__(self, message: str = "No accessible projects for this account"):
        super().__init__(message, ErrorCategory.AUTHZ, "forbidden")


class QuotaError(CopilotError):
    """Daily quota exhausted."""
    status_code = 429
    error_code = "QUOTA_EXCEEDED"

    def __init__(self, quota_status: Any):
        self.quota_status = quota_status
        super().__init__(
            f"Daily copilot limit of {quota_status.limit} requests reached for the "
            f"{quota_status.tier.value} plan",
            ErrorCategory.QUOTA,
            "quota_exhausted",
        )


class ValidationError(CopilotError):
    """Input validation errors."""
    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.VALIDATION, "validation")


class UpstreamErrorKind(str, Enum):
    """Provider failure kinds."""
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"  # Connection failures and 5xx
    MALFORMED = "malformed"  # Response did not have the expected shape
    REJECTED = "rejected"  # Provider refused the request (4xx other than 429)


_RETRYABLE_KINDS = {
    UpstreamErrorKind.TIMEOUT,
    UpstreamErrorKind.RATE_LIMITED,
    UpstreamErrorKind.UNAVAILABLE,
}


class UpstreamError(CopilotError):
    """LLM provider failure. Never retried inside the gateway."""
    error_code = "UPSTREAM_ERROR"

    def __init__(self, kind: UpstreamErrorKind, message: str, retry_after: Optional[float] = None):
        self.kind = kind
        self.retry_after = retry_after
        retryable = kind in _RETRYABLE_KINDS
        super().__init__(message, ErrorCategory.UPSTREAM, f"upstream_{kind.value}", retryable=retryable)
        self.status_code = 503 if retryable else 500


class InternalError(CopilotError):
    """Unexpected failure inside the gateway."""
    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal error"):
        super().__init__(message, ErrorCategory.INTERNAL, "internal")


class CopilotDisabledError(CopilotError):
    """The copilot is switched off for this deployment."""
    status_code = 503
    error_code = "COPILOT_DISABLED"

    def __init__(self):
        super().__init__("The copilot is currently disabled", ErrorCategory.DISABLED, "disabled")


def _retry_after_from(error: Exception) -> Optional[float]:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def wrap_llm_error(error: Exception, provider: str = "openai") -> UpstreamError:
    """
    Wrap LLM provider errors into ``UpstreamError``.

    Args:
        error: Original exception
        provider: Provider name used in the message

    Returns:
        UpstreamError with the matching kind
    """
    if isinstance(error, UpstreamError):
        return error

    if isinstance(error, (openai.APITimeoutError, asyncio.TimeoutError)):
        return UpstreamError(UpstreamErrorKind.TIMEOUT, f"{provider} request timed out")

    if isinstance(error, openai.RateLimitError):
        return UpstreamError(
            UpstreamErrorKind.RATE_LIMITED,
            f"{provider} rate limit exceeded",
            retry_after=_retry_after_from(error),
        )

    if isinstance(error, openai.APIConnectionError):
        return UpstreamError(UpstreamErrorKind.UNAVAILABLE, f"{provider} connection error")

    if isinstance(error, openai.APIStatusError):
        status_code = error.status_code
        if status_code == 429:
            return UpstreamError(
                UpstreamErrorKind.RATE_LIMITED,
                f"{provider} rate limit exceeded (429)",
                retry_after=_retry_after_from(error),
            )
        if status_code >= 500:
            return UpstreamError(UpstreamErrorKind.UNAVAILABLE, f"{provider} server error ({status_code})")
        return UpstreamError(UpstreamErrorKind.REJECTED, f"{provider} rejected the request ({status_code})")

    return UpstreamError(UpstreamErrorKind.MALFORMED, f"{provider} error: {type(error).__name__}")
