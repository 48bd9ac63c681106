"""Portal credential verification.

This is the only module that looks at the raw bearer credential. Everything
downstream receives a ``PortalPrincipal``.
"""

import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from copilot_gateway.infra.config import CopilotSettings
from copilot_gateway.infra.error_handler import AuthError, AuthFailure, InternalError
from copilot_gateway.models.principal import PortalPrincipal

logger = logging.getLogger("copilot_gateway.auth")

bearer_scheme = HTTPBearer(auto_error=False)

SUBJECT_CLAIMS = ("contact_id", "sub")
TENANT_CLAIMS = ("organization_id", "tenant_id")


def _first_claim(claims: Dict[str, Any], names) -> Optional[str]:
    for name in names:
        value = claims.get(name)
        if value is not None and str(value).strip():
            return str(value)
    return None


def resolve_principal(token: Optional[str], settings: CopilotSettings) -> PortalPrincipal:
    """
    Verify a portal credential and extract the principal.

    Args:
        token: Raw bearer credential
        settings: Settings carrying the verification key

    Returns:
        PortalPrincipal with subject, tenant and role

    Raises:
        AuthError: Missing, tampered, expired or incomplete credential
        InternalError: No verification key configured
    """
    if not token:
        raise AuthError(AuthFailure.MISSING_CREDENTIAL)

    if not settings.jwt_secret:
        # Server misconfiguration, not the caller's fault
        logger.error("PORTAL_JWT_SECRET is not configured")
        raise InternalError("Server authentication misconfigured")

    options = {"require": ["exp"], "verify_exp": True}
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise AuthError(AuthFailure.EXPIRED)
    except jwt.MissingRequiredClaimError:
        raise AuthError(AuthFailure.MISSING_CLAIM)
    except jwt.InvalidTokenError:
        raise AuthError(AuthFailure.INVALID_SIGNATURE)

    subject_id = _first_claim(claims, SUBJECT_CLAIMS)
    tenant_id = _first_claim(claims, TENANT_CLAIMS)
    if not subject_id or not tenant_id:
        raise AuthError(AuthFailure.MISSING_CLAIM)

    return PortalPrincipal(
        subject_id=subject_id,
        tenant_id=tenant_id,
        role=str(claims.get("role") or "client"),
        email=claims.get("email"),
    )


def get_copilot_settings(request: Request) -> CopilotSettings:
    """Settings resolved at startup and stored on the application."""
    return request.app.state.copilot_settings


async def get_portal_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    settings: CopilotSettings = Depends(get_copilot_settings),
) -> PortalPrincipal:
    """
    FastAPI dependency resolving the portal principal from ``Authorization: Bearer``.

    Raises:
        AuthError: rendered as 401 by the application error handler
    """
    token = credentials.credentials if credentials else None
    try:
        return resolve_principal(token, settings)
    except AuthError as e:
        logger.info("Portal credential rejected", extra={"reason": e.reason.value})
        raise
