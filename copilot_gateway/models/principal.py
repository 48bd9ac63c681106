"""Authenticated portal principal."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PortalPrincipal:
    """Identity resolved from a portal credential. Carries no raw token."""
    subject_id: str  # contact id
    tenant_id: str  # organization id
    role: str = "client"
    email: Optional[str] = None
