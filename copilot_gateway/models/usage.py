"""Usage audit record."""

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class UsageRecord:
    """One append-only audit row per copilot request."""
    subject_id: str
    container_id: Optional[str]
    tokens: int
    credits_charged: int
    model: Optional[str]
    success: bool
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    scope: str = "portal"  # 'portal' (all accessible projects) or 'project'
    context_sources: Dict[str, int] = field(default_factory=dict)
    response_time_ms: Optional[int] = None
