"""Service tiers and quota state."""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ServiceTier(str, Enum):
    """Tenant service tier, ordered from least to most generous."""
    FREE = "free"
    STANDARD = "standard"
    PREMIUM = "premium"
    UNLIMITED = "unlimited"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, ServiceTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, ServiceTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, ServiceTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, ServiceTier):
            return NotImplemented
        return self.rank >= other.rank


_TIER_ORDER = [ServiceTier.FREE, ServiceTier.STANDARD, ServiceTier.PREMIUM, ServiceTier.UNLIMITED]


def normalize_tier(value: Optional[str]) -> ServiceTier:
    """Map a stored tier string to a ServiceTier; unknown values fall back to free."""
    if not value:
        return ServiceTier.FREE
    try:
        return ServiceTier(value.strip().lower())
    except ValueError:
        return ServiceTier.FREE


@dataclass(frozen=True)
class TierLimits:
    """Per-tier request quota and generation ceilings."""
    requests_per_day: int
    max_tokens_per_request: int
    model: str
    default_temperature: float = 0.7


def format_timestamp(value: datetime) -> str:
    """ISO8601 in UTC with a trailing Z."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class QuotaStatus:
    """Result of a quota pre-check."""
    allowed: bool
    tier: ServiceTier
    used: int
    limit: int
    remaining: int
    reset_at: datetime
    window_start: datetime

    def after_request(self) -> "QuotaStatus":
        """Status with the request that was just recorded counted."""
        used = self.used + 1
        return replace(self, used=used, remaining=max(0, self.limit - used))

    def to_rate_limit(self) -> Dict[str, Any]:
        return {
            "tier": self.tier.value,
            "used": self.used,
            "dailyLimit": self.limit,
            "remaining": self.remaining,
            "resetAt": format_timestamp(self.reset_at),
        }
