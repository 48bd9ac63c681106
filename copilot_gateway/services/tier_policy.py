"""Service tier limits and tenant tier resolution."""

import logging
from dataclasses import replace
from typing import Dict, Optional

from sqlalchemy import text

from copilot_gateway.infra.cache import TTLCache
from copilot_gateway.infra.database import SessionScope, get_db_session
from copilot_gateway.models.quota import ServiceTier, TierLimits, normalize_tier

logger = logging.getLogger("copilot_gateway.services.tier_policy")

# Reference policy. Numbers are policy, not mechanism.
TIER_REQUESTS_PER_DAY = {
    ServiceTier.FREE: 100,
    ServiceTier.STANDARD: 500,
    ServiceTier.PREMIUM: 2000,
    ServiceTier.UNLIMITED: 10000,
}

TIER_MAX_TOKENS = {
    ServiceTier.FREE: 1024,
    ServiceTier.STANDARD: 2048,
    ServiceTier.PREMIUM: 4096,
    ServiceTier.UNLIMITED: 8192,
}


def build_tier_limits(default_model: str, premium_model: str) -> Dict[ServiceTier, TierLimits]:
    """Tier table with the deployment's model names filled in."""
    limits = {}
    for tier in ServiceTier:
        model = premium_model if tier >= ServiceTier.PREMIUM else default_model
        limits[tier] = TierLimits(
            requests_per_day=TIER_REQUESTS_PER_DAY[tier],
            max_tokens_per_request=TIER_MAX_TOKENS[tier],
            model=model,
        )
    return limits


class TierPolicy:
    """Resolves a tenant's tier and limits, cached per tenant."""

    def __init__(
        self,
        tier_limits: Dict[ServiceTier, TierLimits],
        cache: TTLCache,
        session_scope: SessionScope = get_db_session,
    ):
        self.tier_limits = tier_limits
        self.cache = cache
        self.session_scope = session_scope

    def _load_tenant_settings(self, tenant_id: str) -> Dict[str, Optional[str]]:
        with self.session_scope() as session:
            row = session.execute(
                text("""
                    SELECT copilot_tier, copilot_model
                    FROM organizations
                    WHERE id = :tenant_id
                """),
                {"tenant_id": tenant_id}
            ).fetchone()

        if not row:
            # Unknown tenants get the most restrictive tier
            logger.warning("Tenant not found when resolving tier", extra={"tenant_id": tenant_id})
            return {"tier": ServiceTier.FREE.value, "model": None}

        return {"tier": normalize_tier(row.copilot_tier).value, "model": row.copilot_model}

    def tenant_settings(self, tenant_id: str) -> Dict[str, Optional[str]]:
        return self.cache.get_or_load(
            f"tenant-tier:{tenant_id}",
            lambda: self._load_tenant_settings(tenant_id),
        )

    def tier_for_tenant(self, tenant_id: str) -> ServiceTier:
        return normalize_tier(self.tenant_settings(tenant_id).get("tier"))

    def limits_for_tenant(self, tenant_id: str) -> TierLimits:
        """Limits for the tenant's tier, with the tenant's model override applied."""
        settings = self.tenant_settings(tenant_id)
        limits = self.tier_limits[normalize_tier(settings.get("tier"))]
        model_override = settings.get("model")
        if model_override:
            limits = replace(limits, model=model_override)
        return limits
