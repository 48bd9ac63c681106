from .principal import PortalPrincipal
from .quota import ServiceTier, TierLimits, QuotaStatus, normalize_tier
from .context import ContextKind, ContextDocument, AccessGrant, AccessibleScope
from .usage import UsageRecord

__all__ = [
    "PortalPrincipal",
    "ServiceTier",
    "TierLimits",
    "QuotaStatus",
    "normalize_tier",
    "ContextKind",
    "ContextDocument",
    "AccessGrant",
    "AccessibleScope",
    "UsageRecord",
]
