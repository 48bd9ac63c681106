"""Daily request quota derived from the usage audit log.

The ledger is a read-only pre-check. The debit is the usage record written
after the request finishes, so concurrent requests from one subject can each
pass the check; the overshoot is bounded by that subject's in-flight
requests. There is no counter table: ``used`` is a count of audit rows.
"""

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable, Dict

from sqlalchemy import text

from copilot_gateway.infra.database import SessionScope, get_db_session
from copilot_gateway.models.principal import PortalPrincipal
from copilot_gateway.models.quota import QuotaStatus, format_timestamp
from copilot_gateway.services.tier_policy import TierPolicy

logger = logging.getLogger("copilot_gateway.services.quota_ledger")

# Requests refused before any work is done are audited but do not count against the quota
QUOTA_EXHAUSTED_KIND = "quota_exhausted"
DISABLED_KIND = "disabled"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_utc_midnight(now: datetime) -> datetime:
    """First instant of the next UTC day."""
    now = now.astimezone(timezone.utc)
    return datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=timezone.utc)


def window_start_for(now: datetime, window: str) -> datetime:
    """
    Start of the counting window.

    ``calendar_day`` counts since the current UTC midnight, so the count drops
    to zero exactly at ``reset_at``. ``rolling_24h`` counts the trailing 24 hours.
    """
    now = now.astimezone(timezone.utc)
    if window == "rolling_24h":
        return now - timedelta(hours=24)
    return datetime.combine(now.date(), time.min, tzinfo=timezone.utc)


class QuotaLedger:
    """Per-subject daily request quota."""

    def __init__(
        self,
        tier_policy: TierPolicy,
        window: str = "calendar_day",
        session_scope: SessionScope = get_db_session,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.tier_policy = tier_policy
        self.window = window
        self.session_scope = session_scope
        self.clock = clock

    def _count_requests(self, subject_id: str, window_start: datetime) -> int:
        with self.session_scope() as session:
            row = session.execute(
                text("""
                    SELECT COUNT(*) AS used
                    FROM copilot_usage_log
                    WHERE contact_id = :subject_id
                      AND created_at >= :window_start
                      AND (error_kind IS NULL OR error_kind NOT IN (:exhausted_kind, :disabled_kind))
                """),
                {
                    "subject_id": subject_id,
                    "window_start": window_start,
                    "exhausted_kind": QUOTA_EXHAUSTED_KIND,
                    "disabled_kind": DISABLED_KIND,
                }
            ).fetchone()
        return int(row.used or 0) if row else 0

    def check(self, principal: PortalPrincipal) -> QuotaStatus:
        """
        Check whether the subject may make another request.

        Does not reserve anything; see the module docstring.
        """
        now = self.clock()
        tier = self.tier_policy.tier_for_tenant(principal.tenant_id)
        limit = self.tier_policy.tier_limits[tier].requests_per_day
        window_start = window_start_for(now, self.window)
        used = self._count_requests(principal.subject_id, window_start)

        status = QuotaStatus(
            allowed=used < limit,
            tier=tier,
            used=used,
            limit=limit,
            remaining=max(0, limit - used),
            reset_at=next_utc_midnight(now),
            window_start=window_start,
        )
        if not status.allowed:
            logger.info(
                "Copilot quota exhausted",
                extra={"subject_id": principal.subject_id, "tier": tier.value, "used": used, "limit": limit},
            )
        return status

    def usage_summary(self, principal: PortalPrincipal) -> Dict[str, Any]:
        """Current-window usage totals for the usage endpoint."""
        now = self.clock()
        window_start = window_start_for(now, self.window)
        limits = self.tier_policy.limits_for_tenant(principal.tenant_id)
        tier = self.tier_policy.tier_for_tenant(principal.tenant_id)

        with self.session_scope() as session:
            row = session.execute(
                text("""
                    SELECT
                        COUNT(*) AS requests,
                        COALESCE(SUM(tokens_used), 0) AS tokens,
                        COALESCE(SUM(CASE WHEN success = FALSE THEN 1 ELSE 0 END), 0) AS errors
                    FROM copilot_usage_log
                    WHERE contact_id = :subject_id
                      AND created_at >= :window_start
                      AND (error_kind IS NULL OR error_kind NOT IN (:exhausted_kind, :disabled_kind))
                """),
                {
                    "subject_id": principal.subject_id,
                    "window_start": window_start,
                    "exhausted_kind": QUOTA_EXHAUSTED_KIND,
                    "disabled_kind": DISABLED_KIND,
                }
            ).fetchone()

        return {
            "tier": tier.value,
            "usage": {
                "requestsToday": int(row.requests or 0) if row else 0,
                "tokensToday": int(row.tokens or 0) if row else 0,
                "errorCount": int(row.errors or 0) if row else 0,
            },
            "limits": {
                "dailyRequests": limits.requests_per_day,
                "maxTokensPerRequest": limits.max_tokens_per_request,
                "model": limits.model,
            },
            "resetAt": format_timestamp(next_utc_midnight(now)),
        }
