"""Usage audit recording for copilot requests."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import text

from copilot_gateway.infra.database import SessionScope, get_db_session
from copilot_gateway.models.usage import UsageRecord

logger = logging.getLogger("copilot_gateway.usage_recorder")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UsageRecorder:
    """Writes one ``copilot_usage_log`` row per request. Write-only."""

    def __init__(
        self,
        session_scope: SessionScope = get_db_session,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.session_scope = session_scope
        self.clock = clock

    def _insert(self, record: UsageRecord) -> None:
        with self.session_scope() as session:
            session.execute(
                text("""
                    INSERT INTO copilot_usage_log (
                        contact_id, project_id, tokens_used, credits_deducted,
                        model_used, scope, success, error_kind, error_message,
                        context_sources, response_time_ms, created_at
                    ) VALUES (
                        :contact_id, :project_id, :tokens_used, :credits_deducted,
                        :model_used, :scope, :success, :error_kind, :error_message,
                        CAST(:context_sources AS jsonb), :response_time_ms, :created_at
                    )
                """),
                {
                    "contact_id": record.subject_id,
                    "project_id": record.container_id,
                    "tokens_used": record.tokens,
                    "credits_deducted": record.credits_charged,
                    "model_used": record.model,
                    "scope": record.scope,
                    "success": record.success,
                    "error_kind": record.error_kind,
                    "error_message": record.error_message,
                    "context_sources": json.dumps(record.context_sources or {}),
                    "response_time_ms": record.response_time_ms,
                    "created_at": self.clock(),
                }
            )

    async def record(self, record: UsageRecord) -> None:
        """
        Persist a usage record.

        Raises:
            Exception: whatever the database raised; the caller decides
                whether that may mask the request outcome (it may not)
        """
        await asyncio.to_thread(self._insert, record)
        logger.debug(
            "Usage recorded",
            extra={
                "subject_id": record.subject_id,
                "success": record.success,
                "error_kind": record.error_kind,
                "tokens": record.tokens,
            },
        )
