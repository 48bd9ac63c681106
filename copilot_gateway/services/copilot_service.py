"""Copilot request orchestration.

Per chat request: toggle check, turn validation, portal access, quota
pre-check, scope resolution, context assembly, generation, then one usage
record whatever the outcome.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

from copilot_gateway.infra.cache import TTLCache, connect_redis
from copilot_gateway.infra.config import CopilotSettings, config
from copilot_gateway.infra.database import SessionScope, get_db_session
from copilot_gateway.infra.error_handler import (
    AuthzError,
    CopilotDisabledError,
    CopilotError,
    InternalError,
    QuotaError,
    ValidationError,
)
from copilot_gateway.infra.metrics import (
    copilot_quota_denials_total,
    copilot_requests_total,
    usage_record_failures_total,
)
from copilot_gateway.infra.validation import (
    latest_user_query,
    validate_chat_turns,
    validate_container_id,
    validate_generation_options,
)
from copilot_gateway.logging.usage_recorder import UsageRecorder
from copilot_gateway.models.context import ContextDocument
from copilot_gateway.models.principal import PortalPrincipal
from copilot_gateway.models.quota import QuotaStatus
from copilot_gateway.models.usage import UsageRecord
from copilot_gateway.services.context_assembler import ContextAssembler
from copilot_gateway.services.quota_ledger import QuotaLedger
from copilot_gateway.services.response_generator import GeneratedResponse, ResponseGenerator
from copilot_gateway.services.scope_resolver import ScopeResolver
from copilot_gateway.services.tier_policy import TierPolicy, build_tier_limits

logger = logging.getLogger("copilot_gateway.services.copilot")

MAX_ERROR_MESSAGE_LENGTH = 500


@dataclass
class ChatOutcome:
    """Successful chat result handed back to the router."""
    response: GeneratedResponse
    documents: List[ContextDocument]
    rate_limit: QuotaStatus


@dataclass
class _Attempt:
    """Facts gathered while a chat request runs, written as the usage record."""
    container_id: Optional[str] = None
    scope: str = "portal"
    model: Optional[str] = None
    tier: str = "unknown"
    tokens: int = 0
    context_sources: Dict[str, int] = field(default_factory=dict)


class CopilotService:
    """Handles the three portal copilot operations."""

    def __init__(
        self,
        settings: CopilotSettings,
        scope_resolver: ScopeResolver,
        quota_ledger: QuotaLedger,
        tier_policy: TierPolicy,
        context_assembler: ContextAssembler,
        response_generator: ResponseGenerator,
        usage_recorder: UsageRecorder,
    ):
        self.settings = settings
        self.scope_resolver = scope_resolver
        self.quota_ledger = quota_ledger
        self.tier_policy = tier_policy
        self.context_assembler = context_assembler
        self.response_generator = response_generator
        self.usage_recorder = usage_recorder
        self._inflight: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: CopilotSettings,
        session_scope: SessionScope = get_db_session,
        cache: Optional[TTLCache] = None,
    ) -> "CopilotService":
        """Wire the default collaborators from startup settings."""
        if cache is None:
            cache = TTLCache(
                settings.tier_cache_ttl_seconds,
                redis_client=connect_redis(config.REDIS_URL),
            )
        tier_policy = TierPolicy(
            build_tier_limits(settings.default_model, settings.premium_model),
            cache,
            session_scope=session_scope,
        )
        return cls(
            settings=settings,
            scope_resolver=ScopeResolver(session_scope),
            quota_ledger=QuotaLedger(tier_policy, window=settings.quota_window, session_scope=session_scope),
            tier_policy=tier_policy,
            context_assembler=ContextAssembler(session_scope, token_budget=settings.context_token_budget),
            response_generator=ResponseGenerator(),
            usage_recorder=UsageRecorder(session_scope),
        )

    def _ensure_enabled(self) -> None:
        if not self.settings.enabled:
            raise CopilotDisabledError()

    async def _ensure_portal_access(self, principal: PortalPrincipal) -> None:
        if not await asyncio.to_thread(self.scope_resolver.has_portal_access, principal):
            logger.info("No portal access", extra={"subject_id": principal.subject_id})
            raise AuthzError()

    async def chat(
        self,
        principal: PortalPrincipal,
        turns: Sequence[Dict[str, str]],
        container_id: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> ChatOutcome:
        """
        Answer a chat request.

        The pipeline runs as its own task awaited through ``asyncio.shield``:
        if the caller goes away, the LLM call and the usage record still
        complete.

        Raises:
            CopilotError: any failure; the usage record has been written (or
                its failure logged) before this propagates
        """
        task = asyncio.ensure_future(self._run_chat(principal, turns, container_id, options))
        self._inflight.add(task)
        task.add_done_callback(self._finish_inflight)
        return await asyncio.shield(task)

    def _finish_inflight(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if not task.cancelled():
            # Retrieve the exception so detached failures are not reported twice;
            # the pipeline already logged and recorded them.
            task.exception()

    async def drain(self) -> None:
        """Wait for detached chat pipelines, used at shutdown."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run_chat(
        self,
        principal: PortalPrincipal,
        turns: Sequence[Dict[str, str]],
        container_id: Optional[str],
        options: Optional[Dict[str, Any]],
    ) -> ChatOutcome:
        started = time.monotonic()
        attempt = _Attempt()
        error: Optional[CopilotError] = None
        generated: Optional[GeneratedResponse] = None

        try:
            self._ensure_enabled()
            cleaned_turns = validate_chat_turns(turns)
            requested_id = validate_container_id(container_id)
            attempt.scope = "project" if requested_id else "portal"
            options = validate_generation_options(options)

            await self._ensure_portal_access(principal)

            quota = await asyncio.to_thread(self.quota_ledger.check, principal)
            attempt.tier = quota.tier.value
            if not quota.allowed:
                copilot_quota_denials_total.labels(tier=quota.tier.value).inc()
                raise QuotaError(quota)

            limits = await asyncio.to_thread(self.tier_policy.limits_for_tenant, principal.tenant_id)
            attempt.model = limits.model

            scope = await asyncio.to_thread(self.scope_resolver.resolve, principal.subject_id, requested_id)
            if not scope:
                raise AuthzError()
            attempt.container_id = requested_id

            documents = await self.context_assembler.build(
                principal.subject_id, latest_user_query(cleaned_turns), scope
            )
            for document in documents:
                kind = document.kind.value
                attempt.context_sources[kind] = attempt.context_sources.get(kind, 0) + 1

            generated = await self.response_generator.respond(cleaned_turns, documents, limits, options)
            attempt.model = generated.model
            attempt.tokens = generated.tokens_used

            return ChatOutcome(response=generated, documents=documents, rate_limit=quota.after_request())

        except CopilotError as e:
            error = e
            raise
        except Exception as e:
            logger.exception(
                "Copilot chat failed unexpectedly",
                extra={"subject_id": principal.subject_id, "error_type": type(e).__name__},
            )
            error = InternalError()
            raise error from e
        finally:
            await self._record_usage(principal, attempt, generated, error, started)

    async def _record_usage(
        self,
        principal: PortalPrincipal,
        attempt: _Attempt,
        generated: Optional[GeneratedResponse],
        error: Optional[CopilotError],
        started: float,
    ) -> None:
        success = error is None and generated is not None
        outcome = "success" if success else (error.error_kind if error else "internal")
        copilot_requests_total.labels(tier=attempt.tier, outcome=outcome).inc()

        record = UsageRecord(
            subject_id=principal.subject_id,
            container_id=attempt.container_id,
            tokens=attempt.tokens if success else 0,
            credits_charged=self.settings.credits_per_request if success else 0,
            model=attempt.model,
            success=success,
            error_kind=None if success else outcome,
            error_message=None if error is None else error.message[:MAX_ERROR_MESSAGE_LENGTH],
            scope=attempt.scope,
            context_sources=dict(attempt.context_sources),
            response_time_ms=int((time.monotonic() - started) * 1000),
        )
        try:
            await self.usage_recorder.record(record)
        except Exception as e:
            # Never masks the request outcome
            usage_record_failures_total.inc()
            logger.error(
                "Failed to write copilot usage record",
                extra={"subject_id": principal.subject_id, "error_kind": record.error_kind, "error": str(e)},
                exc_info=True,
            )

    async def usage(self, principal: PortalPrincipal) -> Dict[str, Any]:
        """Current-window usage, limits and reset time for the subject."""
        self._ensure_enabled()
        await self._ensure_portal_access(principal)
        return await asyncio.to_thread(self.quota_ledger.usage_summary, principal)

    async def context_preview(
        self,
        principal: PortalPrincipal,
        container_id: str,
        query: str = "",
    ) -> Dict[str, Any]:
        """
        Ranked context for one project without calling the LLM.

        An unknown or inaccessible project yields empty results, never an error.
        """
        self._ensure_enabled()
        requested_id = validate_container_id(container_id)
        if requested_id is None:
            raise ValidationError("projectId is required")
        await self._ensure_portal_access(principal)

        scope = await asyncio.to_thread(self.scope_resolver.resolve, principal.subject_id, requested_id)
        preview = await self.context_assembler.preview(principal.subject_id, query or "", scope)
        return {
            "projectId": requested_id,
            "sources": preview["sources"],
            "documents": preview["documents"],
        }
