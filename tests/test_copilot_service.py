"""Tests for copilot request orchestration."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from copilot_gateway.infra.config import CopilotSettings
from copilot_gateway.infra.error_handler import (
    AuthzError,
    CopilotDisabledError,
    InternalError,
    QuotaError,
    UpstreamError,
    UpstreamErrorKind,
    ValidationError,
)
from copilot_gateway.infra.metrics import usage_record_failures_total
from copilot_gateway.models.context import AccessGrant, AccessibleScope, ContextDocument, ContextKind
from copilot_gateway.models.principal import PortalPrincipal
from copilot_gateway.models.quota import QuotaStatus, ServiceTier, TierLimits
from copilot_gateway.services.copilot_service import CopilotService
from copilot_gateway.services.response_generator import GeneratedResponse

PROJECT_ID = "0b000000-0000-0000-0000-000000000001"
PRINCIPAL = PortalPrincipal(subject_id="contact-1", tenant_id="org-1")
TURNS = [{"role": "user", "content": "What is the status of the website redesign?"}]
LIMITS = TierLimits(requests_per_day=100, max_tokens_per_request=1024, model="gpt-4o-mini")


def make_settings(enabled=True):
    return CopilotSettings(
        enabled=enabled,
        context_token_budget=4000,
        tier_cache_ttl_seconds=3600,
        quota_window="calendar_day",
        default_model="gpt-4o-mini",
        premium_model="gpt-4o",
        credits_per_request=1,
        jwt_secret="secret",
        jwt_algorithm="HS256",
    )


def quota(used=12, limit=100):
    return QuotaStatus(
        allowed=used < limit,
        tier=ServiceTier.FREE,
        used=used,
        limit=limit,
        remaining=max(0, limit - used),
        reset_at=datetime(2026, 1, 7, tzinfo=timezone.utc),
        window_start=datetime(2026, 1, 6, tzinfo=timezone.utc),
    )


def scope_for(*project_ids):
    return AccessibleScope(
        subject_id=PRINCIPAL.subject_id,
        grants={pid: AccessGrant(pid, can_view_tasks=True, can_view_files=True) for pid in project_ids},
    )


DOCUMENTS = [
    ContextDocument(ContextKind.CONTAINER, "Container: Website Redesign", "Website Redesign", 0.9,
                    PROJECT_ID, PROJECT_ID, score=1.0),
    ContextDocument(ContextKind.TASK, "Task: Homepage", "Homepage copy", 0.8, PROJECT_ID, "t1", score=0.9),
]


def make_service(enabled=True, scope=None, quota_status=None, portal_access=True, respond=None):
    scope_resolver = MagicMock()
    scope_resolver.has_portal_access.return_value = portal_access
    scope_resolver.resolve.return_value = scope if scope is not None else scope_for(PROJECT_ID)

    quota_ledger = MagicMock()
    quota_ledger.check.return_value = quota_status or quota()

    tier_policy = MagicMock()
    tier_policy.limits_for_tenant.return_value = LIMITS

    context_assembler = MagicMock()
    context_assembler.build = AsyncMock(return_value=list(DOCUMENTS))
    context_assembler.preview = AsyncMock(return_value={"sources": {}, "documents": []})

    response_generator = MagicMock()
    response_generator.respond = respond or AsyncMock(
        return_value=GeneratedResponse("The homepage is in progress.", "gpt-4o-mini", 342, "stop")
    )

    usage_recorder = MagicMock()
    usage_recorder.record = AsyncMock()

    return CopilotService(
        settings=make_settings(enabled),
        scope_resolver=scope_resolver,
        quota_ledger=quota_ledger,
        tier_policy=tier_policy,
        context_assembler=context_assembler,
        response_generator=response_generator,
        usage_recorder=usage_recorder,
    )


def recorded(service):
    service.usage_recorder.record.assert_awaited_once()
    return service.usage_recorder.record.call_args[0][0]


class TestChat:

    @pytest.mark.asyncio
    async def test_success_records_usage(self):
        service = make_service()

        outcome = await service.chat(PRINCIPAL, TURNS, container_id=PROJECT_ID)

        assert outcome.response.text == "The homepage is in progress."
        assert outcome.documents == DOCUMENTS
        assert outcome.rate_limit.used == 13
        assert outcome.rate_limit.remaining == 87

        record = recorded(service)
        assert record.success is True
        assert record.tokens == 342
        assert record.credits_charged == 1
        assert record.container_id == PROJECT_ID
        assert record.scope == "project"
        assert record.error_kind is None
        assert record.context_sources == {"container": 1, "task": 1}

    @pytest.mark.asyncio
    async def test_portal_scope_without_project(self):
        service = make_service()
        await service.chat(PRINCIPAL, TURNS)

        service.scope_resolver.resolve.assert_called_once_with(PRINCIPAL.subject_id, None)
        record = recorded(service)
        assert record.scope == "portal"
        assert record.container_id is None

    @pytest.mark.asyncio
    async def test_upstream_failure_recorded(self):
        respond = AsyncMock(side_effect=UpstreamError(UpstreamErrorKind.TIMEOUT, "openai request timed out"))
        service = make_service(respond=respond)

        with pytest.raises(UpstreamError):
            await service.chat(PRINCIPAL, TURNS, container_id=PROJECT_ID)

        record = recorded(service)
        assert record.success is False
        assert record.tokens == 0
        assert record.credits_charged == 0
        assert record.error_kind == "upstream_timeout"
        assert record.model == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_quota_exhausted(self):
        service = make_service(quota_status=quota(used=100, limit=100))

        with pytest.raises(QuotaError) as exc_info:
            await service.chat(PRINCIPAL, TURNS)

        assert exc_info.value.quota_status.remaining == 0
        service.context_assembler.build.assert_not_called()
        service.response_generator.respond.assert_not_called()
        assert recorded(service).error_kind == "quota_exhausted"

    @pytest.mark.asyncio
    async def test_empty_scope_is_forbidden(self):
        service = make_service(scope=scope_for())

        with pytest.raises(AuthzError):
            await service.chat(PRINCIPAL, TURNS, container_id=PROJECT_ID)

        service.context_assembler.build.assert_not_called()
        record = recorded(service)
        assert record.error_kind == "forbidden"
        assert record.container_id is None

    @pytest.mark.asyncio
    async def test_no_portal_access(self):
        service = make_service(portal_access=False)

        with pytest.raises(AuthzError):
            await service.chat(PRINCIPAL, TURNS)

        service.quota_ledger.check.assert_not_called()
        assert recorded(service).error_kind == "forbidden"

    @pytest.mark.asyncio
    async def test_invalid_turns_recorded(self):
        service = make_service()

        with pytest.raises(ValidationError):
            await service.chat(PRINCIPAL, [{"role": "assistant", "content": "Hello"}])

        assert recorded(service).error_kind == "validation"

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_internal(self):
        service = make_service()
        service.context_assembler.build.side_effect = RuntimeError("connection reset")

        with pytest.raises(InternalError):
            await service.chat(PRINCIPAL, TURNS)

        record = recorded(service)
        assert record.error_kind == "internal"
        assert "connection reset" not in (record.error_message or "")

    @pytest.mark.asyncio
    async def test_recorder_failure_does_not_mask_outcome(self):
        service = make_service()
        service.usage_recorder.record.side_effect = RuntimeError("database down")
        before = usage_record_failures_total._value.get()

        outcome = await service.chat(PRINCIPAL, TURNS)

        assert outcome.response.tokens_used == 342
        assert usage_record_failures_total._value.get() == before + 1

    @pytest.mark.asyncio
    async def test_recorder_failure_does_not_mask_error(self):
        respond = AsyncMock(side_effect=UpstreamError(UpstreamErrorKind.RATE_LIMITED, "rate limited"))
        service = make_service(respond=respond)
        service.usage_recorder.record.side_effect = RuntimeError("database down")

        with pytest.raises(UpstreamError):
            await service.chat(PRINCIPAL, TURNS)

    @pytest.mark.asyncio
    async def test_disabled_refusal_recorded(self):
        service = make_service(enabled=False)

        with pytest.raises(CopilotDisabledError):
            await service.chat(PRINCIPAL, TURNS)

        service.scope_resolver.has_portal_access.assert_not_called()
        record = recorded(service)
        assert record.success is False
        assert record.error_kind == "disabled"
        assert record.credits_charged == 0

    @pytest.mark.asyncio
    async def test_out_of_range_options_recorded(self):
        service = make_service()

        with pytest.raises(ValidationError):
            await service.chat(PRINCIPAL, TURNS, container_id=PROJECT_ID, options={"temperature": 5.0})

        service.response_generator.respond.assert_not_called()
        record = recorded(service)
        assert record.error_kind == "validation"
        assert record.scope == "project"

    @pytest.mark.asyncio
    async def test_empty_turns_recorded(self):
        service = make_service()

        with pytest.raises(ValidationError):
            await service.chat(PRINCIPAL, [])

        assert recorded(service).error_kind == "validation"

    @pytest.mark.asyncio
    async def test_client_disconnect_still_records(self):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_respond(*args, **kwargs):
            started.set()
            await release.wait()
            return GeneratedResponse("late answer", "gpt-4o-mini", 99, "stop")

        service = make_service(respond=slow_respond)

        caller = asyncio.create_task(service.chat(PRINCIPAL, TURNS))
        await started.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        release.set()
        await service.drain()

        record = recorded(service)
        assert record.success is True
        assert record.tokens == 99


class TestUsageAndPreview:

    @pytest.mark.asyncio
    async def test_usage_requires_portal_access(self):
        service = make_service(portal_access=False)
        with pytest.raises(AuthzError):
            await service.usage(PRINCIPAL)

    @pytest.mark.asyncio
    async def test_usage_summary(self):
        service = make_service()
        service.quota_ledger.usage_summary.return_value = {"tier": "free"}
        assert await service.usage(PRINCIPAL) == {"tier": "free"}

    @pytest.mark.asyncio
    async def test_preview_of_inaccessible_project_is_empty(self):
        service = make_service(scope=scope_for())

        preview = await service.context_preview(PRINCIPAL, PROJECT_ID, "status")

        assert preview == {"projectId": PROJECT_ID, "sources": {}, "documents": []}
        service.usage_recorder.record.assert_not_called()

    @pytest.mark.asyncio
    async def test_preview_rejects_non_uuid(self):
        service = make_service()
        with pytest.raises(ValidationError):
            await service.context_preview(PRINCIPAL, "not-a-uuid")
