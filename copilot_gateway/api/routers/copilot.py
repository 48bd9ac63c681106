"""Portal copilot API router."""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, Security

from copilot_gateway.api.models import (
    ChatMessageData,
    ContextPreviewData,
    ContextPreviewDocument,
    ContextPreviewResponse,
    ContextReference,
    CopilotChatRequest,
    CopilotChatResponse,
    CopilotUsageResponse,
    RateLimitInfo,
)
from copilot_gateway.infra.auth import get_portal_principal
from copilot_gateway.models.principal import PortalPrincipal
from copilot_gateway.services.copilot_service import CopilotService

router = APIRouter(prefix="/portal/copilot")

PREVIEW_CHARS = 200


def get_copilot_service(request: Request) -> CopilotService:
    """Service built at startup and stored on the application."""
    return request.app.state.copilot_service


@router.post(
    "/chat",
    tags=["Copilot"],
    response_model=CopilotChatResponse,
    response_model_by_alias=True,
)
async def copilot_chat(
    body: CopilotChatRequest,
    principal: PortalPrincipal = Security(get_portal_principal),
    service: CopilotService = Depends(get_copilot_service),
):
    """Answer a question using only the caller's accessible project content."""
    options = body.options.model_dump(exclude_none=True) if body.options else None
    outcome = await service.chat(
        principal,
        [turn.model_dump() for turn in body.messages],
        container_id=body.project_id,
        options=options,
    )

    rate_limit = outcome.rate_limit.to_rate_limit()
    return CopilotChatResponse(
        data=ChatMessageData(
            message=outcome.response.text,
            model=outcome.response.model,
            tokens_used=outcome.response.tokens_used,
        ),
        context=[
            ContextReference(source=d.source, relevance=d.score, type=d.kind.value)
            for d in outcome.documents
        ],
        rate_limit=RateLimitInfo(
            tier=rate_limit["tier"],
            used=rate_limit["used"],
            daily_limit=rate_limit["dailyLimit"],
            remaining=rate_limit["remaining"],
            reset_at=rate_limit["resetAt"],
        ),
    )


@router.get(
    "/usage",
    tags=["Copilot"],
    response_model=CopilotUsageResponse,
    response_model_by_alias=True,
)
async def copilot_usage(
    principal: PortalPrincipal = Security(get_portal_principal),
    service: CopilotService = Depends(get_copilot_service),
):
    """Usage in the current quota window, the tier's limits and the reset time."""
    summary = await service.usage(principal)
    return CopilotUsageResponse.model_validate({
        "data": {
            "tier": summary["tier"],
            "usage": {
                "requests_today": summary["usage"]["requestsToday"],
                "tokens_today": summary["usage"]["tokensToday"],
                "error_count": summary["usage"]["errorCount"],
            },
            "limits": {
                "daily_requests": summary["limits"]["dailyRequests"],
                "max_tokens_per_request": summary["limits"]["maxTokensPerRequest"],
                "model": summary["limits"]["model"],
            },
            "reset_at": summary["resetAt"],
        }
    })


@router.get(
    "/context/{container_id}",
    tags=["Copilot"],
    response_model=ContextPreviewResponse,
    response_model_by_alias=True,
)
async def copilot_context_preview(
    container_id: str,
    query: Optional[str] = Query(None, description="Query to rank against (optional)"),
    principal: PortalPrincipal = Security(get_portal_principal),
    service: CopilotService = Depends(get_copilot_service),
):
    """Show which documents the copilot would use for a project. Does not call the LLM."""
    preview = await service.context_preview(principal, container_id, query or "")
    return ContextPreviewResponse(
        data=ContextPreviewData(
            project_id=preview["projectId"],
            sources=preview["sources"],
            documents=[
                ContextPreviewDocument(
                    source=d.source,
                    type=d.kind.value,
                    relevance=d.score,
                    preview=d.text[:PREVIEW_CHARS],
                )
                for d in preview["documents"]
            ],
        )
    )
