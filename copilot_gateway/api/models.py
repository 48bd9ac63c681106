"""API request/response models."""

from typing import List, Optional, Dict
from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Chat Models
# ============================================================================

class ChatTurn(BaseModel):
    """One conversation turn supplied by the caller."""
    role: str = Field(..., description="'user' or 'assistant'", examples=["user"])
    content: str = Field(..., description="Turn text", examples=["What is the status of the website redesign?"])


class ChatOptions(BaseModel):
    """Generation overrides, clamped to the tenant tier's ceilings."""
    model_config = ConfigDict(populate_by_name=True)

    temperature: Optional[float] = Field(None, description="0 to 2", examples=[0.7])
    max_tokens: Optional[int] = Field(None, alias="maxTokens", description="At least 1", examples=[2048])


class CopilotChatRequest(BaseModel):
    """Request model for a copilot chat turn."""
    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatTurn] = Field(default_factory=list, description="Conversation so far, oldest first")
    project_id: Optional[str] = Field(
        None,
        alias="projectId",
        description="Narrow the context to one project (UUID)",
    )
    options: Optional[ChatOptions] = None


class ChatMessageData(BaseModel):
    message: str
    model: str
    tokens_used: int = Field(..., serialization_alias="tokensUsed")


class ContextReference(BaseModel):
    """A context document that was shown to the model."""
    source: str = Field(..., examples=["Container: Website Redesign"])
    relevance: float = Field(..., examples=[0.95])
    type: str = Field(..., examples=["container"])


class RateLimitInfo(BaseModel):
    tier: str
    used: int
    daily_limit: int = Field(..., serialization_alias="dailyLimit")
    remaining: int
    reset_at: str = Field(..., serialization_alias="resetAt", description="ISO8601 timestamp (UTC)")


class CopilotChatResponse(BaseModel):
    """Response model for a successful copilot chat turn."""
    success: bool = True
    data: ChatMessageData
    context: List[ContextReference]
    rate_limit: RateLimitInfo = Field(..., serialization_alias="rateLimit")


# ============================================================================
# Usage Models
# ============================================================================

class UsageCounts(BaseModel):
    requests_today: int = Field(..., serialization_alias="requestsToday")
    tokens_today: int = Field(..., serialization_alias="tokensToday")
    error_count: int = Field(..., serialization_alias="errorCount")


class UsageLimits(BaseModel):
    daily_requests: int = Field(..., serialization_alias="dailyRequests")
    max_tokens_per_request: int = Field(..., serialization_alias="maxTokensPerRequest")
    model: str


class CopilotUsageData(BaseModel):
    tier: str
    usage: UsageCounts
    limits: UsageLimits
    reset_at: str = Field(..., serialization_alias="resetAt")


class CopilotUsageResponse(BaseModel):
    """Response model for the current usage window."""
    success: bool = True
    data: CopilotUsageData


# ============================================================================
# Context Preview Models
# ============================================================================

class ContextPreviewDocument(BaseModel):
    source: str
    type: str
    relevance: float
    preview: str


class ContextPreviewData(BaseModel):
    project_id: str = Field(..., serialization_alias="projectId")
    sources: Dict[str, int] = Field(..., description="Candidate count per source before ranking")
    documents: List[ContextPreviewDocument]


class ContextPreviewResponse(BaseModel):
    """Response model for the context transparency endpoint."""
    success: bool = True
    data: ContextPreviewData
