"""OpenAI chat completions adapter for the copilot."""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from copilot_gateway.infra.config import config
from copilot_gateway.infra.error_handler import (
    InternalError,
    UpstreamError,
    UpstreamErrorKind,
    wrap_llm_error,
)
from copilot_gateway.infra.metrics import llm_call_duration, llm_calls_total, llm_tokens_total
from copilot_gateway.infra.timeout import LLM_CALL_TIMEOUT

logger = logging.getLogger("copilot_gateway.adapters.openai")


class OpenAIChatClient:
    """Lazily constructed AsyncOpenAI client shared by all requests."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key
        self.base_url = base_url
        self._client = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = self.api_key or config.OPENAI_API_KEY
            if not api_key:
                logger.error("OPENAI_API_KEY is not configured")
                raise InternalError("Language model provider is not configured")
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=self.base_url or config.OPENAI_BASE_URL,
                max_retries=0,  # retries are left to the caller
            )
        return self._client


openai_chat_client = OpenAIChatClient()


def parse_chat_completion(response_obj: Any) -> Dict[str, Any]:
    """
    Normalise a chat completion into ``{content, model, total_tokens, finish_reason}``.

    Raises:
        UpstreamError: MALFORMED when content, usage or finish reason is missing
    """
    choices = getattr(response_obj, "choices", None)
    if not choices:
        raise UpstreamError(UpstreamErrorKind.MALFORMED, "openai response has no choices")

    choice = choices[0]
    message = getattr(choice, "message", None)
    content = getattr(message, "content", None)
    if not isinstance(content, str):
        raise UpstreamError(UpstreamErrorKind.MALFORMED, "openai response has no message content")

    finish_reason = getattr(choice, "finish_reason", None)
    if not finish_reason:
        raise UpstreamError(UpstreamErrorKind.MALFORMED, "openai response has no finish reason")

    usage = getattr(response_obj, "usage", None)
    total_tokens = getattr(usage, "total_tokens", None)
    if not isinstance(total_tokens, int):
        raise UpstreamError(UpstreamErrorKind.MALFORMED, "openai response has no token usage")

    return {
        "content": content,
        "model": getattr(response_obj, "model", None),
        "total_tokens": total_tokens,
        "finish_reason": finish_reason,
    }


async def call_chat_completion(
    model: str,
    messages: List[Dict[str, str]],
    max_tokens: int,
    temperature: float,
    timeout: float = LLM_CALL_TIMEOUT,
    chat_client: Optional[OpenAIChatClient] = None,
) -> Dict[str, Any]:
    """
    Call OpenAI Chat Completions once.

    Args:
        model: Model name
        messages: System message followed by conversation turns
        max_tokens: Completion token ceiling
        temperature: Sampling temperature
        timeout: Seconds before the call is abandoned
        chat_client: Client holder (defaults to the shared one)

    Returns:
        Normalised response dict (see ``parse_chat_completion``)

    Raises:
        UpstreamError: Provider failure or malformed response. Not retried.
        InternalError: Provider credential missing
    """
    chat_client = chat_client or openai_chat_client
    client = chat_client.client
    start_time = time.time()

    try:
        response_obj = await asyncio.wait_for(
            client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            ),
            timeout=timeout,
        )
        result = parse_chat_completion(response_obj)
    except Exception as e:
        error = wrap_llm_error(e, "openai")
        llm_calls_total.labels(model=model, status=error.kind.value).inc()
        logger.warning(
            "LLM call failed",
            extra={
                "model": model,
                "error_kind": error.error_kind,
                "error_type": type(e).__name__,
                "latency_ms": int((time.time() - start_time) * 1000),
            },
        )
        raise error from e

    latency = time.time() - start_time
    llm_calls_total.labels(model=model, status="success").inc()
    llm_call_duration.labels(model=model).observe(latency)
    llm_tokens_total.labels(model=model).inc(result["total_tokens"])
    logger.info(
        "LLM call completed",
        extra={
            "model": model,
            "latency_ms": int(latency * 1000),
            "tokens": result["total_tokens"],
            "finish_reason": result["finish_reason"],
        },
    )
    return result
