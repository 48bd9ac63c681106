"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Request metrics
request_count = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
)

# Copilot metrics
copilot_requests_total = Counter(
    "copilot_requests_total",
    "Total copilot chat requests",
    ["tier", "outcome"],  # outcome: success or the usage error kind
)

copilot_quota_denials_total = Counter(
    "copilot_quota_denials_total",
    "Chat requests denied by the daily quota",
    ["tier"],
)

copilot_context_documents = Histogram(
    "copilot_context_documents",
    "Context documents selected per request",
    buckets=(0, 1, 2, 3, 5, 8, 10),
)

# LLM metrics
llm_calls_total = Counter(
    "llm_calls_total",
    "Total LLM API calls",
    ["model", "status"],
)

llm_call_duration = Histogram(
    "llm_call_duration_seconds",
    "LLM API call duration in seconds",
    ["model"],
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Total LLM tokens",
    ["model"],
)

# Audit
usage_record_failures_total = Counter(
    "usage_record_failures_total",
    "Usage records that could not be written",
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
