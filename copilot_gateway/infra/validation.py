"""Input validation and sanitization for copilot requests."""

import re
import uuid
import logging
from typing import Any, Dict, List, Optional, Sequence

from copilot_gateway.infra.error_handler import ValidationError

logger = logging.getLogger("copilot_gateway.validation")

MAX_TURNS = 20
MAX_TURN_LENGTH = 10000
ALLOWED_ROLES = ("user", "assistant")
MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0


def detect_prompt_injection(content: str) -> list:
    """
    Detect prompt injection patterns in content.

    Args:
        content: Message content to check

    Returns:
        List of detected pattern types (empty if none)
    """
    if not content:
        return []

    patterns = []
    content_lower = content.lower()

    # Meta-instructions to override system behavior
    meta_patterns = [
        r"ignore\s+(previous|all|the)\s+(instructions?|rules?|prompts?)",
        r"forget\s+(previous|all|the)\s+(instructions?|rules?|prompts?)",
        r"disregard\s+(previous|all|the)\s+(instructions?|rules?|prompts?)",
        r"you\s+are\s+now\s+(a|an)\s+",
        r"pretend\s+to\s+be",
    ]

    # System prompt disclosure attempts
    disclosure_patterns = [
        r"show\s+(me\s+)?(your\s+)?(system\s+)?(prompt|instructions?|rules?)",
        r"reveal\s+(your\s+)?(system\s+)?(prompt|instructions?|rules?)",
        r"print\s+(your\s+)?(system\s+)?(prompt|instructions?|rules?)",
    ]

    # Cross-project / cross-client access attempts
    cross_access_patterns = [
        r"(show|list|give)\s+me\s+(all|other|another)\s+(projects?|clients?|customers?)",
        r"access\s+(another|other|different)\s+(project|client|account|organization)",
    ]

    all_patterns = [
        ("meta_instruction", meta_patterns),
        ("disclosure_attempt", disclosure_patterns),
        ("cross_access_attempt", cross_access_patterns),
    ]

    for pattern_type, pattern_list in all_patterns:
        for pattern in pattern_list:
            if re.search(pattern, content_lower):
                patterns.append(pattern_type)
                break  # Only report each type once

    return patterns


def sanitize_message_content(content: str, max_length: int = MAX_TURN_LENGTH) -> str:
    """
    Sanitize message content.

    Injection patterns are logged, not blocked; the prompt guardrails and the
    scope-limited context are what keep other clients' data out of reach.
    """
    if not content:
        return ""

    injection_patterns = detect_prompt_injection(content)
    if injection_patterns:
        logger.warning(
            "Prompt injection patterns detected",
            extra={"patterns": injection_patterns, "content_length": len(content)},
        )

    if len(content) > max_length:
        content = content[:max_length] + "... [truncated]"

    # Remove control characters except newlines and tabs
    content = re.sub(r'[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]', '', content)

    return content


def validate_container_id(container_id: Optional[str]) -> Optional[str]:
    """
    Validate an optional project id (UUID).

    Raises:
        ValidationError: If the id is present but not a UUID
    """
    if container_id is None:
        return None
    container_id = container_id.strip()
    if not container_id:
        return None
    try:
        return str(uuid.UUID(container_id))
    except ValueError:
        raise ValidationError("projectId must be a UUID")


def validate_generation_options(options: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Check caller generation overrides.

    Out-of-range values are rejected here; values within range are later
    clamped to the tenant tier's ceilings.

    Raises:
        ValidationError: If temperature is outside [0, 2] or maxTokens is below 1
    """
    if not options:
        return None

    checked = {}
    temperature = options.get("temperature")
    if temperature is not None:
        if not MIN_TEMPERATURE <= temperature <= MAX_TEMPERATURE:
            raise ValidationError(
                f"options.temperature must be between {MIN_TEMPERATURE} and {MAX_TEMPERATURE}"
            )
        checked["temperature"] = temperature

    max_tokens = options.get("max_tokens")
    if max_tokens is not None:
        if max_tokens < 1:
            raise ValidationError("options.maxTokens must be at least 1")
        checked["max_tokens"] = max_tokens

    return checked


def validate_chat_turns(turns: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
    """
    Validate and normalise caller-supplied conversation turns.

    Only user/assistant turns are accepted (callers cannot inject system
    messages), the last turn must come from the user, and only the most
    recent MAX_TURNS are kept.

    Raises:
        ValidationError: If validation fails
    """
    if not turns:
        raise ValidationError("messages must contain at least one message")

    cleaned = []
    for index, turn in enumerate(turns):
        role = (turn.get("role") or "").strip().lower()
        if role not in ALLOWED_ROLES:
            raise ValidationError(
                f"messages[{index}].role must be one of: {', '.join(ALLOWED_ROLES)}"
            )
        content = turn.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError(f"messages[{index}].content cannot be empty")
        cleaned.append({"role": role, "content": sanitize_message_content(content)})

    if cleaned[-1]["role"] != "user":
        raise ValidationError("The last message must have role 'user'")

    return cleaned[-MAX_TURNS:]


def latest_user_query(turns: Sequence[Dict[str, str]]) -> str:
    """Text of the last user turn, used as the retrieval query."""
    for turn in reversed(turns):
        if turn["role"] == "user":
            return turn["content"]
    return ""
