"""
Logging utilities for user-supplied text and embedding spend.

Includes:
- Query text sanitization for safe logging
- Structured cost logging for embedding API calls
"""
import json
import logging
import re
from typing import Any, Optional


# Sensitive keys that should be redacted in logs
SENSITIVE_KEYS = [
    "api_key", "token", "password", "secret", "auth",
    "email", "phone", "authorization", "bearer",
]

_EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
_CONTROL_CHARS = re.compile(r'[\x00-\x1F\x7F]')


def sanitize_for_logging(data: Any, max_len: int = 100) -> Any:
    """
    Sanitize data for safe logging - redacts secrets and email addresses.

    Args:
        data: The data to sanitize (dict, list, str, or other types)
        max_len: Maximum length for string values before truncation

    Returns:
        Sanitized version of the data safe for logging
    """
    if data is None:
        return "None"

    if isinstance(data, dict):
        return {
            k: "***REDACTED***" if any(s in k.lower() for s in SENSITIVE_KEYS)
            else sanitize_for_logging(v, max_len)
            for k, v in data.items()
        }

    if isinstance(data, list):
        return [sanitize_for_logging(item, max_len) for item in data]

    if isinstance(data, str):
        cleaned = _EMAIL_PATTERN.sub('[EMAIL_REDACTED]', data)
        cleaned = _CONTROL_CHARS.sub(' ', cleaned)
        if len(cleaned) > max_len:
            return cleaned[:max_len] + "..."
        return cleaned

    return sanitize_for_logging(str(data), max_len)


# =============================================================================
# STRUCTURED COST LOGGING
# =============================================================================

_cost_logger = logging.getLogger("Javari.Cost")


def log_embedding_cost(
    model: str,
    total_tokens: int,
    cost_usd: float,
    item_count: int,
    duration_ms: Optional[int] = None,
    operation: str = "unknown",
) -> None:
    """
    Log a structured cost event for embedding API usage.

    One JSON line per event so dashboards can sum spend. The cost is an
    estimate (tokens x configured rate), not a billing figure.

    Args:
        model: Embedding model identifier
        total_tokens: Tokens reported by the provider
        cost_usd: Estimated cost in USD
        item_count: Number of texts embedded
        duration_ms: Wall time of the operation
        operation: What triggered the call ('query', 'ingestion', 'backfill')
    """
    event = {
        "event": "embedding_cost",
        "model": model,
        "total_tokens": total_tokens,
        "item_count": item_count,
        "cost_usd": round(cost_usd, 6),
        "operation": operation,
    }

    if duration_ms is not None:
        event["duration_ms"] = duration_ms

    _cost_logger.info("EMBEDDING_COST %s", json.dumps(event))
