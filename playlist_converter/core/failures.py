"""
Failure Classifier

Maps a failed service response to one of the error kinds the orchestrator
reacts to. Both providers report through HTTP status codes, but quota
exhaustion looks different on each:

- YouTube: 403 with reason quotaExceeded (or one of the rate limit reasons)
- Spotify: 429 Too Many Requests

A 403 without a quota reason is a plain permission failure and is treated as
transient; only 401 means the session itself is gone.
"""

import json
import logging
from typing import Iterable

from core.errors import (NotFoundError, QuotaExceededError, ServiceError,
                         TransientError, UnauthorizedError)
from core.models import Service

logger = logging.getLogger(__name__)

QUOTA_REASONS = frozenset({
    "quotaExceeded",
    "dailyLimitExceeded",
    "rateLimitExceeded",
    "userRateLimitExceeded",
})


def classify(service: Service, operation: str, status: int,
             reasons: Iterable[str] = (), message: str = "") -> ServiceError:
    """Return the exception matching a failed response. Does not raise it."""
    reasons = set(reasons)

    if status == 401:
        error_cls = UnauthorizedError
    elif status == 403 and reasons & QUOTA_REASONS:
        error_cls = QuotaExceededError
    elif status == 429:
        error_cls = QuotaExceededError
    elif status == 404:
        error_cls = NotFoundError
    else:
        error_cls = TransientError

    detail = f"HTTP {status}" + (f" {message}" if message else "")
    logger.debug(f"{service.display_name} {operation} -> {error_cls.__name__} ({detail})")
    return error_cls(service, operation, detail)


def error_reasons(content: bytes | str | None) -> tuple[list[str], str]:
    """Extract (reasons, message) from a Google or Spotify JSON error body.

    Google: {"error": {"code": 403, "message": "...", "errors": [{"reason": "quotaExceeded"}]}}
    Spotify: {"error": {"status": 401, "message": "The access token expired"}}
    """
    if not content:
        return [], ""
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")

    try:
        data = json.loads(content)
    except ValueError:
        return [], content[:200]

    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, str):
        # OAuth token endpoint style: {"error": "invalid_grant", ...}
        return [error], data.get("error_description", "")
    if not isinstance(error, dict):
        return [], ""

    reasons = [e.get("reason", "") for e in error.get("errors", []) if isinstance(e, dict)]
    return [r for r in reasons if r], error.get("message", "")
