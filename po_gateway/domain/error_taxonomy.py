"""Broker error classification driving retry and surfacing policy"""

import re
from typing import Optional, Union

from po_gateway.domain.models import ErrorCategory

_AUTH_PATTERN = re.compile(r"AUTH_FAILED|AUTH_REQUIRED|TOKEN_EXPIRED", re.IGNORECASE)
_RATE_LIMIT_PATTERN = re.compile(r"RATE_LIMITED", re.IGNORECASE)
_TRANSIENT_PATTERN = re.compile(r"timeout|network|ECONNREFUSED|SERVER_ERROR", re.IGNORECASE)


def classify(error: Union[BaseException, str], status_code: Optional[int] = None) -> ErrorCategory:
    """
    Classify a broker error into a category.

    The status code wins over message matching: 401/403 → AUTH, 429 →
    RATE_LIMIT, 5xx → TRANSIENT, other 4xx → PERMANENT. Without one, the
    message prefix decides. Unknown errors are PERMANENT so they are never
    retried.
    """
    message = error if isinstance(error, str) else str(error)

    if status_code is None and not isinstance(error, str):
        status_code = getattr(error, "status_code", None)

    if status_code:
        if status_code in (401, 403):
            return ErrorCategory.AUTH
        if status_code == 429:
            return ErrorCategory.RATE_LIMIT
        if status_code >= 500:
            return ErrorCategory.TRANSIENT
        if 400 <= status_code < 500:
            return ErrorCategory.PERMANENT

    if _AUTH_PATTERN.search(message):
        return ErrorCategory.AUTH
    if _RATE_LIMIT_PATTERN.search(message):
        return ErrorCategory.RATE_LIMIT
    if _TRANSIENT_PATTERN.search(message):
        return ErrorCategory.TRANSIENT

    return ErrorCategory.PERMANENT


def should_retry(category: ErrorCategory) -> bool:
    """Only transient failures and rate limits are worth another attempt"""
    return category in (ErrorCategory.TRANSIENT, ErrorCategory.RATE_LIMIT)


def is_retryable_error(error: BaseException) -> bool:
    """Retry predicate for retry_with_backoff (should_retry ∘ classify)"""
    return should_retry(classify(error))
