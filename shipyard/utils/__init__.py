"""Shared helpers."""

from .retry import (
    RetryPolicy,
    can_retry,
    get_retry_count,
    retry_denial_reason,
    retry_with_backoff,
)

__all__ = [
    "RetryPolicy",
    "can_retry",
    "get_retry_count",
    "retry_denial_reason",
    "retry_with_backoff",
]
