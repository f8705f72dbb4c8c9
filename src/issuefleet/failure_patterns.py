"""Substring tables for failures that arrive as opaque text.

Only used where no structured signal exists, e.g. stderr of a subprocess
or the message of an exception raised by third-party code.
"""

from __future__ import annotations

from issuefleet.errors import ErrorType

VALIDATION_PATTERNS: tuple[str, ...] = (
    "validation error",
    "invalid_request_error",
    "invalid argument",
)

RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "429",
    "rate limit",
    "rate_limit",
    "too many requests",
    "usage limit",
    "you've hit your limit",
)

QUOTA_PATTERNS: tuple[str, ...] = (
    "403",
    "quota",
    "insufficient_quota",
    "credit balance is too low",
)

TIMEOUT_PATTERNS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "504",
    "etimedout",
)

NETWORK_PATTERNS: tuple[str, ...] = (
    "econnrefused",
    "enotfound",
    "econnreset",
    "enetunreach",
    "network unreachable",
    "connection refused",
    "connection reset",
    "could not resolve host",
)

CRASH_PATTERNS: tuple[str, ...] = (
    "exited",
    "crashed",
    "killed",
    "signal",
    "segmentation fault",
)

# Priority order: the first table with a hit decides.
CLASSIFICATION_ORDER: tuple[tuple[ErrorType, tuple[str, ...]], ...] = (
    (ErrorType.VALIDATION, VALIDATION_PATTERNS),
    (ErrorType.RATE_LIMIT, RATE_LIMIT_PATTERNS),
    (ErrorType.QUOTA_EXCEEDED, QUOTA_PATTERNS),
    (ErrorType.TIMEOUT, TIMEOUT_PATTERNS),
    (ErrorType.NETWORK, NETWORK_PATTERNS),
    (ErrorType.CRASH, CRASH_PATTERNS),
)


def _contains_any(text: str, patterns: tuple[str, ...]) -> bool:
    lower = text.lower()
    return any(pattern in lower for pattern in patterns)


def match_error_text(text: str) -> ErrorType:
    """Map free-form failure text to an :class:`ErrorType`."""
    if not text:
        return ErrorType.UNKNOWN
    for error_type, patterns in CLASSIFICATION_ORDER:
        if _contains_any(text, patterns):
            return error_type
    return ErrorType.UNKNOWN


def looks_like_rate_limit(text: str) -> bool:
    """Return ``True`` when text matches a rate or usage limit."""
    if not text:
        return False
    return _contains_any(text, RATE_LIMIT_PATTERNS)
