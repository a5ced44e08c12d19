"""
Queue exceptions and error message hygiene.
"""

import re

from webhook_queue.constants import MAX_LOGGED_ERROR_LENGTH

REDACTED_MESSAGE = "Internal error (details redacted)"

_SENSITIVE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"password",
        r"secret",
        r"token",
        r"api[_-]?key",
        r"connection.*string",
        r"postgres(ql)?(\+\w+)?://",
        r"mysql://",
    )
]


class QueueError(Exception):
    """Base class for webhook queue errors."""


class PayloadRejectedError(QueueError):
    """An enqueue request is malformed and must not be persisted."""

    def __init__(self, reason: str, **details):
        super().__init__(reason)
        self.reason = reason
        self.details = details


def _truncate(message: str) -> str:
    if len(message) > MAX_LOGGED_ERROR_LENGTH:
        return message[:MAX_LOGGED_ERROR_LENGTH] + "..."
    return message


def sanitize_error_message(error: object) -> str:
    """
    Turn an exception into a message safe to log and persist.

    Messages mentioning credentials or connection strings are replaced
    wholesale; everything else is truncated.
    """
    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
        for pattern in _SENSITIVE_PATTERNS:
            if pattern.search(message):
                return REDACTED_MESSAGE
        return _truncate(message)

    if isinstance(error, str):
        return _truncate(error)

    return "Unknown error"
