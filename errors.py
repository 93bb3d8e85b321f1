"""errors.py

Outcome taxonomy for every chat action.

Each error carries the HTTP status the action surface answers with and a
short machine-readable ``reason`` (clients switch on it; the message is for
humans). Nothing here is retried: the caller sees the first failure.
"""

from __future__ import annotations


class ChatError(Exception):
    status = 500
    default_reason = "internal"

    def __init__(self, message: str = "", reason: str | None = None):
        super().__init__(message or self.default_reason)
        self.message = message or self.default_reason
        self.reason = reason or self.default_reason

    def to_dict(self) -> dict:
        return {"error": self.reason, "message": self.message}


class Unauthenticated(ChatError):
    status = 401
    default_reason = "unauthenticated"


class Forbidden(ChatError):
    status = 403
    default_reason = "forbidden"


class NotFound(ChatError):
    status = 404
    default_reason = "not_found"


class InvalidArgument(ChatError):
    status = 400
    default_reason = "invalid_argument"


class Conflict(ChatError):
    status = 409
    default_reason = "conflict"


class Internal(ChatError):
    status = 500
    default_reason = "internal"
