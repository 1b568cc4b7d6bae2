"""
Errors raised while accepting a chat request.

RelayError subclasses are caller-visible and map directly to an HTTP status
and a public message. ProviderError marks an upstream completion failure.
"""

from __future__ import annotations


class RelayError(Exception):
    """A request-level failure reported before any stream output."""

    status_code: int = 500
    message: str = "Failed to process request"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class IdentityRequired(RelayError):
    status_code = 400
    message = "User identity required"


class MessageRequired(RelayError):
    status_code = 400
    message = "Message is required"


class AccountNotFound(RelayError):
    status_code = 404
    message = "User not found"


class ConversationNotFound(RelayError):
    status_code = 404
    message = "Chat not found"


class ProviderError(Exception):
    """The completion provider refused or failed the request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
