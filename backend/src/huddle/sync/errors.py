"""Errors raised or reported by the chat client."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for chat client failures."""


class AuthError(ChatError):
    """No valid session, or the session may not perform the operation."""


class NotFoundError(ChatError):
    """The target row does not exist."""


class ValidationError(ChatError):
    """Input rejected before any network call was made."""


class TransientBackendError(ChatError):
    """Network or backing store failure; not retried automatically."""


class PartialFailure(ChatError):
    """A secondary step failed while the primary action went through.

    Instances are collected in results and logs, never raised.
    """

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause
