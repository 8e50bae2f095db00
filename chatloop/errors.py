"""Exception hierarchy shared across chatloop."""

from __future__ import annotations


class ChatloopError(Exception):
    """Base class for all chatloop errors."""


class ProviderError(ChatloopError):
    """
    A transport or API failure while talking to an LLM provider.

    Raised for network errors, non-2xx responses, and unusable payloads.
    Aborts the current turn.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TurnInProgressError(ChatloopError):
    """A turn was requested while the conversation is working or waiting."""


class TurnCanceled(ChatloopError):
    """The conversation was canceled while a turn was running."""


class NotFoundError(ChatloopError, LookupError):
    """A persisted record does not exist."""


class InvalidTransitionError(ChatloopError):
    """A status change is not allowed from the record's current state."""
