from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from chatloop.store.models import ConversationStatus

ChunkCallback = Callable[[str], Awaitable[None]]


@dataclass
class TurnContext:
    """
    Per-turn values threaded explicitly through the orchestrator.

    *cancel_event* is a local cancellation handle; the persisted
    ``Conversation.canceled`` flag is checked as well.  *on_chunk* receives
    every streamed text fragment.
    """

    user_id: str | None = None
    cancel_event: asyncio.Event | None = None
    on_chunk: ChunkCallback | None = None

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass
class TurnResult:
    conversation_id: int
    status: ConversationStatus = ConversationStatus.RESTING
    message_ids: list[int] = field(default_factory=list)
    rounds: int = 0
    canceled: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.canceled

    @property
    def last_message_id(self) -> int | None:
        return self.message_ids[-1] if self.message_ids else None
