"""
Conversation status and the tool approval workflow.

    resting --start_turn--> working --> resting
                                    \\-> waiting --(approve/reject all)--> working

``canceled`` is an orthogonal flag.  A running turn notices it at its next
round boundary; a waiting conversation is put back to resting at once.
"""

from __future__ import annotations

import logging

from chatloop.errors import InvalidTransitionError, TurnInProgressError
from chatloop.orchestrator.tool_uses import reject_with_message
from chatloop.store.models import (
    Conversation,
    ConversationStatus,
    ToolUse,
    ToolUseStatus,
)
from chatloop.store.store import SQLiteStore

logger = logging.getLogger(__name__)

DEFAULT_REJECTION = "The user rejected this tool call."


class ConversationStateMachine:
    def __init__(self, store: SQLiteStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    @staticmethod
    def can_send_message(conversation: Conversation) -> bool:
        return conversation.is_resting or conversation.canceled

    async def can_retry(self, conversation: Conversation) -> bool:
        if not conversation.is_resting:
            return False
        last = await self.store.last_message(conversation.id)
        return last is not None and last.is_error

    async def pending_tool_uses(self, conversation_id: int) -> list[ToolUse]:
        return await self.store.list_conversation_tool_uses(
            conversation_id, [ToolUseStatus.PENDING]
        )

    async def resume_eligible(self, conversation_id: int) -> bool:
        conv = await self.store.get_conversation(conversation_id)
        if not conv.is_waiting:
            return False
        return not await self.pending_tool_uses(conversation_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start_turn(self, conversation_id: int) -> Conversation:
        """Claim the conversation for a new turn (resting or canceled only)."""
        await self.store.get_conversation(conversation_id)  # NotFoundError for unknown ids
        if not await self.store.claim_turn(conversation_id):
            conv = await self.store.get_conversation(conversation_id)
            raise TurnInProgressError(
                f"Conversation {conversation_id} is {conv.status.value}"
            )
        return await self.store.get_conversation(conversation_id)

    async def resume(self, conversation_id: int) -> Conversation:
        """Move a waiting conversation whose approvals are all settled back to working."""
        if not await self.resume_eligible(conversation_id):
            raise InvalidTransitionError(
                f"Conversation {conversation_id} cannot resume yet"
            )
        await self.store.set_conversation_status(conversation_id, ConversationStatus.WORKING)
        return await self.store.get_conversation(conversation_id)

    async def cancel(self, conversation_id: int, canceled_by: str | None = None) -> Conversation:
        conv = await self.store.get_conversation(conversation_id)
        await self.store.set_canceled(conversation_id, canceled_by)
        if conv.is_waiting:
            for tu in await self.pending_tool_uses(conversation_id):
                await reject_with_message(self.store, tu, "Conversation canceled.")
            await self.store.set_conversation_status(conversation_id, ConversationStatus.RESTING)
        logger.info("Conversation %s canceled by %s", conversation_id, canceled_by)
        return await self.store.get_conversation(conversation_id)

    async def _pending(self, tool_use_row_id: int) -> ToolUse:
        tool_use = await self.store.get_tool_use(tool_use_row_id)
        if tool_use.status is not ToolUseStatus.PENDING:
            raise InvalidTransitionError(
                f"Tool use {tool_use_row_id} is {tool_use.status.value}, not pending"
            )
        return tool_use

    async def approve(self, tool_use_row_id: int) -> ToolUse:
        tool_use = await self._pending(tool_use_row_id)
        await self.store.update_tool_use(tool_use.id, status=ToolUseStatus.APPROVED)
        return await self.store.get_tool_use(tool_use.id)

    async def reject(self, tool_use_row_id: int, message: str | None = None) -> ToolUse:
        tool_use = await self._pending(tool_use_row_id)
        await reject_with_message(self.store, tool_use, message or DEFAULT_REJECTION)
        return await self.store.get_tool_use(tool_use.id)

    async def complete_async_result(
        self, tool_use_row_id: int, content: str, *, is_error: bool = False
    ) -> ToolUse:
        """Finalize the pending result of a ``waiting`` tool use."""
        tool_use = await self.store.get_tool_use(tool_use_row_id)
        if tool_use.status is not ToolUseStatus.WAITING or tool_use.result is None:
            raise InvalidTransitionError(
                f"Tool use {tool_use_row_id} has no pending asynchronous result"
            )
        await self.store.update_tool_result(
            tool_use.result.id, content=content, is_error=is_error, pending=False
        )
        await self.store.update_tool_use(tool_use.id, status=ToolUseStatus.APPROVED)
        return await self.store.get_tool_use(tool_use.id)
