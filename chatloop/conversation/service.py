"""
Caller-facing conversation API.

``ConversationService`` wires the state machine, the orchestrator and the
background queue together: it records user messages, starts turns in the
foreground or on the ``TurnQueue``, runs approved tools and resumes waiting
conversations, and marks a failed round's message as an error.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from chatloop.conversation.conversable import Conversable
from chatloop.conversation.queue import TurnQueue
from chatloop.conversation.state import ConversationStateMachine
from chatloop.errors import InvalidTransitionError
from chatloop.llm.providers.base import Provider
from chatloop.orchestrator.context import TurnContext, TurnResult
from chatloop.orchestrator.core import StreamingOrchestrator
from chatloop.orchestrator.tool_uses import run_tool_use
from chatloop.store.attachments import AttachmentStore
from chatloop.store.models import (
    AgentType,
    Conversation,
    ConversationStatus,
    Message,
    Role,
    ToolUse,
)
from chatloop.store.store import SQLiteStore
from chatloop.tools.executor import ToolExecutor
from chatloop.tools.policy import PolicyEngine
from chatloop.tools.registry import ToolRegistry
from chatloop.types import AttachmentPayload

logger = logging.getLogger(__name__)

ERROR_PREFIX = "Error processing your streaming request: "


class ConversationService:
    def __init__(
        self,
        store: SQLiteStore,
        provider: Provider,
        registry: ToolRegistry,
        executor: ToolExecutor,
        policy: PolicyEngine,
        *,
        attachments: AttachmentStore | None = None,
        queue: TurnQueue | None = None,
        url_merge_tool: str | None = "get_url",
        followup_delay: float = 0.5,
        max_rounds: int = 25,
        stream: bool = True,
    ) -> None:
        self.store = store
        self.provider = provider
        self.registry = registry
        self.executor = executor
        self.policy = policy
        self.attachments = attachments
        self.queue = queue or TurnQueue()
        self.state = ConversationStateMachine(store)
        self._orchestrator_options = dict(
            url_merge_tool=url_merge_tool,
            followup_delay=followup_delay,
            max_rounds=max_rounds,
            stream=stream,
        )

    def orchestrator_for(self, owner: Any) -> StreamingOrchestrator:
        return StreamingOrchestrator(
            self.store,
            self.provider,
            self.registry,
            self.executor,
            self.policy,
            owner=owner,
            attachments=self.attachments,
            **self._orchestrator_options,
        )

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def ensure_conversation(
        self, owner: Conversable, agent_type: AgentType = AgentType.PLANNER
    ) -> Conversation:
        """Return the owner's latest resting/waiting conversation, or a new one."""
        existing = await self.store.list_conversations(
            owner.owner_type,
            owner.owner_id,
            statuses=[ConversationStatus.RESTING, ConversationStatus.WAITING],
        )
        matching = [c for c in existing if c.agent_type is AgentType(agent_type)]
        if matching:
            return matching[-1]
        return await self.store.create_conversation(
            owner.owner_type, owner.owner_id, agent_type
        )

    async def add_user_message(
        self,
        conversation_id: int,
        text: str,
        *,
        user_id: str | None = None,
        attachments: Iterable[AttachmentPayload] = (),
    ) -> Message:
        payloads = list(attachments)
        if payloads and self.attachments is None:
            raise ValueError("Attachments given but no attachment store is configured")
        msg = await self.store.create_message(
            conversation_id, Role.USER, text, user_id=user_id
        )
        for payload in payloads:
            blob = self.attachments.put(payload)
            msg.attachments.append(
                await self.store.add_attachment(
                    msg.id,
                    filename=payload.filename,
                    content_type=payload.content_type,
                    sha256=blob.sha256,
                    stored_path=blob.stored_path,
                    size_bytes=blob.size_bytes,
                )
            )
        return msg

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def chat(
        self,
        owner: Conversable,
        conversation_id: int,
        text: str,
        *,
        attachments: Iterable[AttachmentPayload] = (),
        tools: Iterable[str] | None = None,
        ctx: TurnContext | None = None,
        background: bool = False,
    ) -> TurnResult | None:
        """
        Record a user message and run a turn.

        Returns the ``TurnResult``, or ``None`` when *background* is set and
        the turn was handed to the queue.
        """
        ctx = ctx or TurnContext()
        await self.state.start_turn(conversation_id)
        try:
            await self.add_user_message(
                conversation_id, text, user_id=ctx.user_id, attachments=attachments
            )
        except Exception:
            await self.store.set_conversation_status(conversation_id, ConversationStatus.RESTING)
            raise
        return await self._dispatch(owner, conversation_id, tools, ctx, background)

    async def retry(
        self,
        owner: Conversable,
        conversation_id: int,
        *,
        tools: Iterable[str] | None = None,
        ctx: TurnContext | None = None,
        background: bool = False,
    ) -> TurnResult | None:
        """Run a fresh turn after a failed one, without a new user message."""
        conv = await self.store.get_conversation(conversation_id)
        if not await self.state.can_retry(conv):
            raise InvalidTransitionError(f"Conversation {conversation_id} cannot be retried")
        await self.state.start_turn(conversation_id)
        return await self._dispatch(owner, conversation_id, tools, ctx or TurnContext(), background)

    async def _dispatch(
        self,
        owner: Conversable,
        conversation_id: int,
        tools: Iterable[str] | None,
        ctx: TurnContext,
        background: bool,
    ) -> TurnResult | None:
        tools = list(tools) if tools is not None else None
        if background:
            self.queue.submit(lambda: self.run_turn(owner, conversation_id, tools, ctx))
            return None
        return await self.run_turn(owner, conversation_id, tools, ctx)

    async def run_turn(
        self,
        owner: Conversable,
        conversation_id: int,
        tools: Iterable[str] | None = None,
        ctx: TurnContext | None = None,
    ) -> TurnResult:
        conv = await self.store.get_conversation(conversation_id)
        result = await self.orchestrator_for(owner).run_turn(conv, tools, ctx)
        if result.error and result.last_message_id is not None:
            await self.store.update_message(
                result.last_message_id,
                is_error=True,
                content=ERROR_PREFIX + result.error,
            )
        return result

    async def cancel(self, conversation_id: int, canceled_by: str | None = None) -> Conversation:
        return await self.state.cancel(conversation_id, canceled_by)

    # ------------------------------------------------------------------
    # Approval workflow
    # ------------------------------------------------------------------

    async def approve_tool_use(
        self,
        owner: Conversable,
        tool_use_row_id: int,
        *,
        tools: Iterable[str] | None = None,
        ctx: TurnContext | None = None,
    ) -> TurnResult | None:
        """Approve and execute a pending tool use, resuming the turn if possible."""
        tool_use = await self.state.approve(tool_use_row_id)
        conversation_id = await self.store.conversation_id_for_tool_use(tool_use.id)
        await run_tool_use(
            self.store, self.executor, owner, tool_use, conversation_id=conversation_id
        )
        return await self._resume_if_eligible(owner, conversation_id, tools, ctx)

    async def reject_tool_use(
        self,
        owner: Conversable,
        tool_use_row_id: int,
        message: str | None = None,
        *,
        tools: Iterable[str] | None = None,
        ctx: TurnContext | None = None,
    ) -> TurnResult | None:
        tool_use = await self.state.reject(tool_use_row_id, message)
        conversation_id = await self.store.conversation_id_for_tool_use(tool_use.id)
        return await self._resume_if_eligible(owner, conversation_id, tools, ctx)

    async def complete_async_result(
        self,
        owner: Conversable,
        tool_use_row_id: int,
        content: str,
        *,
        is_error: bool = False,
        resume: bool = True,
        tools: Iterable[str] | None = None,
        ctx: TurnContext | None = None,
    ) -> TurnResult | None:
        """Finalize an asynchronous tool result and optionally hand it to the LLM."""
        tool_use = await self.state.complete_async_result(
            tool_use_row_id, content, is_error=is_error
        )
        conversation_id = await self.store.conversation_id_for_tool_use(tool_use.id)
        if not resume:
            return None
        conv = await self.store.get_conversation(conversation_id)
        if conv.is_waiting:
            return await self._resume_if_eligible(owner, conversation_id, tools, ctx)
        if not self.state.can_send_message(conv):
            logger.info(
                "Conversation %s busy; async result for %s will be seen next turn",
                conversation_id,
                tool_use.tool_use_id,
            )
            return None
        await self.state.start_turn(conversation_id)
        return await self.run_turn(owner, conversation_id, tools, ctx)

    async def _resume_if_eligible(
        self,
        owner: Conversable,
        conversation_id: int,
        tools: Iterable[str] | None,
        ctx: TurnContext | None,
    ) -> TurnResult | None:
        if not await self.state.resume_eligible(conversation_id):
            return None
        await self.state.resume(conversation_id)
        logger.info("Resuming conversation %s after tool approvals", conversation_id)
        return await self.run_turn(owner, conversation_id, tools, ctx)

    async def pending_tool_uses(self, conversation_id: int) -> list[ToolUse]:
        return await self.state.pending_tool_uses(conversation_id)
