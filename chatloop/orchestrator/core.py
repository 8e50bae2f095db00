"""
Streaming orchestrator -- drives one conversation turn to a terminal state.

A turn is a sequence of rounds.  Each round:
1. Renders the system prompt and history for the provider's wire format
2. Streams a completion into a fresh assistant message, persisting text as
   it arrives and accumulating tool-call fragments per index
3. On the finish event, resolves the tool calls (url merge rule included)
   and gates each one: not permitted -> rejected, dangerous -> pending and
   the conversation ``waiting``, otherwise executed
4. Persists model, finish reason and usage onto the round's message

Another round follows when tool results were produced and nothing is
waiting for approval.  Whatever happens, the conversation ends ``resting``
unless it is ``waiting``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable

from chatloop.errors import ProviderError, TurnCanceled
from chatloop.history import HistoryRenderer, renderer_for
from chatloop.llm.providers.base import Provider
from chatloop.llm.tool_call_assembler import ToolCallAssembler
from chatloop.llm.types import EventType, ProviderResponse, StreamEvent, ToolCall
from chatloop.llm.url_merge import UrlMergeRule
from chatloop.orchestrator.context import TurnContext, TurnResult
from chatloop.orchestrator.tool_uses import (
    not_available_message,
    reject_with_message,
    run_tool_use,
)
from chatloop.prompts.system import build_system_prompt
from chatloop.store.attachments import AttachmentStore
from chatloop.store.models import (
    Conversation,
    ConversationStatus,
    Message,
    Role,
    ToolUseStatus,
)
from chatloop.store.store import SQLiteStore
from chatloop.tools.executor import ToolExecutor
from chatloop.tools.policy import PolicyEngine
from chatloop.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class _Round:
    """Mutable state of one provider call."""

    message: Message
    rule: UrlMergeRule
    assembler: ToolCallAssembler = field(default_factory=ToolCallAssembler)
    content: str = ""
    finished: bool = False
    results_pending: bool = False
    waiting: bool = False
    processed_ids: set[str] = field(default_factory=set)


class StreamingOrchestrator:
    """
    Parameters
    ----------
    store : SQLiteStore
        Persistence for conversations, messages and tool state.
    provider : Provider
        LLM endpoint; its ``wire_format`` selects the history renderer.
    registry : ToolRegistry
        Resolves tool names to implementations.
    executor : ToolExecutor
        Runs approved tools.
    policy : PolicyEngine
        Permission and danger gate.
    owner : object
        The conversable; supplies system messages and is handed to tools.
    attachments : AttachmentStore
        Source of attachment bytes for history rendering.
    url_merge_tool : str
        Fetch tool name for the url merge rule (falsy disables it).
    followup_delay : float
        Seconds to wait before a follow-up round.
    max_rounds : int
        Upper bound on rounds per turn.
    stream : bool
        Stream completions (default) or use single-shot calls.
    """

    def __init__(
        self,
        store: SQLiteStore,
        provider: Provider,
        registry: ToolRegistry,
        executor: ToolExecutor,
        policy: PolicyEngine,
        *,
        owner: Any = None,
        attachments: AttachmentStore | None = None,
        renderer: HistoryRenderer | None = None,
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
        self.owner = owner
        self.renderer = renderer or renderer_for(provider.wire_format, attachments)
        self.url_merge_tool = url_merge_tool
        self.followup_delay = followup_delay
        self.max_rounds = max_rounds
        self.stream = stream

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def run_turn(
        self,
        conversation: Conversation,
        tools: Iterable[str] | None = None,
        ctx: TurnContext | None = None,
        message: Message | None = None,
    ) -> TurnResult:
        """
        Run rounds until the turn is terminal and return a summary.

        *tools* names the tools permitted for this turn (all registered
        tools when ``None``).  *message* is an optional pre-created empty
        assistant message for the first round.
        """
        ctx = ctx or TurnContext()
        result = TurnResult(conversation_id=conversation.id)
        definitions = self.registry.definitions(tools)
        permitted = {d["name"] for d in definitions}

        await self.store.set_conversation_status(conversation.id, ConversationStatus.WORKING)
        try:
            for round_no in range(1, self.max_rounds + 1):
                if round_no > 1:
                    await asyncio.sleep(self.followup_delay)
                await self._check_canceled(conversation.id, ctx)

                if message is None or round_no > 1:
                    message = await self.store.create_message(
                        conversation.id, Role.ASSISTANT, "", user_id=ctx.user_id
                    )
                result.message_ids.append(message.id)
                result.rounds = round_no

                state = await self._run_round(conversation, message, definitions, permitted, ctx)
                if state.waiting:
                    logger.info("Conversation %s waiting for tool approval", conversation.id)
                    break
                if not state.results_pending:
                    break
                logger.info("Making follow-up call to LLM with tool results")
            else:
                logger.warning(
                    "Conversation %s hit max_rounds=%d", conversation.id, self.max_rounds
                )
        except TurnCanceled:
            logger.info("Turn canceled for conversation %s", conversation.id)
            result.canceled = True
        except ProviderError as exc:
            logger.error("Provider error in conversation %s: %s", conversation.id, exc)
            result.error = str(exc)
        except Exception as exc:
            logger.exception("Error in streaming orchestrator for conversation %s", conversation.id)
            result.error = str(exc)
        finally:
            current = await self.store.get_conversation(conversation.id)
            if current.status is not ConversationStatus.WAITING:
                await self.store.set_conversation_status(
                    conversation.id, ConversationStatus.RESTING
                )
                result.status = ConversationStatus.RESTING
            else:
                result.status = ConversationStatus.WAITING
        return result

    async def _check_canceled(self, conversation_id: int, ctx: TurnContext) -> None:
        if ctx.cancel_requested:
            raise TurnCanceled(f"Conversation {conversation_id} canceled")
        conv = await self.store.get_conversation(conversation_id)
        if conv.canceled:
            raise TurnCanceled(f"Conversation {conversation_id} canceled by {conv.canceled_by}")

    # ------------------------------------------------------------------
    # Round
    # ------------------------------------------------------------------

    async def _run_round(
        self,
        conversation: Conversation,
        message: Message,
        definitions: list[dict],
        permitted: set[str],
        ctx: TurnContext,
    ) -> _Round:
        state = _Round(message=message, rule=UrlMergeRule(self.url_merge_tool))
        system = build_system_prompt(self.owner, conversation.agent_type, definitions)
        history = self.renderer.render(
            await self.store.get_history(conversation.id), conversation.agent_type
        )
        tools_arg = definitions or None

        if self.stream:
            async def on_event(event: StreamEvent) -> None:
                await self._on_event(event, state, conversation, permitted, ctx)

            response = await self.provider.stream_chat(system, history, tools_arg, on_event)
            if not state.finished and response.tool_calls:
                logger.info("Stream ended without finish; processing final tool calls")
                await self._process_tool_calls(response.tool_calls, state, conversation, permitted)
        else:
            response = await self.provider.chat(system, history, tools_arg)
            if response.content:
                state.content = response.content
                await self.store.update_message(message.id, content=state.content)
                if ctx.on_chunk is not None:
                    await ctx.on_chunk(response.content)
            if response.tool_calls:
                await self._process_tool_calls(response.tool_calls, state, conversation, permitted)

        await self._apply_url_fallback(state, conversation, permitted)
        await self._record_response(message, response)
        return state

    async def _on_event(
        self,
        event: StreamEvent,
        state: _Round,
        conversation: Conversation,
        permitted: set[str],
        ctx: TurnContext,
    ) -> None:
        if event.type is EventType.CONTENT:
            state.content += event.content
            await self.store.update_message(state.message.id, content=state.content)
            if ctx.on_chunk is not None:
                await ctx.on_chunk(event.content)

        elif event.type is EventType.TOOL_CALL_UPDATE:
            for delta in event.tool_deltas:
                state.assembler.feed(delta)
            state.rule.observe(state.assembler.builders())

        elif event.type is EventType.FINISH:
            state.finished = True
            if state.assembler:
                calls = state.assembler.finalize()
                await self._process_tool_calls(calls, state, conversation, permitted)

    async def _record_response(self, message: Message, response: ProviderResponse) -> None:
        usage = response.usage
        await self.store.update_message(
            message.id,
            model=response.model,
            finish_reason=response.stop_reason,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cache_creation_input_tokens=usage.cache_creation_input_tokens,
            cache_read_input_tokens=usage.cache_read_input_tokens,
        )

    # ------------------------------------------------------------------
    # Tool calls
    # ------------------------------------------------------------------

    async def _process_tool_calls(
        self,
        calls: list[ToolCall],
        state: _Round,
        conversation: Conversation,
        permitted: set[str],
    ) -> None:
        for call in state.rule.merge(list(calls)):
            if call.id and call.id in state.processed_ids:
                continue
            if call.id:
                state.processed_ids.add(call.id)
            if not call.name:
                continue
            state.rule.fill(call)
            logger.debug("Processing tool call %s %s %r", call.id, call.name, call.arguments)
            await self._handle_call(call, state, conversation, permitted)

    async def _handle_call(
        self,
        call: ToolCall,
        state: _Round,
        conversation: Conversation,
        permitted: set[str],
    ) -> None:
        message_id = state.message.id
        tool_use = await self.store.find_tool_use(message_id, call.name)
        if tool_use is not None:
            # One ToolUse per name per message; executed input is never rewritten.
            if tool_use.result is not None:
                logger.debug("Tool use %s for %s already has a result", tool_use.id, call.name)
                return
            await self.store.update_tool_use(tool_use.id, input=call.arguments)
            tool_use = await self.store.get_tool_use(tool_use.id)
        else:
            tool_use = await self.store.create_tool_use(
                message_id, call.name, call.arguments, call.id or str(uuid.uuid4())
            )

        if tool_use.result is not None:
            return

        decision = self.policy.check(call.name, permitted)
        if not decision.allowed:
            logger.warning("Rejecting tool %s: %s", call.name, decision.reason)
            await reject_with_message(self.store, tool_use, not_available_message(call.name))
            return

        if decision.requires_confirmation:
            await self.store.update_tool_use(tool_use.id, status=ToolUseStatus.PENDING)
            await self.store.set_conversation_status(conversation.id, ConversationStatus.WAITING)
            state.waiting = True
            logger.info("Tool %s requires approval (tool_use %s)", call.name, tool_use.id)
            return

        await self.store.update_tool_use(tool_use.id, status=ToolUseStatus.APPROVED)
        await run_tool_use(
            self.store,
            self.executor,
            self.owner,
            tool_use,
            conversation_id=conversation.id,
        )
        state.results_pending = True

    async def _apply_url_fallback(
        self, state: _Round, conversation: Conversation, permitted: set[str]
    ) -> None:
        """Synthesize a fetch call for a captured url that never landed on one."""
        url = state.rule.take_fallback()
        if not url:
            return
        fetch = state.rule.fetch_tool
        if await self.store.find_tool_use(state.message.id, fetch) is not None:
            return
        logger.info("Creating %s tool use for captured url %s", fetch, url)
        call = ToolCall(id=str(uuid.uuid4()), name=fetch, arguments={"url": url})
        await self._handle_call(call, state, conversation, permitted)
