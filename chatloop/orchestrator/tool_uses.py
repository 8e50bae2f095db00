"""ToolUse transitions shared by the orchestrator and the approval workflow."""

from __future__ import annotations

import logging
from typing import Any

from chatloop.store.models import ToolUse, ToolUseStatus
from chatloop.store.store import SQLiteStore
from chatloop.tools.executor import ToolExecutor
from chatloop.types import ToolOutcome

logger = logging.getLogger(__name__)


def not_available_message(name: str) -> str:
    return (
        f"The tool '{name}' is not available in the current context. "
        "Please use only the tools provided in the system prompt."
    )


async def reject_with_message(
    store: SQLiteStore, tool_use: ToolUse, message: str, *, is_error: bool = False
) -> None:
    """Mark *tool_use* rejected and record *message* as its result."""
    await store.update_tool_use(tool_use.id, status=ToolUseStatus.REJECTED)
    existing = tool_use.result or await store.get_tool_result_for(tool_use.id)
    if existing is None:
        await store.create_tool_result(
            tool_use.id, tool_use.message_id, message, is_error=is_error
        )
    else:
        await store.update_tool_result(existing.id, content=message, is_error=is_error)


async def run_tool_use(
    store: SQLiteStore,
    executor: ToolExecutor,
    owner: Any,
    tool_use: ToolUse,
    *,
    conversation_id: int | None = None,
) -> ToolOutcome:
    """
    Execute an approved tool use and persist what happened.

    success -> ToolResult; error -> rejected with an error result;
    asynchronous -> pending ToolResult and the ToolUse left ``waiting``.
    """
    outcome = await executor.execute(
        tool_use.name,
        owner,
        tool_use.input or {},
        tool_use,
        conversation_id=conversation_id,
    )
    if outcome.is_pending:
        await store.create_tool_result(
            tool_use.id, tool_use.message_id, outcome.content, pending=True
        )
        await store.update_tool_use(tool_use.id, status=ToolUseStatus.WAITING)
        logger.info("Tool %s (%s) is waiting on an asynchronous result", tool_use.name, tool_use.tool_use_id)
    elif outcome.is_error:
        await reject_with_message(store, tool_use, outcome.content, is_error=True)
    else:
        await store.create_tool_result(
            tool_use.id, tool_use.message_id, outcome.content, diff=outcome.diff
        )
    return outcome
