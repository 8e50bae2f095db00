"""
Tool invocation with outcome classification.

``ToolExecutor.execute`` always returns a ``ToolOutcome``; nothing a tool
raises escapes it.  Every call is validated against the tool's JSON schema,
bounded by a timeout, and written to the policy audit log.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from chatloop.tools.policy import PolicyEngine
from chatloop.tools.registry import ToolRegistry
from chatloop.tools.validation import ToolValidator
from chatloop.types import ErrorCode, ToolOutcome

logger = logging.getLogger(__name__)


class ToolExecutor:
    def __init__(
        self,
        registry: ToolRegistry,
        *,
        policy: PolicyEngine | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.registry = registry
        self.policy = policy
        self.timeout = timeout

    async def execute(
        self,
        name: str,
        owner: Any,
        args: dict,
        tool_use: Any = None,
        *,
        conversation_id: int | None = None,
    ) -> ToolOutcome:
        tool = self.registry.get(name)
        started = time.monotonic()

        if tool is None:
            outcome = ToolOutcome.fail(f"Unknown tool: {name}", ErrorCode.UNKNOWN_TOOL)
        else:
            ok, err = ToolValidator.validate(tool, args)
            if not ok:
                outcome = ToolOutcome.fail(
                    f"Invalid arguments for {name}: {err}", ErrorCode.VALIDATION_ERROR
                )
            else:
                outcome = await self._invoke(tool, owner, args, tool_use)

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "tool=%s outcome=%s duration_ms=%d", name, outcome.kind.value, duration_ms
        )
        if self.policy is not None:
            await self.policy.audit_log(
                conversation_id=conversation_id,
                tool_use_id=getattr(tool_use, "tool_use_id", "") or "",
                tool_name=name,
                tool=tool,
                args=args,
                outcome=outcome,
                duration_ms=duration_ms,
            )
        return outcome

    async def _invoke(self, tool, owner: Any, args: dict, tool_use: Any) -> ToolOutcome:
        try:
            raw = await asyncio.wait_for(
                tool.execute(owner, args, tool_use), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            return ToolOutcome.fail(
                f"Tool {tool.name} timed out after {self.timeout}s", ErrorCode.TIMEOUT
            )
        except Exception as exc:
            logger.exception("Error executing tool %s", tool.name)
            return ToolOutcome.fail(
                f"Error executing tool: {exc}", ErrorCode.TOOL_EXCEPTION
            )
        return ToolOutcome.from_payload(raw)
