from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from chatloop.tools.base import Tool
from chatloop.types import ErrorCode, PolicyDecision, ToolOutcome

REDACTED = "***REDACTED***"


class PolicyEngine:
    """
    Decides whether a requested tool may run now, later, or not at all, and
    appends every execution to a JSONL audit log.

    Dangerous tools are allowed but need human approval first.
    """

    def __init__(
        self,
        *,
        dangerous: Iterable[str] | None = None,
        redaction_patterns: list[str] | None = None,
        audit_log_path: str | None = None,
        audit_max_size_mb: int = 10,
        audit_keep_files: int = 5,
    ):
        self.dangerous = set(dangerous or ())
        self._redaction_patterns = [re.compile(p) for p in (redaction_patterns or [])]
        self.audit_path = Path(audit_log_path).expanduser() if audit_log_path else None
        if self.audit_path is not None:
            self.audit_path.parent.mkdir(parents=True, exist_ok=True)
        self.audit_max_bytes = audit_max_size_mb * 1024 * 1024
        self.audit_keep_files = audit_keep_files
        self._audit_lock = asyncio.Lock()

    def is_dangerous(self, name: str) -> bool:
        return name in self.dangerous

    def check(self, name: str, permitted: Iterable[str]) -> PolicyDecision:
        if name not in set(permitted):
            return PolicyDecision(False, ErrorCode.NOT_PERMITTED)
        if self.is_dangerous(name):
            return PolicyDecision(True, "requires_confirmation", requires_confirmation=True)
        return PolicyDecision(True, "ok")

    def redact_args_for_audit(self, tool: Tool | None, args: dict) -> dict:
        redacted = dict(args)
        for f in (tool.secret_fields if tool else []):
            if f in redacted:
                redacted[f] = REDACTED
        for k, v in list(redacted.items()):
            if isinstance(v, str):
                redacted[k] = self._apply_pattern_redaction(v)
        return redacted

    def redact_output_for_audit(self, text: str) -> str:
        return self._apply_pattern_redaction(text)

    def _apply_pattern_redaction(self, s: str) -> str:
        out = s
        for rx in self._redaction_patterns:
            out = rx.sub(REDACTED, out)
        return out

    async def audit_log(
        self,
        *,
        conversation_id: int | None,
        tool_use_id: str,
        tool_name: str,
        tool: Tool | None,
        args: dict,
        outcome: ToolOutcome,
        duration_ms: int,
    ) -> None:
        if self.audit_path is None:
            return
        async with self._audit_lock:
            await self._rotate_if_needed()

            record = {
                "ts": datetime.now(timezone.utc).isoformat(),
                "conversation_id": conversation_id,
                "tool_use_id": tool_use_id,
                "tool_name": tool_name,
                "dangerous": self.is_dangerous(tool_name),
                "duration_ms": duration_ms,
                "outcome": outcome.kind.value,
                "error_code": outcome.error_code,
                "args": self.redact_args_for_audit(tool, args),
                "output": self.redact_output_for_audit(outcome.content[:2000]),
            }

            line = json.dumps(record, sort_keys=True, default=str) + "\n"
            with self.audit_path.open("a", encoding="utf-8") as f:
                f.write(line)
                f.flush()

    async def _rotate_if_needed(self) -> None:
        assert self.audit_path is not None
        if not self.audit_path.exists():
            return
        if self.audit_path.stat().st_size < self.audit_max_bytes:
            return

        for i in range(self.audit_keep_files - 1, 0, -1):
            src = self.audit_path.with_suffix(self.audit_path.suffix + f".{i}")
            dst = self.audit_path.with_suffix(self.audit_path.suffix + f".{i + 1}")
            if src.exists():
                src.replace(dst)

        self.audit_path.replace(
            self.audit_path.with_suffix(self.audit_path.suffix + ".1")
        )
