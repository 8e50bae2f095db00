from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    ASYNC_PENDING = "asynchronous_result"


class ErrorCode:
    VALIDATION_ERROR = "validation_error"
    TIMEOUT = "timeout"
    TOOL_EXCEPTION = "tool_exception"
    TOOL_ERROR = "tool_error"
    UNKNOWN_TOOL = "unknown_tool"
    NOT_PERMITTED = "not_permitted"


@dataclass
class ToolOutcome:
    """Classified result of one tool execution."""

    kind: OutcomeKind
    result: Any = None
    error: str | None = None
    error_code: str | None = None
    diff: str | None = None

    @classmethod
    def ok(cls, result: Any, diff: str | None = None) -> ToolOutcome:
        return cls(kind=OutcomeKind.SUCCESS, result=result, diff=diff)

    @classmethod
    def fail(cls, error: str, error_code: str = ErrorCode.TOOL_ERROR) -> ToolOutcome:
        return cls(kind=OutcomeKind.ERROR, error=error, error_code=error_code)

    @classmethod
    def pending(cls, placeholder: Any) -> ToolOutcome:
        return cls(kind=OutcomeKind.ASYNC_PENDING, result=placeholder)

    @classmethod
    def from_payload(cls, payload: Any) -> ToolOutcome:
        """
        Classify a raw tool return value.

        Dicts follow the ``{result}`` / ``{error}`` /
        ``{state: "asynchronous_result", result}`` contract; anything else is
        treated as a successful free-form result.
        """
        if isinstance(payload, ToolOutcome):
            return payload
        if isinstance(payload, dict):
            if payload.get("state") == OutcomeKind.ASYNC_PENDING.value:
                return cls.pending(payload.get("result"))
            if payload.get("error"):
                return cls.fail(str(payload["error"]))
            if "result" in payload:
                return cls.ok(payload["result"], diff=payload.get("diff"))
        return cls.ok(payload)

    @property
    def is_success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.kind is OutcomeKind.ERROR

    @property
    def is_pending(self) -> bool:
        return self.kind is OutcomeKind.ASYNC_PENDING

    @property
    def content(self) -> str:
        """The string payload handed back to the LLM."""
        if self.is_error:
            return self.error or ""
        return stringify_result(self.result)


def stringify_result(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


@dataclass
class PolicyDecision:
    allowed: bool
    reason: str
    requires_confirmation: bool = False


@dataclass
class AttachmentPayload:
    content: bytes
    filename: str = ""
    content_type: str = "application/octet-stream"
