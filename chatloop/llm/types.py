"""Core types for the LLM subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class WireFormat(str, Enum):
    """The two incompatible request shapes providers expect."""

    STRUCTURED_CONTENT = "structured_content"  # tool_use / tool_result blocks
    FUNCTION_CALL = "function_call"  # tool_calls + role "tool" messages


class EventType(str, Enum):
    CONTENT = "content"
    TOOL_CALL_UPDATE = "tool_call_update"
    FINISH = "finish"


@dataclass
class ToolCall:
    """A resolved tool call with parsed arguments."""

    id: str
    name: str
    arguments: dict


@dataclass
class RawToolDelta:
    """
    An incremental fragment of a streaming tool call.

    Providers emit these as tool-call fragments arrive.  ``call_index`` is the
    stable key grouping fragments of one logical call.
    """

    call_index: int
    id: str | None = None
    name: str = ""
    args_delta: str = ""


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0


@dataclass
class StreamEvent:
    """
    One decoded event from a streamed response.

    *content* carries a text fragment for ``CONTENT`` events.
    *tool_deltas* carries partial tool-call fragments for ``TOOL_CALL_UPDATE``.
    *finish_reason* is set on the terminal ``FINISH`` event, which may also
    carry the model name and token usage reported by the provider.
    """

    type: EventType
    content: str = ""
    tool_deltas: list[RawToolDelta] = field(default_factory=list)
    finish_reason: str | None = None
    model: str | None = None
    usage: Usage | None = None


@dataclass
class ProviderResponse:
    """Normalized response of a single-shot call or of a completed stream."""

    content: str = ""
    model: str | None = None
    role: str = "assistant"
    stop_reason: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
