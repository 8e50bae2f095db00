"""LLM subsystem -- providers, streaming tool-call assembly, the url merge rule."""

from chatloop.llm.tool_call_assembler import ToolCallAssembler, ToolCallBuilder
from chatloop.llm.types import (
    EventType,
    ProviderResponse,
    RawToolDelta,
    StreamEvent,
    ToolCall,
    Usage,
    WireFormat,
)
from chatloop.llm.url_merge import UrlMergeRule

__all__ = [
    "EventType",
    "ProviderResponse",
    "RawToolDelta",
    "StreamEvent",
    "ToolCall",
    "ToolCallAssembler",
    "ToolCallBuilder",
    "Usage",
    "UrlMergeRule",
    "WireFormat",
]
