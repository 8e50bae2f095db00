"""Render persisted conversation history into provider wire formats."""

from __future__ import annotations

from chatloop.history.base import HistoryRenderer
from chatloop.history.function_call import FunctionCallRenderer
from chatloop.history.structured import StructuredContentRenderer
from chatloop.llm.types import WireFormat
from chatloop.store.attachments import AttachmentStore

_RENDERERS: dict[WireFormat, type[HistoryRenderer]] = {
    WireFormat.STRUCTURED_CONTENT: StructuredContentRenderer,
    WireFormat.FUNCTION_CALL: FunctionCallRenderer,
}


def renderer_for(
    wire_format: WireFormat, attachments: AttachmentStore | None = None
) -> HistoryRenderer:
    return _RENDERERS[WireFormat(wire_format)](attachments)


__all__ = [
    "FunctionCallRenderer",
    "HistoryRenderer",
    "StructuredContentRenderer",
    "renderer_for",
]
