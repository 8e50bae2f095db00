"""
History rendering: persisted records -> provider request messages.

Each wire format has its own ``HistoryRenderer``.  All renderers share the
walk over messages (creation order, error messages skipped) and the final
filter (empty non-user turns dropped, user turns always kept); subclasses
only decide how one message and its tool uses look on the wire.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from chatloop.llm.types import WireFormat
from chatloop.store.attachments import AttachmentStore
from chatloop.store.models import AgentType, Attachment, Message

logger = logging.getLogger(__name__)

IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")
PDF_TYPE = "application/pdf"


class HistoryRenderer(ABC):
    wire_format: WireFormat

    def __init__(self, attachments: AttachmentStore | None = None) -> None:
        self.attachments = attachments

    def render(
        self, messages: list[Message], agent_type: AgentType = AgentType.CODER
    ) -> list[dict]:
        with_tools = AgentType(agent_type).uses_tools
        rendered: list[dict] = []
        for msg in messages:
            if msg.is_error:
                continue
            if with_tools and msg.tool_uses:
                rendered.extend(self.render_with_tools(msg))
            else:
                rendered.append(self.render_plain(msg))
        kept = [m for m in rendered if self._keep(m)]
        return self.finish(kept)

    @abstractmethod
    def render_plain(self, msg: Message) -> dict: ...

    @abstractmethod
    def render_with_tools(self, msg: Message) -> list[dict]: ...

    def finish(self, rendered: list[dict]) -> list[dict]:
        return rendered

    @staticmethod
    def _keep(m: dict) -> bool:
        if m.get("role") == "user":
            return True
        return bool(m.get("content")) or bool(m.get("tool_calls"))

    def _attachment_b64(self, attachment: Attachment) -> str | None:
        """Base64 of an attachment's bytes, or ``None`` if it cannot be read."""
        if self.attachments is None:
            logger.warning(
                "No attachment store configured; skipping %s", attachment.filename
            )
            return None
        try:
            return self.attachments.read_base64(attachment)
        except (OSError, ValueError) as exc:
            logger.error(
                "Error processing attachment %s for LLM: %s", attachment.id, exc
            )
            return None
