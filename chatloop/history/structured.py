"""Structured-content shape: tool_use / tool_result blocks inside messages."""

from __future__ import annotations

import logging

from chatloop.history.base import IMAGE_TYPES, PDF_TYPE, HistoryRenderer
from chatloop.llm.types import WireFormat
from chatloop.store.models import Message

logger = logging.getLogger(__name__)

EMPTY_USER_TEXT = "Empty message"
CACHE_HINT = {"type": "ephemeral"}
CACHED_USER_TURNS = 2


class StructuredContentRenderer(HistoryRenderer):
    wire_format = WireFormat.STRUCTURED_CONTENT

    def _user_blocks(self, msg: Message) -> list[dict]:
        blocks: list[dict] = []
        for att in msg.attachments:
            if att.content_type in IMAGE_TYPES:
                kind = "image"
            elif att.content_type == PDF_TYPE:
                kind = "document"
            else:
                logger.warning(
                    "Unsupported attachment type for LLM: %s, filename: %s",
                    att.content_type,
                    att.filename,
                )
                continue
            data = self._attachment_b64(att)
            if data is None:
                continue
            blocks.append(
                {
                    "type": kind,
                    "source": {
                        "type": "base64",
                        "media_type": att.content_type,
                        "data": data,
                    },
                }
            )
        text = msg.content or ""
        if text.strip():
            blocks.insert(0, {"type": "text", "text": text})
        elif not blocks:
            blocks.append({"type": "text", "text": EMPTY_USER_TEXT})
        return blocks

    def render_plain(self, msg: Message) -> dict:
        if msg.is_user:
            return {"role": "user", "content": self._user_blocks(msg)}
        return {"role": msg.role.value, "content": msg.content or None}

    def render_with_tools(self, msg: Message) -> list[dict]:
        if msg.is_user:
            content = self._user_blocks(msg)
        else:
            content = [{"type": "text", "text": msg.content}] if msg.content else []

        results: list[dict] = []
        for tu in msg.tool_uses:
            content.append(
                {
                    "type": "tool_use",
                    "id": tu.tool_use_id,
                    "name": tu.name,
                    "input": tu.input or {},
                }
            )
            if tu.result is not None:
                results.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": tu.tool_use_id,
                        "content": tu.result.content or "",
                        "is_error": bool(tu.result.is_error),
                    }
                )

        out = [{"role": msg.role.value, "content": content}]
        if results:
            out.append({"role": "user", "content": results})
        return out

    def finish(self, rendered: list[dict]) -> list[dict]:
        """Attach the prompt-cache hint to the last entry of the last two user turns."""
        users = [m for m in rendered if m["role"] == "user"]
        for m in users[-CACHED_USER_TURNS:]:
            content = m.get("content")
            if isinstance(content, list) and content and isinstance(content[-1], dict):
                content[-1]["cache_control"] = dict(CACHE_HINT)
        return rendered
