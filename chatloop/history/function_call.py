"""Function-call shape: ``tool_calls`` on assistant turns, ``tool`` role results."""

from __future__ import annotations

import json
import logging
import secrets

from chatloop.history.base import IMAGE_TYPES, PDF_TYPE, HistoryRenderer
from chatloop.llm.types import WireFormat
from chatloop.store.models import Message, ToolUse

logger = logging.getLogger(__name__)


def fallback_tool_id(name: str) -> str:
    return f"tool_{secrets.token_hex(4)}_{name}"


class FunctionCallRenderer(HistoryRenderer):
    wire_format = WireFormat.FUNCTION_CALL

    def _user_parts(self, msg: Message) -> list[dict]:
        # The text part always comes first, even when empty.
        parts: list[dict] = [{"type": "text", "text": msg.content or ""}]
        for att in msg.attachments:
            if att.content_type in IMAGE_TYPES:
                data = self._attachment_b64(att)
                if data is not None:
                    parts.append(
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{att.content_type};base64,{data}"},
                        }
                    )
            elif att.content_type == PDF_TYPE:
                data = self._attachment_b64(att)
                if data is not None:
                    parts.append(
                        {
                            "type": "file",
                            "file": {
                                "filename": att.filename,
                                "file_data": f"data:{PDF_TYPE};base64,{data}",
                            },
                        }
                    )
            else:
                logger.warning(
                    "Unsupported attachment type for LLM: %s, filename: %s",
                    att.content_type,
                    att.filename,
                )
        return parts

    def render_plain(self, msg: Message) -> dict:
        if msg.is_user:
            return {"role": "user", "content": self._user_parts(msg)}
        return {"role": msg.role.value, "content": msg.content or None}

    @staticmethod
    def _arguments(tu: ToolUse) -> str:
        return json.dumps(tu.input if isinstance(tu.input, dict) else {})

    def render_with_tools(self, msg: Message) -> list[dict]:
        out: list[dict] = []
        if msg.is_user or msg.content:
            out.append(self.render_plain(msg))

        calls: list[dict] = []
        results: list[dict] = []
        for tu in msg.tool_uses:
            call_id = tu.tool_use_id or fallback_tool_id(tu.name)
            calls.append(
                {
                    "id": call_id,
                    "type": "function",
                    "function": {"name": tu.name, "arguments": self._arguments(tu)},
                }
            )
            if tu.result is not None:
                results.append(
                    {
                        "role": "tool",
                        "tool_call_id": call_id,
                        "name": tu.name,
                        "content": tu.result.content or "",
                    }
                )

        out.append({"role": "assistant", "content": None, "tool_calls": calls})
        out.extend(results)
        return out
