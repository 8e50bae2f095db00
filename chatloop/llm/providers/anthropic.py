"""
Anthropic Messages API provider.

Expects the structured-content history shape (``tool_use`` /
``tool_result`` blocks) and sends the prompt-caching beta header so the
``cache_control`` hints placed by the history renderer take effect.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

from chatloop.errors import ProviderError
from chatloop.llm.providers.base import HTTPProvider
from chatloop.llm.types import (
    EventType,
    ProviderResponse,
    RawToolDelta,
    StreamEvent,
    ToolCall,
    Usage,
    WireFormat,
)

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
PROMPT_CACHING_BETA = "prompt-caching-2024-07-31"


def parse_usage(raw: dict | None, base: Usage | None = None) -> Usage | None:
    if not raw:
        return base
    usage = base or Usage()
    for key in (
        "input_tokens",
        "output_tokens",
        "cache_creation_input_tokens",
        "cache_read_input_tokens",
    ):
        if raw.get(key) is not None:
            setattr(usage, key, int(raw[key]))
    return usage


class AnthropicProvider(HTTPProvider):
    """
    Provider for ``https://api.anthropic.com/v1/messages``.

    Parameters
    ----------
    url:
        Base URL of the API.
    model:
        Model identifier.
    api_key:
        Sent as ``x-api-key``.
    """

    wire_format = WireFormat.STRUCTURED_CONTENT

    def __init__(
        self,
        url: str = "https://api.anthropic.com",
        model: str = "claude-3-5-sonnet-latest",
        api_key: str = "",
        **kwargs,
    ) -> None:
        super().__init__(url=url, model=model, api_key=api_key, **kwargs)

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def endpoint(self) -> str:
        return "/v1/messages"

    def _build_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "anthropic-beta": PROMPT_CACHING_BETA,
        }

    def _build_body(
        self,
        system: list[dict],
        history: list[dict],
        tools: list[dict] | None,
        stream: bool,
    ) -> dict:
        body: dict = {
            "model": self._model,
            "messages": history,
            "max_tokens": self._max_tokens,
            "stream": stream,
        }
        if system:
            body["system"] = system
        if tools:
            body["tools"] = [
                {
                    "name": t["name"],
                    "description": t.get("description") or f"Tool for {t['name']}",
                    "input_schema": t.get("input_schema") or {"type": "object", "properties": {}},
                }
                for t in tools
            ]
            body["tool_choice"] = {"type": "auto"}
        logger.info(
            "REQUEST: model=%s tools=%d messages=%d stream=%s",
            self._model,
            len(tools or []),
            len(history),
            stream,
        )
        return body

    async def chat(
        self,
        system: list[dict],
        history: list[dict],
        tools: list[dict] | None = None,
    ) -> ProviderResponse:
        data = await self._post_json(self._build_body(system, history, tools, False))
        return self._parse_non_stream(data)

    async def stream(
        self,
        system: list[dict],
        history: list[dict],
        tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        body = self._build_body(system, history, tools, True)
        model: str | None = None
        usage: Usage | None = None
        stop_reason: str | None = None

        async with self._open_stream(body) as response:
            async for data in self._sse_data(response):
                kind = data.get("type")

                if kind == "message_start":
                    message = data.get("message") or {}
                    model = message.get("model") or model
                    usage = parse_usage(message.get("usage"), usage)

                elif kind == "content_block_start":
                    block = data.get("content_block") or {}
                    if block.get("type") == "tool_use":
                        yield StreamEvent(
                            type=EventType.TOOL_CALL_UPDATE,
                            tool_deltas=[
                                RawToolDelta(
                                    call_index=data.get("index", 0),
                                    id=block.get("id"),
                                    name=block.get("name") or "",
                                )
                            ],
                        )
                    elif block.get("type") == "text" and block.get("text"):
                        yield StreamEvent(type=EventType.CONTENT, content=block["text"])

                elif kind == "content_block_delta":
                    delta = data.get("delta") or {}
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield StreamEvent(type=EventType.CONTENT, content=delta["text"])
                    elif delta.get("type") == "input_json_delta":
                        yield StreamEvent(
                            type=EventType.TOOL_CALL_UPDATE,
                            tool_deltas=[
                                RawToolDelta(
                                    call_index=data.get("index", 0),
                                    args_delta=delta.get("partial_json") or "",
                                )
                            ],
                        )

                elif kind == "message_delta":
                    stop_reason = (data.get("delta") or {}).get("stop_reason") or stop_reason
                    usage = parse_usage(data.get("usage"), usage)

                elif kind == "error":
                    err = data.get("error") or {}
                    raise ProviderError(
                        f"API streaming error: {err.get('message') or err}",
                        body=json.dumps(data),
                    )

        if stop_reason is not None:
            yield StreamEvent(
                type=EventType.FINISH,
                finish_reason=stop_reason,
                model=model,
                usage=usage,
            )

    def _parse_non_stream(self, data: dict) -> ProviderResponse:
        blocks = data.get("content") or []
        text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        tool_calls = [
            ToolCall(
                id=b.get("id") or f"call_{idx}",
                name=b.get("name") or "",
                arguments=b.get("input") if isinstance(b.get("input"), dict) else {},
            )
            for idx, b in enumerate(blocks)
            if b.get("type") == "tool_use"
        ]
        return ProviderResponse(
            content=text,
            model=data.get("model") or self._model,
            role=data.get("role") or "assistant",
            stop_reason=data.get("stop_reason"),
            tool_calls=tool_calls,
            usage=parse_usage(data.get("usage")) or Usage(),
        )
