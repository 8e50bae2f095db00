"""
OpenRouter chat-completion provider.

Speaks the OpenAI ``/chat/completions`` wire protocol as served by
OpenRouter, and therefore expects the function-call history shape.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

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

DEFAULT_SYSTEM_PROMPT = "You are an AI assistant."


def parse_usage(raw: dict | None) -> Usage | None:
    """Map OpenAI-style usage counters onto ``Usage``."""
    if not raw:
        return None
    details = raw.get("prompt_tokens_details") or {}
    return Usage(
        input_tokens=int(raw.get("prompt_tokens") or 0),
        output_tokens=int(raw.get("completion_tokens") or 0),
        cache_read_input_tokens=int(details.get("cached_tokens") or 0),
    )


class OpenRouterProvider(HTTPProvider):
    """
    Stream-capable provider for the OpenRouter API.

    Parameters
    ----------
    url:
        Base URL, defaults to ``"https://openrouter.ai/api/v1"``.
    model:
        Model identifier sent in the ``model`` field.
    api_key:
        Bearer token.
    referer_url / app_title:
        Sent as ``HTTP-Referer`` / ``X-Title`` for OpenRouter attribution.
    """

    wire_format = WireFormat.FUNCTION_CALL

    def __init__(
        self,
        url: str = "https://openrouter.ai/api/v1",
        model: str = "anthropic/claude-3.5-sonnet",
        api_key: str = "",
        *,
        referer_url: str = "http://localhost:3000",
        app_title: str = "chatloop",
        **kwargs,
    ) -> None:
        super().__init__(url=url, model=model, api_key=api_key, **kwargs)
        self._referer_url = referer_url
        self._app_title = app_title

    @property
    def name(self) -> str:
        return "openrouter"

    @property
    def endpoint(self) -> str:
        return "/chat/completions"

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "HTTP-Referer": self._referer_url,
            "X-Title": self._app_title,
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    @staticmethod
    def _system_text(system: list[dict]) -> str:
        texts = [
            blk.get("text", "") if isinstance(blk, dict) else str(blk)
            for blk in system or []
        ]
        joined = "\n".join(t for t in texts if t)
        return joined or DEFAULT_SYSTEM_PROMPT

    @staticmethod
    def _flatten_text_parts(msg: dict) -> dict:
        """Collapse a text-only content-part array into a plain string."""
        content = msg.get("content")
        if (
            isinstance(content, list)
            and content
            and all(isinstance(p, dict) and p.get("type") == "text" for p in content)
        ):
            return {**msg, "content": "\n".join(p.get("text", "") for p in content)}
        return msg

    @staticmethod
    def format_tools(tools: list[dict] | None) -> list[dict]:
        return [
            {
                "type": "function",
                "function": {
                    "name": t["name"],
                    "description": t.get("description") or f"Tool for {t['name']}",
                    "parameters": t.get("input_schema") or {"type": "object", "properties": {}},
                },
            }
            for t in tools or []
        ]

    def _build_body(
        self,
        system: list[dict],
        history: list[dict],
        tools: list[dict] | None,
        stream: bool,
    ) -> dict:
        messages = [{"role": "system", "content": self._system_text(system)}]
        messages.extend(self._flatten_text_parts(m) for m in history)
        body: dict = {
            "model": self._model,
            "messages": messages,
            "stream": stream,
            "max_tokens": self._max_tokens,
        }
        if tools:
            body["tools"] = self.format_tools(tools)
        if stream:
            body["stream_options"] = {"include_usage": True}
        logger.info(
            "REQUEST: model=%s tools=%d messages=%d stream=%s",
            self._model,
            len(tools or []),
            len(messages),
            stream,
        )
        return body

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

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
        finish_reason: str | None = None

        async with self._open_stream(body) as response:
            async for data in self._sse_data(response):
                model = model or data.get("model")
                usage = parse_usage(data.get("usage")) or usage

                choices = data.get("choices") or []
                if not choices:
                    continue
                choice = choices[0]
                delta = choice.get("delta") or {}

                text = delta.get("content")
                if text:
                    yield StreamEvent(type=EventType.CONTENT, content=text)

                raw_tcs = delta.get("tool_calls")
                if raw_tcs:
                    yield StreamEvent(
                        type=EventType.TOOL_CALL_UPDATE,
                        tool_deltas=[self._raw_delta(pos, tc) for pos, tc in enumerate(raw_tcs)],
                    )

                if choice.get("finish_reason"):
                    finish_reason = choice["finish_reason"]

        # Usage arrives after the finish_reason chunk, so FINISH is emitted
        # once the body is exhausted.
        if finish_reason is not None:
            yield StreamEvent(
                type=EventType.FINISH,
                finish_reason=finish_reason,
                model=model,
                usage=usage,
            )

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _raw_delta(position: int, raw_tc: dict) -> RawToolDelta:
        func = raw_tc.get("function") or {}
        args = func.get("arguments") or ""
        if not isinstance(args, str):
            args = json.dumps(args)
        return RawToolDelta(
            call_index=raw_tc.get("index", position),
            id=raw_tc.get("id"),
            name=func.get("name") or "",
            args_delta=args,
        )

    def _parse_non_stream(self, data: dict) -> ProviderResponse:
        """Convert a non-streaming response into a ``ProviderResponse``."""
        choices = data.get("choices") or []
        choice = choices[0] if choices else {}
        message = choice.get("message") or {}

        tool_calls: list[ToolCall] = []
        for idx, raw_tc in enumerate(message.get("tool_calls") or []):
            func = raw_tc.get("function") or {}
            raw_args = func.get("arguments")
            if isinstance(raw_args, str):
                try:
                    args = json.loads(raw_args) if raw_args.strip() else {}
                except json.JSONDecodeError:
                    logger.error("Error parsing tool arguments: %s", raw_args[:200])
                    args = {}
            else:
                args = raw_args or {}
            tool_calls.append(
                ToolCall(
                    id=raw_tc.get("id") or f"call_{idx}",
                    name=func.get("name") or "",
                    arguments=args if isinstance(args, dict) else {},
                )
            )

        return ProviderResponse(
            content=message.get("content") or "",
            model=data.get("model") or self._model,
            role=message.get("role") or "assistant",
            stop_reason=choice.get("finish_reason"),
            tool_calls=tool_calls,
            usage=parse_usage(data.get("usage")) or Usage(),
        )
