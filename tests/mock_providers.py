"""
Mock LLM providers for testing.

Provides scripted event streams so tests can exercise the orchestrator and
assembler without hitting real APIs.
"""

from __future__ import annotations

import json
from typing import AsyncIterator

from chatloop.llm.providers.base import Provider
from chatloop.llm.types import (
    EventType,
    ProviderResponse,
    RawToolDelta,
    StreamEvent,
    Usage,
    WireFormat,
)


class MockProvider(Provider):
    """
    A provider that replays one scripted event list per call.

    Usage::

        provider = MockProvider(rounds=[
            tool_call_events("echo", {"message": "hi"}),
            text_events("done"),
        ])

    Parameters
    ----------
    rounds:
        One list of ``StreamEvent`` objects per provider call.  Calls beyond
        the script replay a bare ``FINISH``.
    responses:
        ``ProviderResponse`` objects returned by ``chat`` in order.
    wire_format:
        History shape the orchestrator should render for this provider.
    """

    def __init__(
        self,
        rounds: list[list[StreamEvent]] | None = None,
        responses: list[ProviderResponse] | None = None,
        model_name: str = "mock-model",
        wire_format: WireFormat = WireFormat.FUNCTION_CALL,
    ) -> None:
        self._rounds = list(rounds or [])
        self._responses = list(responses or [])
        self._model_name = model_name
        self.wire_format = wire_format
        self.calls: list[dict] = []

    @property
    def name(self) -> str:
        return "mock"

    @property
    def model(self) -> str:
        return self._model_name

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def _record(self, system, history, tools) -> None:
        self.calls.append({"system": system, "history": history, "tools": tools})

    async def chat(
        self,
        system: list[dict],
        history: list[dict],
        tools: list[dict] | None = None,
    ) -> ProviderResponse:
        self._record(system, history, tools)
        if self._responses:
            return self._responses.pop(0)
        return ProviderResponse(model=self._model_name, stop_reason="stop")

    async def stream(
        self,
        system: list[dict],
        history: list[dict],
        tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        self._record(system, history, tools)
        events = self._rounds.pop(0) if self._rounds else [finish_event()]
        for event in events:
            yield event


class FailingProvider(MockProvider):
    """Raises *exc* as soon as a stream or chat call starts."""

    def __init__(self, exc: Exception, **kwargs) -> None:
        super().__init__(**kwargs)
        self.exc = exc

    async def chat(self, system, history, tools=None) -> ProviderResponse:
        self._record(system, history, tools)
        raise self.exc

    async def stream(self, system, history, tools=None) -> AsyncIterator[StreamEvent]:
        self._record(system, history, tools)
        raise self.exc
        yield  # pragma: no cover


# ---------------------------------------------------------------------------
# Event builders
# ---------------------------------------------------------------------------

def finish_event(
    reason: str = "stop", usage: Usage | None = None, model: str | None = None
) -> StreamEvent:
    return StreamEvent(type=EventType.FINISH, finish_reason=reason, usage=usage, model=model)


def content_event(text: str) -> StreamEvent:
    return StreamEvent(type=EventType.CONTENT, content=text)


def delta_event(
    call_index: int, *, id: str | None = None, name: str = "", args: str = ""
) -> StreamEvent:
    return StreamEvent(
        type=EventType.TOOL_CALL_UPDATE,
        tool_deltas=[RawToolDelta(call_index=call_index, id=id, name=name, args_delta=args)],
    )


def text_events(text: str, usage: Usage | None = None) -> list[StreamEvent]:
    """Stream *text* one word at a time, then finish."""
    words = text.split(" ")
    events = [
        content_event(word + (" " if i < len(words) - 1 else ""))
        for i, word in enumerate(words)
    ]
    events.append(finish_event("stop", usage=usage))
    return events


def tool_call_events(
    tool_name: str,
    tool_args: dict,
    call_id: str = "call_abc123",
    content_prefix: str = "",
    call_index: int = 0,
    finish: bool = True,
) -> list[StreamEvent]:
    """
    Stream a single tool call with its arguments split across three deltas.
    """
    args_json = json.dumps(tool_args)
    events: list[StreamEvent] = []
    if content_prefix:
        events.append(content_event(content_prefix))
    events.append(delta_event(call_index, id=call_id, name=tool_name))
    third = max(1, len(args_json) // 3)
    for part in (args_json[:third], args_json[third : 2 * third], args_json[2 * third :]):
        if part:
            events.append(delta_event(call_index, args=part))
    if finish:
        events.append(finish_event("tool_calls"))
    return events
