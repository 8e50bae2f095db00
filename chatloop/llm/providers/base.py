"""Abstract base classes for LLM providers."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from contextlib import aclosing, asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

import httpx

from chatloop.errors import ProviderError
from chatloop.llm.tool_call_assembler import ToolCallAssembler
from chatloop.llm.types import (
    EventType,
    ProviderResponse,
    StreamEvent,
    WireFormat,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[StreamEvent], Awaitable[None]]


class Provider(ABC):
    """
    A provider encapsulates access to a single LLM endpoint.

    Implementations must support:
      - Single-shot completions (``chat``).
      - Streamed completions (``stream``), an async generator of
        ``StreamEvent`` objects.
      - Declaring which history shape they expect (``wire_format``).
    """

    wire_format: WireFormat = WireFormat.FUNCTION_CALL

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable provider name (e.g. ``"openrouter"``)."""
        ...

    @property
    @abstractmethod
    def model(self) -> str:
        ...

    @abstractmethod
    async def chat(
        self,
        system: list[dict],
        history: list[dict],
        tools: list[dict] | None = None,
    ) -> ProviderResponse:
        """Run a single-shot completion and return the normalized response."""
        ...

    @abstractmethod
    async def stream(
        self,
        system: list[dict],
        history: list[dict],
        tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Start a streamed completion.

        Yields ``StreamEvent`` objects in provider order.  A single ``FINISH``
        event, if any, is the last event.
        """
        ...

    async def stream_chat(
        self,
        system: list[dict],
        history: list[dict],
        tools: list[dict] | None = None,
        on_event: EventCallback | None = None,
    ) -> ProviderResponse:
        """
        Consume ``stream()``, forwarding each event to *on_event*.

        Returns the same normalized shape as ``chat()`` once the stream ends.
        """
        assembler = ToolCallAssembler()
        parts: list[str] = []
        response = ProviderResponse(model=self.model)

        async with aclosing(self.stream(system, history, tools)) as events:
            async for event in events:
                if event.type is EventType.CONTENT:
                    parts.append(event.content)
                elif event.type is EventType.TOOL_CALL_UPDATE:
                    for delta in event.tool_deltas:
                        assembler.feed(delta)
                elif event.type is EventType.FINISH:
                    response.stop_reason = event.finish_reason
                if event.model:
                    response.model = event.model
                if event.usage is not None:
                    response.usage = event.usage
                if on_event is not None:
                    await on_event(event)

        response.content = "".join(parts)
        response.tool_calls = assembler.finalize()
        return response


class HTTPProvider(Provider):
    """
    Shared HTTP plumbing for providers reached over JSON + SSE.

    Transient failures (HTTP 429, 5xx, transport errors) are retried up to
    *max_retries* times before a ``ProviderError`` is raised.  Other non-2xx
    responses raise immediately.

    Parameters
    ----------
    transport:
        Optional ``httpx`` transport; tests inject ``httpx.MockTransport``.
    """

    def __init__(
        self,
        *,
        url: str,
        model: str,
        api_key: str = "",
        max_tokens: int = 8192,
        timeout: float = 600.0,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._model = model
        self._api_key = api_key
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._max_retries = max_retries
        self._transport = transport

    @property
    def model(self) -> str:
        return self._model

    @property
    @abstractmethod
    def endpoint(self) -> str:
        """Path appended to the base URL, e.g. ``"/chat/completions"``."""
        ...

    @abstractmethod
    def _build_headers(self) -> dict[str, str]:
        ...

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout, connect=10.0),
            transport=self._transport,
        )

    @staticmethod
    def _is_retryable(status_code: int) -> bool:
        return status_code == 429 or status_code >= 500

    @staticmethod
    def _error_message(status_code: int, body: str) -> str:
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, ValueError):
            data = None
        if isinstance(data, dict):
            err = data.get("error")
            if isinstance(err, dict) and err.get("message"):
                return f"API error ({status_code}): {err['message']}"
            if isinstance(err, str):
                return f"API error ({status_code}): {err}"
        return f"API error ({status_code}): {body[:500]}"

    # ------------------------------------------------------------------
    # Single-shot request
    # ------------------------------------------------------------------

    async def _post_json(self, body: dict) -> dict:
        url = f"{self._url}{self.endpoint}"
        headers = self._build_headers()

        last_error: ProviderError | None = None
        for attempt in range(1 + self._max_retries):
            try:
                async with self._client() as client:
                    resp = await client.post(url, json=body, headers=headers)
            except httpx.TransportError as exc:
                logger.warning("%s transport error (attempt %d): %s", self.name, attempt + 1, exc)
                last_error = ProviderError(f"Network error: {exc}")
                continue

            if self._is_retryable(resp.status_code):
                logger.warning(
                    "%s returned HTTP %d (attempt %d)", self.name, resp.status_code, attempt + 1
                )
                last_error = ProviderError(
                    self._error_message(resp.status_code, resp.text),
                    status_code=resp.status_code,
                    body=resp.text,
                )
                continue

            if resp.status_code >= 400:
                raise ProviderError(
                    self._error_message(resp.status_code, resp.text),
                    status_code=resp.status_code,
                    body=resp.text,
                )
            try:
                return resp.json()
            except ValueError as exc:
                raise ProviderError(f"Invalid JSON response: {exc}") from exc

        assert last_error is not None
        raise last_error

    # ------------------------------------------------------------------
    # Streaming request
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _open_stream(self, body: dict) -> AsyncIterator[httpx.Response]:
        """
        Open a streaming POST, retrying transient failures before the first
        byte of the body is consumed.
        """
        url = f"{self._url}{self.endpoint}"
        headers = self._build_headers()

        last_error: ProviderError | None = None
        for attempt in range(1 + self._max_retries):
            started = False
            async with self._client() as client:
                try:
                    async with client.stream("POST", url, json=body, headers=headers) as response:
                        if response.status_code >= 400:
                            text = (await response.aread()).decode("utf-8", errors="replace")
                            error = ProviderError(
                                self._error_message(response.status_code, text),
                                status_code=response.status_code,
                                body=text,
                            )
                            if not self._is_retryable(response.status_code):
                                raise error
                            logger.warning(
                                "%s stream returned HTTP %d (attempt %d)",
                                self.name,
                                response.status_code,
                                attempt + 1,
                            )
                            last_error = error
                            continue
                        started = True
                        yield response
                        return
                except httpx.TransportError as exc:
                    error = ProviderError(f"Network error during streaming: {exc}")
                    if started or attempt >= self._max_retries:
                        raise error from exc
                    logger.warning("%s transport error (attempt %d): %s", self.name, attempt + 1, exc)
                    last_error = error

        assert last_error is not None
        raise last_error

    async def _sse_data(self, response: httpx.Response) -> AsyncIterator[dict]:
        """
        Yield decoded JSON payloads from a Server-Sent Events body.

        Lines starting with ``:`` are comments.  The ``[DONE]`` sentinel ends
        the stream.  Malformed payloads are logged and skipped.
        """
        async for line in response.aiter_lines():
            line = line.strip()
            if not line or line.startswith(":"):
                continue
            if not line.startswith("data:"):
                continue
            data_str = line[len("data:"):].strip()
            if data_str == "[DONE]":
                return
            try:
                data = json.loads(data_str)
            except json.JSONDecodeError:
                logger.warning("Failed to parse SSE data: %s", data_str[:200])
                continue
            if isinstance(data, dict):
                yield data
