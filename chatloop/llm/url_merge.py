"""
URL merge rule for split fetch intents.

Some providers occasionally split one "fetch this URL" intent into two tool
calls: the fetch tool with empty arguments, and some other tool carrying a
``url`` argument.  ``UrlMergeRule`` repairs that shape:

  - ``observe()`` watches partial tool-call snapshots while streaming and
    captures the stray url once both shapes are present.
  - ``merge()`` moves the url into the empty fetch call and drops the other
    call from a resolved batch.
  - ``fill()`` applies a captured url to an empty fetch call met later.
  - ``take_fallback()`` hands back a url that was captured but never landed
    on a fetch call, so the caller can synthesize one.

Whether the rule is still needed depends on provider and model versions; it is
isolated here so it can be disabled by configuring no fetch tool.
"""

from __future__ import annotations

import logging
from typing import Iterable

from chatloop.llm.tool_call_assembler import ToolCallBuilder
from chatloop.llm.types import ToolCall

logger = logging.getLogger(__name__)


class UrlMergeRule:
    def __init__(self, fetch_tool: str | None = "get_url") -> None:
        self.fetch_tool = fetch_tool
        self.captured_url: str | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.fetch_tool)

    def _stray_url(self, name: str, args: dict | None) -> str | None:
        if name == self.fetch_tool or not isinstance(args, dict):
            return None
        url = args.get("url")
        return url if isinstance(url, str) and url.strip() else None

    def observe(self, builders: Iterable[ToolCallBuilder]) -> None:
        """Capture a stray url from in-flight fragments."""
        if not self.enabled:
            return
        builders = list(builders)
        if not any(b.name == self.fetch_tool for b in builders):
            return
        for b in builders:
            url = self._stray_url(b.name, b.parsed_arguments())
            if url:
                if url != self.captured_url:
                    logger.debug("Captured url %s from tool call %r", url, b.name)
                self.captured_url = url
                return

    def merge(self, calls: list[ToolCall]) -> list[ToolCall]:
        """Fold a stray url into an empty fetch call and drop the stray call."""
        if not self.enabled:
            return calls
        fetch = next((c for c in calls if c.name == self.fetch_tool), None)
        stray = next(
            (c for c in calls if self._stray_url(c.name, c.arguments)), None
        )
        if fetch is None or stray is None or fetch.arguments:
            return calls
        fetch.arguments = {"url": stray.arguments["url"]}
        self.captured_url = None
        logger.info(
            "Merged url from %r into %s call %s", stray.name, self.fetch_tool, fetch.id
        )
        return [c for c in calls if c is not stray]

    def fill(self, call: ToolCall) -> None:
        if (
            self.enabled
            and self.captured_url
            and call.name == self.fetch_tool
            and not call.arguments
        ):
            call.arguments = {"url": self.captured_url}
            self.captured_url = None

    def take_fallback(self) -> str | None:
        url, self.captured_url = self.captured_url, None
        return url
