"""
Assembles streaming tool-call fragments into complete ToolCall objects.

Fragments are keyed by ``call_index``.  Each index owns one builder with fixed
merge rules:

  - ``args_delta`` strings are concatenated in arrival order (a single JSON
    blob is routinely split across many chunks).
  - ``name`` is last-non-empty-wins.
  - ``id`` is first-seen-wins.

``finalize()`` parses the accumulated arguments.  Malformed JSON does not drop
the call: the error is recorded in ``self.errors`` and the call gets ``{}``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from chatloop.llm.types import RawToolDelta, ToolCall

logger = logging.getLogger(__name__)


@dataclass
class ToolCallBuilder:
    call_index: int
    id: str | None = None
    name: str = ""
    arguments: str = ""

    def merge(self, delta: RawToolDelta) -> None:
        if delta.id and not self.id:
            self.id = delta.id
        if delta.name:
            self.name = delta.name
        if delta.args_delta:
            self.arguments += delta.args_delta

    def parsed_arguments(self) -> dict | None:
        """Return the arguments as a dict, or ``None`` if not (yet) valid JSON."""
        raw = self.arguments.strip()
        if not raw:
            return {}
        try:
            value = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            return None
        return value if isinstance(value, dict) else None


class ToolCallAssembler:
    """Buffers raw tool-call deltas and emits finished ``ToolCall`` objects."""

    def __init__(self) -> None:
        self._builders: dict[int, ToolCallBuilder] = {}
        self.errors: list[str] = []

    def __bool__(self) -> bool:
        return bool(self._builders)

    def feed(self, delta: RawToolDelta) -> ToolCallBuilder:
        builder = self._builders.get(delta.call_index)
        if builder is None:
            builder = ToolCallBuilder(call_index=delta.call_index)
            self._builders[delta.call_index] = builder
        builder.merge(delta)
        return builder

    def builders(self) -> list[ToolCallBuilder]:
        """Current builders ordered by index."""
        return [self._builders[i] for i in sorted(self._builders)]

    def finalize(self) -> list[ToolCall]:
        """Return one ``ToolCall`` per index, sorted by index."""
        calls: list[ToolCall] = []
        for builder in self.builders():
            args = builder.parsed_arguments()
            if args is None:
                msg = (
                    f"tool_call_json_parse_failed idx={builder.call_index} "
                    f"name={builder.name!r}"
                )
                logger.warning("%s args=%s", msg, builder.arguments[:200])
                self.errors.append(msg)
                args = {}
            calls.append(
                ToolCall(
                    id=builder.id or f"call_{builder.call_index}",
                    name=builder.name.strip(),
                    arguments=args,
                )
            )
        return calls

    def reset(self) -> None:
        self._builders.clear()
        self.errors.clear()
