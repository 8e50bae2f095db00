from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from chatloop.types import ToolOutcome


def normalize_schema(schema: dict) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("properties", {})
    return s


class Tool(ABC):
    """
    A capability the LLM may invoke by name.

    ``execute`` receives the owning conversable, the validated arguments and
    the persisted ``ToolUse``.  It returns a ``ToolOutcome`` or a dict
    following the ``{result}`` / ``{error}`` /
    ``{state: "asynchronous_result", result}`` contract.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def input_schema(self) -> dict: ...

    @property
    def secret_fields(self) -> list[str]:
        return []

    @abstractmethod
    async def execute(self, owner: Any, args: dict, tool_use: Any = None) -> ToolOutcome | dict: ...

    def to_definition(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": normalize_schema(self.input_schema),
        }
