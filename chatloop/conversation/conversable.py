from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from chatloop.store.models import AgentType


@runtime_checkable
class Conversable(Protocol):
    """An application entity that owns conversations."""

    owner_type: str
    owner_id: str


@dataclass
class SimpleConversable:
    """
    Minimal conversable used by the CLI and tests.

    *prompt*, when set, replaces the built-in role section of the system
    prompt.
    """

    owner_type: str = "user"
    owner_id: str = "local"
    prompt: str | None = None

    def system_messages(self, agent_type: AgentType) -> list[str]:
        return [self.prompt] if self.prompt else []
