"""
Persisted records: Conversation -> Message -> ToolUse -> ToolResult.

Records are plain dataclasses.  ``SQLiteStore`` materialises them from rows
and, for history rendering, attaches each message's tool uses (with their
results) and attachments.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ConversationStatus(str, Enum):
    RESTING = "resting"
    WORKING = "working"
    WAITING = "waiting"


class AgentType(str, Enum):
    PLANNER = "planner"
    CODER = "coder"
    REVIEWER = "reviewer"
    TESTER = "tester"

    @property
    def uses_tools(self) -> bool:
        return self in (AgentType.PLANNER, AgentType.CODER)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ToolUseStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    WAITING = "waiting"


def coerce_bool(value: Any) -> bool:
    """None becomes False; everything else takes its truth value."""
    return False if value is None else bool(value)


@dataclass
class Conversation:
    id: int
    owner_type: str
    owner_id: str
    agent_type: AgentType = AgentType.PLANNER
    status: ConversationStatus = ConversationStatus.RESTING
    canceled: bool = False
    canceled_at: datetime | None = None
    canceled_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_waiting(self) -> bool:
        return self.status is ConversationStatus.WAITING

    @property
    def is_resting(self) -> bool:
        return self.status is ConversationStatus.RESTING


@dataclass
class Attachment:
    id: int
    message_id: int
    filename: str
    content_type: str
    sha256: str
    stored_path: str
    size_bytes: int = 0

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")


@dataclass
class ToolResult:
    id: int
    tool_use_id: int
    message_id: int
    content: str = ""
    is_error: bool = False
    diff: str | None = None
    pending: bool = False


@dataclass
class ToolUse:
    id: int
    message_id: int
    name: str
    input: dict = field(default_factory=dict)
    tool_use_id: str = ""
    status: ToolUseStatus = ToolUseStatus.PENDING
    result: ToolResult | None = None

    @property
    def completed(self) -> bool:
        return self.status not in (ToolUseStatus.PENDING, ToolUseStatus.WAITING)


@dataclass
class Message:
    id: int
    conversation_id: int
    role: Role
    content: str | None = None
    is_error: bool = False
    finish_reason: str | None = None
    model: str | None = None
    user_id: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    created_at: datetime | None = None
    tool_uses: list[ToolUse] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def is_user(self) -> bool:
        return self.role is Role.USER

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_input_tokens
            + self.cache_read_input_tokens
        )
