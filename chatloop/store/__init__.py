"""Persistence: conversation records, the SQLite store, attachment bytes."""

from chatloop.store.attachments import AttachmentStore
from chatloop.store.models import (
    AgentType,
    Attachment,
    Conversation,
    ConversationStatus,
    Message,
    Role,
    ToolResult,
    ToolUse,
    ToolUseStatus,
    coerce_bool,
)
from chatloop.store.store import SQLiteStore

__all__ = [
    "AgentType",
    "Attachment",
    "AttachmentStore",
    "Conversation",
    "ConversationStatus",
    "Message",
    "Role",
    "SQLiteStore",
    "ToolResult",
    "ToolUse",
    "ToolUseStatus",
    "coerce_bool",
]
