"""
SQLite-backed conversation store.

Uses ``aiosqlite`` for async database access with a write lock to serialise
mutations (SQLite only supports one writer at a time in WAL mode).

Schema is version-tracked via a ``schema_version`` table.  Migrations are
applied automatically on ``init()``.  Child rows are removed through
``ON DELETE CASCADE`` so deleting a conversation removes its messages, tool
uses, tool results and attachment records.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import aiosqlite

from chatloop.errors import NotFoundError
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

# ---------------------------------------------------------------------------
# Schema management
# ---------------------------------------------------------------------------

SCHEMA_VERSION = 2

MIGRATIONS: dict[int, list[str]] = {
    1: [
        """CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS conversations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner_type TEXT NOT NULL,
            owner_id TEXT NOT NULL,
            agent_type TEXT NOT NULL DEFAULT 'planner',
            status TEXT NOT NULL DEFAULT 'resting',
            canceled INTEGER NOT NULL DEFAULT 0,
            canceled_at TEXT,
            canceled_by TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            conversation_id INTEGER NOT NULL,
            role TEXT NOT NULL,
            content TEXT,
            is_error INTEGER NOT NULL DEFAULT 0,
            finish_reason TEXT,
            model TEXT,
            user_id TEXT,
            input_tokens INTEGER NOT NULL DEFAULT 0,
            output_tokens INTEGER NOT NULL DEFAULT 0,
            cache_creation_input_tokens INTEGER NOT NULL DEFAULT 0,
            cache_read_input_tokens INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
        )""",
        """CREATE TABLE IF NOT EXISTS tool_uses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            message_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            input TEXT NOT NULL DEFAULT '{}',
            tool_use_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            FOREIGN KEY (message_id) REFERENCES messages(id) ON DELETE CASCADE
        )""",
        """CREATE TABLE IF NOT EXISTS tool_results (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tool_use_id INTEGER NOT NULL UNIQUE,
            message_id INTEGER NOT NULL,
            content TEXT NOT NULL DEFAULT '',
            is_error INTEGER NOT NULL DEFAULT 0,
            diff TEXT,
            pending INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY (tool_use_id) REFERENCES tool_uses(id) ON DELETE CASCADE,
            FOREIGN KEY (message_id) REFERENCES messages(id) ON DELETE CASCADE
        )""",
        """CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id)""",
        """CREATE INDEX IF NOT EXISTS idx_tool_uses_message ON tool_uses(message_id)""",
        """CREATE INDEX IF NOT EXISTS idx_conversations_owner ON conversations(owner_type, owner_id)""",
    ],
    2: [
        """CREATE TABLE IF NOT EXISTS attachments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            message_id INTEGER NOT NULL,
            filename TEXT NOT NULL DEFAULT '',
            content_type TEXT NOT NULL,
            sha256 TEXT NOT NULL,
            stored_path TEXT NOT NULL,
            size_bytes INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY (message_id) REFERENCES messages(id) ON DELETE CASCADE
        )""",
        """CREATE INDEX IF NOT EXISTS idx_attachments_message ON attachments(message_id)""",
    ],
}

_MESSAGE_COLUMNS = (
    "id, conversation_id, role, content, is_error, finish_reason, model, user_id, "
    "input_tokens, output_tokens, cache_creation_input_tokens, "
    "cache_read_input_tokens, created_at"
)
_MESSAGE_UPDATABLE = {
    "content",
    "is_error",
    "finish_reason",
    "model",
    "input_tokens",
    "output_tokens",
    "cache_creation_input_tokens",
    "cache_read_input_tokens",
}
_CONVERSATION_COLUMNS = (
    "id, owner_type, owner_id, agent_type, status, canceled, canceled_at, "
    "canceled_by, created_at, updated_at"
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_conversation(row: Any) -> Conversation:
    return Conversation(
        id=row[0],
        owner_type=row[1],
        owner_id=row[2],
        agent_type=AgentType(row[3]),
        status=ConversationStatus(row[4]),
        canceled=bool(row[5]),
        canceled_at=_parse_ts(row[6]),
        canceled_by=row[7],
        created_at=_parse_ts(row[8]),
        updated_at=_parse_ts(row[9]),
    )


def _row_to_message(row: Any) -> Message:
    return Message(
        id=row[0],
        conversation_id=row[1],
        role=Role(row[2]),
        content=row[3],
        is_error=bool(row[4]),
        finish_reason=row[5],
        model=row[6],
        user_id=row[7],
        input_tokens=row[8],
        output_tokens=row[9],
        cache_creation_input_tokens=row[10],
        cache_read_input_tokens=row[11],
        created_at=_parse_ts(row[12]),
    )


def _row_to_tool_use(row: Any) -> ToolUse:
    return ToolUse(
        id=row[0],
        message_id=row[1],
        name=row[2],
        input=json.loads(row[3]) if row[3] else {},
        tool_use_id=row[4],
        status=ToolUseStatus(row[5]),
    )


def _row_to_tool_result(row: Any) -> ToolResult:
    return ToolResult(
        id=row[0],
        tool_use_id=row[1],
        message_id=row[2],
        content=row[3],
        is_error=bool(row[4]),
        diff=row[5],
        pending=bool(row[6]),
    )


def _row_to_attachment(row: Any) -> Attachment:
    return Attachment(
        id=row[0],
        message_id=row[1],
        filename=row[2],
        content_type=row[3],
        sha256=row[4],
        stored_path=row[5],
        size_bytes=row[6],
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SQLiteStore:
    """
    Async SQLite store for conversations, messages and tool state.

    Usage::

        store = SQLiteStore("~/.chatloop/chatloop.db")
        await store.init()
        conv = await store.create_conversation("user", "42")
        msg = await store.create_message(conv.id, Role.USER, "hello")
        await store.close()
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = asyncio.Lock()
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Open the database and ensure the schema is up to date."""
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await self._run_migrations()

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Store is not initialised -- call init() first")
        return self._db

    # ------------------------------------------------------------------
    # Migration runner
    # ------------------------------------------------------------------

    async def _get_schema_version(self) -> int:
        """Return the current schema version, or 0 if not initialised."""
        cursor = await self.db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        row = await cursor.fetchone()
        if row is None:
            return 0
        cursor = await self.db.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        if row is None:
            return 0
        return int(row[0])

    async def _set_schema_version(self, version: int) -> None:
        cursor = await self.db.execute("SELECT COUNT(*) FROM schema_version")
        row = await cursor.fetchone()
        if row[0] == 0:
            await self.db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
        else:
            await self.db.execute("UPDATE schema_version SET version = ?", (version,))

    async def _run_migrations(self) -> None:
        """Apply any pending migrations sequentially."""
        current = await self._get_schema_version()
        if current >= SCHEMA_VERSION:
            return

        for version in range(current + 1, SCHEMA_VERSION + 1):
            stmts = MIGRATIONS.get(version)
            if stmts is None:
                raise RuntimeError(f"Missing migration for schema version {version}")
            for stmt in stmts:
                await self.db.execute(stmt)
            await self._set_schema_version(version)

        await self.db.commit()

    async def get_schema_version(self) -> int:
        """Public accessor for the current schema version."""
        return await self._get_schema_version()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _insert(self, sql: str, params: Iterable[Any]) -> int:
        async with self._write_lock:
            cursor = await self.db.execute(sql, tuple(params))
            await self.db.commit()
            return cursor.lastrowid

    async def _write(self, sql: str, params: Iterable[Any]) -> int:
        async with self._write_lock:
            cursor = await self.db.execute(sql, tuple(params))
            await self.db.commit()
            return cursor.rowcount

    async def _fetchone(self, sql: str, params: Iterable[Any]) -> Any:
        cursor = await self.db.execute(sql, tuple(params))
        return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: Iterable[Any]) -> list[Any]:
        cursor = await self.db.execute(sql, tuple(params))
        return list(await cursor.fetchall())

    async def _touch_conversation(self, conversation_id: int) -> None:
        await self._write(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (_now(), conversation_id),
        )

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def create_conversation(
        self,
        owner_type: str,
        owner_id: str,
        agent_type: AgentType = AgentType.PLANNER,
    ) -> Conversation:
        now = _now()
        conv_id = await self._insert(
            """INSERT INTO conversations
               (owner_type, owner_id, agent_type, status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                owner_type,
                str(owner_id),
                AgentType(agent_type).value,
                ConversationStatus.RESTING.value,
                now,
                now,
            ),
        )
        return await self.get_conversation(conv_id)

    async def get_conversation(self, conversation_id: int) -> Conversation:
        """Return the conversation or raise ``NotFoundError``."""
        row = await self._fetchone(
            f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE id = ?",
            (conversation_id,),
        )
        if row is None:
            raise NotFoundError(f"Conversation not found: {conversation_id}")
        return _row_to_conversation(row)

    async def list_conversations(
        self,
        owner_type: str | None = None,
        owner_id: str | None = None,
        statuses: Iterable[ConversationStatus] | None = None,
    ) -> list[Conversation]:
        """Return conversations oldest first, optionally filtered."""
        clauses: list[str] = []
        params: list[Any] = []
        if owner_type is not None:
            clauses.append("owner_type = ?")
            params.append(owner_type)
        if owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(str(owner_id))
        if statuses is not None:
            values = [ConversationStatus(s).value for s in statuses]
            clauses.append(f"status IN ({', '.join('?' for _ in values)})")
            params.extend(values)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._fetchall(
            f"SELECT {_CONVERSATION_COLUMNS} FROM conversations {where} ORDER BY id ASC",
            params,
        )
        return [_row_to_conversation(r) for r in rows]

    async def set_conversation_status(
        self, conversation_id: int, status: ConversationStatus
    ) -> None:
        await self._write(
            "UPDATE conversations SET status = ?, updated_at = ? WHERE id = ?",
            (ConversationStatus(status).value, _now(), conversation_id),
        )

    async def set_canceled(self, conversation_id: int, canceled_by: str | None) -> None:
        await self._write(
            """UPDATE conversations
               SET canceled = 1, canceled_at = ?, canceled_by = ?, updated_at = ?
               WHERE id = ?""",
            (_now(), canceled_by, _now(), conversation_id),
        )

    async def claim_turn(self, conversation_id: int) -> bool:
        """
        Atomically move a resting or canceled conversation to ``working``.

        Clears the cancel flag.  Returns False when another turn holds it.
        """
        claimed = await self._write(
            """UPDATE conversations
               SET status = ?, canceled = 0, canceled_at = NULL, canceled_by = NULL,
                   updated_at = ?
               WHERE id = ? AND (status = ? OR canceled = 1)""",
            (
                ConversationStatus.WORKING.value,
                _now(),
                conversation_id,
                ConversationStatus.RESTING.value,
            ),
        )
        return claimed > 0

    async def delete_conversation(self, conversation_id: int) -> None:
        """Delete a conversation and, by cascade, everything under it."""
        await self._write("DELETE FROM conversations WHERE id = ?", (conversation_id,))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def create_message(
        self,
        conversation_id: int,
        role: Role,
        content: str | None = "",
        *,
        user_id: str | None = None,
        model: str | None = None,
        is_error: bool = False,
    ) -> Message:
        msg_id = await self._insert(
            """INSERT INTO messages
               (conversation_id, role, content, is_error, model, user_id, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                conversation_id,
                Role(role).value,
                content,
                int(coerce_bool(is_error)),
                model,
                user_id,
                _now(),
            ),
        )
        await self._touch_conversation(conversation_id)
        return await self.get_message(msg_id)

    async def get_message(self, message_id: int) -> Message:
        row = await self._fetchone(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", (message_id,)
        )
        if row is None:
            raise NotFoundError(f"Message not found: {message_id}")
        return _row_to_message(row)

    async def update_message(self, message_id: int, **fields: Any) -> None:
        """Update the given columns of a message."""
        unknown = set(fields) - _MESSAGE_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update message fields: {sorted(unknown)}")
        if not fields:
            return
        if "is_error" in fields:
            fields["is_error"] = int(coerce_bool(fields["is_error"]))
        assignments = ", ".join(f"{k} = ?" for k in fields)
        await self._write(
            f"UPDATE messages SET {assignments} WHERE id = ?",
            (*fields.values(), message_id),
        )

    async def list_messages(
        self, conversation_id: int, *, include_errors: bool = True
    ) -> list[Message]:
        """Return the conversation's messages in creation order."""
        where = "conversation_id = ?"
        if not include_errors:
            where += " AND is_error = 0"
        rows = await self._fetchall(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE {where} ORDER BY id ASC",
            (conversation_id,),
        )
        return [_row_to_message(r) for r in rows]

    async def last_message(self, conversation_id: int) -> Message | None:
        row = await self._fetchone(
            f"""SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE conversation_id = ? ORDER BY id DESC LIMIT 1""",
            (conversation_id,),
        )
        return _row_to_message(row) if row else None

    async def get_history(
        self, conversation_id: int, *, include_errors: bool = False
    ) -> list[Message]:
        """
        Return messages with their tool uses, results and attachments loaded.

        Error-flagged messages are excluded unless *include_errors* is set.
        """
        messages = await self.list_messages(
            conversation_id, include_errors=include_errors
        )
        for msg in messages:
            msg.tool_uses = await self.list_tool_uses(msg.id)
            msg.attachments = await self.list_attachments(msg.id)
        return messages

    # ------------------------------------------------------------------
    # Tool uses
    # ------------------------------------------------------------------

    async def create_tool_use(
        self,
        message_id: int,
        name: str,
        input: dict | None = None,
        tool_use_id: str | None = None,
        status: ToolUseStatus = ToolUseStatus.PENDING,
    ) -> ToolUse:
        row_id = await self._insert(
            """INSERT INTO tool_uses (message_id, name, input, tool_use_id, status)
               VALUES (?, ?, ?, ?, ?)""",
            (
                message_id,
                name,
                json.dumps(input or {}),
                tool_use_id or str(uuid.uuid4()),
                ToolUseStatus(status).value,
            ),
        )
        return await self.get_tool_use(row_id)

    async def get_tool_use(self, row_id: int) -> ToolUse:
        """Return the tool use (with its result, if any) or raise ``NotFoundError``."""
        row = await self._fetchone(
            """SELECT id, message_id, name, input, tool_use_id, status
               FROM tool_uses WHERE id = ?""",
            (row_id,),
        )
        if row is None:
            raise NotFoundError(f"Tool use not found: {row_id}")
        tool_use = _row_to_tool_use(row)
        tool_use.result = await self.get_tool_result_for(tool_use.id)
        return tool_use

    async def find_tool_use(self, message_id: int, name: str) -> ToolUse | None:
        """Return the first tool use named *name* under a message."""
        row = await self._fetchone(
            """SELECT id FROM tool_uses
               WHERE message_id = ? AND name = ? ORDER BY id ASC LIMIT 1""",
            (message_id, name),
        )
        return await self.get_tool_use(row[0]) if row else None

    async def list_tool_uses(self, message_id: int) -> list[ToolUse]:
        rows = await self._fetchall(
            """SELECT id, message_id, name, input, tool_use_id, status
               FROM tool_uses WHERE message_id = ? ORDER BY id ASC""",
            (message_id,),
        )
        uses = [_row_to_tool_use(r) for r in rows]
        for tu in uses:
            tu.result = await self.get_tool_result_for(tu.id)
        return uses

    async def list_conversation_tool_uses(
        self,
        conversation_id: int,
        statuses: Iterable[ToolUseStatus] | None = None,
    ) -> list[ToolUse]:
        params: list[Any] = [conversation_id]
        status_clause = ""
        if statuses is not None:
            values = [ToolUseStatus(s).value for s in statuses]
            status_clause = f" AND t.status IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        rows = await self._fetchall(
            f"""SELECT t.id, t.message_id, t.name, t.input, t.tool_use_id, t.status
                FROM tool_uses t JOIN messages m ON m.id = t.message_id
                WHERE m.conversation_id = ?{status_clause}
                ORDER BY t.id ASC""",
            params,
        )
        uses = [_row_to_tool_use(r) for r in rows]
        for tu in uses:
            tu.result = await self.get_tool_result_for(tu.id)
        return uses

    async def update_tool_use(
        self,
        row_id: int,
        *,
        status: ToolUseStatus | None = None,
        input: dict | None = None,
    ) -> None:
        if status is not None:
            await self._write(
                "UPDATE tool_uses SET status = ? WHERE id = ?",
                (ToolUseStatus(status).value, row_id),
            )
        if input is not None:
            await self._write(
                "UPDATE tool_uses SET input = ? WHERE id = ?",
                (json.dumps(input), row_id),
            )

    async def conversation_id_for_tool_use(self, row_id: int) -> int:
        row = await self._fetchone(
            """SELECT m.conversation_id FROM tool_uses t
               JOIN messages m ON m.id = t.message_id WHERE t.id = ?""",
            (row_id,),
        )
        if row is None:
            raise NotFoundError(f"Tool use not found: {row_id}")
        return int(row[0])

    # ------------------------------------------------------------------
    # Tool results
    # ------------------------------------------------------------------

    async def create_tool_result(
        self,
        tool_use_id: int,
        message_id: int,
        content: str,
        *,
        is_error: Any = None,
        diff: str | None = None,
        pending: bool = False,
    ) -> ToolResult:
        """Persist the result of a tool use.  ``is_error`` is coerced to bool."""
        row_id = await self._insert(
            """INSERT INTO tool_results
               (tool_use_id, message_id, content, is_error, diff, pending)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                tool_use_id,
                message_id,
                content if content is not None else "",
                int(coerce_bool(is_error)),
                diff,
                int(coerce_bool(pending)),
            ),
        )
        row = await self._fetchone(
            """SELECT id, tool_use_id, message_id, content, is_error, diff, pending
               FROM tool_results WHERE id = ?""",
            (row_id,),
        )
        return _row_to_tool_result(row)

    async def get_tool_result_for(self, tool_use_id: int) -> ToolResult | None:
        row = await self._fetchone(
            """SELECT id, tool_use_id, message_id, content, is_error, diff, pending
               FROM tool_results WHERE tool_use_id = ?""",
            (tool_use_id,),
        )
        return _row_to_tool_result(row) if row else None

    async def update_tool_result(
        self,
        row_id: int,
        *,
        content: str,
        is_error: Any = None,
        pending: bool = False,
        diff: str | None = None,
    ) -> None:
        await self._write(
            """UPDATE tool_results
               SET content = ?, is_error = ?, pending = ?, diff = COALESCE(?, diff)
               WHERE id = ?""",
            (
                content if content is not None else "",
                int(coerce_bool(is_error)),
                int(coerce_bool(pending)),
                diff,
                row_id,
            ),
        )

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def add_attachment(
        self,
        message_id: int,
        *,
        filename: str,
        content_type: str,
        sha256: str,
        stored_path: str,
        size_bytes: int,
    ) -> Attachment:
        row_id = await self._insert(
            """INSERT INTO attachments
               (message_id, filename, content_type, sha256, stored_path, size_bytes)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (message_id, filename, content_type, sha256, stored_path, size_bytes),
        )
        return Attachment(
            id=row_id,
            message_id=message_id,
            filename=filename,
            content_type=content_type,
            sha256=sha256,
            stored_path=stored_path,
            size_bytes=size_bytes,
        )

    async def list_attachments(self, message_id: int) -> list[Attachment]:
        rows = await self._fetchall(
            """SELECT id, message_id, filename, content_type, sha256, stored_path, size_bytes
               FROM attachments WHERE message_id = ? ORDER BY id ASC""",
            (message_id,),
        )
        return [_row_to_attachment(r) for r in rows]
