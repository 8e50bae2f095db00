"""Tests for SQLiteStore and AttachmentStore."""

from __future__ import annotations

import sqlite3

import pytest

from chatloop.errors import NotFoundError
from chatloop.store.attachments import AttachmentStore
from chatloop.store.models import AgentType, ConversationStatus, Role, ToolUseStatus
from chatloop.store.store import SCHEMA_VERSION, SQLiteStore
from chatloop.types import AttachmentPayload


@pytest.fixture
async def store(tmp_path):
    s = SQLiteStore(str(tmp_path / "test.db"))
    await s.init()
    yield s
    await s.close()


@pytest.fixture
async def conv(store):
    return await store.create_conversation("user", "42", AgentType.CODER)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

async def test_migrations_reach_current_version(store):
    assert await store.get_schema_version() == SCHEMA_VERSION


async def test_reopen_is_idempotent(tmp_path):
    path = str(tmp_path / "again.db")
    first = SQLiteStore(path)
    await first.init()
    conv = await first.create_conversation("user", "1")
    await first.close()

    second = SQLiteStore(path)
    await second.init()
    assert (await second.get_conversation(conv.id)).owner_id == "1"
    await second.close()


async def test_uninitialised_store_raises(tmp_path):
    s = SQLiteStore(str(tmp_path / "x.db"))
    with pytest.raises(RuntimeError):
        _ = s.db


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

async def test_new_conversation_is_resting(conv):
    assert conv.status is ConversationStatus.RESTING
    assert conv.agent_type is AgentType.CODER
    assert conv.canceled is False


async def test_get_missing_conversation(store):
    with pytest.raises(NotFoundError):
        await store.get_conversation(999)


async def test_list_conversations_filters(store):
    a = await store.create_conversation("user", "1")
    b = await store.create_conversation("user", "1")
    await store.create_conversation("team", "1")
    await store.set_conversation_status(b.id, ConversationStatus.WAITING)

    mine = await store.list_conversations("user", "1")
    assert [c.id for c in mine] == [a.id, b.id]
    waiting = await store.list_conversations("user", "1", statuses=[ConversationStatus.WAITING])
    assert [c.id for c in waiting] == [b.id]


async def test_cancel_flag_roundtrip(store, conv):
    await store.set_canceled(conv.id, "alice")
    c = await store.get_conversation(conv.id)
    assert c.canceled and c.canceled_by == "alice" and c.canceled_at is not None

    assert await store.claim_turn(conv.id)
    c = await store.get_conversation(conv.id)
    assert not c.canceled and c.canceled_by is None
    assert c.status is ConversationStatus.WORKING


async def test_claim_turn_only_from_resting(store, conv):
    assert await store.claim_turn(conv.id)
    assert not await store.claim_turn(conv.id)

    await store.set_conversation_status(conv.id, ConversationStatus.WAITING)
    assert not await store.claim_turn(conv.id)

    await store.set_conversation_status(conv.id, ConversationStatus.RESTING)
    assert await store.claim_turn(conv.id)


async def test_delete_cascades(store, conv):
    msg = await store.create_message(conv.id, Role.ASSISTANT, "")
    tu = await store.create_tool_use(msg.id, "echo", {"message": "x"}, "call_1")
    await store.create_tool_result(tu.id, msg.id, "x")

    await store.delete_conversation(conv.id)
    with pytest.raises(NotFoundError):
        await store.get_tool_use(tu.id)
    assert await store.list_messages(conv.id) == []


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

async def test_update_message_fields(store, conv):
    msg = await store.create_message(conv.id, Role.ASSISTANT, "")
    await store.update_message(
        msg.id,
        content="Hello",
        model="m-1",
        finish_reason="stop",
        input_tokens=10,
        output_tokens=5,
        cache_read_input_tokens=2,
    )
    m = await store.get_message(msg.id)
    assert m.content == "Hello"
    assert m.model == "m-1"
    assert m.finish_reason == "stop"
    assert m.total_tokens == 17


async def test_update_message_rejects_unknown_columns(store, conv):
    msg = await store.create_message(conv.id, Role.USER, "hi")
    with pytest.raises(ValueError):
        await store.update_message(msg.id, role="assistant")


async def test_history_excludes_error_messages(store, conv):
    await store.create_message(conv.id, Role.USER, "one")
    bad = await store.create_message(conv.id, Role.ASSISTANT, "")
    await store.update_message(bad.id, is_error=True, content="failed")

    history = await store.get_history(conv.id)
    assert [m.content for m in history] == ["one"]
    everything = await store.get_history(conv.id, include_errors=True)
    assert len(everything) == 2
    assert (await store.last_message(conv.id)).is_error is True


# ---------------------------------------------------------------------------
# Tool uses / results
# ---------------------------------------------------------------------------

async def test_tool_use_lifecycle(store, conv):
    msg = await store.create_message(conv.id, Role.ASSISTANT, "")
    tu = await store.create_tool_use(msg.id, "echo", {"message": "a"}, "call_1")
    assert tu.status is ToolUseStatus.PENDING
    assert tu.result is None
    assert not tu.completed

    await store.update_tool_use(tu.id, status=ToolUseStatus.APPROVED, input={"message": "b"})
    await store.create_tool_result(tu.id, msg.id, "b", diff="+b")

    loaded = await store.get_tool_use(tu.id)
    assert loaded.status is ToolUseStatus.APPROVED
    assert loaded.completed
    assert loaded.input == {"message": "b"}
    assert loaded.result.content == "b"
    assert loaded.result.diff == "+b"
    assert await store.conversation_id_for_tool_use(tu.id) == conv.id

    history = await store.get_history(conv.id)
    assert history[0].tool_uses[0].result.content == "b"


async def test_find_tool_use_by_name(store, conv):
    msg = await store.create_message(conv.id, Role.ASSISTANT, "")
    first = await store.create_tool_use(msg.id, "get_url", {}, "a")
    await store.create_tool_use(msg.id, "get_url", {}, "b")
    assert (await store.find_tool_use(msg.id, "get_url")).id == first.id
    assert await store.find_tool_use(msg.id, "other") is None


@pytest.mark.parametrize("given, expected", [(None, False), (0, False), ("", False), (1, True), ("yes", True), (True, True)])
async def test_is_error_never_null(store, conv, given, expected):
    msg = await store.create_message(conv.id, Role.ASSISTANT, "")
    tu = await store.create_tool_use(msg.id, "echo", {}, None)
    result = await store.create_tool_result(tu.id, msg.id, "out", is_error=given)
    assert result.is_error is expected

    row = await store._fetchone("SELECT is_error FROM tool_results WHERE id = ?", (result.id,))
    assert row[0] in (0, 1)


async def test_one_result_per_tool_use(store, conv):
    msg = await store.create_message(conv.id, Role.ASSISTANT, "")
    tu = await store.create_tool_use(msg.id, "echo", {}, "c")
    await store.create_tool_result(tu.id, msg.id, "first")
    with pytest.raises(sqlite3.IntegrityError):
        await store.create_tool_result(tu.id, msg.id, "second")


async def test_list_conversation_tool_uses_by_status(store, conv):
    m1 = await store.create_message(conv.id, Role.ASSISTANT, "")
    m2 = await store.create_message(conv.id, Role.ASSISTANT, "")
    a = await store.create_tool_use(m1.id, "x", {}, "a")
    await store.create_tool_use(m2.id, "y", {}, "b", status=ToolUseStatus.APPROVED)

    pending = await store.list_conversation_tool_uses(conv.id, [ToolUseStatus.PENDING])
    assert [t.id for t in pending] == [a.id]
    assert len(await store.list_conversation_tool_uses(conv.id)) == 2


async def test_missing_tool_use(store):
    with pytest.raises(NotFoundError):
        await store.get_tool_use(123)
    with pytest.raises(NotFoundError):
        await store.conversation_id_for_tool_use(123)


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------

async def test_attachment_rows_and_blobs(store, conv, tmp_path):
    blobs = AttachmentStore(str(tmp_path / "att"))
    payload = AttachmentPayload(b"\x89PNG fake", "pic.png", "image/png")
    blob = blobs.put(payload)
    again = blobs.put(payload)
    assert again.stored_path == blob.stored_path

    msg = await store.create_message(conv.id, Role.USER, "look")
    att = await store.add_attachment(
        msg.id,
        filename="pic.png",
        content_type="image/png",
        sha256=blob.sha256,
        stored_path=blob.stored_path,
        size_bytes=blob.size_bytes,
    )
    assert att.is_image
    assert blobs.read(att) == b"\x89PNG fake"

    history = await store.get_history(conv.id)
    assert history[0].attachments[0].filename == "pic.png"


def test_attachment_path_outside_base_rejected(tmp_path):
    from chatloop.store.models import Attachment

    blobs = AttachmentStore(str(tmp_path / "att"))
    outside = tmp_path / "elsewhere.bin"
    outside.write_bytes(b"x")
    att = Attachment(1, 1, "e.bin", "application/octet-stream", "abc", str(outside))
    with pytest.raises(ValueError):
        blobs.read(att)
