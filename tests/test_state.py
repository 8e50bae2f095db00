"""Tests for ConversationStateMachine transitions."""

from __future__ import annotations

import pytest

from chatloop.conversation.state import ConversationStateMachine
from chatloop.errors import InvalidTransitionError, TurnInProgressError
from chatloop.store.models import ConversationStatus, Role, ToolUseStatus
from chatloop.store.store import SQLiteStore


@pytest.fixture
async def store(tmp_path):
    s = SQLiteStore(str(tmp_path / "test.db"))
    await s.init()
    yield s
    await s.close()


@pytest.fixture
def sm(store):
    return ConversationStateMachine(store)


@pytest.fixture
async def conv(store):
    return await store.create_conversation("user", "1")


async def _pending_use(store, conv_id, status=ToolUseStatus.PENDING):
    msg = await store.create_message(conv_id, Role.ASSISTANT, "")
    return await store.create_tool_use(msg.id, "delete_resource", {}, None, status=status)


async def test_start_turn_moves_to_working(sm, conv):
    c = await sm.start_turn(conv.id)
    assert c.status is ConversationStatus.WORKING
    with pytest.raises(TurnInProgressError):
        await sm.start_turn(conv.id)


async def test_start_turn_refused_while_waiting(sm, store, conv):
    await store.set_conversation_status(conv.id, ConversationStatus.WAITING)
    with pytest.raises(TurnInProgressError):
        await sm.start_turn(conv.id)


async def test_canceled_conversation_accepts_new_turn(sm, store, conv):
    await store.set_conversation_status(conv.id, ConversationStatus.WORKING)
    await sm.cancel(conv.id, "bob")
    c = await sm.start_turn(conv.id)
    assert c.status is ConversationStatus.WORKING
    assert not c.canceled


async def test_cancel_working_only_sets_flag(sm, store, conv):
    await store.set_conversation_status(conv.id, ConversationStatus.WORKING)
    c = await sm.cancel(conv.id, "bob")
    assert c.status is ConversationStatus.WORKING
    assert c.canceled and c.canceled_by == "bob"


async def test_resume_requires_settled_approvals(sm, store, conv):
    use = await _pending_use(store, conv.id)
    await store.set_conversation_status(conv.id, ConversationStatus.WAITING)
    assert not await sm.resume_eligible(conv.id)
    with pytest.raises(InvalidTransitionError):
        await sm.resume(conv.id)

    await sm.approve(use.id)
    assert await sm.resume_eligible(conv.id)
    assert (await sm.resume(conv.id)).status is ConversationStatus.WORKING


async def test_resume_not_eligible_unless_waiting(sm, conv):
    assert not await sm.resume_eligible(conv.id)


async def test_approve_and_reject_only_pending(sm, store, conv):
    use = await _pending_use(store, conv.id)
    approved = await sm.approve(use.id)
    assert approved.status is ToolUseStatus.APPROVED
    with pytest.raises(InvalidTransitionError):
        await sm.approve(use.id)
    with pytest.raises(InvalidTransitionError):
        await sm.reject(use.id)


async def test_reject_with_custom_message(sm, store, conv):
    use = await _pending_use(store, conv.id)
    rejected = await sm.reject(use.id, "Too risky.")
    assert rejected.status is ToolUseStatus.REJECTED
    assert rejected.result.content == "Too risky."
    assert rejected.result.is_error is False


async def test_complete_async_result_requires_waiting(sm, store, conv):
    use = await _pending_use(store, conv.id)
    with pytest.raises(InvalidTransitionError):
        await sm.complete_async_result(use.id, "x")


async def test_can_retry_after_error(sm, store, conv):
    assert not await sm.can_retry(conv)
    msg = await store.create_message(conv.id, Role.ASSISTANT, "")
    await store.update_message(msg.id, is_error=True)
    assert await sm.can_retry(await store.get_conversation(conv.id))
