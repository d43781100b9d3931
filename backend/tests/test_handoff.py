import pytest

from app.conversations.message_service import get_history_by_thread
from app.conversations.models import (
    DIRECTION_INCOMING,
    DIRECTION_OUTGOING,
    MESSAGE_HANDOFF,
    ConversationMessage,
    ConversationThread,
)
from app.conversations.processor import MessageCommand, process_incoming
from app.conversations.thread_service import get_thread_by_key
from app.core.errors import NotFoundError, ProcessNotFoundError, ValidationError
from app.handoff.service import HandoffCommand, HandoffResponseCommand, handoff, handoff_response

SOURCE = "acme:support-agent:triage"
TARGET = "acme:billing-agent:review"


def _messages(db, thread_id):
    return get_history_by_thread(db, tenant_id="acme", thread_id=thread_id, page=1, page_size=50, sort_order="asc")


async def _start_conversation(db, dispatcher, ctx):
    thread_id = await process_incoming(
        db,
        dispatcher,
        ctx,
        MessageCommand(participant_id="user-42", workflow_type="support-agent:triage", text="my invoice is wrong"),
    )
    dispatcher.calls.clear()
    return thread_id


@pytest.mark.asyncio
async def test_handoff_writes_paired_messages_and_starts_target(db, dispatcher, ctx):
    source_thread_id = await _start_conversation(db, dispatcher, ctx)

    result = await handoff(
        db,
        dispatcher,
        ctx,
        HandoffCommand(
            participant_id="user-42",
            source_workflow_id=SOURCE,
            target_workflow_type="billing-agent:review",
            text="customer disputes invoice 881",
        ),
    )

    target_thread = get_thread_by_key(db, tenant_id="acme", workflow_id=TARGET, participant_id="user-42")
    assert result.target_thread_id == target_thread.id
    assert target_thread.agent == "billing-agent"

    source_message = db.get(ConversationMessage, result.source_message_id)
    target_message = db.get(ConversationMessage, result.target_message_id)
    assert source_message.thread_id == source_thread_id
    assert source_message.direction == DIRECTION_OUTGOING
    assert source_message.message_type == MESSAGE_HANDOFF
    assert source_message.child_workflow_id == TARGET
    assert target_message.thread_id == target_thread.id
    assert target_message.direction == DIRECTION_INCOMING
    assert target_message.parent_workflow_id == SOURCE
    assert source_message.text == target_message.text == "customer disputes invoice 881"
    assert source_message.request_id == target_message.request_id == result.request_id

    [call] = dispatcher.calls
    assert call[0] == "signal_or_start"
    assert call[1] == TARGET
    assert call[4]["threadId"] == target_thread.id
    assert result.started_if_missing is True


@pytest.mark.asyncio
async def test_handoff_by_thread_id(db, dispatcher, ctx):
    source_thread_id = await _start_conversation(db, dispatcher, ctx)

    result = await handoff(
        db,
        dispatcher,
        ctx,
        HandoffCommand(
            participant_id="user-42",
            thread_id=source_thread_id,
            target_workflow_type="billing-agent:review",
            text="over to billing",
        ),
    )

    assert result.source_message_id in {m.id for m in _messages(db, source_thread_id)}
    assert dispatcher.calls[0][1] == TARGET


@pytest.mark.asyncio
async def test_handoff_to_concrete_id_signals_running_workflow(db, dispatcher, ctx):
    await _start_conversation(db, dispatcher, ctx)

    result = await handoff(
        db,
        dispatcher,
        ctx,
        HandoffCommand(
            participant_id="user-42",
            source_workflow_id=SOURCE,
            target_workflow_id="billing-agent:review:inv-881",
            text="please review",
        ),
    )

    assert result.target_workflow_id == "acme:billing-agent:review:inv-881"
    assert result.started_if_missing is False
    [call] = dispatcher.calls
    assert call[:2] == ("signal", "acme:billing-agent:review:inv-881")


@pytest.mark.asyncio
async def test_handoff_to_missing_workflow_keeps_both_messages(db, dispatcher, ctx):
    dispatcher.not_running.add(TARGET)
    await _start_conversation(db, dispatcher, ctx)

    with pytest.raises(ProcessNotFoundError) as exc:
        await handoff(
            db,
            dispatcher,
            ctx,
            HandoffCommand(
                participant_id="user-42",
                source_workflow_id=SOURCE,
                target_workflow_type="billing-agent:review",
                text="please review",
                delivery_mode="fail_if_not_running",
            ),
        )

    assert isinstance(exc.value, NotFoundError)
    assert dispatcher.calls[0][:2] == ("signal", TARGET)
    sent = db.query(ConversationMessage).filter(ConversationMessage.child_workflow_id == TARGET).one()
    received = db.query(ConversationMessage).filter(ConversationMessage.parent_workflow_id == SOURCE).one()
    assert sent.request_id == received.request_id


@pytest.mark.asyncio
async def test_handoff_rejects_foreign_target_before_any_write(db, dispatcher, ctx):
    with pytest.raises(ValidationError):
        await handoff(
            db,
            dispatcher,
            ctx,
            HandoffCommand(
                participant_id="user-42",
                source_workflow_id="globex:support-agent:triage",
                target_workflow_type="billing-agent:review",
                text="x",
            ),
        )

    assert db.query(ConversationThread).count() == 0
    assert dispatcher.calls == []


@pytest.mark.asyncio
async def test_handoff_to_self_is_rejected(db, dispatcher, ctx):
    with pytest.raises(ValidationError):
        await handoff(
            db,
            dispatcher,
            ctx,
            HandoffCommand(
                participant_id="user-42",
                source_workflow_id=SOURCE,
                target_workflow_id=SOURCE,
                text="x",
            ),
        )
    assert db.query(ConversationThread).count() == 0


def test_handoff_response_writes_three_messages(db, ctx):
    message_ids = handoff_response(
        db,
        ctx,
        HandoffResponseCommand(
            workflow_id=TARGET,
            parent_workflow_id=SOURCE,
            participant_id="User-42",
            text="invoice corrected",
        ),
    )

    assert len(message_ids) == 3
    child_to_parent = get_thread_by_key(db, tenant_id="acme", workflow_id=TARGET, participant_id=SOURCE)
    parent_to_child = get_thread_by_key(db, tenant_id="acme", workflow_id=SOURCE, participant_id=TARGET)
    parent_to_user = get_thread_by_key(db, tenant_id="acme", workflow_id=SOURCE, participant_id="user-42")
    assert child_to_parent.is_internal and parent_to_child.is_internal
    assert not parent_to_user.is_internal

    first, second, third = (db.get(ConversationMessage, i) for i in message_ids)
    assert (first.thread_id, first.direction) == (child_to_parent.id, DIRECTION_OUTGOING)
    assert (second.thread_id, second.direction) == (parent_to_child.id, DIRECTION_INCOMING)
    assert (third.thread_id, third.direction) == (parent_to_user.id, DIRECTION_OUTGOING)
    assert third.child_workflow_id == TARGET
    assert {m.text for m in (first, second, third)} == {"invoice corrected"}


@pytest.mark.asyncio
async def test_handoff_from_another_participants_thread_is_rejected(db, dispatcher, ctx):
    alice_thread = await process_incoming(
        db,
        dispatcher,
        ctx,
        MessageCommand(participant_id="alice", workflow_type="support-agent:triage", text="help"),
    )
    dispatcher.calls.clear()

    with pytest.raises(ValidationError) as exc:
        await handoff(
            db,
            dispatcher,
            ctx,
            HandoffCommand(
                participant_id="bob",
                thread_id=alice_thread,
                target_workflow_type="billing-agent:review",
                text="over to billing",
            ),
        )

    assert exc.value.field == "thread_id"
    assert [m.participant_id for m in _messages(db, alice_thread)] == ["alice"]
    assert db.query(ConversationThread).count() == 1
    assert dispatcher.calls == []


@pytest.mark.asyncio
async def test_handoff_thread_must_match_source_workflow(db, dispatcher, ctx):
    source_thread_id = await _start_conversation(db, dispatcher, ctx)

    with pytest.raises(ValidationError) as exc:
        await handoff(
            db,
            dispatcher,
            ctx,
            HandoffCommand(
                participant_id="user-42",
                thread_id=source_thread_id,
                source_workflow_id="acme:hr-agent:leave",
                target_workflow_type="billing-agent:review",
                text="over to billing",
            ),
        )

    assert exc.value.field == "source_workflow_id"
    assert len(_messages(db, source_thread_id)) == 1
    assert dispatcher.calls == []
