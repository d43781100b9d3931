import pytest
from sqlalchemy import func, select

from app.conversations.message_service import get_history_by_thread
from app.conversations.models import DIRECTION_INCOMING, DIRECTION_OUTGOING, MESSAGE_CHAT, MESSAGE_DATA, ConversationThread
from app.conversations.processor import MessageCommand, build_message_command, process_incoming, process_outgoing
from app.core.errors import ValidationError
from app.signals.dispatcher import INBOUND_CHAT_OR_DATA_SIGNAL


def _messages(db, thread_id):
    return get_history_by_thread(db, tenant_id="acme", thread_id=thread_id, page=1, page_size=50, sort_order="asc")


@pytest.mark.asyncio
async def test_inbound_chat_resolves_thread_and_signals_with_start(db, dispatcher, ctx):
    command = MessageCommand(participant_id="User-42", workflow_type="support-agent:triage", text="my invoice is wrong")

    thread_id = await process_incoming(db, dispatcher, ctx, command)

    thread = db.get(ConversationThread, thread_id)
    assert (thread.tenant_id, thread.workflow_id, thread.participant_id) == (
        "acme",
        "acme:support-agent:triage",
        "user-42",
    )
    assert thread.agent == "support-agent"

    [message] = _messages(db, thread_id)
    assert message.direction == DIRECTION_INCOMING
    assert message.request_id.startswith("acme:support-agent:triage:user-42:")

    [call] = dispatcher.calls
    kind, proposed_id, process_type, signal_name, payload, options = call
    assert kind == "signal_or_start"
    assert proposed_id == "acme:support-agent:triage"
    assert process_type == "support-agent:triage"
    assert signal_name == INBOUND_CHAT_OR_DATA_SIGNAL
    assert payload["threadId"] == thread_id
    assert payload["participantId"] == "user-42"
    assert payload["requestId"] == message.request_id
    assert payload["authorization"] == "Bearer caller-token"
    assert options.workflow_id == "acme:support-agent:triage"
    assert options.task_queue == "acme:support-agent:triage"


@pytest.mark.asyncio
async def test_second_message_reuses_thread(db, dispatcher, ctx):
    command = MessageCommand(participant_id="user-42", workflow_type="support-agent:triage", text="one")
    first = await process_incoming(db, dispatcher, ctx, command)
    again = MessageCommand(participant_id="USER-42", workflow_type="support-agent:triage", text="two")
    second = await process_incoming(db, dispatcher, ctx, again)

    assert first == second
    assert {m.text for m in _messages(db, first)} == {"one", "two"}


@pytest.mark.asyncio
async def test_foreign_namespace_is_rejected_before_any_write(db, dispatcher, ctx):
    command = MessageCommand(participant_id="user-42", workflow_id="globex:support-agent:triage", text="hi")

    with pytest.raises(ValidationError) as exc:
        await process_incoming(db, dispatcher, ctx, command)

    assert exc.value.field == "workflow_id"
    assert db.execute(select(func.count()).select_from(ConversationThread)).scalar_one() == 0
    assert dispatcher.calls == []


@pytest.mark.asyncio
async def test_inbound_requires_content(db, dispatcher, ctx):
    with pytest.raises(ValidationError):
        await process_incoming(
            db, dispatcher, ctx, MessageCommand(participant_id="user-42", workflow_type="support-agent:triage")
        )
    assert dispatcher.calls == []


@pytest.mark.asyncio
async def test_inbound_keeps_caller_request_id_and_suffix(db, dispatcher, ctx):
    command = MessageCommand(
        participant_id="user-42",
        workflow_id="acme:support-agent:triage:case-7",
        data={"order": 7},
        request_id="req-1",
    )

    thread_id = await process_incoming(db, dispatcher, ctx, command, MESSAGE_DATA)

    [message] = _messages(db, thread_id)
    assert message.request_id == "req-1"
    assert message.message_type == MESSAGE_DATA
    options = dispatcher.calls[0][5]
    assert options.workflow_id == "acme:support-agent:triage:case-7"
    assert options.search_attributes["idPostfix"] == "case-7"


@pytest.mark.asyncio
async def test_outbound_backfills_origin_and_data_without_signalling(db, dispatcher, ctx):
    inbound = MessageCommand(
        participant_id="user-42",
        workflow_type="support-agent:triage",
        text="hello",
        data={"page": "/pricing"},
        origin="web-widget",
    )
    thread_id = await process_incoming(db, dispatcher, ctx, inbound)
    dispatcher.calls.clear()

    reply = MessageCommand(participant_id="user-42", workflow_id="acme:support-agent:triage", text="how can I help?")
    assert process_outgoing(db, ctx, reply) == thread_id

    [outgoing] = [m for m in _messages(db, thread_id) if m.direction == DIRECTION_OUTGOING]
    assert outgoing.origin == "web-widget"
    assert outgoing.data == {"page": "/pricing"}
    assert dispatcher.calls == []


def test_build_chat_command_uses_body_as_text_or_data():
    only_body = build_message_command(
        MESSAGE_CHAT, workflow_type="support-agent:triage", participant_id="u", body="hi there"
    )
    assert only_body.text == "hi there"
    assert only_body.data is None
    assert only_body.workflow_type == "support-agent:triage"

    both = build_message_command(
        MESSAGE_CHAT,
        workflow_id="acme:support-agent:triage",
        participant_id="u",
        body={"k": 1},
        text="hi",
    )
    assert both.text == "hi"
    assert both.data == {"k": 1}
    assert both.workflow_id == "acme:support-agent:triage"

    structured = build_message_command(
        MESSAGE_CHAT, workflow_type="support-agent:triage", participant_id="u", body={"k": 1}
    )
    assert structured.text == '{"k": 1}'


def test_build_data_command_keeps_body_as_data():
    command = build_message_command(
        MESSAGE_DATA, workflow_type="support-agent:triage", participant_id="u", body=[1, 2]
    )
    assert command.data == [1, 2]
    assert command.text is None

    with pytest.raises(ValidationError):
        build_message_command("Handoff", workflow_type="support-agent:triage", participant_id="u")


@pytest.mark.asyncio
async def test_thread_id_from_another_conversation_is_rejected(db, dispatcher, ctx):
    alice_thread = await process_incoming(
        db,
        dispatcher,
        ctx,
        MessageCommand(participant_id="alice", workflow_type="hr-agent:leave", text="two days off please"),
    )
    dispatcher.calls.clear()

    intruder = MessageCommand(
        participant_id="bob",
        workflow_type="support-agent:triage",
        text="hello",
        thread_id=alice_thread,
    )
    with pytest.raises(ValidationError) as exc:
        await process_incoming(db, dispatcher, ctx, intruder)

    assert exc.value.field == "thread_id"
    assert [m.participant_id for m in _messages(db, alice_thread)] == ["alice"]
    assert dispatcher.calls == []

    same_workflow_other_participant = MessageCommand(
        participant_id="bob", workflow_type="hr-agent:leave", text="hi", thread_id=alice_thread
    )
    with pytest.raises(ValidationError):
        process_outgoing(db, ctx, same_workflow_other_participant)


@pytest.mark.asyncio
async def test_matching_thread_id_is_used(db, dispatcher, ctx):
    command = MessageCommand(participant_id="alice", workflow_type="hr-agent:leave", text="one")
    thread_id = await process_incoming(db, dispatcher, ctx, command)

    again = MessageCommand(participant_id="Alice", workflow_id="acme:hr-agent:leave", text="two", thread_id=thread_id)
    assert await process_incoming(db, dispatcher, ctx, again) == thread_id
