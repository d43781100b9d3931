import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from app.auth.deps import CallerContext
from app.conversations.identifiers import (
    WorkflowIdentity,
    generate_request_id,
    normalize_participant_id,
    resolve_workflow_identity,
    workflow_id_suffix,
)
from app.conversations.message_service import (
    append_message,
    build_message,
    get_last_incoming_data,
    get_last_incoming_origin,
)
from app.conversations.models import (
    DIRECTION_INCOMING,
    DIRECTION_OUTGOING,
    MESSAGE_CHAT,
    MESSAGE_DATA,
)
from app.conversations.thread_service import get_thread, resolve_thread
from app.core.errors import ValidationError
from app.signals.dispatcher import INBOUND_CHAT_OR_DATA_SIGNAL, SignalDispatcher
from app.signals.options import build_start_options

logger = logging.getLogger(__name__)

PROCESSABLE_TYPES = {MESSAGE_CHAT, MESSAGE_DATA}


@dataclass
class MessageCommand:
    """One chat or data message, inbound or outbound. Every optional field is explicit."""

    participant_id: str
    workflow_id: str | None = None
    workflow_type: str | None = None
    agent: str | None = None
    text: str | None = None
    data: Any = None
    scope: str | None = None
    hint: str | None = None
    request_id: str | None = None
    origin: str | None = None
    thread_id: str | None = None
    authorization: str | None = None
    task_id: str | None = None
    system_scoped: bool = False


def _text_from_body(body: Any) -> str | None:
    if body is None:
        return None
    if isinstance(body, str):
        return body
    return json.dumps(body)


def build_message_command(
    message_type: str,
    *,
    participant_id: str,
    workflow_id: str | None = None,
    workflow_type: str | None = None,
    body: Any = None,
    text: str | None = None,
    request_id: str | None = None,
    origin: str | None = None,
    authorization: str | None = None,
) -> MessageCommand:
    """
    Translate the external request shape into a MessageCommand.

    Data: the body is the payload. Chat: the body supplies the text when no text
    is given, and is kept as data when both are given.
    """
    if message_type == MESSAGE_DATA:
        resolved_text, data = text, body
    elif message_type == MESSAGE_CHAT:
        resolved_text, data = text, None
        if not resolved_text:
            resolved_text = _text_from_body(body)
        elif body is not None:
            data = body
    else:
        raise ValidationError(f"Unsupported message type: {message_type}", field="type")

    return MessageCommand(
        participant_id=participant_id,
        workflow_id=workflow_id,
        workflow_type=workflow_type,
        text=resolved_text,
        data=data,
        request_id=request_id,
        origin=origin,
        authorization=authorization,
    )


def build_signal_payload(
    *,
    identity: WorkflowIdentity,
    thread_id: str,
    participant_id: str,
    message_type: str,
    request_id: str,
    text: str | None = None,
    data: Any = None,
    scope: str | None = None,
    hint: str | None = None,
    authorization: str | None = None,
    task_id: str | None = None,
) -> dict:
    return {
        "agent": identity.agent,
        "threadId": thread_id,
        "participantId": participant_id,
        "text": text,
        "requestId": request_id,
        "scope": scope,
        "hint": hint,
        "data": data,
        "type": message_type,
        "authorization": authorization,
        "taskId": task_id,
    }


def _check_type(message_type: str) -> None:
    if message_type not in PROCESSABLE_TYPES:
        raise ValidationError(f"Unsupported message type: {message_type}", field="type")


def _resolve(db: Session, ctx: CallerContext, command: MessageCommand) -> tuple[str, WorkflowIdentity, str]:
    participant_id = normalize_participant_id(command.participant_id)
    identity = resolve_workflow_identity(
        ctx.tenant_id,
        workflow_id=command.workflow_id,
        workflow_type=command.workflow_type,
        agent=command.agent,
    )

    if command.thread_id:
        thread = get_thread(db, tenant_id=ctx.tenant_id, thread_id=command.thread_id)
        if thread.workflow_id != identity.workflow_id or thread.participant_id != participant_id:
            raise ValidationError(
                f"Thread '{thread.id}' does not belong to workflow {identity.workflow_id} "
                f"and participant {participant_id}",
                field="thread_id",
            )
        return participant_id, identity, thread.id

    thread_id = resolve_thread(
        db,
        tenant_id=ctx.tenant_id,
        workflow_id=identity.workflow_id,
        participant_id=participant_id,
        workflow_type=identity.workflow_type,
        agent=identity.agent,
        actor_id=ctx.user_id,
    )
    return participant_id, identity, thread_id


def _record_incoming(
    db: Session, ctx: CallerContext, command: MessageCommand, message_type: str
) -> tuple[str, WorkflowIdentity, str, str, str]:
    participant_id, identity, thread_id = _resolve(db, ctx, command)
    request_id = command.request_id or generate_request_id(identity.workflow_id, participant_id)

    message_id = append_message(
        db,
        build_message(
            thread_id=thread_id,
            tenant_id=ctx.tenant_id,
            participant_id=participant_id,
            direction=DIRECTION_INCOMING,
            message_type=message_type,
            workflow_id=identity.workflow_id,
            workflow_type=identity.workflow_type,
            text=command.text,
            data=command.data,
            scope=command.scope,
            request_id=request_id,
            hint=command.hint,
            task_id=command.task_id,
            origin=command.origin,
            created_by=ctx.user_id,
        ),
    )
    return participant_id, identity, thread_id, request_id, message_id


async def process_incoming(
    db: Session,
    dispatcher: SignalDispatcher,
    ctx: CallerContext,
    command: MessageCommand,
    message_type: str = MESSAGE_CHAT,
) -> str:
    """Persist a message from a participant and deliver it to the agent workflow, starting it if needed."""
    _check_type(message_type)
    if command.text is None and command.data is None:
        raise ValidationError("text or data is required", field="text")

    # session work is blocking; keep it off the event loop
    participant_id, identity, thread_id, request_id, message_id = await asyncio.to_thread(
        _record_incoming, db, ctx, command, message_type
    )
    authorization = command.authorization or ctx.authorization

    payload = build_signal_payload(
        identity=identity,
        thread_id=thread_id,
        participant_id=participant_id,
        message_type=message_type,
        request_id=request_id,
        text=command.text,
        data=command.data,
        scope=command.scope,
        hint=command.hint,
        authorization=authorization,
        task_id=command.task_id,
    )
    start_options = build_start_options(
        tenant_id=ctx.tenant_id,
        workflow_type=identity.workflow_type,
        user_id=ctx.user_id,
        agent=identity.agent,
        id_postfix=workflow_id_suffix(ctx.tenant_id, identity.workflow_type, identity.workflow_id),
        system_scoped=command.system_scoped,
    )
    await dispatcher.signal_or_start(
        identity.workflow_id,
        identity.workflow_type,
        INBOUND_CHAT_OR_DATA_SIGNAL,
        payload,
        start_options,
    )

    logger.info(
        "Processed inbound %s message %s for workflow %s in thread %s",
        message_type,
        message_id,
        identity.workflow_id,
        thread_id,
    )
    return thread_id


def process_outgoing(
    db: Session,
    ctx: CallerContext,
    command: MessageCommand,
    message_type: str = MESSAGE_CHAT,
) -> str:
    """Persist a message from the agent to a participant. Nothing is signalled."""
    _check_type(message_type)
    participant_id, identity, thread_id = _resolve(db, ctx, command)

    origin = command.origin
    if not origin:
        origin = get_last_incoming_origin(db, tenant_id=ctx.tenant_id, thread_id=thread_id)
    data = command.data
    if data is None:
        data = get_last_incoming_data(db, tenant_id=ctx.tenant_id, thread_id=thread_id)

    message_id = append_message(
        db,
        build_message(
            thread_id=thread_id,
            tenant_id=ctx.tenant_id,
            participant_id=participant_id,
            direction=DIRECTION_OUTGOING,
            message_type=message_type,
            workflow_id=identity.workflow_id,
            workflow_type=identity.workflow_type,
            text=command.text,
            data=data,
            scope=command.scope,
            request_id=command.request_id,
            hint=command.hint,
            task_id=command.task_id,
            origin=origin,
            created_by=ctx.user_id,
        ),
    )

    logger.info(
        "Processed outbound %s message %s for workflow %s in thread %s",
        message_type,
        message_id,
        identity.workflow_id,
        thread_id,
    )
    return thread_id
