import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Literal

from sqlalchemy.orm import Session

from app.auth.deps import CallerContext
from app.conversations.identifiers import (
    WorkflowIdentity,
    agent_from_workflow_type,
    build_workflow_id,
    generate_request_id,
    normalize_participant_id,
    qualify_workflow_id,
    validate_workflow_id,
    workflow_id_suffix,
    workflow_type_from_workflow_id,
)
from app.conversations.message_service import append_messages, build_message
from app.conversations.models import (
    DIRECTION_INCOMING,
    DIRECTION_OUTGOING,
    MESSAGE_CHAT,
    MESSAGE_HANDOFF,
)
from app.conversations.processor import build_signal_payload
from app.conversations.thread_service import get_thread, resolve_thread
from app.core.errors import ValidationError
from app.signals.dispatcher import INBOUND_CHAT_OR_DATA_SIGNAL, SignalDispatcher
from app.signals.options import build_start_options

logger = logging.getLogger(__name__)

DeliveryMode = Literal["auto", "fail_if_not_running"]


@dataclass
class HandoffCommand:
    participant_id: str
    source_workflow_id: str | None = None
    thread_id: str | None = None
    target_workflow_id: str | None = None
    target_workflow_type: str | None = None
    text: str | None = None
    data: Any = None
    scope: str | None = None
    hint: str | None = None
    request_id: str | None = None
    authorization: str | None = None
    delivery_mode: DeliveryMode = "auto"
    system_scoped: bool = False


@dataclass
class HandoffResult:
    target_thread_id: str
    target_workflow_id: str
    source_message_id: str
    target_message_id: str
    request_id: str
    started_if_missing: bool


@dataclass
class HandoffResponseCommand:
    workflow_id: str
    parent_workflow_id: str
    participant_id: str
    text: str | None = None
    data: Any = None
    scope: str | None = None


def _resolve_target(tenant_id: str, command: HandoffCommand) -> tuple[WorkflowIdentity, bool]:
    """Returns the target identity and whether its workflow type is known well enough to start it."""
    if command.target_workflow_id:
        workflow_id = qualify_workflow_id(tenant_id, command.target_workflow_id, field="target_workflow_id")
        workflow_type = command.target_workflow_type or workflow_type_from_workflow_id(tenant_id, workflow_id)
        type_known = bool(command.target_workflow_type)
    elif command.target_workflow_type:
        workflow_id = build_workflow_id(tenant_id, command.target_workflow_type)
        workflow_type = command.target_workflow_type
        type_known = True
    else:
        raise ValidationError("target_workflow_id or target_workflow_type is required", field="target_workflow_id")

    identity = WorkflowIdentity(
        workflow_id=workflow_id,
        workflow_type=workflow_type,
        agent=agent_from_workflow_type(workflow_type),
    )
    return identity, type_known


def _record_handoff(
    db: Session,
    ctx: CallerContext,
    command: HandoffCommand,
    participant_id: str,
    target: WorkflowIdentity,
) -> tuple[str, str, str, str, str]:
    source_thread_id = None
    if command.thread_id:
        source_thread = get_thread(db, tenant_id=ctx.tenant_id, thread_id=command.thread_id)
        if source_thread.participant_id != participant_id:
            raise ValidationError(
                f"Thread '{source_thread.id}' does not belong to participant {participant_id}",
                field="thread_id",
            )
        if command.source_workflow_id and command.source_workflow_id != source_thread.workflow_id:
            raise ValidationError(
                f"Thread '{source_thread.id}' belongs to workflow {source_thread.workflow_id}, "
                f"not {command.source_workflow_id}",
                field="source_workflow_id",
            )
        source_thread_id = source_thread.id
        source_workflow_id = source_thread.workflow_id
        source_workflow_type = source_thread.workflow_type
    else:
        source_workflow_id = command.source_workflow_id
        source_workflow_type = workflow_type_from_workflow_id(ctx.tenant_id, source_workflow_id)

    if source_workflow_id == target.workflow_id:
        raise ValidationError("A workflow cannot hand off to itself", field="target_workflow_id")

    if source_thread_id is None:
        source_thread_id = resolve_thread(
            db,
            tenant_id=ctx.tenant_id,
            workflow_id=source_workflow_id,
            participant_id=participant_id,
            workflow_type=source_workflow_type,
            agent=agent_from_workflow_type(source_workflow_type),
            actor_id=ctx.user_id,
        )

    target_thread_id = resolve_thread(
        db,
        tenant_id=ctx.tenant_id,
        workflow_id=target.workflow_id,
        participant_id=participant_id,
        workflow_type=target.workflow_type,
        agent=target.agent,
        actor_id=ctx.user_id,
    )

    request_id = command.request_id or generate_request_id(source_workflow_id, participant_id)
    common = dict(
        tenant_id=ctx.tenant_id,
        participant_id=participant_id,
        text=command.text,
        data=command.data,
        scope=command.scope,
        request_id=request_id,
        hint=command.hint,
        created_by=ctx.user_id,
    )
    source_message = build_message(
        thread_id=source_thread_id,
        direction=DIRECTION_OUTGOING,
        message_type=MESSAGE_HANDOFF,
        workflow_id=source_workflow_id,
        workflow_type=source_workflow_type,
        child_workflow_id=target.workflow_id,
        **common,
    )
    target_message = build_message(
        thread_id=target_thread_id,
        direction=DIRECTION_INCOMING,
        message_type=MESSAGE_CHAT,
        workflow_id=target.workflow_id,
        workflow_type=target.workflow_type,
        parent_workflow_id=source_workflow_id,
        **common,
    )
    source_message_id, target_message_id = append_messages(db, [source_message, target_message])
    return source_workflow_id, target_thread_id, request_id, source_message_id, target_message_id


async def handoff(
    db: Session,
    dispatcher: SignalDispatcher,
    ctx: CallerContext,
    command: HandoffCommand,
) -> HandoffResult:
    """
    Move a participant's conversation from one agent workflow to another.

    Writes an Outgoing/Handoff message in the source thread and an Incoming chat
    message in the target thread, both carrying the same content and request id,
    then delivers the message to the target workflow. Both messages stay written
    if delivery fails; they record that the handoff was attempted.
    """
    if command.text is None and command.data is None:
        raise ValidationError("text or data is required", field="text")
    participant_id = normalize_participant_id(command.participant_id)
    if not command.thread_id and not command.source_workflow_id:
        raise ValidationError("thread_id or source_workflow_id is required", field="source_workflow_id")
    if command.source_workflow_id:
        validate_workflow_id(ctx.tenant_id, command.source_workflow_id, field="source_workflow_id")
    target, type_known = _resolve_target(ctx.tenant_id, command)

    source_workflow_id, target_thread_id, request_id, source_message_id, target_message_id = await asyncio.to_thread(
        _record_handoff, db, ctx, command, participant_id, target
    )

    payload = build_signal_payload(
        identity=target,
        thread_id=target_thread_id,
        participant_id=participant_id,
        message_type=MESSAGE_CHAT,
        request_id=request_id,
        text=command.text,
        data=command.data,
        scope=command.scope,
        hint=command.hint,
        authorization=command.authorization or ctx.authorization,
    )

    start_if_missing = type_known and command.delivery_mode != "fail_if_not_running"
    if start_if_missing:
        start_options = build_start_options(
            tenant_id=ctx.tenant_id,
            workflow_type=target.workflow_type,
            user_id=ctx.user_id,
            agent=target.agent,
            id_postfix=workflow_id_suffix(ctx.tenant_id, target.workflow_type, target.workflow_id),
            system_scoped=command.system_scoped,
        )
        await dispatcher.signal_or_start(
            target.workflow_id,
            target.workflow_type,
            INBOUND_CHAT_OR_DATA_SIGNAL,
            payload,
            start_options,
        )
    else:
        await dispatcher.signal(target.workflow_id, INBOUND_CHAT_OR_DATA_SIGNAL, payload)

    logger.info(
        "Handed off participant %s from %s to %s (request %s)",
        participant_id,
        source_workflow_id,
        target.workflow_id,
        request_id,
    )
    return HandoffResult(
        target_thread_id=target_thread_id,
        target_workflow_id=target.workflow_id,
        source_message_id=source_message_id,
        target_message_id=target_message_id,
        request_id=request_id,
        started_if_missing=start_if_missing,
    )


def handoff_response(db: Session, ctx: CallerContext, command: HandoffResponseCommand) -> list[str]:
    """
    Record a reply from a handed-off (child) workflow travelling back through its
    parent to the participant. Three messages, one commit:

      (child, parent)       Outgoing
      (parent, child)       Incoming
      (parent, participant) Outgoing, child_workflow_id = child
    """
    if command.text is None and command.data is None:
        raise ValidationError("text or data is required", field="text")

    child_id = validate_workflow_id(ctx.tenant_id, command.workflow_id)
    parent_id = validate_workflow_id(ctx.tenant_id, command.parent_workflow_id, field="parent_workflow_id")
    participant_id = normalize_participant_id(command.participant_id)
    child_type = workflow_type_from_workflow_id(ctx.tenant_id, child_id)
    parent_type = workflow_type_from_workflow_id(ctx.tenant_id, parent_id)

    def _thread(workflow_id: str, workflow_type: str, other: str, is_internal: bool) -> str:
        return resolve_thread(
            db,
            tenant_id=ctx.tenant_id,
            workflow_id=workflow_id,
            participant_id=other,
            workflow_type=workflow_type,
            agent=agent_from_workflow_type(workflow_type),
            actor_id=ctx.user_id,
            is_internal=is_internal,
        )

    child_to_parent = _thread(child_id, child_type, parent_id, True)
    parent_to_child = _thread(parent_id, parent_type, child_id, True)
    parent_to_participant = _thread(parent_id, parent_type, participant_id, False)

    common = dict(
        tenant_id=ctx.tenant_id,
        participant_id=participant_id,
        message_type=MESSAGE_CHAT,
        text=command.text,
        data=command.data,
        scope=command.scope,
        created_by=ctx.user_id,
    )
    message_ids = append_messages(
        db,
        [
            build_message(
                thread_id=child_to_parent,
                direction=DIRECTION_OUTGOING,
                workflow_id=child_id,
                workflow_type=child_type,
                parent_workflow_id=parent_id,
                **common,
            ),
            build_message(
                thread_id=parent_to_child,
                direction=DIRECTION_INCOMING,
                workflow_id=parent_id,
                workflow_type=parent_type,
                parent_workflow_id=parent_id,
                **common,
            ),
            build_message(
                thread_id=parent_to_participant,
                direction=DIRECTION_OUTGOING,
                workflow_id=parent_id,
                workflow_type=parent_type,
                child_workflow_id=child_id,
                **common,
            ),
        ],
    )

    logger.info(
        "Recorded handoff response from %s through %s to participant %s",
        child_id,
        parent_id,
        participant_id,
    )
    return message_ids
