from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.auth.deps import CallerContext, get_caller_context
from app.conversations.identifiers import normalize_participant_id, resolve_workflow_identity
from app.conversations.message_service import (
    delete_by_topic,
    delete_thread,
    get_history,
    get_history_by_thread,
    get_last_task_id,
    get_messaging_stats,
    get_topics,
)
from app.conversations.models import MESSAGE_CHAT, MESSAGE_DATA
from app.conversations.processor import build_message_command, process_incoming, process_outgoing
from app.conversations.schemas import (
    DeleteTopicResponse,
    LastTaskIdResponse,
    MessageAccepted,
    MessageOut,
    MessageRequest,
    PaginationOut,
    StatsResponse,
    ThreadOut,
    TopicOut,
    TopicsResponse,
)
from app.conversations.thread_service import get_thread, list_threads_by_agent
from app.core.config import settings
from app.db.session import get_db
from app.signals.client import get_signal_dispatcher
from app.signals.dispatcher import SignalDispatcher

router = APIRouter()


def _workflow_id(ctx: CallerContext, workflow_id: str | None, workflow_type: str | None) -> str:
    return resolve_workflow_identity(ctx.tenant_id, workflow_id=workflow_id, workflow_type=workflow_type).workflow_id


def _command(payload: MessageRequest, ctx: CallerContext, message_type: str):
    command = build_message_command(
        message_type,
        workflow_id=payload.workflow_id,
        workflow_type=payload.workflow_type,
        participant_id=payload.participant_id,
        body=payload.body,
        text=payload.text,
        request_id=payload.request_id,
        origin=payload.origin,
        authorization=payload.authorization,
    )
    command.agent = payload.agent
    command.scope = payload.scope
    command.hint = payload.hint
    command.thread_id = payload.thread_id
    command.task_id = payload.task_id
    command.system_scoped = payload.system_scoped
    return command


@router.post("/inbound/chat", response_model=MessageAccepted, status_code=status.HTTP_202_ACCEPTED)
async def inbound_chat(
    payload: MessageRequest,
    db: Session = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
    dispatcher: SignalDispatcher = Depends(get_signal_dispatcher),
):
    thread_id = await process_incoming(db, dispatcher, ctx, _command(payload, ctx, MESSAGE_CHAT), MESSAGE_CHAT)
    return MessageAccepted(thread_id=thread_id)


@router.post("/inbound/data", response_model=MessageAccepted, status_code=status.HTTP_202_ACCEPTED)
async def inbound_data(
    payload: MessageRequest,
    db: Session = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
    dispatcher: SignalDispatcher = Depends(get_signal_dispatcher),
):
    thread_id = await process_incoming(db, dispatcher, ctx, _command(payload, ctx, MESSAGE_DATA), MESSAGE_DATA)
    return MessageAccepted(thread_id=thread_id)


@router.post("/outbound/chat", response_model=MessageAccepted)
def outbound_chat(
    payload: MessageRequest,
    db: Session = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    thread_id = process_outgoing(db, ctx, _command(payload, ctx, MESSAGE_CHAT), MESSAGE_CHAT)
    return MessageAccepted(thread_id=thread_id)


@router.post("/outbound/data", response_model=MessageAccepted)
def outbound_data(
    payload: MessageRequest,
    db: Session = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    thread_id = process_outgoing(db, ctx, _command(payload, ctx, MESSAGE_DATA), MESSAGE_DATA)
    return MessageAccepted(thread_id=thread_id)


@router.get("/history", response_model=list[MessageOut])
def history(
    workflow_id: str | None = None,
    workflow_type: str | None = None,
    participant_id: str = Query(min_length=1),
    page: int = 1,
    page_size: int = Query(default=settings.DEFAULT_PAGE_SIZE, le=settings.MAX_PAGE_SIZE),
    scope: str | None = None,
    chat_only: bool = False,
    sort_order: str = "desc",
    db: Session = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    return get_history(
        db,
        tenant_id=ctx.tenant_id,
        workflow_id=_workflow_id(ctx, workflow_id, workflow_type),
        participant_id=normalize_participant_id(participant_id),
        page=page,
        page_size=page_size,
        scope=scope,
        chat_only=chat_only,
        sort_order=sort_order,
    )


@router.get("/threads/{thread_id}/messages", response_model=list[MessageOut])
def thread_messages(
    thread_id: str,
    page: int = 1,
    page_size: int = Query(default=settings.DEFAULT_PAGE_SIZE, le=settings.MAX_PAGE_SIZE),
    # omitted: every topic; empty string: default topic only
    scope: str | None = None,
    chat_only: bool = False,
    sort_order: str = "desc",
    db: Session = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    thread = get_thread(db, tenant_id=ctx.tenant_id, thread_id=thread_id)
    return get_history_by_thread(
        db,
        tenant_id=ctx.tenant_id,
        thread_id=thread.id,
        page=page,
        page_size=page_size,
        scope=scope,
        chat_only=chat_only,
        sort_order=sort_order,
    )


@router.get("/threads", response_model=list[ThreadOut])
def threads_by_agent(
    agent: str = Query(min_length=1),
    page: int = 1,
    page_size: int = Query(default=settings.DEFAULT_PAGE_SIZE, le=settings.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    return list_threads_by_agent(db, tenant_id=ctx.tenant_id, agent=agent, page=page, page_size=page_size)


@router.get("/topics", response_model=TopicsResponse)
def topics(
    workflow_id: str | None = None,
    workflow_type: str | None = None,
    participant_id: str = Query(min_length=1),
    page: int = 1,
    page_size: int = Query(default=settings.DEFAULT_PAGE_SIZE, le=settings.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    result = get_topics(
        db,
        tenant_id=ctx.tenant_id,
        workflow_id=_workflow_id(ctx, workflow_id, workflow_type),
        participant_id=normalize_participant_id(participant_id),
        page=page,
        page_size=page_size,
    )
    return TopicsResponse(
        topics=[
            TopicOut(scope=t.scope, message_count=t.message_count, last_message_at=t.last_message_at)
            for t in result.topics
        ],
        pagination=PaginationOut(
            current_page=result.current_page,
            page_size=result.page_size,
            total_topics=result.total_topics,
            total_pages=result.total_pages,
            has_more=result.has_more,
        ),
    )


@router.delete("/threads", status_code=status.HTTP_204_NO_CONTENT)
def remove_thread(
    workflow_id: str | None = None,
    workflow_type: str | None = None,
    participant_id: str = Query(min_length=1),
    db: Session = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    delete_thread(
        db,
        tenant_id=ctx.tenant_id,
        workflow_id=_workflow_id(ctx, workflow_id, workflow_type),
        participant_id=normalize_participant_id(participant_id),
    )


@router.delete("/topics", response_model=DeleteTopicResponse)
def remove_topic(
    workflow_id: str | None = None,
    workflow_type: str | None = None,
    participant_id: str = Query(min_length=1),
    scope: str | None = None,
    db: Session = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    deleted = delete_by_topic(
        db,
        tenant_id=ctx.tenant_id,
        workflow_id=_workflow_id(ctx, workflow_id, workflow_type),
        participant_id=normalize_participant_id(participant_id),
        scope=scope,
    )
    return DeleteTopicResponse(deleted=deleted)


@router.get("/last-task-id", response_model=LastTaskIdResponse)
def last_task_id(
    workflow_id: str | None = None,
    workflow_type: str | None = None,
    participant_id: str = Query(min_length=1),
    scope: str | None = None,
    db: Session = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    task_id = get_last_task_id(
        db,
        tenant_id=ctx.tenant_id,
        workflow_id=_workflow_id(ctx, workflow_id, workflow_type),
        participant_id=normalize_participant_id(participant_id),
        scope=scope,
    )
    return LastTaskIdResponse(task_id=task_id)


@router.get("/stats", response_model=StatsResponse)
def stats(
    start: datetime,
    end: datetime,
    participant_id: str | None = None,
    db: Session = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    total_messages, active_users = get_messaging_stats(
        db,
        tenant_id=ctx.tenant_id,
        start=start,
        end=end,
        participant_id=normalize_participant_id(participant_id) if participant_id else None,
    )
    return StatsResponse(
        tenant_id=ctx.tenant_id,
        start=start,
        end=end,
        total_messages=total_messages,
        active_users=active_users,
    )
