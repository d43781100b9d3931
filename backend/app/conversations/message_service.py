import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from app.conversations.identifiers import normalize_scope
from app.conversations.models import (
    DIRECTION_INCOMING,
    MESSAGE_CHAT,
    ConversationMessage,
    ConversationThread,
)
from app.conversations.thread_service import get_thread_by_key, get_thread_id, validate_paging
from app.core.errors import ValidationError

logger = logging.getLogger(__name__)

SORT_ORDERS = {"asc", "desc"}


@dataclass
class TopicInfo:
    scope: str | None
    message_count: int
    last_message_at: datetime


@dataclass
class TopicsResult:
    topics: list[TopicInfo]
    current_page: int
    page_size: int
    total_topics: int
    total_pages: int
    has_more: bool


def new_message_id() -> str:
    return f"msg_{secrets.token_hex(12)}"


def build_message(
    *,
    thread_id: str,
    tenant_id: str,
    participant_id: str,
    direction: str,
    message_type: str,
    workflow_id: str,
    workflow_type: str,
    text: str | None = None,
    data=None,
    scope: str | None = None,
    request_id: str | None = None,
    hint: str | None = None,
    task_id: str | None = None,
    origin: str | None = None,
    parent_workflow_id: str | None = None,
    child_workflow_id: str | None = None,
    created_by: str | None = None,
) -> ConversationMessage:
    return ConversationMessage(
        id=new_message_id(),
        thread_id=thread_id,
        tenant_id=tenant_id,
        participant_id=participant_id,
        direction=direction,
        message_type=message_type,
        text=text,
        data=data,
        scope=normalize_scope(scope),
        request_id=request_id,
        hint=hint,
        task_id=task_id,
        origin=origin,
        workflow_id=workflow_id,
        workflow_type=workflow_type,
        parent_workflow_id=parent_workflow_id,
        child_workflow_id=child_workflow_id,
        created_by=created_by,
    )


def append_messages(db: Session, messages: list[ConversationMessage]) -> list[str]:
    """
    Persist messages and bump each owning thread's updated_at in one transaction.
    Either every message and every bump is committed or none is.
    """
    now = datetime.utcnow()
    for message in messages:
        message.scope = normalize_scope(message.scope)
        message.created_at = now
        message.updated_at = now
        db.add(message)

    thread_ids = {m.thread_id for m in messages}
    try:
        db.flush()
        db.execute(
            update(ConversationThread)
            .where(ConversationThread.id.in_(thread_ids))
            .values(updated_at=now)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    for message in messages:
        logger.info("Created conversation message %s in thread %s", message.id, message.thread_id)
    return [m.id for m in messages]


def append_message(db: Session, message: ConversationMessage) -> str:
    return append_messages(db, [message])[0]


def _filter_scope(stmt, scope: str | None):
    scope = normalize_scope(scope)
    if scope is None:
        return stmt.where(ConversationMessage.scope.is_(None))
    return stmt.where(ConversationMessage.scope == scope)


def _validate_sort_order(sort_order: str) -> None:
    if sort_order not in SORT_ORDERS:
        raise ValidationError("sort_order must be 'asc' or 'desc'", field="sort_order")


def _order(stmt, sort_order: str):
    _validate_sort_order(sort_order)
    if sort_order == "asc":
        return stmt.order_by(ConversationMessage.created_at.asc(), ConversationMessage.id.asc())
    return stmt.order_by(ConversationMessage.created_at.desc(), ConversationMessage.id.desc())


def _page(db: Session, stmt, page: int, page_size: int) -> list[ConversationMessage]:
    rows = db.execute(stmt.offset((page - 1) * page_size).limit(page_size)).scalars().all()
    return list(rows)


def get_history_by_thread(
    db: Session,
    *,
    tenant_id: str,
    thread_id: str,
    page: int,
    page_size: int,
    scope: str | None = None,
    chat_only: bool = False,
    sort_order: str = "desc",
) -> list[ConversationMessage]:
    """
    scope=None returns every topic, "" the default topic only, anything else
    that exact topic.
    """
    validate_paging(page, page_size)
    stmt = select(ConversationMessage).where(
        ConversationMessage.tenant_id == tenant_id,
        ConversationMessage.thread_id == thread_id,
    )
    if scope is not None:
        stmt = _filter_scope(stmt, scope)
    if chat_only:
        stmt = stmt.where(ConversationMessage.message_type == MESSAGE_CHAT)
    stmt = _order(stmt, sort_order)

    messages = _page(db, stmt, page, page_size)
    logger.debug("Found history of %s messages for thread %s", len(messages), thread_id)
    return messages


def get_history(
    db: Session,
    *,
    tenant_id: str,
    workflow_id: str,
    participant_id: str,
    page: int,
    page_size: int,
    scope: str | None = None,
    chat_only: bool = False,
    sort_order: str = "desc",
) -> list[ConversationMessage]:
    """History of one topic (the default topic when scope is empty) for a thread key."""
    validate_paging(page, page_size)
    _validate_sort_order(sort_order)

    thread = get_thread_by_key(db, tenant_id=tenant_id, workflow_id=workflow_id, participant_id=participant_id)
    if thread is None:
        return []

    return get_history_by_thread(
        db,
        tenant_id=tenant_id,
        thread_id=thread.id,
        page=page,
        page_size=page_size,
        scope=normalize_scope(scope) or "",
        chat_only=chat_only,
        sort_order=sort_order,
    )


def get_topics(
    db: Session,
    *,
    tenant_id: str,
    workflow_id: str,
    participant_id: str,
    page: int,
    page_size: int,
) -> TopicsResult:
    validate_paging(page, page_size)

    thread = get_thread_by_key(db, tenant_id=tenant_id, workflow_id=workflow_id, participant_id=participant_id)
    if thread is None:
        return TopicsResult(
            topics=[],
            current_page=page,
            page_size=page_size,
            total_topics=0,
            total_pages=0,
            has_more=False,
        )

    grouped = (
        select(
            ConversationMessage.scope.label("scope"),
            func.count(ConversationMessage.id).label("message_count"),
            func.max(ConversationMessage.created_at).label("last_message_at"),
        )
        .where(
            ConversationMessage.tenant_id == tenant_id,
            ConversationMessage.thread_id == thread.id,
        )
        .group_by(ConversationMessage.scope)
        .subquery()
    )

    total_topics = int(db.execute(select(func.count()).select_from(grouped)).scalar_one() or 0)
    rows = db.execute(
        select(grouped.c.scope, grouped.c.message_count, grouped.c.last_message_at)
        .order_by(grouped.c.last_message_at.desc(), grouped.c.scope.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()

    total_pages = math.ceil(total_topics / page_size) if total_topics else 0
    return TopicsResult(
        topics=[
            TopicInfo(scope=r.scope, message_count=int(r.message_count), last_message_at=r.last_message_at)
            for r in rows
        ],
        current_page=page,
        page_size=page_size,
        total_topics=total_topics,
        total_pages=total_pages,
        has_more=page < total_pages,
    )


def delete_thread(db: Session, *, tenant_id: str, workflow_id: str, participant_id: str) -> None:
    thread_id = get_thread_id(db, tenant_id=tenant_id, workflow_id=workflow_id, participant_id=participant_id)

    try:
        result = db.execute(delete(ConversationMessage).where(ConversationMessage.thread_id == thread_id))
        db.execute(delete(ConversationThread).where(ConversationThread.id == thread_id))
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Deleted thread %s and %s messages for workflow %s and participant %s",
        thread_id,
        result.rowcount,
        workflow_id,
        participant_id,
    )


def delete_by_topic(
    db: Session,
    *,
    tenant_id: str,
    workflow_id: str,
    participant_id: str,
    scope: str | None = None,
) -> int:
    thread = get_thread_by_key(db, tenant_id=tenant_id, workflow_id=workflow_id, participant_id=participant_id)
    if thread is None:
        logger.warning(
            "Thread not found for workflow %s and participant %s, no messages to delete",
            workflow_id,
            participant_id,
        )
        return 0

    stmt = delete(ConversationMessage).where(
        ConversationMessage.tenant_id == tenant_id,
        ConversationMessage.thread_id == thread.id,
    )
    stmt = _filter_scope(stmt, scope)
    try:
        result = db.execute(stmt)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Deleted %s messages for workflow %s, participant %s, scope %s",
        result.rowcount,
        workflow_id,
        participant_id,
        normalize_scope(scope) or "null",
    )
    return int(result.rowcount or 0)


def _last_incoming(db: Session, tenant_id: str, thread_id: str, *conditions) -> ConversationMessage | None:
    return db.execute(
        select(ConversationMessage)
        .where(
            ConversationMessage.tenant_id == tenant_id,
            ConversationMessage.thread_id == thread_id,
            ConversationMessage.direction == DIRECTION_INCOMING,
            *conditions,
        )
        .order_by(ConversationMessage.created_at.desc(), ConversationMessage.id.desc())
        .limit(1)
    ).scalars().first()


def get_last_incoming_origin(db: Session, *, tenant_id: str, thread_id: str) -> str | None:
    message = _last_incoming(
        db,
        tenant_id,
        thread_id,
        ConversationMessage.origin.is_not(None),
        ConversationMessage.origin != "",
    )
    return message.origin if message else None


def get_last_incoming_data(db: Session, *, tenant_id: str, thread_id: str):
    message = _last_incoming(
        db,
        tenant_id,
        thread_id,
        ConversationMessage.data.is_not(None),
    )
    return message.data if message else None


def get_last_task_id(
    db: Session,
    *,
    tenant_id: str,
    workflow_id: str,
    participant_id: str,
    scope: str | None = None,
) -> str | None:
    """
    Most recent task id for a participant. Matches the exact workflow id and any
    run id nested under it (``{workflow_id}:...``). scope=None searches all topics.
    """
    stmt = select(ConversationMessage.task_id).where(
        ConversationMessage.tenant_id == tenant_id,
        or_(
            ConversationMessage.workflow_id == workflow_id,
            ConversationMessage.workflow_id.startswith(f"{workflow_id}:", autoescape=True),
        ),
        ConversationMessage.participant_id == participant_id,
        ConversationMessage.task_id.is_not(None),
        ConversationMessage.task_id != "",
    )
    if scope is not None:
        stmt = _filter_scope(stmt, scope)

    return db.execute(
        stmt.order_by(ConversationMessage.created_at.desc(), ConversationMessage.id.desc()).limit(1)
    ).scalars().first()


def get_messaging_stats(
    db: Session,
    *,
    tenant_id: str,
    start: datetime,
    end: datetime,
    participant_id: str | None = None,
) -> tuple[int, int]:
    if start > end:
        raise ValidationError("start must not be after end", field="start")

    conditions = [
        ConversationMessage.tenant_id == tenant_id,
        ConversationMessage.created_at >= start,
        ConversationMessage.created_at <= end,
    ]
    if participant_id:
        conditions.append(ConversationMessage.participant_id == participant_id)

    total_messages, active_users = db.execute(
        select(
            func.count(ConversationMessage.id),
            func.count(func.distinct(ConversationMessage.participant_id)),
        ).where(*conditions)
    ).one()
    return int(total_messages or 0), int(active_users or 0)


__all__ = [
    "TopicInfo",
    "TopicsResult",
    "append_message",
    "append_messages",
    "build_message",
    "delete_by_topic",
    "delete_thread",
    "get_history",
    "get_history_by_thread",
    "get_last_incoming_data",
    "get_last_incoming_origin",
    "get_last_task_id",
    "get_messaging_stats",
    "get_topics",
]
