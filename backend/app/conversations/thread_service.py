import logging
import secrets
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.conversations.models import THREAD_ACTIVE, THREAD_ARCHIVED, ConversationThread
from app.core.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def validate_paging(page: int, page_size: int) -> None:
    if page < 1:
        raise ValidationError("page must be greater than 0", field="page")
    if page_size < 1:
        raise ValidationError("page_size must be greater than 0", field="page_size")


def get_thread_by_key(
    db: Session,
    *,
    tenant_id: str,
    workflow_id: str,
    participant_id: str,
) -> ConversationThread | None:
    return db.execute(
        select(ConversationThread).where(
            ConversationThread.tenant_id == tenant_id,
            ConversationThread.workflow_id == workflow_id,
            ConversationThread.participant_id == participant_id,
        )
    ).scalar_one_or_none()


def get_thread(db: Session, *, tenant_id: str, thread_id: str) -> ConversationThread:
    thread = db.execute(
        select(ConversationThread).where(
            ConversationThread.id == thread_id,
            ConversationThread.tenant_id == tenant_id,
        )
    ).scalar_one_or_none()
    if thread is None:
        raise NotFoundError(f"Thread '{thread_id}' not found for tenant")
    return thread


def get_thread_id(db: Session, *, tenant_id: str, workflow_id: str, participant_id: str) -> str:
    thread = get_thread_by_key(db, tenant_id=tenant_id, workflow_id=workflow_id, participant_id=participant_id)
    if thread is None:
        raise NotFoundError(
            f"No conversation thread found for tenant '{tenant_id}', "
            f"workflow '{workflow_id}' and participant '{participant_id}'"
        )
    return thread.id


def _reactivate(db: Session, thread: ConversationThread) -> None:
    # status only; updated_at tracks message activity
    thread.status = THREAD_ACTIVE
    db.add(thread)
    db.commit()
    logger.info(
        "Reactivated conversation thread %s for workflow %s and participant %s",
        thread.id,
        thread.workflow_id,
        thread.participant_id,
    )


def resolve_thread(
    db: Session,
    *,
    tenant_id: str,
    workflow_id: str,
    participant_id: str,
    workflow_type: str,
    agent: str,
    actor_id: str | None,
    is_internal: bool = False,
) -> str:
    """
    Return the id of the thread for (tenant_id, workflow_id, participant_id),
    creating it if needed. Concurrent creators race on the unique key; the loser
    rolls back and returns the winner's row.
    """
    thread = get_thread_by_key(db, tenant_id=tenant_id, workflow_id=workflow_id, participant_id=participant_id)
    if thread is not None:
        if thread.status == THREAD_ARCHIVED:
            _reactivate(db, thread)
        return thread.id

    now = datetime.utcnow()
    thread = ConversationThread(
        id=f"thr_{secrets.token_hex(12)}",
        tenant_id=tenant_id,
        workflow_id=workflow_id,
        workflow_type=workflow_type,
        agent=agent,
        participant_id=participant_id,
        status=THREAD_ACTIVE,
        is_internal=is_internal,
        created_at=now,
        updated_at=now,
        created_by=actor_id,
    )
    db.add(thread)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning(
            "Duplicate key creating thread for workflow %s and participant %s, loading existing thread",
            workflow_id,
            participant_id,
        )
        existing = get_thread_by_key(db, tenant_id=tenant_id, workflow_id=workflow_id, participant_id=participant_id)
        if existing is None:
            raise
        if existing.status == THREAD_ARCHIVED:
            _reactivate(db, existing)
        return existing.id

    logger.info(
        "Created conversation thread %s for workflow %s and participant %s",
        thread.id,
        workflow_id,
        participant_id,
    )
    return thread.id


def archive_thread(db: Session, *, tenant_id: str, thread_id: str) -> ConversationThread:
    thread = get_thread(db, tenant_id=tenant_id, thread_id=thread_id)
    thread.status = THREAD_ARCHIVED
    db.add(thread)
    db.commit()
    db.refresh(thread)
    return thread


def list_threads_by_agent(
    db: Session,
    *,
    tenant_id: str,
    agent: str,
    page: int,
    page_size: int,
) -> list[ConversationThread]:
    validate_paging(page, page_size)
    rows = db.execute(
        select(ConversationThread)
        .where(
            ConversationThread.tenant_id == tenant_id,
            ConversationThread.agent == agent,
        )
        .order_by(ConversationThread.updated_at.desc(), ConversationThread.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).scalars().all()
    return list(rows)
