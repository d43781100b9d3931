from datetime import datetime
from typing import Literal

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base

ThreadStatus = Literal["Active", "Archived"]
Direction = Literal["Incoming", "Outgoing", "Handoff"]
MessageType = Literal["Chat", "Data", "Handoff"]

THREAD_ACTIVE = "Active"
THREAD_ARCHIVED = "Archived"

DIRECTION_INCOMING = "Incoming"
DIRECTION_OUTGOING = "Outgoing"
DIRECTION_HANDOFF = "Handoff"

MESSAGE_CHAT = "Chat"
MESSAGE_DATA = "Data"
MESSAGE_HANDOFF = "Handoff"


class ConversationThread(Base):
    __tablename__ = "conversation_threads"
    __table_args__ = (
        UniqueConstraint("tenant_id", "workflow_id", "participant_id", name="uq_conversation_threads_key"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # thr_xxx
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    workflow_id: Mapped[str] = mapped_column(String(255), nullable=False)
    workflow_type: Mapped[str] = mapped_column(String(255), nullable=False)
    agent: Mapped[str] = mapped_column(String(128), nullable=False)
    participant_id: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=THREAD_ACTIVE)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)


class ConversationMessage(Base):
    __tablename__ = "conversation_messages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # msg_xxx
    thread_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("conversation_threads.id"),
        nullable=False,
        index=True,
    )
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    participant_id: Mapped[str] = mapped_column(String(255), nullable=False)

    direction: Mapped[str] = mapped_column(String(16), nullable=False)
    message_type: Mapped[str] = mapped_column(String(16), nullable=False, default=MESSAGE_CHAT)
    text: Mapped[str | None] = mapped_column(Text, nullable=True)
    data: Mapped[dict | list | None] = mapped_column(JSON(none_as_null=True), nullable=True)

    # NULL is the default topic; empty strings are normalized to NULL before insert
    scope: Mapped[str | None] = mapped_column(String(255), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    hint: Mapped[str | None] = mapped_column(Text, nullable=True)
    task_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    origin: Mapped[str | None] = mapped_column(String(255), nullable=True)

    workflow_id: Mapped[str] = mapped_column(String(255), nullable=False)
    workflow_type: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_workflow_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    child_workflow_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)


Index("ix_conversation_messages_thread_created", ConversationMessage.thread_id, ConversationMessage.created_at)
Index("ix_conversation_messages_thread_scope", ConversationMessage.thread_id, ConversationMessage.scope)
Index("ix_conversation_threads_tenant_agent", ConversationThread.tenant_id, ConversationThread.agent)
