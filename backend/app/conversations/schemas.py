from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MessageRequest(BaseModel):
    # one of: full id ("acme:support-agent:triage") or type ("support-agent:triage")
    workflow_id: str | None = Field(default=None, min_length=1, max_length=255)
    workflow_type: str | None = Field(default=None, min_length=1, max_length=255)
    participant_id: str = Field(min_length=1, max_length=255)
    text: str | None = Field(default=None, max_length=20000)
    body: Any = None
    agent: str | None = Field(default=None, min_length=1, max_length=128)
    scope: str | None = Field(default=None, max_length=255)
    hint: str | None = Field(default=None, max_length=4000)
    request_id: str | None = Field(default=None, max_length=512)
    origin: str | None = Field(default=None, max_length=255)
    thread_id: str | None = Field(default=None, max_length=64)
    task_id: str | None = Field(default=None, max_length=255)
    authorization: str | None = None
    system_scoped: bool = False


class MessageAccepted(BaseModel):
    thread_id: str


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    thread_id: str
    tenant_id: str
    participant_id: str
    direction: str
    message_type: str
    text: str | None
    data: Any = None
    scope: str | None
    request_id: str | None
    hint: str | None
    task_id: str | None
    origin: str | None
    workflow_id: str
    workflow_type: str
    parent_workflow_id: str | None
    child_workflow_id: str | None
    created_at: datetime
    updated_at: datetime
    created_by: str | None


class ThreadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    workflow_id: str
    workflow_type: str
    agent: str
    participant_id: str
    status: str
    is_internal: bool
    created_at: datetime
    updated_at: datetime


class TopicOut(BaseModel):
    scope: str | None
    message_count: int
    last_message_at: datetime


class PaginationOut(BaseModel):
    current_page: int
    page_size: int
    total_topics: int
    total_pages: int
    has_more: bool


class TopicsResponse(BaseModel):
    topics: list[TopicOut]
    pagination: PaginationOut


class DeleteTopicResponse(BaseModel):
    deleted: int


class LastTaskIdResponse(BaseModel):
    task_id: str | None


class StatsResponse(BaseModel):
    tenant_id: str
    start: datetime
    end: datetime
    total_messages: int
    active_users: int
