from typing import Any, Literal

from pydantic import BaseModel, Field


class HandoffRequest(BaseModel):
    participant_id: str = Field(min_length=1, max_length=255)
    source_workflow_id: str | None = Field(default=None, min_length=3, max_length=255)
    thread_id: str | None = Field(default=None, min_length=1, max_length=64)
    target_workflow_id: str | None = Field(default=None, min_length=1, max_length=255)
    target_workflow_type: str | None = Field(default=None, min_length=1, max_length=255)
    text: str | None = Field(default=None, max_length=20000)
    data: Any = None
    scope: str | None = Field(default=None, max_length=255)
    hint: str | None = Field(default=None, max_length=4000)
    request_id: str | None = Field(default=None, max_length=512)
    authorization: str | None = None
    delivery_mode: Literal["auto", "fail_if_not_running"] = "auto"
    system_scoped: bool = False


class HandoffOut(BaseModel):
    thread_id: str
    target_workflow_id: str
    source_message_id: str
    target_message_id: str
    request_id: str
    started_if_missing: bool


class HandoffResponseRequest(BaseModel):
    # child workflow replying through its parent
    workflow_id: str = Field(min_length=3, max_length=255)
    parent_workflow_id: str = Field(min_length=3, max_length=255)
    participant_id: str = Field(min_length=1, max_length=255)
    text: str | None = Field(default=None, max_length=20000)
    data: Any = None
    scope: str | None = Field(default=None, max_length=255)


class HandoffResponseOut(BaseModel):
    message_ids: list[str]
