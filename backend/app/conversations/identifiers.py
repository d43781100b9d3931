"""
Workflow identifier rules.

A workflow id is namespaced as ``{tenant_id}:{workflow_type}[:{suffix}]`` and a
workflow type is ``{agent}:{name}``. Every id accepted from a caller must start
with the caller's own tenant id; this is the tenant isolation boundary for
everything addressed by workflow id (threads, messages, engine processes).
"""

from dataclasses import dataclass
from uuid import uuid4

from app.core.errors import ValidationError


@dataclass(frozen=True)
class WorkflowIdentity:
    workflow_id: str
    workflow_type: str
    agent: str


def _check_segments(value: str, *, field: str) -> list[str]:
    if value.startswith(":") or value.endswith(":"):
        raise ValidationError(f"{field} must not start or end with ':' (got '{value}')", field=field)
    segments = value.split(":")
    if any(not s.strip() for s in segments):
        raise ValidationError(f"{field} contains an empty segment (got '{value}')", field=field)
    return segments


def normalize_participant_id(participant_id: str | None) -> str:
    value = (participant_id or "").strip()
    if not value:
        raise ValidationError("participant_id is required", field="participant_id")
    return value.lower()


def normalize_scope(scope: str | None) -> str | None:
    return scope or None


def agent_from_workflow_type(workflow_type: str) -> str:
    segments = _check_segments(workflow_type, field="workflow_type")
    return segments[0]


def validate_workflow_id(tenant_id: str, workflow_id: str, *, field: str = "workflow_id") -> str:
    value = (workflow_id or "").strip()
    if not value:
        raise ValidationError(f"{field} is required", field=field)
    segments = _check_segments(value, field=field)
    if len(segments) < 2 or segments[0] != tenant_id:
        raise ValidationError(f"{field} must start with '{tenant_id}:' (got '{value}')", field=field)
    return value


def workflow_type_from_workflow_id(tenant_id: str, workflow_id: str) -> str:
    segments = validate_workflow_id(tenant_id, workflow_id).split(":")[1:]
    # agent:name, any further segments are the instance suffix
    return ":".join(segments[:2])


def build_workflow_id(tenant_id: str, workflow_type: str, suffix: str | None = None) -> str:
    _check_segments(workflow_type, field="workflow_type")

    # older callers pass the full id as the suffix
    if suffix and suffix.startswith(f"{tenant_id}:"):
        suffix = suffix.replace(f"{tenant_id}:{workflow_type}", "", 1)
        if suffix.startswith(":"):
            suffix = suffix[1:]

    workflow_id = f"{tenant_id}:{workflow_type}"
    if suffix:
        workflow_id += f":{suffix}"
    return workflow_id.replace("::", ":")


def qualify_workflow_id(tenant_id: str, workflow_id: str, *, field: str = "workflow_id") -> str:
    """Prefix a bare workflow id with the tenant namespace, then validate it."""
    value = (workflow_id or "").strip()
    if value and not value.startswith(f"{tenant_id}:"):
        value = f"{tenant_id}:{value}"
    return validate_workflow_id(tenant_id, value, field=field)


def resolve_workflow_identity(
    tenant_id: str,
    *,
    workflow_id: str | None = None,
    workflow_type: str | None = None,
    agent: str | None = None,
) -> WorkflowIdentity:
    """
    Resolution order:
      workflow_id   -> given (validated) or built from workflow_type
      workflow_type -> given or derived from workflow_id
      agent         -> given or first segment of workflow_type
    """
    if not workflow_id and not workflow_type:
        raise ValidationError("workflow_id or workflow_type is required", field="workflow_id")

    if workflow_id:
        resolved_id = validate_workflow_id(tenant_id, workflow_id)
    else:
        resolved_id = build_workflow_id(tenant_id, workflow_type)

    resolved_type = workflow_type or workflow_type_from_workflow_id(tenant_id, resolved_id)
    resolved_agent = agent or agent_from_workflow_type(resolved_type)

    return WorkflowIdentity(
        workflow_id=resolved_id,
        workflow_type=resolved_type,
        agent=resolved_agent,
    )


def generate_request_id(workflow_id: str, participant_id: str) -> str:
    return f"{workflow_id}:{participant_id}:{uuid4()}"


def workflow_id_suffix(tenant_id: str, workflow_type: str, workflow_id: str) -> str | None:
    prefix = f"{tenant_id}:{workflow_type}:"
    if workflow_id.startswith(prefix):
        return workflow_id[len(prefix):] or None
    return None
