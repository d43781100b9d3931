from dataclasses import dataclass, field

from temporalio.common import SearchAttributeKey, SearchAttributePair, TypedSearchAttributes

from app.conversations.identifiers import agent_from_workflow_type, build_workflow_id

TENANT_ID_KEY = SearchAttributeKey.for_keyword("tenantId")
AGENT_KEY = SearchAttributeKey.for_keyword("agent")
USER_ID_KEY = SearchAttributeKey.for_keyword("userId")
ID_POSTFIX_KEY = SearchAttributeKey.for_keyword("idPostfix")


@dataclass
class StartOptions:
    """Everything needed to start a workflow that is not running yet."""

    workflow_id: str
    task_queue: str
    memo: dict = field(default_factory=dict)
    search_attributes: dict[str, str] = field(default_factory=dict)

    def typed_search_attributes(self) -> TypedSearchAttributes:
        keys = {
            "tenantId": TENANT_ID_KEY,
            "agent": AGENT_KEY,
            "userId": USER_ID_KEY,
            "idPostfix": ID_POSTFIX_KEY,
        }
        pairs = [
            SearchAttributePair(keys[name], value)
            for name, value in self.search_attributes.items()
            if name in keys and value
        ]
        return TypedSearchAttributes(pairs)


def task_queue_for(tenant_id: str, workflow_type: str, *, system_scoped: bool = False) -> str:
    # system-scoped agents are deployed once and shared by every tenant
    if system_scoped:
        return workflow_type
    return f"{tenant_id}:{workflow_type}"


def build_start_options(
    *,
    tenant_id: str,
    workflow_type: str,
    user_id: str | None,
    agent: str | None = None,
    id_postfix: str | None = None,
    system_scoped: bool = False,
) -> StartOptions:
    agent = agent or agent_from_workflow_type(workflow_type)
    workflow_id = build_workflow_id(tenant_id, workflow_type, id_postfix)

    search_attributes = {
        "tenantId": tenant_id,
        "agent": agent,
        "userId": user_id or "",
        "idPostfix": id_postfix or "",
    }
    memo = dict(search_attributes)
    memo["systemScoped"] = system_scoped

    return StartOptions(
        workflow_id=workflow_id,
        task_queue=task_queue_for(tenant_id, workflow_type, system_scoped=system_scoped),
        memo=memo,
        search_attributes=search_attributes,
    )
