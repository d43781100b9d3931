import pytest

from app.conversations.identifiers import (
    build_workflow_id,
    normalize_participant_id,
    normalize_scope,
    qualify_workflow_id,
    resolve_workflow_identity,
    validate_workflow_id,
    workflow_id_suffix,
    workflow_type_from_workflow_id,
)
from app.core.errors import ValidationError


def test_resolve_identity_from_workflow_type():
    identity = resolve_workflow_identity("acme", workflow_type="support-agent:triage")

    assert identity.workflow_id == "acme:support-agent:triage"
    assert identity.workflow_type == "support-agent:triage"
    assert identity.agent == "support-agent"


def test_resolve_identity_from_workflow_id_with_suffix():
    identity = resolve_workflow_identity("acme", workflow_id="acme:support-agent:triage:run-7")

    assert identity.workflow_type == "support-agent:triage"
    assert identity.agent == "support-agent"


def test_explicit_agent_wins():
    identity = resolve_workflow_identity("acme", workflow_type="support-agent:triage", agent="custom")
    assert identity.agent == "custom"


def test_resolve_identity_requires_id_or_type():
    with pytest.raises(ValidationError) as exc:
        resolve_workflow_identity("acme")
    assert exc.value.field == "workflow_id"


@pytest.mark.parametrize(
    "workflow_id",
    [
        "globex:support-agent:triage",
        ":acme:support-agent",
        "acme:support-agent:",
        "acme::triage",
        "acme",
        "",
    ],
)
def test_validate_workflow_id_rejects_bad_ids(workflow_id):
    with pytest.raises(ValidationError):
        validate_workflow_id("acme", workflow_id)


def test_build_workflow_id_strips_legacy_full_id_suffix():
    assert build_workflow_id("acme", "billing-agent:review") == "acme:billing-agent:review"
    assert build_workflow_id("acme", "billing-agent:review", "inv-1") == "acme:billing-agent:review:inv-1"
    assert (
        build_workflow_id("acme", "billing-agent:review", "acme:billing-agent:review:inv-1")
        == "acme:billing-agent:review:inv-1"
    )


def test_qualify_prefixes_bare_ids():
    assert qualify_workflow_id("acme", "billing-agent:review") == "acme:billing-agent:review"
    assert qualify_workflow_id("acme", "acme:billing-agent:review") == "acme:billing-agent:review"


def test_resolve_identity_rejects_foreign_workflow_id():
    with pytest.raises(ValidationError) as exc:
        resolve_workflow_identity("acme", workflow_id="globex:support-agent:triage")
    assert exc.value.field == "workflow_id"

    with pytest.raises(ValidationError):
        resolve_workflow_identity("acme", workflow_id="globex:support-agent:triage", workflow_type="support-agent:triage")


def test_workflow_type_and_suffix_from_id():
    assert workflow_type_from_workflow_id("acme", "acme:support-agent") == "support-agent"
    assert workflow_id_suffix("acme", "support-agent:triage", "acme:support-agent:triage:x") == "x"
    assert workflow_id_suffix("acme", "support-agent:triage", "acme:support-agent:triage") is None


def test_participant_and_scope_normalization():
    assert normalize_participant_id("  User-42 ") == "user-42"
    with pytest.raises(ValidationError):
        normalize_participant_id("   ")
    assert normalize_scope("") is None
    assert normalize_scope("billing") == "billing"
