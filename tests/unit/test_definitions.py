"""Tests for the definition lifecycle service."""

import pytest

from caseflow.config import CaseflowConfig
from caseflow.definitions import DefinitionService
from caseflow.errors import NotFoundError, PreconditionError, ValidationError
from caseflow.models import DefinitionStatus, InstanceStatus, WorkflowInstance


@pytest.mark.asyncio
async def test_create_stores_draft_v1(definitions, repair_payload):
    definition = await definitions.create_definition(repair_payload, created_by="alice")

    assert definition.version == 1
    assert definition.status == DefinitionStatus.DRAFT
    assert definition.created_by == "alice"
    assert (await definitions.get_definition(definition.id)).name == "standard-repair"


@pytest.mark.asyncio
async def test_create_ignores_service_owned_fields(definitions, repair_payload):
    payload = {**repair_payload, "status": "active", "version": 7, "id": "chosen"}
    definition = await definitions.create_definition(payload)

    assert definition.status == DefinitionStatus.DRAFT
    assert definition.version == 1
    assert definition.id != "chosen"


@pytest.mark.asyncio
async def test_create_rejects_invalid_and_duplicate(definitions, repair_payload, wf):
    with pytest.raises(ValidationError) as exc_info:
        await definitions.create_definition(wf.definition([], name=""))
    assert "REQUIRED_FIELD" in [issue.code for issue in exc_info.value.issues]

    await definitions.create_definition(repair_payload)
    with pytest.raises(ValidationError) as exc_info:
        await definitions.create_definition(repair_payload)
    assert [issue.code for issue in exc_info.value.issues] == ["DUPLICATE_NAME"]


@pytest.mark.asyncio
async def test_draft_is_updated_in_place(definitions, repair_payload):
    draft = await definitions.create_definition(repair_payload)
    updated = await definitions.update_definition(draft.id, {"description": "New text"})

    assert updated.id == draft.id
    assert updated.version == 1
    assert updated.description == "New text"
    assert len(await definitions.list_definitions()) == 1


@pytest.mark.asyncio
async def test_editing_active_definition_creates_new_version(deploy, definitions, repair_payload):
    active = await deploy(repair_payload)
    v2 = await definitions.update_definition(
        active.id, {"description": "Cheaper repairs", "customerTiers": ["premium"]}, "bob"
    )

    assert v2.id != active.id
    assert v2.version == 2
    assert v2.status == DefinitionStatus.DRAFT
    assert v2.parent_definition_id == active.id
    assert v2.created_by == "bob"
    assert v2.metadata["versionChanges"] == ["Updated description", "Modified customer tiers"]
    assert (await definitions.get_definition(active.id)).status == DefinitionStatus.ACTIVE

    versions = await definitions.get_versions(active.id)
    assert [v.version for v in versions] == [2, 1]


@pytest.mark.asyncio
async def test_activation_archives_previous_version(deploy, definitions, repair_payload):
    v1 = await deploy(repair_payload)
    v2 = await definitions.create_new_version(v1.id, {"description": "v2"})
    activated = await definitions.activate_definition(v2.id, "carol")

    assert activated.status == DefinitionStatus.ACTIVE
    assert activated.metadata["activatedBy"] == "carol"
    assert (await definitions.get_definition(v1.id)).status == DefinitionStatus.ARCHIVED

    active = await definitions.list_definitions(status=DefinitionStatus.ACTIVE)
    assert [d.id for d in active] == [v2.id]

    with pytest.raises(PreconditionError, match="already active"):
        await definitions.activate_definition(v2.id)


@pytest.mark.asyncio
async def test_activation_requires_complete_definition(definitions, wf):
    payload = wf.definition([wf.step("only", config={"assigneeType": "auto"})])
    draft = await definitions.create_definition(payload)
    with pytest.raises(ValidationError) as exc_info:
        await definitions.activate_definition(draft.id)
    assert "INVALID_ASSIGNEE" in [issue.code for issue in exc_info.value.issues]
    assert (await definitions.get_definition(draft.id)).status == DefinitionStatus.DRAFT


@pytest.mark.asyncio
async def test_restore_version_copies_old_content(deploy, definitions, repair_payload):
    v1 = await deploy(repair_payload)
    v2 = await definitions.create_new_version(v1.id, {"description": "changed"})
    restored = await definitions.restore_version(v1.id, "dave")

    assert restored.version == 3
    assert restored.description == repair_payload["description"]
    assert restored.metadata["restoredFromVersion"] == 1
    assert restored.metadata["restoredBy"] == "dave"
    assert v2.description == "changed"


@pytest.mark.asyncio
async def test_archive_refuses_open_instances(deploy, definitions, repository, repair_payload):
    active = await deploy(repair_payload)
    instance = WorkflowInstance(definition_id=active.id, case_ref="C-1")
    await repository.save_instance(instance)

    with pytest.raises(PreconditionError, match="running or suspended"):
        await definitions.archive_definition(active.id)

    instance.status = InstanceStatus.COMPLETED
    await repository.save_instance(instance)
    archived = await definitions.archive_definition(active.id, "erin")
    assert archived.status == DefinitionStatus.ARCHIVED

    with pytest.raises(PreconditionError, match="already archived"):
        await definitions.archive_definition(active.id)


@pytest.mark.asyncio
async def test_old_archived_versions_are_pruned(repository, repair_payload):
    service = DefinitionService(repository, config=CaseflowConfig(max_versions_to_keep=2))
    v1 = await service.create_definition(repair_payload)
    await service.activate_definition(v1.id)
    v2 = await service.create_new_version(v1.id, {"description": "two"})
    await service.activate_definition(v2.id)
    v3 = await service.create_new_version(v2.id, {"description": "three"})

    versions = await service.get_versions(v3.id)
    assert [v.version for v in versions] == [3, 2]
    with pytest.raises(NotFoundError):
        await service.get_definition(v1.id)


@pytest.mark.asyncio
async def test_compare_versions(deploy, definitions, repair_payload, wf):
    v1 = await deploy(repair_payload)
    steps = [dict(s) for s in repair_payload["steps"]]
    steps[0] = {**steps[0], "description": "Check the device in"}
    v2 = await definitions.create_new_version(
        v1.id, {"description": "Revised", "steps": steps}
    )

    result = await definitions.compare_versions(v1.id, v2.id)
    kinds = [(d["type"], d.get("property") or d.get("stepName")) for d in result["differences"]]
    assert kinds == [("property_change", "description"), ("step_modified", "intake")]
    assert result["summary"] == "1 property change(s), 1 step(s) modified"

    same = await definitions.compare_versions(v1.id, v1.id)
    assert same == {"differences": [], "summary": "No differences found between versions"}


@pytest.mark.asyncio
async def test_clone_creates_independent_draft(deploy, definitions, repair_payload):
    source = await deploy(repair_payload)
    clone = await definitions.clone_definition(source.id, "express-repair", "frank")

    assert clone.name == "express-repair"
    assert clone.version == 1
    assert clone.status == DefinitionStatus.DRAFT
    assert clone.metadata["clonedFrom"] == source.id
    assert [s.name for s in clone.steps] == [s.name for s in source.steps]


@pytest.mark.asyncio
async def test_delete_rules(deploy, definitions, repository, repair_payload, wf):
    active = await deploy(repair_payload)
    with pytest.raises(PreconditionError, match="can not be deleted"):
        await definitions.delete_definition(active.id)

    draft = await definitions.create_definition(wf.definition([wf.step("a")], name="other"))
    await repository.save_instance(WorkflowInstance(definition_id=draft.id, case_ref="C"))
    with pytest.raises(PreconditionError, match="has instances"):
        await definitions.delete_definition(draft.id)

    unused = await definitions.create_definition(wf.definition([wf.step("a")], name="unused"))
    await definitions.delete_definition(unused.id)
    with pytest.raises(NotFoundError):
        await definitions.get_definition(unused.id)


@pytest.mark.asyncio
async def test_find_applicable_only_returns_active_matches(deploy, definitions, repair_payload):
    await deploy(repair_payload)
    await definitions.create_definition({**repair_payload, "name": "draft-only"})

    matches = await definitions.find_applicable(device_type="phone", customer_tier="premium")
    assert [d.name for d in matches] == ["standard-repair"]
    assert await definitions.find_applicable(device_type="tablet") == []
