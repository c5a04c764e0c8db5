"""Definition lifecycle: drafts, versions, activation and archiving."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .config import CaseflowConfig
from .errors import NotFoundError, PreconditionError, ValidationError, ValidationIssue
from .models import DefinitionStatus, InstanceStatus, WorkflowDefinition, utcnow
from .persistence.repository import WorkflowRepository
from .validation import DefinitionValidator

logger = logging.getLogger(__name__)

# authoring keys a caller may change; everything else is owned by the service
EDITABLE_FIELDS = (
    "name",
    "description",
    "deviceTypes",
    "serviceTypes",
    "customerTiers",
    "steps",
    "metadata",
)

_CHANGE_LABELS = {
    "description": "Updated description",
    "deviceTypes": "Modified device types",
    "serviceTypes": "Modified service types",
    "customerTiers": "Modified customer tiers",
    "steps": "Updated workflow steps",
}


def _document(payload: Any) -> dict[str, Any]:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", by_alias=True)
    if isinstance(payload, Mapping):
        return dict(payload)
    raise ValidationError(
        [ValidationIssue(field="definition", message="Definition must be an object", code="INVALID_TYPE")]
    )


def _editable(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {key: payload[key] for key in EDITABLE_FIELDS if key in payload}


def _build(document: Mapping[str, Any]) -> WorkflowDefinition:
    try:
        return WorkflowDefinition.model_validate(document)
    except PydanticValidationError as exc:
        raise ValidationError(
            [
                ValidationIssue(
                    field=".".join(str(part) for part in err["loc"]),
                    message=err["msg"],
                    code="INVALID_VALUE",
                )
                for err in exc.errors()
            ]
        ) from exc


class DefinitionService:
    """Manage workflow definitions and their versions.

    Only drafts are edited in place. Editing anything else produces a new
    draft version, and activating a version archives the version of the
    same name that was active before it.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        *,
        validator: Optional[DefinitionValidator] = None,
        config: Optional[CaseflowConfig] = None,
    ) -> None:
        self.repository = repository
        self.config = config or CaseflowConfig()
        self.validator = validator or DefinitionValidator(self.config.validation)

    # ------------------------------------------------------------------
    # Reads
    async def get_definition(self, definition_id: str) -> WorkflowDefinition:
        definition = await self.repository.get_definition(definition_id)
        if definition is None:
            raise NotFoundError(f"Workflow definition {definition_id} not found")
        return definition

    async def list_definitions(
        self,
        name: Optional[str] = None,
        status: Optional[DefinitionStatus] = None,
    ) -> list[WorkflowDefinition]:
        definitions = await self.repository.list_definitions(name=name, status=status)
        return sorted(definitions, key=lambda d: (d.name, d.version))

    async def get_versions(self, definition_id: str) -> list[WorkflowDefinition]:
        """Every version sharing the definition's name, newest first."""
        definition = await self.get_definition(definition_id)
        versions = await self.repository.list_definitions(name=definition.name)
        return sorted(versions, key=lambda d: d.version, reverse=True)

    async def find_applicable(
        self,
        device_type: Optional[str] = None,
        service_type: Optional[str] = None,
        customer_tier: Optional[str] = None,
    ) -> list[WorkflowDefinition]:
        active = await self.repository.list_definitions(status=DefinitionStatus.ACTIVE)
        return [d for d in active if d.applies_to(device_type, service_type, customer_tier)]

    # ------------------------------------------------------------------
    # Writes
    async def create_definition(
        self, payload: Any, created_by: Optional[str] = None
    ) -> WorkflowDefinition:
        """Validate ``payload`` and store it as draft version 1."""
        document = _editable(_document(payload))
        self.validator.validate(document)
        await self._ensure_name_free(document["name"])

        definition = _build({**document, "createdBy": created_by})
        await self.repository.save_definition(definition)
        logger.info(f"Created workflow definition {definition.name} ({definition.id})")
        return definition

    async def update_definition(
        self, definition_id: str, updates: Mapping[str, Any], updated_by: Optional[str] = None
    ) -> WorkflowDefinition:
        definition = await self.get_definition(definition_id)
        if definition.status != DefinitionStatus.DRAFT:
            return await self.create_new_version(definition_id, updates, updated_by)

        changes = _editable(_document(updates))
        if "name" in changes and changes["name"] != definition.name:
            await self._ensure_name_free(changes["name"])

        document = {**definition.to_document(), **changes, "updatedAt": utcnow()}
        self.validator.validate(document)
        updated = _build(document)
        await self.repository.save_definition(updated)
        logger.info(f"Updated draft {updated.name} v{updated.version}")
        return updated

    async def create_new_version(
        self, definition_id: str, updates: Mapping[str, Any], updated_by: Optional[str] = None
    ) -> WorkflowDefinition:
        """Copy a definition into the next draft version with ``updates`` applied."""
        original = await self.get_definition(definition_id)
        changes = _editable(_document(updates))
        changes.pop("name", None)

        versions = await self.repository.list_definitions(name=original.name)
        next_version = max((v.version for v in versions), default=0) + 1
        metadata = {
            **original.metadata,
            **(changes.pop("metadata", None) or {}),
            "versionChanges": self._describe_changes(original, changes),
        }

        document = {
            **_editable(original.to_document()),
            **changes,
            "metadata": metadata,
            "version": next_version,
            "status": DefinitionStatus.DRAFT.value,
            "createdBy": updated_by,
            "parentDefinitionId": original.id,
        }
        self.validator.validate(document)
        definition = _build(document)
        await self.repository.save_definition(definition)
        logger.info(f"Created {definition.name} v{next_version} from v{original.version}")

        await self._prune_versions(definition.name)
        return definition

    async def restore_version(
        self, version_id: str, restored_by: Optional[str] = None
    ) -> WorkflowDefinition:
        """Start a new draft version from the content of an older one."""
        source = await self.get_definition(version_id)
        updates = _editable(source.to_document())
        updates["metadata"] = {
            **source.metadata,
            "restoredFrom": source.id,
            "restoredFromVersion": source.version,
            "restoredBy": restored_by,
        }
        return await self.create_new_version(version_id, updates, restored_by)

    async def activate_definition(
        self, definition_id: str, activated_by: Optional[str] = None
    ) -> WorkflowDefinition:
        definition = await self.get_definition(definition_id)
        if definition.status == DefinitionStatus.ACTIVE:
            raise PreconditionError(
                f"Workflow definition {definition.name} v{definition.version} is already active"
            )
        self.validator.validate_for_activation(definition)

        for other in await self.repository.list_definitions(
            name=definition.name, status=DefinitionStatus.ACTIVE
        ):
            if other.id == definition.id:
                continue
            other.status = DefinitionStatus.ARCHIVED
            other.updated_at = utcnow()
            await self.repository.save_definition(other)
            logger.info(f"Archived {other.name} v{other.version} on activation of v{definition.version}")

        definition.status = DefinitionStatus.ACTIVE
        definition.updated_at = utcnow()
        definition.metadata = {
            **definition.metadata,
            "activatedBy": activated_by,
            "activatedAt": definition.updated_at.isoformat(),
        }
        await self.repository.save_definition(definition)
        logger.info(f"Activated workflow definition {definition.name} v{definition.version}")
        return definition

    async def archive_definition(
        self, definition_id: str, archived_by: Optional[str] = None
    ) -> WorkflowDefinition:
        definition = await self.get_definition(definition_id)
        if definition.status == DefinitionStatus.ARCHIVED:
            raise PreconditionError(f"Workflow definition {definition_id} is already archived")
        if await self._has_open_instances(definition_id):
            raise PreconditionError(
                "Cannot archive a workflow definition with running or suspended instances"
            )

        definition.status = DefinitionStatus.ARCHIVED
        definition.updated_at = utcnow()
        definition.metadata = {**definition.metadata, "archivedBy": archived_by}
        await self.repository.save_definition(definition)
        logger.info(f"Archived workflow definition {definition.name} v{definition.version}")
        return definition

    async def clone_definition(
        self, definition_id: str, new_name: str, cloned_by: Optional[str] = None
    ) -> WorkflowDefinition:
        source = await self.get_definition(definition_id)
        document = _editable(source.to_document())
        document["name"] = new_name
        document["metadata"] = {
            **source.metadata,
            "clonedFrom": source.id,
            "clonedFromVersion": source.version,
        }
        return await self.create_definition(document, cloned_by)

    async def delete_definition(self, definition_id: str) -> None:
        definition = await self.get_definition(definition_id)
        if definition.status == DefinitionStatus.ACTIVE:
            raise PreconditionError("Active workflow definitions can not be deleted; archive first")
        if await self.repository.list_instances(definition_id):
            raise PreconditionError("Cannot delete a workflow definition that has instances")
        await self.repository.delete_definition(definition_id)
        logger.info(f"Deleted workflow definition {definition.name} v{definition.version}")

    # ------------------------------------------------------------------
    # Comparison
    async def compare_versions(self, first_id: str, second_id: str) -> dict[str, Any]:
        first = await self.get_definition(first_id)
        second = await self.get_definition(second_id)
        differences: list[dict[str, Any]] = []

        for prop in ("description", "deviceTypes", "serviceTypes", "customerTiers"):
            old, new = first.to_document()[prop], second.to_document()[prop]
            if isinstance(old, list) and isinstance(new, list):
                changed = sorted(old) != sorted(new)
            else:
                changed = old != new
            if changed:
                differences.append(
                    {"type": "property_change", "property": prop, "oldValue": old, "newValue": new}
                )

        old_steps = {s.name: s.to_document() for s in first.steps}
        new_steps = {s.name: s.to_document() for s in second.steps}
        for name, step in new_steps.items():
            if name not in old_steps:
                differences.append({"type": "step_added", "stepName": name, "step": step})
        for name, step in old_steps.items():
            if name not in new_steps:
                differences.append({"type": "step_removed", "stepName": name, "step": step})
            elif new_steps[name] != step:
                differences.append(
                    {
                        "type": "step_modified",
                        "stepName": name,
                        "oldStep": step,
                        "newStep": new_steps[name],
                    }
                )

        return {"differences": differences, "summary": self._summarize(differences)}

    @staticmethod
    def _summarize(differences: list[dict[str, Any]]) -> str:
        if not differences:
            return "No differences found between versions"
        kinds = [d["type"] for d in differences]
        parts = []
        if kinds.count("property_change"):
            parts.append(f"{kinds.count('property_change')} property change(s)")
        for kind, label in (
            ("step_added", "added"),
            ("step_removed", "removed"),
            ("step_modified", "modified"),
        ):
            if kinds.count(kind):
                parts.append(f"{kinds.count(kind)} step(s) {label}")
        return ", ".join(parts)

    @staticmethod
    def _describe_changes(original: WorkflowDefinition, changes: Mapping[str, Any]) -> list[str]:
        current = original.to_document()
        return [
            label
            for key, label in _CHANGE_LABELS.items()
            if key in changes and (key == "steps" or changes[key] != current.get(key))
        ]

    # ------------------------------------------------------------------
    # Helpers
    async def _ensure_name_free(self, name: str) -> None:
        if await self.repository.list_definitions(name=name):
            raise ValidationError(
                [
                    ValidationIssue(
                        field="name",
                        message=f"A workflow named '{name}' already exists",
                        code="DUPLICATE_NAME",
                    )
                ]
            )

    async def _has_open_instances(self, definition_id: str) -> bool:
        open_statuses = (InstanceStatus.RUNNING, InstanceStatus.SUSPENDED)
        instances = await self.repository.list_instances(definition_id)
        return any(i.status in open_statuses for i in instances)

    async def _prune_versions(self, name: str) -> None:
        """Delete archived versions beyond ``max_versions_to_keep`` that have no instances."""
        keep = self.config.max_versions_to_keep
        if keep <= 0:
            return
        versions = sorted(
            await self.repository.list_definitions(name=name),
            key=lambda d: d.version,
            reverse=True,
        )
        for old in versions[keep:]:
            if old.status != DefinitionStatus.ARCHIVED:
                continue
            if await self.repository.list_instances(old.id):
                continue
            await self.repository.delete_definition(old.id)
            logger.info(f"Pruned archived version {old.name} v{old.version}")
