"""Authoring warnings for a world definition.

None of these stop a world from loading or playing; they point at things an
author most likely didn't intend.
"""

from __future__ import annotations

from typing import Literal

from world_tavern.models import CamelModel, WorldDefinition

WarningType = Literal[
    "orphaned-var-ref",
    "keywords-on-always-send",
    "empty-content",
    "rule-refs-deleted-var",
    "unused-variable",
]


class WorldWarning(CamelModel):
    type: WarningType
    severity: Literal["warning", "info"]
    message: str
    entity_id: str | None = None
    entity_name: str | None = None


def _component_refs(component: dict) -> set[str]:
    refs: set[str] = set()
    config = component.get("config")
    if not isinstance(config, dict):
        return refs
    if isinstance(config.get("variableId"), str):
        refs.add(config["variableId"])
    for f in config.get("fields") or []:
        if isinstance(f, dict) and isinstance(f.get("variableId"), str):
            refs.add(f["variableId"])
    return refs


def validate_world(world: WorldDefinition) -> list[WorldWarning]:
    warnings: list[WorldWarning] = []
    declared = {v.id for v in world.variables}
    referenced: set[str] = set()

    for rule in world.rules:
        for kind, ids in (
            ("condition", [c.variable_id for c in rule.conditions]),
            ("effect", [e.variable_id for e in rule.effects]),
        ):
            for var_id in ids:
                if var_id in declared:
                    referenced.add(var_id)
                    continue
                warnings.append(WorldWarning(
                    type="rule-refs-deleted-var",
                    severity="warning",
                    message=f'Rule "{rule.name}" {kind} references non-existent variable "{var_id}"',
                    entity_id=rule.id,
                    entity_name=rule.name,
                ))

    for component in world.components:
        referenced |= _component_refs(component)

    for entry in world.entries:
        if entry.enabled and entry.always_send and entry.keywords:
            warnings.append(WorldWarning(
                type="keywords-on-always-send",
                severity="info",
                message=f'Entry "{entry.name}" has keywords but alwaysSend is enabled; keywords are ignored',
                entity_id=entry.id,
                entity_name=entry.name,
            ))
        if entry.enabled and not entry.content.strip():
            warnings.append(WorldWarning(
                type="empty-content",
                severity="warning",
                message=f'Entry "{entry.name}" is enabled but has empty content',
                entity_id=entry.id,
                entity_name=entry.name,
            ))
        for condition in entry.conditions:
            if condition.variable_id in declared:
                referenced.add(condition.variable_id)
                continue
            warnings.append(WorldWarning(
                type="orphaned-var-ref",
                severity="warning",
                message=f'Entry "{entry.name}" condition references non-existent variable "{condition.variable_id}"',
                entity_id=entry.id,
                entity_name=entry.name,
            ))

    for variable in world.variables:
        if variable.id not in referenced:
            warnings.append(WorldWarning(
                type="unused-variable",
                severity="info",
                message=f'Variable "{variable.name or variable.id}" is not referenced by any rule, component, or entry condition',
                entity_id=variable.id,
                entity_name=variable.name,
            ))

    return warnings
