from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..schemas import (
    STRUCTURE_STATUSES,
    Project,
    StructureAsset,
    StructureComponent,
    StructureWorkLog,
    snake_keys,
)
from .auth_utils import epoch_millis, make_id, to_day
from .boq_logic import refresh_boq_item, to_number
from .portfolio import structure_progress


def _build_components(rows, now: datetime) -> list[StructureComponent]:
    components = []
    for sequence, row in enumerate(rows or []):
        row = snake_keys(row) if isinstance(row, dict) else snake_keys(row.model_dump())
        name = str(row.get("name") or "").strip()
        if not name:
            raise ValueError("Every structure component needs a name.")
        quantities = {
            key: to_number(row.get(key))
            for key in ("total_quantity", "completed_quantity", "verified_quantity")
        }
        if any(value < 0 for value in quantities.values()):
            raise ValueError(f"Component quantities cannot be negative: {name}")
        fields = {key: value for key, value in row.items() if key not in ("id", "name", *quantities)}
        components.append(
            StructureComponent(
                id=str(row.get("id") or "").strip() or f"comp-{epoch_millis(now)}-{sequence}",
                name=name,
                **quantities,
                **fields,
            )
        )
    return components


def _build_structure(payload: dict, structure_id: str, now: datetime) -> StructureAsset:
    name = str(payload.get("name") or "").strip()
    location = str(payload.get("location") or "").strip()
    if not name or not location or not payload.get("components"):
        raise ValueError("Please provide asset name, location, and at least one component.")
    status = payload.get("status") or "Not Started"
    if status not in STRUCTURE_STATUSES:
        raise ValueError(f"Structure status must be one of: {', '.join(STRUCTURE_STATUSES)}.")

    fields = {
        key: value
        for key, value in payload.items()
        if key not in ("id", "name", "location", "status", "components", "progress")
    }
    structure = StructureAsset(
        id=structure_id,
        name=name,
        location=location,
        status=status,
        components=_build_components(payload["components"], now),
        **fields,
    )
    return structure.model_copy(update={"progress": structure_progress(structure)})


def find_structure(project: Project, structure_id: str) -> StructureAsset:
    for structure in project.structures or []:
        if structure.id == structure_id:
            return structure
    raise ValueError(f"Structure not found: {structure_id}")


def _find_component(structure: StructureAsset, component_id: str) -> StructureComponent:
    for component in structure.components:
        if component.id == component_id:
            return component
    raise ValueError(f"Component not found: {component_id}")


def _replace_structure(project: Project, structure: StructureAsset) -> list[StructureAsset]:
    return [structure if row.id == structure.id else row for row in (project.structures or [])]


def create_structure(project: Project, payload: dict, now: datetime) -> Project:
    payload = snake_keys(payload)
    structure = _build_structure(payload, make_id("str", now), now)
    return project.model_copy(update={"structures": [*(project.structures or []), structure]})


def update_structure(project: Project, payload: dict, now: datetime) -> Project:
    """Replace an existing structure's details and components, keeping its id."""

    payload = snake_keys(payload)
    existing = find_structure(project, str(payload.get("id") or ""))
    structure = _build_structure(payload, existing.id, now)
    return project.model_copy(update={"structures": _replace_structure(project, structure)})


def delete_structure(project: Project, structure_id: str) -> Project:
    return project.model_copy(
        update={"structures": [row for row in (project.structures or []) if row.id != structure_id]}
    )


def _shift_boq_progress(project: Project, boq_item_id: Optional[str], delta: float) -> list:
    boq = list(project.boq or [])
    if not boq_item_id:
        return boq
    for position, item in enumerate(boq):
        if item.id == boq_item_id:
            completed = max(0.0, to_number(item.completed_quantity) + delta)
            boq[position] = refresh_boq_item(item.model_copy(update={"completed_quantity": completed}))
    return boq


def log_work(project: Project, structure_id: str, component_id: str, payload: dict, now: datetime) -> Project:
    """Record executed quantity against a structure component.

    The quantity is added to the component and, when the log names a BOQ
    item (or the component is linked to one), to that item's completed
    quantity as well. The structure moves to ``In Progress``.
    """

    payload = snake_keys(payload)
    quantity = to_number(payload.get("quantity"))
    if quantity <= 0:
        raise ValueError("Work log quantity must be greater than zero.")

    structure = find_structure(project, structure_id)
    component = _find_component(structure, component_id)
    boq_item_id = payload.get("boq_item_id") or component.boq_item_id
    if boq_item_id and not any(item.id == boq_item_id for item in project.boq or []):
        raise ValueError(f"Work log references unknown BOQ item: {boq_item_id}")
    fields = {
        key: value
        for key, value in payload.items()
        if key not in ("id", "date", "quantity", "boq_item_id")
    }
    if "rate" in fields:
        fields["rate"] = None if fields["rate"] in (None, "") else to_number(fields["rate"])
    log = StructureWorkLog(
        id=make_id("wl", now),
        date=payload.get("date") or to_day(now),
        quantity=quantity,
        boq_item_id=boq_item_id,
        **fields,
    )

    component = component.model_copy(
        update={
            "completed_quantity": to_number(component.completed_quantity) + quantity,
            "work_logs": [*component.work_logs, log],
        }
    )
    components = [component if row.id == component.id else row for row in structure.components]
    structure = structure.model_copy(update={"status": "In Progress", "components": components})
    structure = structure.model_copy(update={"progress": structure_progress(structure)})

    return project.model_copy(
        update={
            "structures": _replace_structure(project, structure),
            "boq": _shift_boq_progress(project, boq_item_id, quantity),
        }
    )


def delete_work_log(project: Project, structure_id: str, component_id: str, log_id: str) -> Project:
    """Remove a work log and take its quantity back off the component and BOQ item (never below zero)."""

    structure = find_structure(project, structure_id)
    component = _find_component(structure, component_id)
    log = next((row for row in component.work_logs if row.id == log_id), None)
    if log is None:
        raise ValueError(f"Work log not found: {log_id}")

    quantity = to_number(log.quantity)
    component = component.model_copy(
        update={
            "completed_quantity": max(0.0, to_number(component.completed_quantity) - quantity),
            "work_logs": [row for row in component.work_logs if row.id != log_id],
        }
    )
    components = [component if row.id == component.id else row for row in structure.components]
    structure = structure.model_copy(update={"components": components})
    structure = structure.model_copy(update={"progress": structure_progress(structure)})

    return project.model_copy(
        update={
            "structures": _replace_structure(project, structure),
            "boq": _shift_boq_progress(project, log.boq_item_id, -quantity),
        }
    )
