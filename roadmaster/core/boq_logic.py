from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Optional

from ..schemas import BOQItem, Project, VariationOrder
from .auth_utils import make_id, to_day

BOQ_DEFAULTS = {
    "unit": "unit",
    "location": "N/A",
    "category": "General",
}

_VARIATION_TRANSITIONS = {
    "Draft": {"Submitted"},
    "Submitted": {"Approved", "Rejected", "Draft"},
    "Rejected": {"Draft"},
    "Approved": set(),
    "Implemented": set(),
}


def to_number(value) -> float:  # noqa: ANN001
    if value in (None, ""):
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().replace(",", ""))
    except Exception:  # noqa: BLE001
        return 0.0


def boq_item_amount(item) -> float:
    return to_number(getattr(item, "quantity", 0)) * to_number(getattr(item, "rate", 0))


def revised_quantity(item) -> float:
    explicit = getattr(item, "revised_quantity", None)
    if explicit is not None:
        return to_number(explicit)
    return to_number(getattr(item, "quantity", 0)) + to_number(getattr(item, "variation_quantity", 0))


def boq_contract_value(items: Optional[Iterable[object]]) -> float:
    return sum(boq_item_amount(item) for item in (items or []) if item is not None)


def boq_completed_value(items: Optional[Iterable[object]]) -> float:
    return sum(
        to_number(getattr(item, "completed_quantity", 0)) * to_number(getattr(item, "rate", 0))
        for item in (items or [])
        if item is not None
    )


def calculate_physical_progress(boq: Optional[Iterable[object]]) -> int:
    items = list(boq or [])
    total_value = boq_contract_value(items)
    if total_value == 0:
        return 0
    return round(boq_completed_value(items) / total_value * 100)


def derive_boq_status(item) -> str:
    completed = to_number(getattr(item, "completed_quantity", 0))
    target = revised_quantity(item)
    if completed <= 0:
        return "Planned"
    if target > 0 and completed >= target:
        return "Completed"
    return "Executing"


def refresh_boq_item(item: BOQItem) -> BOQItem:
    """Recompute amount, revised quantity and status after quantities change."""
    variation_quantity = to_number(item.variation_quantity)
    refreshed = item.model_copy(
        update={
            "amount": boq_item_amount(item),
            "revised_quantity": to_number(item.quantity) + variation_quantity if variation_quantity else None,
        }
    )
    return refreshed.model_copy(update={"status": derive_boq_status(refreshed)})


def _next_item_no(project: Project) -> str:
    return f"ITEM-{len(project.boq or []) + 1}"


def build_boq_item(project: Project, payload: dict, now: datetime) -> BOQItem:
    description = str(payload.get("description") or "").strip()
    if not description:
        raise ValueError("BOQ item description is required.")
    if payload.get("quantity") in (None, "") or payload.get("rate") in (None, ""):
        raise ValueError("BOQ item quantity and rate are required.")

    quantity = to_number(payload.get("quantity"))
    rate = to_number(payload.get("rate"))
    if quantity < 0 or rate < 0:
        raise ValueError("BOQ item quantity and rate cannot be negative.")

    return BOQItem(
        id=make_id("boq", now),
        item_no=str(payload.get("item_no") or payload.get("itemNo") or "").strip() or _next_item_no(project),
        description=description,
        unit=str(payload.get("unit") or "").strip() or BOQ_DEFAULTS["unit"],
        quantity=quantity,
        rate=rate,
        amount=quantity * rate,
        location=str(payload.get("location") or "").strip() or BOQ_DEFAULTS["location"],
        category=str(payload.get("category") or "").strip() or BOQ_DEFAULTS["category"],
        completed_quantity=0.0,
        variation_quantity=0.0,
        subcontractor_id=payload.get("subcontractor_id") or payload.get("subcontractorId"),
    )


def add_boq_item(project: Project, payload: dict, now: datetime) -> Project:
    item = build_boq_item(project, payload, now)
    return project.model_copy(update={"boq": [*(project.boq or []), item]})


def update_boq_item(project: Project, item: BOQItem) -> Project:
    if to_number(item.quantity) < 0 or to_number(item.rate) < 0:
        raise ValueError("BOQ item quantity and rate cannot be negative.")
    if to_number(item.completed_quantity) < 0:
        raise ValueError("Completed quantity cannot be negative.")

    found = False
    updated_boq = []
    for existing in project.boq or []:
        if existing.id == item.id:
            found = True
            updated_boq.append(refresh_boq_item(item))
        else:
            updated_boq.append(existing)
    if not found:
        raise ValueError(f"BOQ item not found: {item.id}")
    return project.model_copy(update={"boq": updated_boq})


def delete_boq_item(project: Project, item_id: str) -> Project:
    return project.model_copy(update={"boq": [item for item in (project.boq or []) if item.id != item_id]})


def find_boq_item(project: Project, item_id: str) -> Optional[BOQItem]:
    for item in project.boq or []:
        if item.id == item_id:
            return item
    return None


def search_boq(items: Optional[Iterable[object]], term: str) -> list:
    rows = list(items or [])
    needle = (term or "").strip().lower()
    if not needle:
        return rows
    matched = []
    for item in rows:
        haystack = (
            getattr(item, "item_no", ""),
            getattr(item, "description", ""),
            getattr(item, "category", ""),
            getattr(item, "location", ""),
        )
        if any(needle in str(value or "").lower() for value in haystack):
            matched.append(item)
    return matched


def summarize_boq_by_category(items: Optional[Iterable[object]]) -> list[dict]:
    buckets: dict[str, dict] = {}
    for item in items or []:
        key = str(getattr(item, "category", "") or "").strip() or BOQ_DEFAULTS["category"]
        bucket = buckets.setdefault(
            key,
            {"category": key, "item_count": 0, "contract_value": 0.0, "completed_value": 0.0},
        )
        bucket["item_count"] += 1
        bucket["contract_value"] += boq_item_amount(item)
        bucket["completed_value"] += to_number(getattr(item, "completed_quantity", 0)) * to_number(
            getattr(item, "rate", 0)
        )

    summary = []
    for bucket in buckets.values():
        contract_value = bucket["contract_value"]
        bucket["progress"] = round(bucket["completed_value"] / contract_value * 100) if contract_value else 0
        summary.append(bucket)
    summary.sort(key=lambda row: row["contract_value"], reverse=True)
    return summary


def variation_total_impact(order) -> float:
    return sum(
        to_number(getattr(item, "quantity_delta", 0)) * to_number(getattr(item, "rate", 0))
        for item in (getattr(order, "items", None) or [])
    )


def next_variation_number(project: Project) -> str:
    return f"VO-{len(project.variation_orders or []) + 1}"


def _replace_variation(project: Project, order: VariationOrder) -> list[VariationOrder]:
    return [order if existing.id == order.id else existing for existing in (project.variation_orders or [])]


def _find_variation(project: Project, vo_id: str) -> VariationOrder:
    for order in project.variation_orders or []:
        if order.id == vo_id:
            return order
    raise ValueError(f"Variation order not found: {vo_id}")


def set_variation_status(project: Project, vo_id: str, status: str, now: datetime) -> Project:
    order = _find_variation(project, vo_id)
    allowed = _VARIATION_TRANSITIONS.get(order.status, set())
    if status not in allowed:
        raise ValueError(f"Cannot move variation order from {order.status} to {status}.")

    update = {"status": status, "total_impact": variation_total_impact(order)}
    if status == "Approved":
        update["approved_date"] = to_day(now)
    order = order.model_copy(update=update)
    return project.model_copy(update={"variation_orders": _replace_variation(project, order)})


def apply_variation_order(project: Project, vo_id: str, now: datetime) -> Project:
    """Fold an approved variation order into the BOQ.

    Existing items receive the quantity delta on ``variation_quantity``;
    ``is_new_item`` rows become new BOQ items with zero original quantity.
    """

    order = _find_variation(project, vo_id)
    if order.status != "Approved":
        raise ValueError("Only approved variation orders can be applied to the BOQ.")

    boq = list(project.boq or [])
    index_by_id = {item.id: position for position, item in enumerate(boq)}
    for sequence, row in enumerate(order.items):
        delta = to_number(row.quantity_delta)
        if row.is_new_item:
            boq.append(
                BOQItem(
                    id=f"{make_id('boq', now)}-{sequence}",
                    item_no=f"{order.vo_number}/{sequence + 1}",
                    description=row.description,
                    unit=row.unit or BOQ_DEFAULTS["unit"],
                    quantity=0.0,
                    rate=to_number(row.rate),
                    amount=0.0,
                    category="Extra Work",
                    location=BOQ_DEFAULTS["location"],
                    completed_quantity=0.0,
                    variation_quantity=delta,
                    revised_quantity=delta,
                    status="Planned",
                )
            )
            continue

        position = index_by_id.get(row.boq_item_id)
        if position is None:
            raise ValueError(f"Variation references unknown BOQ item: {row.boq_item_id}")
        item = boq[position]
        variation_quantity = to_number(item.variation_quantity) + delta
        boq[position] = refresh_boq_item(item.model_copy(update={"variation_quantity": variation_quantity}))

    order = order.model_copy(update={"status": "Implemented", "total_impact": variation_total_impact(order)})
    return project.model_copy(
        update={
            "boq": boq,
            "variation_orders": _replace_variation(project, order),
        }
    )
