from __future__ import annotations

import json
from typing import Optional

from ..schemas import Project
from .agency_logic import material_total_amount
from .boq_logic import to_number

PROJECT_COLLECTION_KEYS = (
    "boq",
    "variationOrders",
    "rfis",
    "labTests",
    "ncrs",
    "schedule",
    "milestones",
    "structures",
    "agencies",
    "agencyPayments",
    "agencyMaterials",
    "materials",
    "agencyBills",
    "documents",
    "contractBills",
    "subcontractorBills",
    "auditLogs",
    "preConstruction",
)
_LEGACY_RFI_STATUSES = {"Pending": "Pending Inspection"}
_MATERIAL_LOGISTICS_KEYS = (
    "orderedDate",
    "expectedDeliveryDate",
    "deliveryDate",
    "deliveryLocation",
    "transportMode",
    "driverName",
    "vehicleNumber",
    "deliveryCharges",
    "taxAmount",
    "batchNumber",
    "expiryDate",
    "qualityCertification",
    "supplierInvoiceRef",
)


def parse_project_payload(raw_text: str) -> Optional[dict]:
    text = (raw_text or "").strip()
    if not text:
        return None
    try:
        parsed = json.loads(text)
    except Exception:  # noqa: BLE001
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def migrate_legacy_agency_material(material: dict) -> dict:
    migrated = dict(material)
    name = str(material.get("name") or material.get("materialName") or "Unnamed Material")
    quantity = to_number(material.get("quantity"))
    rate = to_number(material.get("rate"))
    migrated.update(
        {
            "name": name,
            "materialName": str(material.get("materialName") or material.get("name") or ""),
            "description": material.get("description") or material.get("remarks") or "",
            "category": material.get("category") or "Agency Material",
            "unit": material.get("unit") or "unit",
            "quantity": quantity,
            "location": material.get("location") or material.get("deliveryLocation") or "Vendor",
            "status": material.get("status") or "Ordered",
            "rate": rate,
            "deliveryCharges": to_number(material.get("deliveryCharges")),
            "taxAmount": to_number(material.get("taxAmount")),
        }
    )
    if to_number(material.get("totalAmount")) <= 0:
        migrated["totalAmount"] = material_total_amount(
            quantity, rate, migrated["taxAmount"], migrated["deliveryCharges"]
        )
    return migrated


def _agency_stock_status(status: str) -> str:
    if status == "Received":
        return "Available"
    if status in ("Ordered", "In Transit"):
        return "Low Stock"
    return "Out of Stock"


def _inventory_stock_status(quantity: float, reorder_level: float) -> str:
    if quantity == 0:
        return "Out of Stock"
    if quantity <= reorder_level:
        return "Low Stock"
    return "Available"


def material_from_agency_material(row: dict, supplier_names: dict) -> dict:
    quantity = to_number(row.get("quantity"))
    material = {
        "id": f"mat-{row.get('id') or row.get('name')}",
        "name": row.get("name") or row.get("materialName") or "Unnamed Material",
        "description": row.get("remarks") or row.get("description") or "",
        "category": "Supplier Material",
        "unit": row.get("unit") or "unit",
        "quantity": quantity,
        "availableQuantity": quantity,
        "unitCost": to_number(row.get("rate")),
        "totalValue": to_number(row.get("totalAmount")),
        "reorderLevel": 10.0,
        "location": row.get("deliveryLocation") or "Warehouse",
        "lastUpdated": row.get("receivedDate") or "",
        "status": _agency_stock_status(row.get("status") or ""),
        "supplierId": row.get("agencyId"),
        "supplierName": supplier_names.get(row.get("agencyId")),
        "supplierRate": to_number(row.get("rate")),
        "criticality": "Medium",
        "notes": row.get("remarks") or "",
        "tags": ["migrated-from-agency"],
    }
    for key in _MATERIAL_LOGISTICS_KEYS:
        if row.get(key) not in (None, ""):
            material[key] = row[key]
    return material


def material_from_inventory_item(row: dict, sequence: int) -> dict:
    quantity = to_number(row.get("quantity"))
    current = row.get("currentQuantity")
    reorder_level = to_number(row.get("reorderLevel")) or 10.0
    return {
        "id": f"mat-inv-{row.get('id') or sequence}",
        "name": row.get("itemName") or row.get("name") or "Unnamed Item",
        "description": "Migrated from legacy inventory system",
        "category": "General Inventory",
        "unit": row.get("unit") or "unit",
        "quantity": quantity,
        "availableQuantity": quantity if current in (None, "") else to_number(current),
        "unitCost": 0.0,
        "totalValue": 0.0,
        "reorderLevel": reorder_level,
        "location": row.get("location") or "Warehouse",
        "lastUpdated": row.get("lastUpdated") or "",
        "status": _inventory_stock_status(quantity, reorder_level),
        "criticality": "Medium",
        "notes": "Migrated from legacy inventory system",
        "tags": ["migrated-from-inventory"],
    }


def migrate_material_data(payload: dict) -> list[dict]:
    """Build the unified ``materials`` list from vendor deliveries and legacy inventory.

    Existing materials come first; later rows with the same name and unit are dropped.
    """

    supplier_names = {
        row.get("id"): row.get("name") for row in payload.get("agencies") or [] if isinstance(row, dict)
    }
    candidates = [row for row in payload.get("materials") or [] if isinstance(row, dict)]
    candidates += [
        material_from_agency_material(row, supplier_names)
        for row in payload.get("agencyMaterials") or []
        if isinstance(row, dict)
    ]
    candidates += [
        material_from_inventory_item(row, sequence)
        for sequence, row in enumerate(payload.get("inventory") or [])
        if isinstance(row, dict)
    ]

    materials = []
    seen = set()
    for row in candidates:
        key = (row.get("name"), row.get("unit"))
        if key in seen:
            continue
        seen.add(key)
        materials.append(row)
    return materials


def normalize_project_payload(raw: dict) -> dict:
    """Bring a stored or imported project document up to the current shape.

    Missing collections become empty lists, ``preConstructionTasks`` moves to
    ``preConstruction``, legacy vendor materials get their name and totals
    filled in, projects without a unified ``materials`` list get one built
    from vendor deliveries and legacy inventory, and legacy RFI statuses are
    renamed.
    """

    payload = dict(raw or {})
    legacy_tasks = payload.pop("preConstructionTasks", None)
    if isinstance(legacy_tasks, list) and not payload.get("preConstruction"):
        payload["preConstruction"] = legacy_tasks

    for key in PROJECT_COLLECTION_KEYS:
        if not isinstance(payload.get(key), list):
            payload[key] = []

    payload["agencyMaterials"] = [
        migrate_legacy_agency_material(row) for row in payload["agencyMaterials"] if isinstance(row, dict)
    ]
    if not payload["materials"]:
        payload["materials"] = migrate_material_data(payload)

    rfis = []
    for row in payload["rfis"]:
        if not isinstance(row, dict):
            continue
        status = row.get("status") or "Open"
        rfis.append({**row, "status": _LEGACY_RFI_STATUSES.get(status, status)})
    payload["rfis"] = rfis

    boq = []
    for row in payload["boq"]:
        if not isinstance(row, dict):
            continue
        item = dict(row)
        if item.get("amount") in (None, ""):
            item["amount"] = to_number(item.get("quantity")) * to_number(item.get("rate"))
        boq.append(item)
    payload["boq"] = boq
    return payload


def load_project(raw: dict) -> Project:
    return Project.model_validate(normalize_project_payload(raw))


def project_to_json(project: Project) -> str:
    return json.dumps(project.to_payload(), ensure_ascii=False)
