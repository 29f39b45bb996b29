from __future__ import annotations

import hashlib
import json
from datetime import datetime
from io import BytesIO
from typing import Any

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from ..schemas import Project
from .boq_logic import add_boq_item, boq_contract_value, boq_completed_value, refresh_boq_item, to_number
from .finance import financial_stats

SUMMARY_SHEET = "Summary"
BOQ_SHEET = "BOQ"
META_SHEET = "_meta"

DATA_START_ROW = 5
HEADER_ROW = 4

TEMPLATE_VERSION = "boq-excel.v1"

SHEET_ORDER = [SUMMARY_SHEET, BOQ_SHEET, META_SHEET]

BOQ_HEADERS = [
    "No",
    "Item ID",
    "Item No",
    "Description",
    "Category",
    "Location",
    "Unit",
    "Quantity",
    "Rate",
    "Amount",
    "Completed Qty",
    "Progress",
]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="1E3A8A")
HEADER_FONT = Font(name="Calibri", bold=True, size=11, color="FFFFFF")
TITLE_FILL = PatternFill(fill_type="solid", fgColor="0F172A")
TITLE_FONT = Font(name="Calibri", bold=True, size=14, color="FFFFFF")
ALT_ROW_FILL = PatternFill(fill_type="solid", fgColor="F8FAFC")
TOTAL_FILL = PatternFill(fill_type="solid", fgColor="E2E8F0")
TOTAL_FONT = Font(name="Calibri", bold=True, size=10, color="1F2937")
BODY_FONT = Font(name="Calibri", size=10, color="111827")

CURRENCY_FORMAT = "#,##0.00"
QUANTITY_FORMAT = "#,##0.00"
PERCENT_FORMAT = "0.0%"

PROTECTION_PASSWORD = "roadmaster"
MAX_ERRORS = 80


class BoqExcelValidationError(Exception):
    def __init__(self, errors: list[str]):
        self.errors = [str(item) for item in (errors or []) if str(item).strip()][:MAX_ERRORS]
        message = "\n".join(self.errors) if self.errors else "BOQ workbook validation failed."
        super().__init__(message)

    def to_detail(self) -> str:
        return "\n".join(self.errors) if self.errors else "BOQ workbook validation failed."


def _normalize_text(value: Any) -> str:
    return str(value or "").strip()


def _template_signature() -> str:
    payload = {
        "template_version": TEMPLATE_VERSION,
        "header_row": HEADER_ROW,
        "data_start_row": DATA_START_ROW,
        "boq_headers": BOQ_HEADERS,
    }
    raw = json.dumps(payload, ensure_ascii=False, sort_keys=True)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:24]


def _style_title_row(ws, title: str, max_col: int) -> None:
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=max_col)
    cell = ws.cell(row=1, column=1, value=title)
    cell.fill = TITLE_FILL
    cell.font = TITLE_FONT
    cell.alignment = Alignment(horizontal="left", vertical="center")
    ws.row_dimensions[1].height = 24


def _style_header_row(ws, headers: list[str]) -> None:
    for index, header in enumerate(headers, start=1):
        cell = ws.cell(row=HEADER_ROW, column=index, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center")
    ws.row_dimensions[HEADER_ROW].height = 22


def _apply_body_style(ws, row: int, max_col: int) -> None:
    for col in range(1, max_col + 1):
        cell = ws.cell(row=row, column=col)
        cell.font = BODY_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center")
        if row % 2 == 0:
            cell.fill = ALT_ROW_FILL


def _write_summary_sheet(wb: Workbook, project: Project) -> None:
    ws = wb.create_sheet(SUMMARY_SHEET)
    _style_title_row(ws, f"{project.name} ({project.code})", 4)

    stats = financial_stats(project)
    contract_value = boq_contract_value(project.boq)
    completed_value = boq_completed_value(project.boq)
    rows = [
        ("Client", project.client),
        ("Contractor", project.contractor),
        ("Location", project.location),
        ("Original contract", stats["original_contract"]),
        ("Variations", stats["variations"]),
        ("Revised contract", stats["revised_contract"]),
        ("Total billed", stats["total_billed"]),
        ("Completed value", completed_value),
        ("Physical progress", completed_value / contract_value if contract_value else 0),
    ]
    for offset, (label, value) in enumerate(rows):
        row_idx = HEADER_ROW + offset
        label_cell = ws.cell(row=row_idx, column=1, value=label)
        value_cell = ws.cell(row=row_idx, column=2, value=value)
        label_cell.font = TOTAL_FONT
        label_cell.fill = TOTAL_FILL
        value_cell.font = BODY_FONT
        if isinstance(value, float):
            value_cell.number_format = PERCENT_FORMAT if label == "Physical progress" else CURRENCY_FORMAT
            value_cell.alignment = Alignment(horizontal="right", vertical="center")

    ws.column_dimensions["A"].width = 22
    ws.column_dimensions["B"].width = 24
    ws.protection.sheet = True
    ws.protection.password = PROTECTION_PASSWORD


def _write_boq_sheet(wb: Workbook, project: Project) -> int:
    ws = wb.create_sheet(BOQ_SHEET)
    _style_title_row(ws, "Bill of Quantities", len(BOQ_HEADERS))
    _style_header_row(ws, BOQ_HEADERS)

    items = list(project.boq or [])
    row_count = max(1, len(items))
    row_end = DATA_START_ROW + row_count - 1
    ws["A2"] = "Contract value"
    ws["B2"] = f"=SUM(J{DATA_START_ROW}:J{row_end})"
    for cell_name in ("A2", "B2"):
        ws[cell_name].font = TOTAL_FONT
        ws[cell_name].fill = TOTAL_FILL
    ws["B2"].number_format = CURRENCY_FORMAT

    for offset, item in enumerate(items):
        row_idx = DATA_START_ROW + offset
        ws.cell(row=row_idx, column=1, value=offset + 1)
        ws.cell(row=row_idx, column=2, value=item.id)
        ws.cell(row=row_idx, column=3, value=item.item_no)
        ws.cell(row=row_idx, column=4, value=item.description)
        ws.cell(row=row_idx, column=5, value=item.category)
        ws.cell(row=row_idx, column=6, value=item.location)
        ws.cell(row=row_idx, column=7, value=item.unit)
        qty_cell = ws.cell(row=row_idx, column=8, value=to_number(item.quantity))
        rate_cell = ws.cell(row=row_idx, column=9, value=to_number(item.rate))
        amount_cell = ws.cell(row=row_idx, column=10, value=f"=IFERROR(H{row_idx}*I{row_idx},0)")
        completed_cell = ws.cell(row=row_idx, column=11, value=to_number(item.completed_quantity))
        progress_cell = ws.cell(row=row_idx, column=12, value=f"=IFERROR(K{row_idx}/H{row_idx},0)")

        qty_cell.number_format = QUANTITY_FORMAT
        rate_cell.number_format = CURRENCY_FORMAT
        amount_cell.number_format = CURRENCY_FORMAT
        completed_cell.number_format = QUANTITY_FORMAT
        progress_cell.number_format = PERCENT_FORMAT
        _apply_body_style(ws, row_idx, len(BOQ_HEADERS))
        ws.cell(row=row_idx, column=4).alignment = Alignment(horizontal="left", vertical="center", wrap_text=True)

    ws.freeze_panes = f"A{DATA_START_ROW}"
    ws.auto_filter.ref = f"A{HEADER_ROW}:L{row_end}"
    widths = [6, 18, 12, 40, 16, 16, 8, 12, 14, 16, 14, 10]
    for index, width in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(index)].width = width
    return len(items)


def _write_meta_sheet(wb: Workbook, *, project_id: str, row_count: int) -> None:
    ws = wb.create_sheet(META_SHEET)
    ws["A1"] = "template_version"
    ws["B1"] = TEMPLATE_VERSION
    ws["A2"] = "template_signature"
    ws["B2"] = _template_signature()
    ws["A3"] = "project_id"
    ws["B3"] = project_id
    ws["A4"] = "row_count"
    ws["B4"] = row_count
    ws["A5"] = "data_start_row"
    ws["B5"] = DATA_START_ROW
    ws.sheet_state = "hidden"


def export_boq_workbook(project: Project) -> bytes:
    wb = Workbook()
    wb.remove(wb.active)

    _write_summary_sheet(wb, project)
    row_count = _write_boq_sheet(wb, project)
    _write_meta_sheet(wb, project_id=project.id, row_count=row_count)

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def _add_error(errors: list[str], message: str) -> None:
    if len(errors) >= MAX_ERRORS:
        return
    errors.append(message)


def _parse_number_cell(value: Any) -> tuple[float, bool]:
    if value in (None, ""):
        return 0.0, True
    if isinstance(value, (int, float)):
        return float(value), True
    try:
        return float(str(value).strip().replace(",", "")), True
    except Exception:  # noqa: BLE001
        return 0.0, False


def _validate_template(workbook, errors: list[str]) -> dict[str, Any]:
    if workbook.sheetnames != SHEET_ORDER:
        _add_error(errors, f"Sheet layout changed. expected={SHEET_ORDER}, actual={workbook.sheetnames}")
    if META_SHEET not in workbook.sheetnames or BOQ_SHEET not in workbook.sheetnames:
        _add_error(errors, "_meta or BOQ sheet is missing.")
        raise BoqExcelValidationError(errors)

    meta_ws = workbook[META_SHEET]
    meta = {
        "template_version": _normalize_text(meta_ws["B1"].value),
        "template_signature": _normalize_text(meta_ws["B2"].value),
        "project_id": _normalize_text(meta_ws["B3"].value),
        "data_start_row": int(to_number(meta_ws["B5"].value)),
    }
    if meta["template_version"] != TEMPLATE_VERSION:
        _add_error(errors, "_meta!B1: template version does not match.")
    if meta["template_signature"] != _template_signature():
        _add_error(errors, "_meta!B2: template signature does not match.")
    if meta["data_start_row"] != DATA_START_ROW:
        _add_error(errors, f"_meta!B5: data start row changed. expected={DATA_START_ROW}, actual={meta['data_start_row']}")

    ws = workbook[BOQ_SHEET]
    for idx, expected in enumerate(BOQ_HEADERS, start=1):
        address = f"{get_column_letter(idx)}{HEADER_ROW}"
        actual = _normalize_text(ws[address].value)
        if actual != expected:
            _add_error(errors, f"{BOQ_SHEET}!{address}: header changed. expected='{expected}', actual='{actual}'")
    return meta


def parse_boq_workbook(file_bytes: bytes) -> dict[str, Any]:
    """Read BOQ rows back from an exported workbook.

    Rows carrying an ``Item ID`` update that item; rows without one are new
    items. Every problem is collected and raised together.
    """

    try:
        workbook = load_workbook(filename=BytesIO(file_bytes), data_only=False)
    except Exception as exc:  # noqa: BLE001
        raise BoqExcelValidationError([f"Cannot open workbook: {exc}"]) from exc

    errors: list[str] = []
    meta = _validate_template(workbook, errors)
    if errors:
        raise BoqExcelValidationError(errors)

    ws = workbook[BOQ_SHEET]
    rows: list[dict[str, Any]] = []
    seen_ids: set[str] = set()
    for row_idx in range(DATA_START_ROW, ws.max_row + 1):
        item_id = _normalize_text(ws[f"B{row_idx}"].value)
        description = _normalize_text(ws[f"D{row_idx}"].value)
        quantity, quantity_ok = _parse_number_cell(ws[f"H{row_idx}"].value)
        rate, rate_ok = _parse_number_cell(ws[f"I{row_idx}"].value)
        completed, completed_ok = _parse_number_cell(ws[f"K{row_idx}"].value)

        if not item_id and not description:
            continue
        if not quantity_ok:
            _add_error(errors, f"{BOQ_SHEET}!H{row_idx}: quantity must be a number.")
            continue
        if not rate_ok:
            _add_error(errors, f"{BOQ_SHEET}!I{row_idx}: rate must be a number.")
            continue
        if not completed_ok:
            _add_error(errors, f"{BOQ_SHEET}!K{row_idx}: completed quantity must be a number.")
            continue
        if quantity < 0 or rate < 0 or completed < 0:
            _add_error(errors, f"{BOQ_SHEET}!H{row_idx}: quantities and rates cannot be negative.")
            continue
        if not description:
            _add_error(errors, f"{BOQ_SHEET}!D{row_idx}: description is required.")
            continue
        if item_id and item_id in seen_ids:
            _add_error(errors, f"{BOQ_SHEET}!B{row_idx}: duplicate item id {item_id}.")
            continue
        if item_id:
            seen_ids.add(item_id)

        rows.append(
            {
                "id": item_id,
                "item_no": _normalize_text(ws[f"C{row_idx}"].value),
                "description": description,
                "category": _normalize_text(ws[f"E{row_idx}"].value),
                "location": _normalize_text(ws[f"F{row_idx}"].value),
                "unit": _normalize_text(ws[f"G{row_idx}"].value),
                "quantity": quantity,
                "rate": rate,
                "completed_quantity": completed,
            }
        )

    if errors:
        raise BoqExcelValidationError(errors)

    return {
        "project_id": meta["project_id"],
        "items": rows,
        "updated_counts": {
            "existing": sum(1 for row in rows if row["id"]),
            "new": sum(1 for row in rows if not row["id"]),
        },
    }


def apply_boq_import(project: Project, rows: list[dict[str, Any]], now: datetime) -> Project:
    by_id = {item.id: item for item in project.boq or []}
    errors: list[str] = []
    for row in rows:
        if row["id"] and row["id"] not in by_id:
            _add_error(errors, f"Unknown BOQ item id: {row['id']}")
    if errors:
        raise BoqExcelValidationError(errors)

    boq = []
    updates = {row["id"]: row for row in rows if row["id"]}
    for item in project.boq or []:
        row = updates.get(item.id)
        if row is not None:
            item = refresh_boq_item(
                item.model_copy(
                    update={
                        "item_no": row["item_no"] or item.item_no,
                        "description": row["description"],
                        "category": row["category"] or item.category,
                        "location": row["location"] or item.location,
                        "unit": row["unit"] or item.unit,
                        "quantity": row["quantity"],
                        "rate": row["rate"],
                        "completed_quantity": row["completed_quantity"],
                    }
                )
            )
        boq.append(item)

    updated = project.model_copy(update={"boq": boq})
    for sequence, row in enumerate(row for row in rows if not row["id"]):
        updated = add_boq_item(
            updated,
            {key: value for key, value in row.items() if key not in ("id", "completed_quantity")},
            now,
        )
        new_item = updated.boq[-1]
        new_item = new_item.model_copy(
            update={"id": f"{new_item.id}-{sequence}", "completed_quantity": row["completed_quantity"]}
        )
        new_item = refresh_boq_item(new_item)
        updated = updated.model_copy(update={"boq": [*updated.boq[:-1], new_item]})
    return updated
