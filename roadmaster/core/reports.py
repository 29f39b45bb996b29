from __future__ import annotations

import csv
from collections.abc import Callable, Iterable
from io import StringIO
from typing import Any

from ..schemas import Project
from .boq_logic import boq_item_amount, revised_quantity, to_number
from .portfolio import structure_progress


def _rows_to_csv(headers: list[str], rows: Iterable[list[Any]]) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return buffer.getvalue()


def export_boq_csv(project: Project) -> str:
    return _rows_to_csv(
        [
            "Item No",
            "Description",
            "Category",
            "Location",
            "Unit",
            "Quantity",
            "Rate",
            "Amount",
            "Variation Qty",
            "Revised Qty",
            "Completed Qty",
            "Status",
        ],
        (
            [
                item.item_no,
                item.description,
                item.category,
                item.location,
                item.unit,
                to_number(item.quantity),
                to_number(item.rate),
                boq_item_amount(item),
                to_number(item.variation_quantity),
                revised_quantity(item),
                to_number(item.completed_quantity),
                item.status or "",
            ]
            for item in project.boq or []
        ),
    )


def export_schedule_csv(project: Project) -> str:
    return _rows_to_csv(
        ["Task", "Start Date", "End Date", "Progress", "Status", "Dependencies", "Critical"],
        (
            [
                task.name,
                task.start_date,
                task.end_date,
                to_number(task.progress),
                task.status,
                ";".join(dep.task_id for dep in task.dependencies),
                "Yes" if task.is_critical else "No",
            ]
            for task in project.schedule or []
        ),
    )


def export_lab_tests_csv(project: Project) -> str:
    return _rows_to_csv(
        ["Test", "Category", "Sample ID", "Date", "Location", "Result", "Value", "Limit", "Technician"],
        (
            [
                test.test_name,
                test.category,
                test.sample_id,
                test.date,
                test.location,
                test.result,
                test.calculated_value,
                test.standard_limit,
                test.technician,
            ]
            for test in project.lab_tests or []
        ),
    )


def export_rfis_csv(project: Project) -> str:
    return _rows_to_csv(
        ["RFI No", "Date", "Location", "Description", "Status", "Requested By", "Inspection Date", "Works Status"],
        (
            [
                rfi.rfi_number,
                rfi.date,
                rfi.location,
                rfi.description,
                rfi.status,
                rfi.requested_by,
                rfi.inspection_date,
                rfi.works_status,
            ]
            for rfi in project.rfis or []
        ),
    )


def export_structures_csv(project: Project) -> str:
    return _rows_to_csv(
        ["Structure", "Type", "Location", "Chainage", "Status", "Components", "Progress"],
        (
            [
                structure.name,
                structure.type,
                structure.location,
                structure.chainage,
                structure.status,
                len(structure.components),
                structure_progress(structure),
            ]
            for structure in project.structures or []
        ),
    )


def export_ncrs_csv(project: Project) -> str:
    return _rows_to_csv(
        ["NCR No", "Date Raised", "Location", "Description", "Severity", "Status", "Linked Test"],
        (
            [
                ncr.ncr_number,
                ncr.date_raised,
                ncr.location,
                ncr.description,
                ncr.severity,
                ncr.status,
                ncr.linked_test_id,
            ]
            for ncr in project.ncrs or []
        ),
    )


CSV_EXPORTS: dict[str, Callable[[Project], str]] = {
    "boq": export_boq_csv,
    "schedule": export_schedule_csv,
    "lab-tests": export_lab_tests_csv,
    "rfis": export_rfis_csv,
    "structures": export_structures_csv,
    "ncrs": export_ncrs_csv,
}
