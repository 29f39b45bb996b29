from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Optional

from .agency_logic import portfolio_contract_value
from .auth_utils import parse_day
from .boq_logic import calculate_physical_progress, to_number
from .finance import financial_stats

PROJECT_DRAFT = "Draft"
PROJECT_UPCOMING = "Upcoming"
PROJECT_ACTIVE = "Active"
PROJECT_COMPLETED = "Completed"

_DEFAULT_PROJECT_SORT = "updated_desc"
_ALLOWED_PROJECT_SORTS = {
    "updated_desc",
    "updated_asc",
    "name_desc",
    "name_asc",
    "progress_desc",
    "progress_asc",
}
_PROJECT_SORT_ALIASES = {
    "updated": "updated_desc",
    "name": "name_asc",
    "progress": "progress_desc",
}


def project_status(start, end, today: Optional[date] = None) -> str:
    start_day = parse_day(start)
    end_day = parse_day(end)
    current = today or date.today()
    if start_day is None:
        return PROJECT_DRAFT
    if end_day is not None and end_day < current:
        return PROJECT_COMPLETED
    if start_day > current:
        return PROJECT_UPCOMING
    return PROJECT_ACTIVE


def time_progress(start, end, today: Optional[date] = None) -> int:
    start_day = parse_day(start)
    end_day = parse_day(end)
    current = today or date.today()
    if start_day is None or end_day is None:
        return 0
    if current < start_day:
        return 0
    if current > end_day:
        return 100
    total_days = (end_day - start_day).days
    if total_days <= 0:
        return 100
    return round((current - start_day).days / total_days * 100)


def structure_progress(structure) -> int:
    components = list(getattr(structure, "components", None) or [])
    total = sum(to_number(getattr(row, "total_quantity", 0)) for row in components)
    if total <= 0:
        return 0
    completed = sum(to_number(getattr(row, "completed_quantity", 0)) for row in components)
    return round(completed / total * 100)


def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


def portfolio_metrics(projects: Optional[Iterable[object]], today: Optional[date] = None) -> dict:
    rows = list(projects or [])
    statuses = [project_status(row.start_date, row.end_date, today) for row in rows]
    total = len(rows)
    active = statuses.count(PROJECT_ACTIVE)
    upcoming = statuses.count(PROJECT_UPCOMING)
    completed = statuses.count(PROJECT_COMPLETED)
    divisor = len(rows) or 1

    return {
        "total_projects": total,
        "active_projects": active,
        "upcoming_projects": upcoming,
        "completed_projects": completed,
        "draft_projects": statuses.count(PROJECT_DRAFT),
        "active_percentage": _percent(active, total),
        "upcoming_percentage": _percent(upcoming, total),
        "completed_percentage": _percent(completed, total),
        "total_portfolio_value": portfolio_contract_value(rows),
        "average_physical_progress": round(sum(calculate_physical_progress(row.boq) for row in rows) / divisor),
        "average_time_progress": round(sum(time_progress(row.start_date, row.end_date, today) for row in rows) / divisor),
    }


def search_projects(projects: Optional[Iterable[object]], term: str) -> list:
    rows = list(projects or [])
    needle = (term or "").strip().lower()
    if not needle:
        return rows
    return [
        row
        for row in rows
        if any(
            needle in str(getattr(row, field, "") or "").lower()
            for field in ("name", "client", "code")
        )
    ]


def normalize_project_sort(sort_by: Optional[str]) -> str:
    token = (sort_by or "").strip().lower()
    if not token:
        return _DEFAULT_PROJECT_SORT
    normalized = _PROJECT_SORT_ALIASES.get(token, token)
    if normalized not in _ALLOWED_PROJECT_SORTS:
        raise ValueError(f"Unsupported sort_by: {sort_by}")
    return normalized


def sort_projects(projects: Optional[Iterable[object]], sort_by: Optional[str] = None) -> list:
    rows = list(projects or [])
    order = normalize_project_sort(sort_by)
    if order.startswith("name"):
        return sorted(
            rows,
            key=lambda row: (str(row.name or "").lower(), str(row.id)),
            reverse=order == "name_desc",
        )
    if order.startswith("progress"):
        return sorted(
            rows,
            key=lambda row: (calculate_physical_progress(row.boq), str(row.id)),
            reverse=order == "progress_desc",
        )
    return sorted(
        rows,
        key=lambda row: (str(getattr(row, "last_synced", "") or ""), str(row.id)),
        reverse=order == "updated_desc",
    )


def report_stats(project) -> dict:
    boq = list(getattr(project, "boq", None) or [])
    tests = list(getattr(project, "lab_tests", None) or [])
    rfis = list(getattr(project, "rfis", None) or [])
    tasks = list(getattr(project, "schedule", None) or [])
    structures = list(getattr(project, "structures", None) or [])

    completed_items = sum(1 for row in boq if row.status == "Completed")
    passed_tests = sum(1 for row in tests if row.result == "Pass")
    resolved_rfis = sum(1 for row in rfis if row.status == "Closed")
    completed_tasks = sum(1 for row in tasks if row.status == "Completed")
    completed_structures = sum(1 for row in structures if row.status == "Completed")

    return {
        "boq_items": len(boq),
        "completed_boq_items": completed_items,
        "boq_completion": _percent(completed_items, len(boq)),
        "lab_tests": len(tests),
        "passed_tests": passed_tests,
        "test_pass_rate": _percent(passed_tests, len(tests)),
        "rfis": len(rfis),
        "resolved_rfis": resolved_rfis,
        "rfi_resolution": _percent(resolved_rfis, len(rfis)),
        "tasks": len(tasks),
        "completed_tasks": completed_tasks,
        "schedule_completion": _percent(completed_tasks, len(tasks)),
        "structures": len(structures),
        "completed_structures": completed_structures,
        "structure_completion": _percent(completed_structures, len(structures)),
    }


def project_card(project, today: Optional[date] = None) -> dict:
    finance = financial_stats(project)
    return {
        "id": project.id,
        "name": project.name,
        "code": project.code,
        "client": project.client,
        "location": project.location,
        "status": project_status(project.start_date, project.end_date, today),
        "physical_progress": calculate_physical_progress(project.boq),
        "time_progress": time_progress(project.start_date, project.end_date, today),
        "contract_value": finance["revised_contract"],
        "total_billed": finance["total_billed"],
        "open_rfis": sum(1 for row in (project.rfis or []) if row.status == "Open"),
        "open_ncrs": sum(1 for row in (project.ncrs or []) if row.status in ("Open", "Correction Pending")),
    }
