from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Optional

from ..schemas import (
    LAB_RESULTS,
    NCR,
    NCR_SEVERITIES,
    NCR_STATUS_FLOW,
    RFI,
    RFI_STATUSES,
    LabTest,
    Project,
    WorkflowLogEntry,
    snake_keys,
)
from .auth_utils import epoch_millis, make_id, to_day, to_iso

_CHAINAGE_RE = re.compile(r"^\d+\+\d{3}\s+(LHS|RHS|Both|Both Sides|L|R)$", re.IGNORECASE)
_LEGACY_RFI_STATUSES = {"Pending": "Pending Inspection"}
DEFAULT_QUALITY_SEARCH_FIELDS = ("id", "description", "location", "status")


def _user_name(user) -> str:
    if user is None:
        return "System"
    if isinstance(user, str):
        return user.strip() or "System"
    return str(getattr(user, "name", "") or "").strip() or "System"


def quality_stats(project) -> dict:
    tests = list(getattr(project, "lab_tests", None) or [])
    ncrs = list(getattr(project, "ncrs", None) or [])
    rfis = list(getattr(project, "rfis", None) or [])

    passed = sum(1 for row in tests if row.result == "Pass")
    failed = sum(1 for row in tests if row.result == "Fail")
    open_ncrs = sum(1 for row in ncrs if row.status in ("Open", "Correction Pending"))
    closed_ncrs = sum(1 for row in ncrs if row.status == "Closed")

    return {
        "total_tests": len(tests),
        "passed_tests": passed,
        "failed_tests": failed,
        "pass_rate": round(passed / len(tests) * 100) if tests else 100,
        "total_ncrs": len(ncrs),
        "open_ncrs": open_ncrs,
        "closed_ncrs": closed_ncrs,
        "total_rfis": len(rfis),
        "open_rfis": sum(1 for row in rfis if row.status == "Open"),
        "answered_rfis": sum(1 for row in rfis if row.status in ("Approved", "Closed")),
    }


def rfi_status_counts(rfis: Optional[Iterable[object]]) -> dict[str, int]:
    counts = {status: 0 for status in RFI_STATUSES}
    for row in rfis or []:
        status = str(getattr(row, "status", "") or "")
        status = _LEGACY_RFI_STATUSES.get(status, status)
        counts[status] = counts.get(status, 0) + 1
    return counts


def validate_chainage_location(text: str) -> bool:
    return bool(_CHAINAGE_RE.match((text or "").strip()))


def new_rfi_number(now: datetime) -> str:
    return f"RFI-{str(epoch_millis(now))[-6:]}"


def _unique_rfi_number(project: Project, now: datetime) -> str:
    taken = {row.rfi_number for row in project.rfis or []}
    number = new_rfi_number(now)
    candidate = number
    suffix = 1
    while candidate in taken:
        suffix += 1
        candidate = f"{number}-{suffix}"
    return candidate


def _validate_rfi_fields(payload: dict) -> None:
    if not str(payload.get("description") or "").strip():
        raise ValueError("RFI description is required.")
    location = str(payload.get("location") or "").strip()
    if not location:
        raise ValueError("RFI location is required.")
    if not validate_chainage_location(location):
        raise ValueError("Location must be a chainage like '12+500 LHS' (side: LHS, RHS, Both, L or R).")
    status = payload.get("status") or "Open"
    if status not in RFI_STATUSES:
        raise ValueError(f"RFI status must be one of: {', '.join(RFI_STATUSES)}.")


def create_rfi(project: Project, payload: dict, user, now: datetime) -> Project:
    payload = snake_keys(payload)
    _validate_rfi_fields(payload)
    author = _user_name(user)

    fields = {key: value for key, value in payload.items() if key not in ("id", "rfi_number", "workflow_log")}
    fields.update(
        {
            "description": str(payload["description"]).strip(),
            "location": str(payload["location"]).strip(),
            "status": payload.get("status") or "Open",
            "date": payload.get("date") or to_day(now),
            "requested_by": payload.get("requested_by") or author,
        }
    )
    rfi = RFI(
        id=make_id("rfi", now),
        rfi_number=_unique_rfi_number(project, now),
        workflow_log=[
            WorkflowLogEntry(
                stage="Created",
                user=author,
                timestamp=to_iso(now),
                comments="Initial request generated by field team.",
            )
        ],
        **fields,
    )
    return project.model_copy(update={"rfis": [*(project.rfis or []), rfi]})


def save_rfi(project: Project, payload: dict, user, now: datetime) -> Project:
    """Insert or update an RFI; a status change is appended to the workflow log."""

    payload = snake_keys(payload)
    rfi_id = payload.get("id")
    existing = next((row for row in (project.rfis or []) if rfi_id and row.id == rfi_id), None)
    if existing is None:
        return create_rfi(project, payload, user, now)

    merged = existing.model_dump()
    merged.update(payload)
    _validate_rfi_fields(merged)
    merged["workflow_log"] = list(existing.workflow_log)
    if merged.get("status") != existing.status:
        merged["workflow_log"].append(
            WorkflowLogEntry(
                stage=merged["status"],
                user=_user_name(user),
                timestamp=to_iso(now),
                comments=f"Status transitioned from {existing.status} to {merged['status']}.",
            )
        )
    updated = RFI(**merged)
    rfis = [updated if row.id == updated.id else row for row in project.rfis]
    return project.model_copy(update={"rfis": rfis})


def delete_rfi(project: Project, rfi_id: str) -> Project:
    structures = []
    for structure in project.structures or []:
        components = []
        for component in structure.components:
            logs = [
                log.model_copy(update={"rfi_id": None}) if log.rfi_id == rfi_id else log
                for log in component.work_logs
            ]
            components.append(component.model_copy(update={"work_logs": logs}))
        structures.append(structure.model_copy(update={"components": components}))
    return project.model_copy(
        update={
            "rfis": [row for row in (project.rfis or []) if row.id != rfi_id],
            "structures": structures,
        }
    )


def record_lab_test(project: Project, payload: dict, now: datetime) -> Project:
    payload = snake_keys(payload)
    test_name = str(payload.get("test_name") or "").strip()
    if not test_name:
        raise ValueError("Test name is required.")
    result = payload.get("result") or "Pending"
    if result not in LAB_RESULTS:
        raise ValueError(f"Test result must be one of: {', '.join(LAB_RESULTS)}.")

    fields = {key: value for key, value in payload.items() if key not in ("id", "test_name", "result", "date")}
    test = LabTest(
        id=make_id("lt", now),
        test_name=test_name,
        result=result,
        date=payload.get("date") or to_day(now),
        **fields,
    )
    return project.model_copy(update={"lab_tests": [*(project.lab_tests or []), test]})


def create_ncr(project: Project, payload: dict, now: datetime) -> Project:
    payload = snake_keys(payload)
    description = str(payload.get("description") or "").strip()
    if not description:
        raise ValueError("NCR description is required.")
    severity = payload.get("severity") or "Medium"
    if severity not in NCR_SEVERITIES:
        raise ValueError(f"NCR severity must be one of: {', '.join(NCR_SEVERITIES)}.")

    today = to_day(now)
    ncr = NCR(
        id=make_id("ncr", now),
        ncr_number=f"NCR-{len(project.ncrs or []) + 1}",
        date=payload.get("date") or today,
        date_raised=payload.get("date_raised") or today,
        description=description,
        location=str(payload.get("location") or "").strip(),
        severity=severity,
        status="Open",
        linked_test_id=payload.get("linked_test_id"),
        raised_by=payload.get("raised_by"),
    )
    return project.model_copy(update={"ncrs": [*(project.ncrs or []), ncr]})


def advance_ncr_status(project: Project, ncr_id: str) -> Project:
    ncrs = []
    found = False
    for ncr in project.ncrs or []:
        if ncr.id == ncr_id:
            found = True
            if ncr.status not in NCR_STATUS_FLOW:
                raise ValueError(f"Unknown NCR status: {ncr.status}")
            position = NCR_STATUS_FLOW.index(ncr.status)
            if position == len(NCR_STATUS_FLOW) - 1:
                raise ValueError("NCR is already closed.")
            ncr = ncr.model_copy(update={"status": NCR_STATUS_FLOW[position + 1]})
        ncrs.append(ncr)
    if not found:
        raise ValueError(f"NCR not found: {ncr_id}")
    return project.model_copy(update={"ncrs": ncrs})


def raise_ncr_for_failed_test(project: Project, test_id: str, now: datetime) -> Project:
    test = next((row for row in (project.lab_tests or []) if row.id == test_id), None)
    if test is None:
        raise ValueError(f"Lab test not found: {test_id}")
    if test.result != "Fail":
        raise ValueError("Only failed tests raise an NCR.")
    if any(row.linked_test_id == test_id for row in (project.ncrs or [])):
        return project
    return create_ncr(
        project,
        {
            "description": f"Failed {test.test_name} (sample {test.sample_id or 'n/a'}).",
            "location": test.location,
            "severity": "High",
            "linked_test_id": test_id,
        },
        now,
    )


def search_quality_records(
    records: Optional[Iterable[object]],
    term: str,
    fields: Sequence[str] = DEFAULT_QUALITY_SEARCH_FIELDS,
    limit: Optional[int] = None,
) -> list:
    needle = (term or "").strip().lower()
    rows = list(records or [])
    if needle:
        rows = [
            row
            for row in rows
            if any(needle in str(getattr(row, field, "") or "").lower() for field in fields)
        ]
    if limit is not None:
        rows = rows[: max(0, int(limit))]
    return rows
