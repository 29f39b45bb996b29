from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, insert, select, update

from .. import models
from ..core.auth_utils import epoch_millis, make_id, to_iso, utcnow
from ..core.migration import load_project, normalize_project_payload, parse_project_payload, project_to_json
from ..errors import ConflictError, NotFoundError
from ..schemas import AuditLogEntry, Project


def _actor(user) -> tuple[Optional[str], str]:
    if user is None:
        return None, "System"
    return getattr(user, "id", None), str(getattr(user, "name", "") or "System")


def _write_audit(connection, project_id: str, action: str, user, entity_name: str, now: datetime, notes=None) -> None:
    user_id, user_name = _actor(user)
    connection.execute(
        insert(models.audit_logs).values(
            project_id=project_id,
            action=action,
            user_id=user_id,
            user_name=user_name,
            entity_name=entity_name,
            notes=notes,
            timestamp=to_iso(now),
        )
    )


def _row_to_project(row) -> Project:
    payload = parse_project_payload(row.payload_json)
    if payload is None:
        print(f"[projects] unreadable payload for {row.id}; returning an empty document")
        payload = {}
    payload.update({"id": row.id, "name": payload.get("name") or row.name, "code": row.code})
    payload.setdefault("lastSynced", row.updated_at)
    return load_project(payload)


def _ensure_unique_code(connection, code: str, project_id: str) -> None:
    clash = connection.execute(
        select(models.projects.c.id)
        .where(models.projects.c.code == code)
        .where(models.projects.c.id != project_id)
    ).first()
    if clash is not None:
        raise ConflictError(f"Project code already exists: {code}")


def _row_values(project: Project, now_iso: str) -> dict:
    return {
        "name": project.name,
        "code": project.code,
        "client": project.client or None,
        "location": project.location or None,
        "start_date": project.start_date or None,
        "end_date": project.end_date or None,
        "payload_json": project_to_json(project),
        "updated_at": now_iso,
    }


def list_projects(connection) -> list[Project]:
    rows = connection.execute(
        select(models.projects).order_by(models.projects.c.updated_at.desc(), models.projects.c.id.asc())
    ).all()
    return [_row_to_project(row) for row in rows]


def get_project(connection, project_id: str) -> Project:
    row = connection.execute(select(models.projects).where(models.projects.c.id == project_id)).first()
    if row is None:
        raise NotFoundError(f"Project not found: {project_id}")
    return _row_to_project(row)


def create_project(connection, payload: dict, user=None, now: Optional[datetime] = None) -> Project:
    now = now or utcnow()
    data = normalize_project_payload(payload)
    name = str(data.get("name") or "").strip()
    if not name:
        raise ValueError("Project name is required.")

    project_id = str(data.get("id") or "").strip() or make_id("proj", now)
    existing = connection.execute(select(models.projects.c.id).where(models.projects.c.id == project_id)).first()
    if existing is not None:
        raise ConflictError(f"Project already exists: {project_id}")

    code = str(data.get("code") or "").strip() or f"PRJ-{epoch_millis(now)}"
    _ensure_unique_code(connection, code, project_id)

    now_iso = to_iso(now)
    data.update({"id": project_id, "name": name, "code": code, "lastSynced": now_iso})
    project = Project.model_validate(data)

    connection.execute(
        insert(models.projects).values(id=project_id, created_at=now_iso, **_row_values(project, now_iso))
    )
    _write_audit(connection, project_id, "CREATE", user, project.name, now)
    return project


def save_project(connection, project: Project, user=None, now: Optional[datetime] = None, notes=None) -> Project:
    """Replace the stored document with ``project`` as a whole."""
    now = now or utcnow()
    if not (project.name or "").strip():
        raise ValueError("Project name is required.")
    existing = connection.execute(
        select(models.projects.c.code).where(models.projects.c.id == project.id)
    ).first()
    if existing is None:
        raise NotFoundError(f"Project not found: {project.id}")

    code = (project.code or "").strip() or existing.code
    _ensure_unique_code(connection, code, project.id)

    now_iso = to_iso(now)
    saved = project.model_copy(update={"code": code, "last_synced": now_iso})
    connection.execute(
        update(models.projects).where(models.projects.c.id == project.id).values(**_row_values(saved, now_iso))
    )
    _write_audit(connection, project.id, "UPDATE", user, saved.name, now, notes)
    return saved


def delete_project(connection, project_id: str, user=None, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    row = connection.execute(select(models.projects.c.name).where(models.projects.c.id == project_id)).first()
    if row is None:
        raise NotFoundError(f"Project not found: {project_id}")
    connection.execute(delete(models.projects).where(models.projects.c.id == project_id))
    _write_audit(connection, project_id, "DELETE", user, row.name, now)
    print(f"[projects] deleted {project_id} ({row.name})")


def list_audit_logs(connection, project_id: Optional[str] = None, limit: int = 100) -> list[AuditLogEntry]:
    query = select(models.audit_logs).order_by(models.audit_logs.c.id.desc()).limit(max(1, int(limit)))
    if project_id:
        query = query.where(models.audit_logs.c.project_id == project_id)
    entries = []
    for row in connection.execute(query).all():
        entries.append(
            AuditLogEntry(
                id=str(row.id),
                timestamp=row.timestamp,
                user_id=row.user_id or "",
                user_name=row.user_name or "",
                action=row.action,
                entity_type="project",
                entity_id=row.project_id,
                entity_name=row.entity_name,
                severity="WARNING" if row.action == "DELETE" else "INFO",
                notes=row.notes,
            )
        )
    return entries


def export_project_json(connection, project_id: str) -> str:
    return json.dumps(get_project(connection, project_id).to_payload(), ensure_ascii=False, indent=2)
