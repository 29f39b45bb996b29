from __future__ import annotations

import json
import os
from datetime import datetime
from typing import Optional
from urllib.parse import quote_plus

from sqlalchemy import insert, select, update

from .. import models
from ..core.auth_utils import (
    generate_token,
    hash_password,
    hash_token,
    is_email_domain_allowed,
    is_valid_email,
    make_id,
    normalize_email,
    parse_iso,
    registration_allowed_domains,
    session_expiry,
    to_iso,
    utcnow,
    verify_password,
)
from ..core.permissions import normalize_role
from ..errors import AuthenticationError, ConflictError, NotFoundError
from ..schemas import User

SESSION_TTL_HOURS = max(1, int(os.getenv("AUTH_SESSION_TTL_HOURS", "24")))
REGISTRATION_PENDING = "pending"
REGISTRATION_APPROVED = "approved"
REGISTRATION_REJECTED = "rejected"


def avatar_url(name: str) -> str:
    return f"https://ui-avatars.com/api/?name={quote_plus(name or '')}&background=random"


def _serialize_user(row) -> User:
    permissions = None
    if row.permissions_json:
        try:
            permissions = list(json.loads(row.permissions_json))
        except Exception:  # noqa: BLE001
            permissions = None
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        phone=row.phone or "",
        role=row.role,
        avatar=row.avatar,
        permissions=permissions,
    )


def _find_user_row(connection, email: str):
    return connection.execute(select(models.users).where(models.users.c.email == email)).first()


def create_user(
    connection,
    name: str,
    email: str,
    password: str,
    role: Optional[str] = None,
    phone: str = "",
    now: Optional[datetime] = None,
) -> User:
    now = now or utcnow()
    name = (name or "").strip()
    email = normalize_email(email)
    if not name or not email or not password:
        raise ValueError("Name, email and password are required.")
    if not is_valid_email(email):
        raise ValueError("Please enter a valid email address.")
    if _find_user_row(connection, email) is not None:
        raise ConflictError(f"A user with this email already exists: {email}")

    user_id = make_id("user", now)
    now_iso = to_iso(now)
    connection.execute(
        insert(models.users).values(
            id=user_id,
            name=name,
            email=email,
            phone=(phone or "").strip() or None,
            role=normalize_role(role),
            avatar=avatar_url(name),
            password_hash=hash_password(password),
            permissions_json=None,
            created_at=now_iso,
            updated_at=now_iso,
        )
    )
    return get_user(connection, user_id)


def get_user(connection, user_id: str) -> User:
    row = connection.execute(select(models.users).where(models.users.c.id == user_id)).first()
    if row is None:
        raise NotFoundError(f"User not found: {user_id}")
    return _serialize_user(row)


def list_users(connection) -> list[User]:
    rows = connection.execute(
        select(models.users).order_by(models.users.c.name.asc(), models.users.c.email.asc())
    ).all()
    return [_serialize_user(row) for row in rows]


def save_user_permissions(connection, user: User, now: Optional[datetime] = None) -> User:
    now = now or utcnow()
    permissions_json = json.dumps(sorted(user.permissions)) if user.permissions is not None else None
    result = connection.execute(
        update(models.users)
        .where(models.users.c.id == user.id)
        .values(permissions_json=permissions_json, updated_at=to_iso(now))
    )
    if result.rowcount == 0:
        raise NotFoundError(f"User not found: {user.id}")
    return get_user(connection, user.id)


def authenticate(connection, email: str, password: str, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    if not email or not password:
        raise AuthenticationError("Email and password are required.")
    row = _find_user_row(connection, normalize_email(email))
    if row is None or not verify_password(password, row.password_hash):
        raise AuthenticationError("Invalid email or password.")

    raw_token = generate_token()
    expires_at = to_iso(session_expiry(SESSION_TTL_HOURS, now))
    connection.execute(
        insert(models.auth_sessions).values(
            user_id=row.id,
            token_hash=hash_token(raw_token),
            created_at=to_iso(now),
            expires_at=expires_at,
            revoked_at=None,
        )
    )
    return {
        "access_token": raw_token,
        "token_type": "bearer",
        "expires_at": expires_at,
        "user": _serialize_user(row),
    }


def _session_row(connection, token: str, now: datetime):
    session = connection.execute(
        select(models.auth_sessions).where(models.auth_sessions.c.token_hash == hash_token(token))
    ).first()
    if session is None:
        raise AuthenticationError("Session not found.")
    if session.revoked_at:
        raise AuthenticationError("Session is revoked.")
    if parse_iso(session.expires_at) <= now:
        raise AuthenticationError("Session expired.")
    return session


def resolve_session(connection, token: str, now: Optional[datetime] = None) -> User:
    session = _session_row(connection, token, now or utcnow())
    try:
        return get_user(connection, session.user_id)
    except NotFoundError as exc:
        raise AuthenticationError("User not found.") from exc


def logout(connection, token: str, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    session = _session_row(connection, token, now)
    connection.execute(
        update(models.auth_sessions)
        .where(models.auth_sessions.c.id == session.id)
        .values(revoked_at=to_iso(now))
    )


def submit_registration(
    connection,
    name: str,
    email: str,
    requested_role: str,
    phone: str = "",
    now: Optional[datetime] = None,
) -> dict:
    now = now or utcnow()
    name = (name or "").strip()
    email = normalize_email(email)
    if not name or not email or not (requested_role or "").strip():
        raise ValueError("Name, email, and requested role are required.")
    if not is_valid_email(email):
        raise ValueError("Please enter a valid email address.")
    allowed_domains = registration_allowed_domains()
    if not is_email_domain_allowed(email, allowed_domains):
        raise ValueError(f"Only allowed email domains can register: {', '.join(allowed_domains)}")
    role = normalize_role(requested_role)

    pending = connection.execute(
        select(models.pending_registrations.c.id)
        .where(models.pending_registrations.c.email == email)
        .where(models.pending_registrations.c.status == REGISTRATION_PENDING)
    ).first()
    if pending is not None:
        raise ConflictError("A pending registration with this email already exists.")
    if _find_user_row(connection, email) is not None:
        raise ConflictError("A user with this email already exists.")

    registration = {
        "id": make_id("reg", now),
        "name": name,
        "email": email,
        "phone": (phone or "").strip(),
        "requested_role": role,
        "status": REGISTRATION_PENDING,
        "created_at": to_iso(now),
    }
    connection.execute(insert(models.pending_registrations).values(**registration))
    return registration


def list_registrations(connection, status: Optional[str] = REGISTRATION_PENDING) -> list[dict]:
    query = select(models.pending_registrations).order_by(models.pending_registrations.c.created_at.asc())
    if status:
        query = query.where(models.pending_registrations.c.status == status)
    return [dict(row._mapping) for row in connection.execute(query).all()]


def _pending_registration(connection, registration_id: str):
    row = connection.execute(
        select(models.pending_registrations).where(models.pending_registrations.c.id == registration_id)
    ).first()
    if row is None:
        raise NotFoundError(f"Registration not found: {registration_id}")
    if row.status != REGISTRATION_PENDING:
        raise ConflictError(f"Registration already {row.status}.")
    return row


def _mark_registration(connection, registration_id: str, status: str, reviewer, now: datetime) -> None:
    connection.execute(
        update(models.pending_registrations)
        .where(models.pending_registrations.c.id == registration_id)
        .values(status=status, reviewed_at=to_iso(now), reviewed_by=getattr(reviewer, "id", None))
    )


def approve_registration(
    connection,
    registration_id: str,
    password: str,
    reviewer=None,
    now: Optional[datetime] = None,
) -> User:
    now = now or utcnow()
    row = _pending_registration(connection, registration_id)
    user = create_user(
        connection,
        name=row.name,
        email=row.email,
        password=password,
        role=row.requested_role,
        phone=row.phone or "",
        now=now,
    )
    _mark_registration(connection, registration_id, REGISTRATION_APPROVED, reviewer, now)
    print(f"[accounts] approved registration {registration_id} as {user.email}")
    return user


def reject_registration(connection, registration_id: str, reviewer=None, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    _pending_registration(connection, registration_id)
    _mark_registration(connection, registration_id, REGISTRATION_REJECTED, reviewer, now)
