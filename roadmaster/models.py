from sqlalchemy import Column, Index, Integer, String, Table, Text

from .database import metadata

projects = Table(
    "projects",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("code", String(64), nullable=False, unique=True),
    Column("client", String(180), nullable=True),
    Column("location", String(180), nullable=True),
    Column("start_date", String(10), nullable=True),
    Column("end_date", String(10), nullable=True),
    Column("payload_json", Text, nullable=False),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
)

users = Table(
    "users",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(180), nullable=False),
    Column("email", String(255), nullable=False, unique=True, index=True),
    Column("phone", String(40), nullable=True),
    Column("role", String(40), nullable=False, default="Site Engineer"),
    Column("avatar", String(500), nullable=True),
    Column("password_hash", String(255), nullable=False),
    Column("permissions_json", Text, nullable=True),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
)

auth_sessions = Table(
    "auth_sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True, index=True),
    Column("created_at", String, nullable=False),
    Column("expires_at", String, nullable=False),
    Column("revoked_at", String, nullable=True),
)

pending_registrations = Table(
    "pending_registrations",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(180), nullable=False),
    Column("email", String(255), nullable=False, index=True),
    Column("phone", String(40), nullable=True),
    Column("requested_role", String(40), nullable=False),
    Column("status", String(16), nullable=False, default="pending"),  # pending|approved|rejected
    Column("created_at", String, nullable=False),
    Column("reviewed_at", String, nullable=True),
    Column("reviewed_by", String(64), nullable=True),
)

audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("project_id", String(64), nullable=False),
    Column("action", String(16), nullable=False),  # CREATE|UPDATE|DELETE
    Column("user_id", String(64), nullable=True),
    Column("user_name", String(180), nullable=True),
    Column("entity_name", String(255), nullable=True),
    Column("notes", Text, nullable=True),
    Column("timestamp", String, nullable=False),
)

Index("idx_pending_registrations_status", pending_registrations.c.status)
