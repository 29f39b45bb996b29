import os

from dotenv import load_dotenv
from sqlalchemy import MetaData, create_engine, inspect, text

load_dotenv()

SQLALCHEMY_DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./roadmaster.db")

engine = create_engine(SQLALCHEMY_DATABASE_URL)

metadata = MetaData()

_PROJECT_COLUMN_SPECS = {
    "client": "VARCHAR(180)",
    "location": "VARCHAR(180)",
    "start_date": "VARCHAR(10)",
    "end_date": "VARCHAR(10)",
}

_USER_COLUMN_SPECS = {
    "phone": "VARCHAR(40)",
    "avatar": "VARCHAR(500)",
    "permissions_json": "TEXT",
}


def _run_schema_statement(connection, sql: str) -> None:
    try:
        connection.execute(text(sql))
    except Exception as exc:  # noqa: BLE001
        print(f"[database] schema statement skipped: {exc} | sql={sql}")


def _add_missing_columns(connection, inspector, table_name: str, column_specs: dict[str, str]) -> None:
    existing_columns = {column["name"] for column in inspector.get_columns(table_name)}
    for column_name, column_spec in column_specs.items():
        if column_name in existing_columns:
            continue
        _run_schema_statement(
            connection,
            f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_spec}",
        )


def ensure_runtime_schema(bind=None) -> None:
    """Keep table/column compatibility without Alembic migrations."""
    from . import models  # noqa: F401  registers tables on metadata

    target = bind or engine
    metadata.create_all(bind=target)

    with target.begin() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        if "projects" in table_names:
            _add_missing_columns(connection, inspector, "projects", _PROJECT_COLUMN_SPECS)
            _run_schema_statement(
                connection,
                "CREATE INDEX IF NOT EXISTS idx_projects_updated_at ON projects (updated_at)",
            )

        if "users" in table_names:
            _add_missing_columns(connection, inspector, "users", _USER_COLUMN_SPECS)
            # Roles written before labels were normalised.
            _run_schema_statement(
                connection,
                "UPDATE users SET role='Site Engineer' WHERE role IS NULL OR role=''",
            )

        if "audit_logs" in table_names:
            _run_schema_statement(
                connection,
                "CREATE INDEX IF NOT EXISTS idx_audit_logs_project_id ON audit_logs (project_id)",
            )


def db_health(bind=None) -> dict:
    target = bind or engine
    try:
        with target.connect() as connection:
            connection.execute(text("SELECT 1"))
            table_names = sorted(inspect(connection).get_table_names())
    except Exception as exc:  # noqa: BLE001
        return {"status": "error", "database": target.url.render_as_string(hide_password=True), "error": str(exc)}
    return {
        "status": "ok",
        "database": target.url.render_as_string(hide_password=True),
        "tables": table_names,
    }