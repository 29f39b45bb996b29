import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import create_engine

from roadmaster.core.boq_logic import add_boq_item
from roadmaster.core.permissions import has_permission
from roadmaster.database import db_health, ensure_runtime_schema
from roadmaster.errors import AuthenticationError, ConflictError, NotFoundError
from roadmaster.services import accounts, projects

NOW = datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc)


class StoreTestCase(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tmpdir.name) / "roadmaster-test.db"
        self.engine = create_engine(f"sqlite:///{db_path}")
        ensure_runtime_schema(bind=self.engine)

    def tearDown(self):
        self.engine.dispose()
        self._tmpdir.cleanup()


class ProjectStoreTests(StoreTestCase):
    def test_schema_and_health(self):
        health = db_health(bind=self.engine)
        self.assertEqual(health["status"], "ok")
        for table in ("projects", "users", "auth_sessions", "pending_registrations", "audit_logs"):
            self.assertIn(table, health["tables"])
        ensure_runtime_schema(bind=self.engine)

    def test_create_and_load_project(self):
        with self.engine.begin() as connection:
            created = projects.create_project(
                connection,
                {"name": "Mawa Link Road", "client": "RHD", "preConstructionTasks": [{"id": "pc1"}]},
                now=NOW,
            )
        self.assertTrue(created.id.startswith("proj-"))
        self.assertTrue(created.code.startswith("PRJ-"))

        with self.engine.connect() as connection:
            loaded = projects.get_project(connection, created.id)
            listed = projects.list_projects(connection)
        self.assertEqual(loaded.client, "RHD")
        self.assertEqual(loaded.model_extra.get("preConstruction"), [{"id": "pc1"}])
        self.assertEqual([row.id for row in listed], [created.id])

    def test_create_validation_and_conflicts(self):
        with self.engine.begin() as connection:
            projects.create_project(connection, {"id": "p1", "name": "One", "code": "ML-1"}, now=NOW)
            with self.assertRaises(ValueError):
                projects.create_project(connection, {"name": "  "}, now=NOW)
            with self.assertRaises(ConflictError):
                projects.create_project(connection, {"id": "p1", "name": "Again"}, now=NOW)
            with self.assertRaises(ConflictError):
                projects.create_project(connection, {"id": "p2", "name": "Two", "code": "ML-1"}, now=NOW)

    def test_save_replaces_document_and_audits(self):
        with self.engine.begin() as connection:
            project = projects.create_project(connection, {"id": "p1", "name": "One", "code": "ML-1"}, now=NOW)
            project = add_boq_item(project, {"description": "Embankment", "quantity": 10, "rate": 5}, NOW)
            later = NOW + timedelta(hours=1)
            saved = projects.save_project(connection, project, notes="BOQ added", now=later)
            self.assertEqual(saved.last_synced, later.isoformat())

            loaded = projects.get_project(connection, "p1")
            self.assertEqual(len(loaded.boq), 1)
            self.assertEqual(loaded.boq[0].amount, 50.0)

            logs = projects.list_audit_logs(connection, "p1")
            self.assertEqual([row.action for row in logs], ["UPDATE", "CREATE"])
            self.assertEqual(logs[0].notes, "BOQ added")
            self.assertEqual(logs[0].user_name, "System")

            payload = json.loads(projects.export_project_json(connection, "p1"))
            self.assertEqual(payload["boq"][0]["description"], "Embankment")

    def test_save_unknown_project(self):
        with self.engine.begin() as connection:
            project = projects.create_project(connection, {"id": "p1", "name": "One"}, now=NOW)
            with self.assertRaises(NotFoundError):
                projects.save_project(connection, project.model_copy(update={"id": "ghost"}), now=NOW)

    def test_delete_project(self):
        with self.engine.begin() as connection:
            projects.create_project(connection, {"id": "p1", "name": "One"}, now=NOW)
            projects.delete_project(connection, "p1", now=NOW)
            with self.assertRaises(NotFoundError):
                projects.get_project(connection, "p1")
            with self.assertRaises(NotFoundError):
                projects.delete_project(connection, "p1", now=NOW)
            logs = projects.list_audit_logs(connection, "p1")
            self.assertEqual(logs[0].action, "DELETE")
            self.assertEqual(logs[0].severity, "WARNING")


class AccountStoreTests(StoreTestCase):
    def _create_user(self, connection, email="rahim@roads.example", role="Site Engineer", now=NOW):
        return accounts.create_user(connection, "Rahim Uddin", email, "StrongPass123!", role=role, now=now)

    def test_create_user(self):
        with self.engine.begin() as connection:
            user = self._create_user(connection, email=" Rahim@Roads.Example ", role="pm")
            self.assertEqual(user.email, "rahim@roads.example")
            self.assertEqual(user.role, "Project Manager")
            self.assertIn("Rahim+Uddin", user.avatar)
            self.assertIsNone(user.permissions)
            with self.assertRaises(ConflictError):
                self._create_user(connection, now=NOW + timedelta(seconds=1))
            with self.assertRaises(ValueError):
                accounts.create_user(connection, "X", "bad-email", "pw", now=NOW)

    def test_login_session_and_logout(self):
        with self.engine.begin() as connection:
            self._create_user(connection)
            with self.assertRaises(AuthenticationError):
                accounts.authenticate(connection, "rahim@roads.example", "wrong", now=NOW)

            result = accounts.authenticate(connection, "RAHIM@roads.example", "StrongPass123!", now=NOW)
            self.assertEqual(result["token_type"], "bearer")
            token = result["access_token"]

            user = accounts.resolve_session(connection, token, now=NOW + timedelta(hours=1))
            self.assertEqual(user.email, "rahim@roads.example")
            with self.assertRaises(AuthenticationError):
                accounts.resolve_session(connection, token, now=NOW + timedelta(hours=accounts.SESSION_TTL_HOURS + 1))

            accounts.logout(connection, token, now=NOW + timedelta(minutes=5))
            with self.assertRaises(AuthenticationError):
                accounts.resolve_session(connection, token, now=NOW + timedelta(minutes=6))
            with self.assertRaises(AuthenticationError):
                accounts.resolve_session(connection, "unknown-token", now=NOW)

    def test_permissions_persist(self):
        with self.engine.begin() as connection:
            user = self._create_user(connection)
            saved = accounts.save_user_permissions(
                connection, user.model_copy(update={"permissions": ["rfi:read", "boq:read"]}), now=NOW
            )
            self.assertEqual(saved.permissions, ["boq:read", "rfi:read"])
            self.assertEqual([row.id for row in accounts.list_users(connection)], [user.id])

    def test_registration_approval(self):
        with self.engine.begin() as connection:
            registration = accounts.submit_registration(
                connection, "Karim", "karim@roads.example", "Lab Technician", now=NOW
            )
            self.assertEqual(registration["status"], "pending")
            with self.assertRaises(ConflictError):
                accounts.submit_registration(connection, "Karim", "karim@roads.example", "Supervisor", now=NOW)

            pending = accounts.list_registrations(connection)
            self.assertEqual([row["id"] for row in pending], [registration["id"]])

            user = accounts.approve_registration(
                connection, registration["id"], "StrongPass123!", now=NOW + timedelta(seconds=1)
            )
            self.assertEqual(user.role, "Lab Technician")
            self.assertEqual(accounts.list_registrations(connection), [])
            with self.assertRaises(ConflictError):
                accounts.approve_registration(connection, registration["id"], "StrongPass123!", now=NOW)
            with self.assertRaises(ConflictError):
                accounts.submit_registration(connection, "Karim", "karim@roads.example", "Supervisor", now=NOW)

    def test_registration_outside_allowed_domains(self):
        with self.engine.begin() as connection:
            with self.assertRaises(ValueError):
                accounts.submit_registration(connection, "Mallory", "admin@evil.test", "Subcontractor", now=NOW)
            self.assertEqual(accounts.list_registrations(connection), [])

    def test_registered_admin_lookalike_keeps_requested_role(self):
        with self.engine.begin() as connection:
            registration = accounts.submit_registration(
                connection, "Mallory", "admin@roads.example", "Subcontractor", now=NOW
            )
            user = accounts.approve_registration(
                connection, registration["id"], "StrongPass123!", now=NOW + timedelta(seconds=1)
            )
        self.assertEqual(user.role, "Subcontractor")
        self.assertTrue(has_permission(user, "project:read"))
        self.assertFalse(has_permission(user, "user:delete"))

    def test_registration_rejection(self):
        with self.engine.begin() as connection:
            registration = accounts.submit_registration(connection, "Selim", "selim@roads.example", "Contractor", now=NOW)
            accounts.reject_registration(connection, registration["id"], now=NOW)
            rejected = accounts.list_registrations(connection, status="rejected")
            self.assertEqual(len(rejected), 1)
            with self.assertRaises(NotFoundError):
                accounts.reject_registration(connection, "reg-missing", now=NOW)


if __name__ == "__main__":
    unittest.main()
