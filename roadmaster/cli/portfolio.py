from __future__ import annotations

import argparse
import getpass
import json
from datetime import date
from pathlib import Path

from ..core.auth_utils import utcnow
from ..core.boq_excel import BoqExcelValidationError, apply_boq_import, export_boq_workbook, parse_boq_workbook
from ..core.finance import financial_stats
from ..core.migration import parse_project_payload
from ..core.portfolio import portfolio_metrics, project_card, search_projects, sort_projects
from ..core.quality import quality_stats
from ..core.reports import CSV_EXPORTS


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="RoadMaster project portfolio tools.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("health", help="Check the database connection.")

    summary = subparsers.add_parser("summary", help="Print portfolio metrics and one line per project.")
    summary.add_argument("--search", default="", help="Filter by name, client or code.")
    summary.add_argument("--sort", default="updated_desc", help="updated_desc|updated_asc|name_asc|name_desc|progress_desc|progress_asc")

    show = subparsers.add_parser("show", help="Print a project's dashboard figures as JSON.")
    show.add_argument("project_id")

    import_cmd = subparsers.add_parser("import", help="Create a project from a JSON document.")
    import_cmd.add_argument("path", type=Path)

    export_boq = subparsers.add_parser("export-boq", help="Write the BOQ workbook (.xlsx).")
    export_boq.add_argument("project_id")
    export_boq.add_argument("path", type=Path)

    import_boq = subparsers.add_parser("import-boq", help="Read BOQ quantities back from a workbook.")
    import_boq.add_argument("project_id")
    import_boq.add_argument("path", type=Path)
    import_boq.add_argument("--dry-run", action="store_true", help="Validate only; do not save.")

    export_csv = subparsers.add_parser("export-csv", help="Write one CSV report.")
    export_csv.add_argument("project_id")
    export_csv.add_argument("report", choices=sorted(CSV_EXPORTS))
    export_csv.add_argument("path", type=Path)

    create_user = subparsers.add_parser("create-user", help="Create a login account.")
    create_user.add_argument("--name", required=True)
    create_user.add_argument("--email", required=True)
    create_user.add_argument("--role", default="Site Engineer")
    create_user.add_argument("--password", default="", help="Prompted when omitted.")
    return parser


def _print_summary(connection, args) -> None:
    from ..services.projects import list_projects

    today = date.today()
    projects = sort_projects(search_projects(list_projects(connection), args.search), args.sort)
    metrics = portfolio_metrics(projects, today)
    print(
        "[summary]"
        f" projects={metrics['total_projects']}"
        f" active={metrics['active_projects']}"
        f" upcoming={metrics['upcoming_projects']}"
        f" completed={metrics['completed_projects']}"
        f" value={metrics['total_portfolio_value']:,.2f}"
        f" avg_progress={metrics['average_physical_progress']}%"
    )
    for project in projects:
        card = project_card(project, today)
        print(
            f"  {card['id']} {card['code']} {card['name']}"
            f" status={card['status']}"
            f" physical={card['physical_progress']}%"
            f" time={card['time_progress']}%"
        )


def main() -> int:
    args = _build_parser().parse_args()

    from ..database import db_health, engine, ensure_runtime_schema

    if args.command == "health":
        result = db_health()
        print(json.dumps(result, ensure_ascii=False))
        return 0 if result["status"] == "ok" else 1

    ensure_runtime_schema()

    from ..services import accounts, projects

    try:
        with engine.begin() as connection:
            if args.command == "summary":
                _print_summary(connection, args)
            elif args.command == "show":
                project = projects.get_project(connection, args.project_id)
                payload = {
                    "card": project_card(project),
                    "finance": financial_stats(project),
                    "quality": quality_stats(project),
                }
                print(json.dumps(payload, ensure_ascii=False, indent=2))
            elif args.command == "import":
                raw = parse_project_payload(args.path.read_text(encoding="utf-8"))
                if raw is None:
                    print(f"[roadmaster] {args.path} is not a JSON object.")
                    return 1
                project = projects.create_project(connection, raw)
                print(f"[import] created {project.id} ({project.code}) {project.name}")
            elif args.command == "export-boq":
                project = projects.get_project(connection, args.project_id)
                args.path.write_bytes(export_boq_workbook(project))
                print(f"[export-boq] {len(project.boq)} items -> {args.path}")
            elif args.command == "import-boq":
                project = projects.get_project(connection, args.project_id)
                parsed = parse_boq_workbook(args.path.read_bytes())
                if parsed["project_id"] and parsed["project_id"] != project.id:
                    print(f"[import-boq] workbook belongs to {parsed['project_id']}, not {project.id}")
                    return 1
                updated = apply_boq_import(project, parsed["items"], utcnow())
                counts = parsed["updated_counts"]
                print(f"[import-boq] existing={counts['existing']} new={counts['new']} dry_run={args.dry_run}")
                if not args.dry_run:
                    projects.save_project(connection, updated, notes="BOQ workbook import")
            elif args.command == "export-csv":
                project = projects.get_project(connection, args.project_id)
                args.path.write_text(CSV_EXPORTS[args.report](project), encoding="utf-8")
                print(f"[export-csv] {args.report} -> {args.path}")
            elif args.command == "create-user":
                password = args.password or getpass.getpass("Password: ")
                user = accounts.create_user(connection, args.name, args.email, password, role=args.role)
                print(f"[create-user] {user.id} {user.email} role={user.role}")
        return 0
    except BoqExcelValidationError as exc:
        print("[roadmaster] workbook rejected:")
        for error in exc.errors:
            print(f"  - {error}")
        return 1
    except Exception as exc:  # noqa: BLE001
        print(f"[roadmaster] failed: {type(exc).__name__}: {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
