#!/usr/bin/env python3
"""Seed one demo road project with BOQ, vendors, quality records and an IPC.

Run from the repository root:
  python3 scripts/seed_demo_project.py --code DEMO-N8
"""

from __future__ import annotations

import argparse
import sys
from datetime import date, timedelta
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from roadmaster.core.agency_logic import add_agency, add_agency_rate, record_agency_payment
from roadmaster.core.auth_utils import utcnow
from roadmaster.core.boq_logic import add_boq_item
from roadmaster.core.finance import build_bill_items, compute_contract_bill, next_bill_number, next_bill_order
from roadmaster.core.quality import create_rfi, raise_ncr_for_failed_test, record_lab_test
from roadmaster.database import engine, ensure_runtime_schema
from roadmaster.schemas import ContractBill, Project
from roadmaster.services.projects import create_project, save_project

BOQ_ROWS = [
    {"description": "Earthwork in embankment", "unit": "m3", "quantity": 12500, "rate": 420, "category": "Earthwork"},
    {"description": "Sub-base course (type II)", "unit": "m3", "quantity": 4800, "rate": 2150, "category": "Pavement"},
    {"description": "Bituminous carpeting 40mm", "unit": "m2", "quantity": 32000, "rate": 610, "category": "Pavement"},
    {"description": "RCC box culvert 2x2m", "unit": "nos", "quantity": 6, "rate": 1850000, "category": "Structures"},
]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed a demo road project.")
    parser.add_argument("--code", default="DEMO-N8", help="Project code (must be unique).")
    parser.add_argument("--name", default="N8 Dhaka-Mawa Link Road Rehabilitation")
    return parser.parse_args()


def build_demo_project(code: str, name: str) -> Project:
    now = utcnow()
    start = date.today() - timedelta(days=120)
    project = Project(
        id=f"proj-seed-{code.lower()}",
        name=name,
        code=code,
        location="Munshiganj",
        contractor="Delta Road Builders Ltd.",
        client="Roads and Highways Department",
        start_date=start.isoformat(),
        end_date=(start + timedelta(days=540)).isoformat(),
    )

    for offset, row in enumerate(BOQ_ROWS):
        project = add_boq_item(project, row, now + timedelta(milliseconds=offset))

    project = add_agency(
        project,
        {"name": "Padma Aggregates", "trade": "Stone chips", "type": "agency", "contractValue": 6_500_000},
        now,
    )
    agency_id = project.agencies[-1].id
    project = add_agency_rate(
        project,
        agency_id,
        {"materialId": project.boq[1].id, "rate": 1900, "effectiveDate": start.isoformat()},
        now,
    )
    project = record_agency_payment(project, agency_id, {"amount": 750_000, "reference": "CHQ-1021"}, now)

    project = create_rfi(
        project,
        {"description": "Inspection of sub-base compaction", "location": "12+500 LHS"},
        "Field Engineer",
        now,
    )
    project = record_lab_test(
        project,
        {"testName": "Field density test", "sampleId": "FDT-07", "location": "12+500 LHS", "result": "Fail"},
        now,
    )
    project = raise_ncr_for_failed_test(project, project.lab_tests[-1].id, now)

    bill = ContractBill(
        id=f"bill-seed-{code.lower()}",
        bill_number=next_bill_number(project.contract_bills),
        order_of_bill=next_bill_order(project),
        date=date.today().isoformat(),
        retention_percent=5,
        items=build_bill_items(project, {project.boq[0].id: 6200, project.boq[1].id: 1500}),
    )
    bill = compute_contract_bill(bill, project.settings)
    return project.model_copy(update={"contract_bills": [bill]})


def main() -> None:
    args = parse_args()
    ensure_runtime_schema()
    project = build_demo_project(args.code, args.name)
    with engine.begin() as connection:
        created = create_project(connection, {"id": project.id, "name": project.name, "code": project.code})
        saved = save_project(connection, project.model_copy(update={"code": created.code}), notes="demo seed")

    print(f"[seed] project={saved.id} code={saved.code}")
    print(f"[seed] boq={len(saved.boq)} agencies={len(saved.agencies)} rfis={len(saved.rfis)}")
    print(f"[seed] lab_tests={len(saved.lab_tests)} ncrs={len(saved.ncrs)} bills={len(saved.contract_bills)}")


if __name__ == "__main__":
    main()
