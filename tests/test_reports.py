import csv
import unittest
from io import StringIO

from roadmaster.core.reports import CSV_EXPORTS, export_boq_csv, export_rfis_csv, export_schedule_csv, export_structures_csv
from roadmaster.schemas import (
    RFI,
    BOQItem,
    Project,
    ScheduleTask,
    StructureAsset,
    StructureComponent,
    TaskDependency,
)


def _rows(text):
    return list(csv.reader(StringIO(text)))


class CsvExportTests(unittest.TestCase):
    def setUp(self):
        self.project = Project(
            id="proj-1",
            name="Mawa Link Road",
            boq=[
                BOQItem(
                    id="b1",
                    item_no="E-01",
                    description='Embankment, "select fill"',
                    unit="m3",
                    quantity=100,
                    rate=10,
                    variation_quantity=20,
                    completed_quantity=30,
                    status="Executing",
                )
            ],
            schedule=[
                ScheduleTask(
                    id="t2",
                    name="Sub-base",
                    start_date="2025-02-01",
                    end_date="2025-03-01",
                    dependencies=[TaskDependency(task_id="t1"), TaskDependency(task_id="t0")],
                    is_critical=True,
                )
            ],
            rfis=[RFI(id="r1", rfi_number="RFI-000001", location="1+000 RHS", description="Kerb")],
            structures=[
                StructureAsset(
                    id="s1",
                    name="Box culvert",
                    components=[StructureComponent(id="c1", total_quantity=4, completed_quantity=1)],
                )
            ],
        )

    def test_boq_csv(self):
        rows = _rows(export_boq_csv(self.project))
        self.assertEqual(rows[0][0], "Item No")
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[1][1], 'Embankment, "select fill"')
        self.assertEqual(rows[1][7], "1000.0")
        self.assertEqual(rows[1][9], "120.0")

    def test_schedule_csv(self):
        rows = _rows(export_schedule_csv(self.project))
        self.assertEqual(rows[1][5], "t1;t0")
        self.assertEqual(rows[1][6], "Yes")

    def test_rfis_csv_blanks_missing_values(self):
        rows = _rows(export_rfis_csv(self.project))
        self.assertEqual(rows[1][0], "RFI-000001")
        self.assertEqual(rows[1][6], "")

    def test_structures_csv(self):
        rows = _rows(export_structures_csv(self.project))
        self.assertEqual(rows[1][5:], ["1", "25"])

    def test_every_report_has_header_for_empty_project(self):
        empty = Project(id="proj-2", name="Empty")
        for name, export in CSV_EXPORTS.items():
            text = export(empty)
            self.assertEqual(len(_rows(text)), 1, name)
            self.assertTrue(text.endswith("\n"), name)


if __name__ == "__main__":
    unittest.main()
