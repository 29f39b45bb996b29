import unittest
from datetime import datetime, timezone
from io import BytesIO

from openpyxl import load_workbook

from roadmaster.core.boq_excel import (
    BOQ_SHEET,
    META_SHEET,
    SUMMARY_SHEET,
    BoqExcelValidationError,
    apply_boq_import,
    export_boq_workbook,
    parse_boq_workbook,
)
from roadmaster.schemas import BOQItem, Project

NOW = datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc)


class BoqExcelTests(unittest.TestCase):
    def setUp(self):
        self.project = Project(
            id="proj-11",
            name="Mawa Link Road",
            code="ML-11",
            boq=[
                BOQItem(id="b1", item_no="E-01", description="Embankment", category="Earthwork", unit="m3", quantity=100, rate=10),
                BOQItem(id="b2", item_no="P-01", description="Sub-base", category="Pavement", unit="m3", quantity=50, rate=40),
            ],
        )

    def _workbook(self):
        return load_workbook(BytesIO(export_boq_workbook(self.project)), data_only=False)

    @staticmethod
    def _save_workbook(workbook):
        buf = BytesIO()
        workbook.save(buf)
        return buf.getvalue()

    def test_export_contains_required_sheets(self):
        workbook = self._workbook()
        self.assertEqual(workbook.sheetnames, [SUMMARY_SHEET, BOQ_SHEET, META_SHEET])
        self.assertEqual(workbook[META_SHEET].sheet_state, "hidden")
        self.assertEqual(workbook[META_SHEET]["B3"].value, "proj-11")
        self.assertEqual(workbook[BOQ_SHEET]["B5"].value, "b1")
        self.assertEqual(workbook[BOQ_SHEET]["J5"].value, "=IFERROR(H5*I5,0)")
        self.assertTrue(workbook[SUMMARY_SHEET].protection.sheet)

    def test_parse_untouched_export(self):
        parsed = parse_boq_workbook(export_boq_workbook(self.project))
        self.assertEqual(parsed["project_id"], "proj-11")
        self.assertEqual(parsed["updated_counts"], {"existing": 2, "new": 0})
        self.assertEqual(parsed["items"][1]["quantity"], 50.0)

    def test_import_updates_and_adds_items(self):
        workbook = self._workbook()
        ws = workbook[BOQ_SHEET]
        ws["K5"] = 60
        ws["H6"] = 55
        ws["D7"] = "Road marking"
        ws["G7"] = "m2"
        ws["H7"] = 200
        ws["I7"] = 5

        parsed = parse_boq_workbook(self._save_workbook(workbook))
        self.assertEqual(parsed["updated_counts"], {"existing": 2, "new": 1})

        updated = apply_boq_import(self.project, parsed["items"], NOW)
        self.assertEqual(updated.boq[0].completed_quantity, 60.0)
        self.assertEqual(updated.boq[0].status, "Executing")
        self.assertEqual(updated.boq[1].amount, 2200.0)

        new_item = updated.boq[2]
        self.assertEqual(new_item.description, "Road marking")
        self.assertEqual(new_item.item_no, "ITEM-3")
        self.assertEqual(new_item.amount, 1000.0)
        self.assertTrue(new_item.id.endswith("-0"))

    def test_parse_fails_when_header_changed(self):
        workbook = self._workbook()
        workbook[BOQ_SHEET]["H4"] = "Qty"

        with self.assertRaises(BoqExcelValidationError) as raised:
            parse_boq_workbook(self._save_workbook(workbook))

        self.assertIn("BOQ!H4", str(raised.exception))

    def test_parse_fails_when_meta_tampered(self):
        workbook = self._workbook()
        workbook[META_SHEET]["B2"] = "forged"

        with self.assertRaises(BoqExcelValidationError) as raised:
            parse_boq_workbook(self._save_workbook(workbook))

        self.assertIn("_meta!B2", str(raised.exception))

    def test_parse_collects_row_errors(self):
        workbook = self._workbook()
        ws = workbook[BOQ_SHEET]
        ws["H5"] = "lots"
        ws["B7"] = "b2"
        ws["D7"] = "Copy of sub-base"
        ws["B8"] = "b9"
        ws["I9"] = -1
        ws["D9"] = "Kerb"

        with self.assertRaises(BoqExcelValidationError) as raised:
            parse_boq_workbook(self._save_workbook(workbook))

        errors = raised.exception.errors
        self.assertEqual(len(errors), 4)
        self.assertIn("BOQ!H5: quantity must be a number.", errors)
        self.assertIn("BOQ!B7: duplicate item id b2.", errors)
        self.assertIn("BOQ!D8: description is required.", errors)
        self.assertIn("BOQ!H9: quantities and rates cannot be negative.", errors)

    def test_rejects_non_workbook_bytes(self):
        with self.assertRaises(BoqExcelValidationError):
            parse_boq_workbook(b"not a workbook")

    def test_apply_rejects_unknown_ids(self):
        rows = [
            {
                "id": "ghost",
                "item_no": "",
                "description": "x",
                "category": "",
                "location": "",
                "unit": "",
                "quantity": 1.0,
                "rate": 1.0,
                "completed_quantity": 0.0,
            }
        ]
        with self.assertRaises(BoqExcelValidationError) as raised:
            apply_boq_import(self.project, rows, NOW)
        self.assertIn("ghost", str(raised.exception))

    def test_import_recomputes_revised_quantity_after_variation(self):
        varied = self.project.boq[0].model_copy(update={"variation_quantity": 10.0, "revised_quantity": 110.0})
        project = self.project.model_copy(update={"boq": [varied, self.project.boq[1]]})
        rows = [
            {
                "id": "b1",
                "item_no": "E-01",
                "description": "Embankment",
                "category": "Earthwork",
                "location": "",
                "unit": "m3",
                "quantity": 200.0,
                "rate": 10.0,
                "completed_quantity": 150.0,
            }
        ]
        updated = apply_boq_import(project, rows, NOW)
        self.assertEqual(updated.boq[0].revised_quantity, 210.0)
        self.assertEqual(updated.boq[0].status, "Executing")
        self.assertEqual(updated.boq[0].amount, 2000.0)


if __name__ == "__main__":
    unittest.main()
