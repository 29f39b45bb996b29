import unittest
from datetime import date, datetime, timezone
from types import SimpleNamespace

from roadmaster.core.agency_logic import (
    active_rate_for,
    add_agency,
    add_agency_bill,
    add_agency_material,
    add_agency_rate,
    agency_summary,
    confirm_agency_payment,
    delivery_performance,
    portfolio_contract_value,
    record_agency_payment,
    remove_agency,
    update_agency,
    validate_agency_payload,
)
from roadmaster.schemas import Agency, AgencyRateEntry, BOQItem, Project

NOW = datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc)


class AgencyValidationTests(unittest.TestCase):
    def test_collects_every_error(self):
        with self.assertRaises(ValueError) as ctx:
            validate_agency_payload(
                {
                    "name": "",
                    "trade": "",
                    "email": "not-an-email",
                    "contractValue": -5,
                    "startDate": "2025-02-01",
                    "endDate": "2025-01-01",
                }
            )
        lines = str(ctx.exception).split("\n")
        self.assertEqual(len(lines), 5)
        self.assertIn("Vendor name is required.", lines)
        self.assertIn("End date cannot be before start date.", lines)

    def test_camel_case_form_is_cleaned(self):
        cleaned = validate_agency_payload({"name": " Padma ", "trade": "Stone", "contractValue": "1,000"})
        self.assertEqual(cleaned["name"], "Padma")
        self.assertEqual(cleaned["contract_value"], 1000.0)
        self.assertEqual(cleaned["type"], "agency")
        self.assertEqual(cleaned["status"], "Active")

    def test_unknown_type_rejected(self):
        with self.assertRaises(ValueError):
            validate_agency_payload({"name": "X", "trade": "Y", "type": "consultant"})


class AgencyLifecycleTests(unittest.TestCase):
    def setUp(self):
        self.project = Project(
            id="proj-1",
            name="Demo Road",
            boq=[BOQItem(id="b1", description="Sub-base", quantity=100, rate=50)],
        )

    def _with_agency(self, **payload):
        data = {"name": "Padma Aggregates", "trade": "Stone chips"}
        data.update(payload)
        project = add_agency(self.project, data, NOW)
        return project, project.agencies[-1].id

    def test_add_agency_id_prefix(self):
        project, agency_id = self._with_agency()
        self.assertTrue(agency_id.startswith("agency-"))
        _, sub_id = self._with_agency(type="subcontractor")
        self.assertTrue(sub_id.startswith("sub-"))
        self.assertEqual(project.agencies[0].name, "Padma Aggregates")

    def test_update_agency_merges_fields(self):
        project, agency_id = self._with_agency(phone="0171")
        project = update_agency(project, agency_id, {"contractValue": 2500, "status": "Suspended"})
        agency = project.agencies[0]
        self.assertEqual(agency.id, agency_id)
        self.assertEqual(agency.phone, "0171")
        self.assertEqual(agency.contract_value, 2500.0)
        self.assertEqual(agency.status, "Suspended")

        with self.assertRaises(ValueError):
            update_agency(project, agency_id, {"name": ""})
        with self.assertRaises(ValueError):
            update_agency(project, "missing", {})

    def test_remove_agency_cascades(self):
        project, agency_id = self._with_agency()
        project = record_agency_payment(project, agency_id, {"amount": 100}, NOW)
        project = add_agency_material(project, agency_id, {"name": "Stone", "unit": "m3", "quantity": 5, "rate": 10}, NOW)
        project = add_agency_bill(project, agency_id, {"billNumber": "AB-1", "date": "2025-03-01"}, NOW)
        project = remove_agency(project, agency_id)
        self.assertEqual(project.agencies, [])
        self.assertEqual(project.agency_payments, [])
        self.assertEqual(project.agency_materials, [])
        self.assertEqual(project.agency_bills, [])

    def test_rates_and_active_rate(self):
        project, agency_id = self._with_agency()
        project = add_agency_rate(project, agency_id, {"materialId": "b1", "rate": 40, "effectiveDate": "2025-01-01"}, NOW)
        with self.assertRaises(ValueError):
            add_agency_rate(project, agency_id, {"materialId": "b1", "effectiveDate": "2025-01-01"}, NOW)
        with self.assertRaises(ValueError):
            add_agency_rate(project, agency_id, {"rate": 1, "effectiveDate": "2025-01-01"}, NOW)
        with self.assertRaises(ValueError):
            add_agency_rate(project, agency_id, {"materialId": "b1", "rate": 1}, NOW)

        agency = project.agencies[0]
        self.assertEqual(active_rate_for(agency, "b1", date(2025, 2, 1)).rate, 40.0)
        self.assertIsNone(active_rate_for(agency, "b1", date(2024, 12, 31)))
        self.assertIsNone(active_rate_for(agency, "other", date(2025, 2, 1)))

    def test_active_rate_prefers_latest_effective(self):
        agency = Agency(
            id="agency-1",
            name="Padma",
            rates=[
                AgencyRateEntry(id="r1", agency_id="agency-1", material_id="m1", rate=10, effective_date="2025-01-01"),
                AgencyRateEntry(id="r2", agency_id="agency-1", material_id="m1", rate=12, effective_date="2025-02-01"),
                AgencyRateEntry(
                    id="r3",
                    agency_id="agency-1",
                    material_id="m1",
                    rate=15,
                    effective_date="2025-02-15",
                    expiry_date="2025-02-20",
                ),
            ],
        )
        self.assertEqual(active_rate_for(agency, "m1", date(2025, 3, 1)).id, "r2")
        self.assertEqual(active_rate_for(agency, "m1", date(2025, 2, 16)).id, "r3")

    def test_material_validation_and_total(self):
        project, agency_id = self._with_agency()
        project = add_agency_material(
            project,
            agency_id,
            {"materialName": "Stone chips", "unit": "m3", "quantity": 10, "rate": 100, "taxAmount": 50, "deliveryCharges": 25},
            NOW,
        )
        material = project.agency_materials[0]
        self.assertEqual(material.total_amount, 1075.0)
        self.assertEqual(material.status, "Ordered")
        self.assertEqual(material.last_updated, "2025-03-01")

        for bad in (
            {"unit": "m3", "quantity": 1, "rate": 1},
            {"name": "Sand", "unit": "m3", "quantity": 0, "rate": 1},
            {"name": "Sand", "unit": "", "quantity": 1, "rate": 1},
            {"name": "Sand", "unit": "m3", "quantity": 1, "rate": 1, "status": "Lost"},
        ):
            with self.assertRaises(ValueError):
                add_agency_material(project, agency_id, bad, NOW)

    def test_payments_and_summary(self):
        project, agency_id = self._with_agency()
        project = add_agency_rate(project, agency_id, {"materialId": "b1", "rate": 40, "effectiveDate": "2025-01-01"}, NOW)
        project = record_agency_payment(project, agency_id, {"amount": 300, "type": "Advance"}, NOW)
        project = record_agency_payment(project, agency_id, {"amount": 200, "date": "2025-03-02"}, NOW.replace(second=1))
        project = add_agency_bill(project, agency_id, {"billNumber": "AB-1", "date": "2025-03-01", "netAmount": 900}, NOW)

        with self.assertRaises(ValueError):
            record_agency_payment(project, agency_id, {"amount": 0}, NOW)
        with self.assertRaises(ValueError):
            record_agency_payment(project, agency_id, {"amount": 10, "type": "Gift"}, NOW)

        first_payment = project.agency_payments[0]
        self.assertEqual(first_payment.status, "Draft")
        self.assertEqual(first_payment.date, "2025-03-01")
        project = confirm_agency_payment(project, first_payment.id)
        with self.assertRaises(ValueError):
            confirm_agency_payment(project, "missing")

        summary = agency_summary(project, agency_id)
        self.assertEqual(summary["total_paid"], 500.0)
        self.assertEqual(summary["pending_payments"], 200.0)
        self.assertEqual(summary["net_amount"], 300.0)
        self.assertEqual(summary["total_billed"], 900.0)
        self.assertEqual(summary["total_contract_value_based_on_rates"], 4000.0)

    def test_agency_bill_period_defaults(self):
        project, agency_id = self._with_agency()
        project = add_agency_bill(project, agency_id, {"billNumber": "AB-1", "date": "2025-03-01"}, NOW)
        bill = project.agency_bills[0]
        self.assertEqual(bill.period_from, "2025-03-01")
        self.assertEqual(bill.period_to, "2025-03-01")
        with self.assertRaises(ValueError):
            add_agency_bill(project, agency_id, {"date": "2025-03-01"}, NOW)


class AgencyReportTests(unittest.TestCase):
    def test_delivery_performance(self):
        materials = [
            SimpleNamespace(status="Received", expected_delivery_date="2025-03-05", received_date="2025-03-04"),
            SimpleNamespace(status="Received", expected_delivery_date="2025-03-05", received_date="2025-03-09"),
            SimpleNamespace(status="Received", expected_delivery_date=None, received_date="2025-03-09"),
            SimpleNamespace(status="Ordered", expected_delivery_date="2025-03-05", received_date=""),
        ]
        result = delivery_performance(materials)
        self.assertEqual(result["received"], 3)
        self.assertEqual(result["on_time"], 1)
        self.assertEqual(result["delayed"], 2)
        self.assertEqual(result["on_time_percentage"], 33)
        self.assertEqual(delivery_performance([])["on_time_percentage"], 0)

    def test_portfolio_contract_value(self):
        projects = [
            SimpleNamespace(agencies=[SimpleNamespace(contract_value=100), SimpleNamespace(contract_value="50")]),
            SimpleNamespace(agencies=None),
        ]
        self.assertEqual(portfolio_contract_value(projects), 150.0)


if __name__ == "__main__":
    unittest.main()
