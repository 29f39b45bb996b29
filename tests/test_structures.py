import unittest
from datetime import datetime, timedelta, timezone

from roadmaster.core.structures import (
    create_structure,
    delete_structure,
    delete_work_log,
    log_work,
    update_structure,
)
from roadmaster.schemas import BOQItem, Project

NOW = datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc)


def _project():
    return Project(
        id="proj-1",
        name="Demo Road",
        code="DR-1",
        boq=[BOQItem(id="b1", description="Culvert concrete", unit="cum", quantity=40, rate=9000)],
    )


def _culvert_payload(**overrides):
    payload = {
        "name": "Box Culvert BC-3",
        "type": "Box Culvert",
        "location": "12+500",
        "components": [
            {"id": "c1", "name": "Base slab", "unit": "cum", "totalQuantity": "20", "boqItemId": "b1"},
            {"id": "c2", "name": "Wing walls", "unit": "cum", "totalQuantity": 20},
        ],
    }
    payload.update(overrides)
    return payload


class StructureTests(unittest.TestCase):
    def test_create_structure(self):
        project = create_structure(_project(), _culvert_payload(), NOW)
        structure = project.structures[0]
        self.assertTrue(structure.id.startswith("str-"))
        self.assertEqual(structure.status, "Not Started")
        self.assertEqual(structure.type, "Box Culvert")
        self.assertEqual(structure.components[0].total_quantity, 20.0)
        self.assertEqual(structure.components[0].boq_item_id, "b1")
        self.assertEqual(structure.progress, 0)

    def test_create_structure_validation(self):
        with self.assertRaises(ValueError):
            create_structure(_project(), _culvert_payload(location=" "), NOW)
        with self.assertRaises(ValueError):
            create_structure(_project(), _culvert_payload(components=[]), NOW)
        with self.assertRaises(ValueError):
            create_structure(_project(), _culvert_payload(status="Paused"), NOW)
        with self.assertRaises(ValueError):
            create_structure(
                _project(),
                _culvert_payload(components=[{"name": "Deck", "totalQuantity": -1}]),
                NOW,
            )

    def test_update_keeps_id_and_delete(self):
        project = create_structure(_project(), _culvert_payload(), NOW)
        structure_id = project.structures[0].id
        project = update_structure(
            project,
            _culvert_payload(id=structure_id, name="Box Culvert BC-3A", chainage="12+520"),
            NOW,
        )
        self.assertEqual(len(project.structures), 1)
        self.assertEqual(project.structures[0].id, structure_id)
        self.assertEqual(project.structures[0].name, "Box Culvert BC-3A")
        self.assertEqual(project.structures[0].chainage, "12+520")

        with self.assertRaises(ValueError):
            update_structure(project, _culvert_payload(id="str-missing"), NOW)

        self.assertEqual(delete_structure(project, structure_id).structures, [])


class WorkLogTests(unittest.TestCase):
    def setUp(self):
        self.project = create_structure(_project(), _culvert_payload(), NOW)
        self.structure_id = self.project.structures[0].id

    def test_log_work_updates_component_and_boq(self):
        project = log_work(self.project, self.structure_id, "c1", {"quantity": "12", "remarks": "Pour 1"}, NOW)
        structure = project.structures[0]
        component = structure.components[0]
        self.assertEqual(structure.status, "In Progress")
        self.assertEqual(component.completed_quantity, 12.0)
        self.assertEqual(component.work_logs[0].boq_item_id, "b1")
        self.assertEqual(component.work_logs[0].date, "2025-03-01")
        self.assertEqual(structure.progress, 30)
        self.assertEqual(project.boq[0].completed_quantity, 12.0)
        self.assertEqual(project.boq[0].status, "Executing")

    def test_log_work_without_boq_link(self):
        project = log_work(self.project, self.structure_id, "c2", {"quantity": 5}, NOW)
        self.assertEqual(project.structures[0].components[1].completed_quantity, 5.0)
        self.assertEqual(project.boq[0].completed_quantity, 0.0)

    def test_log_work_validation(self):
        with self.assertRaises(ValueError):
            log_work(self.project, self.structure_id, "c1", {"quantity": 0}, NOW)
        with self.assertRaises(ValueError):
            log_work(self.project, self.structure_id, "c9", {"quantity": 1}, NOW)
        with self.assertRaises(ValueError):
            log_work(self.project, "str-missing", "c1", {"quantity": 1}, NOW)
        with self.assertRaises(ValueError):
            log_work(self.project, self.structure_id, "c2", {"quantity": 1, "boqItemId": "ghost"}, NOW)

    def test_delete_work_log_reverses_quantities(self):
        project = log_work(self.project, self.structure_id, "c1", {"quantity": 12}, NOW)
        project = log_work(project, self.structure_id, "c1", {"quantity": 8}, NOW + timedelta(seconds=1))
        self.assertEqual(project.boq[0].completed_quantity, 20.0)

        first_log = project.structures[0].components[0].work_logs[0]
        project = delete_work_log(project, self.structure_id, "c1", first_log.id)
        component = project.structures[0].components[0]
        self.assertEqual(component.completed_quantity, 8.0)
        self.assertEqual([row.quantity for row in component.work_logs], [8.0])
        self.assertEqual(project.boq[0].completed_quantity, 8.0)

        with self.assertRaises(ValueError):
            delete_work_log(project, self.structure_id, "c1", first_log.id)

    def test_delete_work_log_never_goes_negative(self):
        project = log_work(self.project, self.structure_id, "c1", {"quantity": 12}, NOW)
        component = project.structures[0].components[0]
        lowered = project.boq[0].model_copy(update={"completed_quantity": 4.0})
        project = project.model_copy(update={"boq": [lowered]})

        project = delete_work_log(project, self.structure_id, "c1", component.work_logs[0].id)
        self.assertEqual(project.boq[0].completed_quantity, 0.0)
        self.assertEqual(project.boq[0].status, "Planned")
        self.assertEqual(project.structures[0].components[0].completed_quantity, 0.0)


if __name__ == "__main__":
    unittest.main()
