from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel, to_snake

RFI_STATUSES = ("Open", "Approved", "Rejected", "Pending Inspection", "Closed")
RFI_WORKS_STATUSES = ("Approved", "Approved as Noted", "Approved for Subsequent Work", "")
LAB_RESULTS = ("Pass", "Fail", "Pending")
NCR_SEVERITIES = ("Low", "Medium", "High", "Critical")
NCR_STATUS_FLOW = ("Open", "Correction Pending", "Verification Pending", "Closed")
BOQ_STATUSES = ("Planned", "Executing", "Completed")
BILL_STATUS_FLOW = ("Draft", "Submitted", "Approved", "Paid")
VARIATION_STATUSES = ("Draft", "Submitted", "Approved", "Rejected", "Implemented")
VENDOR_TYPES = ("subcontractor", "agency")
VENDOR_STATUSES = ("Active", "Suspended", "Completed")
RATE_STATUSES = ("Active", "Expired", "Suspended")
PAYMENT_TYPES = ("Bill Payment", "Advance", "Retention", "Final Payment")
PAYMENT_STATUSES = ("Draft", "Confirmed")
MATERIAL_STATUSES = ("Received", "Pending", "Verified", "In Transit", "Ordered", "Delivered")
STOCK_STATUSES = ("Available", "Low Stock", "Out of Stock")
DOCUMENT_STATUSES = ("Active", "Archived", "Draft", "Review", "Unavailable")
STRUCTURE_STATUSES = ("Not Started", "In Progress", "Completed")
TASK_STATUSES = ("Not Started", "On Track", "Delayed", "Completed")


def snake_keys(payload: dict) -> dict:
    """Map camelCase form keys onto model attribute names."""
    return {to_snake(str(key)): value for key, value in (payload or {}).items()}


class DomainModel(BaseModel):
    """Base for project document entities.

    JSON keys are camelCase (``boqItemId``); attributes are snake_case.
    Keys the model does not declare are kept so legacy payloads round-trip.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class User(DomainModel):
    id: str
    name: str
    email: str
    phone: str = ""
    role: str = "Site Engineer"
    avatar: Optional[str] = None
    permissions: Optional[list[str]] = None


class BOQItem(DomainModel):
    id: str
    item_no: str = ""
    description: str = ""
    unit: str = "unit"
    quantity: float = 0.0
    rate: float = 0.0
    amount: float = 0.0
    category: str = "General"
    location: str = "N/A"
    completed_quantity: float = 0.0
    variation_quantity: Optional[float] = None
    revised_quantity: Optional[float] = None
    status: Optional[str] = None
    subcontractor_id: Optional[str] = None


class VariationItem(DomainModel):
    id: str
    boq_item_id: str = ""
    is_new_item: bool = False
    description: str = ""
    unit: str = "unit"
    quantity_delta: float = 0.0
    rate: float = 0.0


class VariationOrder(DomainModel):
    id: str
    vo_number: str
    title: str = ""
    date: str = ""
    status: str = "Draft"
    items: list[VariationItem] = Field(default_factory=list)
    reason: str = ""
    total_impact: float = 0.0
    approved_date: Optional[str] = None


class WorkflowLogEntry(DomainModel):
    stage: str
    user: str = ""
    timestamp: str = ""
    comments: str = ""


class RFI(DomainModel):
    id: str
    rfi_number: str
    title: Optional[str] = None
    date: str = ""
    location: str = ""
    description: str = ""
    category: Optional[str] = None
    status: str = "Open"
    requested_by: str = ""
    inspection_date: Optional[str] = None
    inspection_time: Optional[str] = None
    inspection_purpose: Optional[str] = None
    inspection_type: Optional[str] = None
    linked_task_id: Optional[str] = None
    linked_checklist_ids: list[str] = Field(default_factory=list)
    workflow_log: list[WorkflowLogEntry] = Field(default_factory=list)
    engineer_comments: Optional[str] = None
    works_status: Optional[str] = None
    submitted_by: Optional[str] = None
    received_by: Optional[str] = None
    submitted_date: Optional[str] = None
    received_date: Optional[str] = None


class LabTest(DomainModel):
    id: str
    test_name: str
    category: str = ""
    sample_id: str = ""
    date: str = ""
    location: str = ""
    result: str = "Pending"
    asset_id: Optional[str] = None
    component_id: Optional[str] = None
    test_data: Optional[Any] = None
    calculated_value: Optional[str] = None
    standard_limit: Optional[str] = None
    technician: Optional[str] = None


class NCR(DomainModel):
    id: str
    ncr_number: str
    date: str = ""
    date_raised: str = ""
    description: str = ""
    location: str = ""
    severity: str = "Medium"
    status: str = "Open"
    linked_test_id: Optional[str] = None
    raised_by: Optional[str] = None


class StructureWorkLog(DomainModel):
    id: str
    date: str = ""
    quantity: float = 0.0
    rate: Optional[float] = None
    subcontractor_id: Optional[str] = None
    remarks: str = ""
    rfi_id: Optional[str] = None
    boq_item_id: Optional[str] = None
    lab_test_id: Optional[str] = None


class StructureComponent(DomainModel):
    id: str
    name: str = ""
    unit: str = "unit"
    total_quantity: float = 0.0
    completed_quantity: float = 0.0
    verified_quantity: float = 0.0
    boq_item_id: Optional[str] = None
    subcontractor_id: Optional[str] = None
    work_logs: list[StructureWorkLog] = Field(default_factory=list)


class StructureAsset(DomainModel):
    id: str
    name: str = ""
    type: str = ""
    location: str = ""
    status: str = "Not Started"
    progress: Optional[float] = None
    components: list[StructureComponent] = Field(default_factory=list)
    completion_date: Optional[str] = None
    subcontractor_id: Optional[str] = None
    chainage: Optional[str] = None


class TaskDependency(DomainModel):
    task_id: str
    type: str = "FS"
    lag: float = 0.0


class ScheduleTask(DomainModel):
    id: str
    name: str = ""
    start_date: str = ""
    end_date: str = ""
    duration: Optional[float] = None
    progress: float = 0.0
    status: str = "Not Started"
    assigned_to: list[str] = Field(default_factory=list)
    dependencies: list[TaskDependency] = Field(default_factory=list)
    is_critical: Optional[bool] = None
    boq_item_id: Optional[str] = None


class Milestone(DomainModel):
    id: str
    name: str = ""
    description: str = ""
    date: str = ""
    status: str = "Planned"
    priority: str = "Medium"
    linked_task_id: Optional[str] = None
    completed_date: Optional[str] = None


class DocumentVersion(DomainModel):
    id: str
    version: int
    date: str = ""
    size: str = ""
    file_path: str = ""
    uploaded_by: str = ""
    notes: Optional[str] = None


class Comment(DomainModel):
    id: str
    entity_id: str
    entity_type: str = "document"
    author_id: str = ""
    author_name: str = ""
    content: str = ""
    timestamp: str = ""
    parent_id: Optional[str] = None
    resolved: Optional[bool] = None


class ProjectDocument(DomainModel):
    id: str
    name: str
    type: str = "OTHER"
    date: str = ""
    size: str = ""
    folder: str = "General"
    subject: str = ""
    tags: list[str] = Field(default_factory=list)
    ref_no: Optional[str] = None
    letter_date: Optional[str] = None
    correspondence_type: Optional[str] = None
    file_url: Optional[str] = None
    current_version: int = 1
    versions: list[DocumentVersion] = Field(default_factory=list)
    created_by: str = ""
    last_modified: str = ""
    status: str = "Active"
    comments: list[Comment] = Field(default_factory=list)


class AgencyRateEntry(DomainModel):
    id: str
    agency_id: str
    material_id: str
    boq_item_id: Optional[str] = None
    rate: float = 0.0
    effective_date: str = ""
    expiry_date: Optional[str] = None
    description: Optional[str] = None
    status: str = "Active"


class Agency(DomainModel):
    id: str
    name: str
    trade: str = ""
    contact_person: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""
    status: str = "Active"
    contract_value: float = 0.0
    start_date: str = ""
    end_date: str = ""
    type: str = "agency"
    rates: list[AgencyRateEntry] = Field(default_factory=list)
    assigned_works: list[str] = Field(default_factory=list)
    license_number: Optional[str] = None
    tax_id: Optional[str] = None
    payment_terms: Optional[str] = None
    delivery_lead_time: Optional[float] = None


class AgencyPayment(DomainModel):
    id: str
    agency_id: str
    date: str = ""
    amount: float = 0.0
    reference: str = ""
    type: str = "Bill Payment"
    description: str = ""
    status: str = "Draft"


class AgencyBillItem(DomainModel):
    id: str
    material_id: str = ""
    description: str = ""
    unit: str = "unit"
    quantity: float = 0.0
    rate: float = 0.0
    amount: float = 0.0


class AgencyBill(DomainModel):
    id: str
    agency_id: str
    bill_number: str
    date: str = ""
    period_from: str = ""
    period_to: str = ""
    items: list[AgencyBillItem] = Field(default_factory=list)
    gross_amount: float = 0.0
    tax_amount: Optional[float] = None
    net_amount: float = 0.0
    status: str = "Draft"
    description: Optional[str] = None


class AgencyMaterial(DomainModel):
    id: str
    agency_id: str
    name: str = ""
    material_name: str = ""
    description: str = ""
    category: str = ""
    unit: str = "unit"
    quantity: float = 0.0
    location: str = "Vendor"
    last_updated: str = ""
    rate: float = 0.0
    total_amount: float = 0.0
    received_date: str = ""
    invoice_number: Optional[str] = None
    remarks: Optional[str] = None
    ordered_date: Optional[str] = None
    expected_delivery_date: Optional[str] = None
    delivery_location: Optional[str] = None
    transport_mode: Optional[str] = None
    delivery_charges: float = 0.0
    tax_amount: float = 0.0
    status: str = "Ordered"


class Material(DomainModel):
    id: str
    name: str = ""
    description: str = ""
    category: str = "General Inventory"
    unit: str = "unit"
    quantity: float = 0.0
    available_quantity: float = 0.0
    unit_cost: float = 0.0
    total_value: float = 0.0
    reorder_level: float = 10.0
    location: str = "Warehouse"
    last_updated: str = ""
    status: str = "Available"
    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None
    criticality: str = "Medium"
    notes: str = ""
    tags: list[str] = Field(default_factory=list)


class BillItem(DomainModel):
    id: str
    boq_item_id: str
    item_no: str = ""
    description: str = ""
    unit: str = "unit"
    contract_quantity: float = 0.0
    rate: float = 0.0
    previous_quantity: float = 0.0
    current_quantity: float = 0.0
    upto_date_quantity: float = 0.0
    previous_amount: float = 0.0
    current_amount: float = 0.0
    upto_date_amount: float = 0.0


class ContractBill(DomainModel):
    id: str
    bill_number: str
    date: str = ""
    period_from: str = ""
    period_to: str = ""
    gross_amount: float = 0.0
    retention_percent: float = 0.0
    net_amount: float = 0.0
    status: str = "Draft"
    description: str = ""
    items: list[BillItem] = Field(default_factory=list)
    provisional_sum: float = 0.0
    cpa_amount: float = 0.0
    liquidated_damages: float = 0.0
    advance_payment_deduction: Optional[float] = None
    order_of_bill: Optional[int] = None
    date_of_measurement: Optional[str] = None
    bill_amount_gross: Optional[float] = None
    bill_amount_with_cpa: Optional[float] = Field(default=None, alias="billAmountWithCPA")
    bill_amount_without_ps: Optional[float] = Field(default=None, alias="billAmountWithoutPS")
    vat_amount: Optional[float] = None
    total_bill_with_vat: Optional[float] = None
    retention_amount: Optional[float] = None
    advance_income_tax: Optional[float] = None
    contractor_dev_fund: Optional[float] = None
    deductable_vat: Optional[float] = None
    total_amount_payable: Optional[float] = None


class SubcontractorBill(DomainModel):
    id: str
    bill_number: str
    subcontractor_id: str
    date: str = ""
    period_from: str = ""
    period_to: str = ""
    items: list[BillItem] = Field(default_factory=list)
    gross_amount: float = 0.0
    retention_percent: float = 0.0
    net_amount: float = 0.0
    status: str = "Draft"
    description: str = ""


class AuditLogEntry(DomainModel):
    id: str
    timestamp: str
    user_id: str = ""
    user_name: str = ""
    action: str = "UPDATE"
    entity_type: str = "project"
    entity_id: str = ""
    entity_name: Optional[str] = None
    severity: str = "INFO"
    notes: Optional[str] = None


class NotificationSettings(DomainModel):
    enable_email: bool = False
    enable_in_app: bool = True
    notify_upcoming: bool = True
    days_before: int = 3
    notify_overdue: bool = True
    daily_digest: bool = False


class AppSettings(DomainModel):
    company_name: str = ""
    currency: str = "BDT"
    vat_rate: float = 0.0
    fiscal_year_start: str = ""
    google_spreadsheet_id: str = ""
    timezone: Optional[str] = None
    date_format: Optional[str] = None
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)


class Project(DomainModel):
    id: str
    name: str = Field(..., min_length=1)
    code: str = ""
    location: str = ""
    contractor: str = ""
    client: str = ""
    start_date: str = ""
    end_date: str = ""
    project_manager: Optional[str] = None
    consultant_name: Optional[str] = None
    engineer: Optional[str] = None
    contract_no: Optional[str] = None
    boq: list[BOQItem] = Field(default_factory=list)
    variation_orders: list[VariationOrder] = Field(default_factory=list)
    rfis: list[RFI] = Field(default_factory=list)
    lab_tests: list[LabTest] = Field(default_factory=list)
    ncrs: list[NCR] = Field(default_factory=list)
    schedule: list[ScheduleTask] = Field(default_factory=list)
    milestones: list[Milestone] = Field(default_factory=list)
    structures: list[StructureAsset] = Field(default_factory=list)
    agencies: list[Agency] = Field(default_factory=list)
    agency_payments: list[AgencyPayment] = Field(default_factory=list)
    agency_materials: list[AgencyMaterial] = Field(default_factory=list)
    materials: list[Material] = Field(default_factory=list)
    agency_bills: list[AgencyBill] = Field(default_factory=list)
    documents: list[ProjectDocument] = Field(default_factory=list)
    contract_bills: list[ContractBill] = Field(default_factory=list)
    subcontractor_bills: list[SubcontractorBill] = Field(default_factory=list)
    audit_logs: list[AuditLogEntry] = Field(default_factory=list)
    settings: Optional[AppSettings] = None
    last_synced: Optional[str] = None
