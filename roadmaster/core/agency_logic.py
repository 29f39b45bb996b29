from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime
from typing import Optional

from ..schemas import (
    MATERIAL_STATUSES,
    PAYMENT_TYPES,
    RATE_STATUSES,
    VENDOR_STATUSES,
    VENDOR_TYPES,
    Agency,
    AgencyBill,
    AgencyMaterial,
    AgencyPayment,
    AgencyRateEntry,
    Project,
    snake_keys,
)
from .auth_utils import is_valid_email, make_id, parse_day, to_day
from .boq_logic import to_number


def _text(payload: dict, *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return str(value).strip()
    return ""


def validate_agency_payload(payload: dict) -> dict:
    """Validate a vendor form and return the cleaned field mapping.

    Raises ``ValueError`` listing every problem found, one per line.
    """

    payload = snake_keys(payload)
    errors: list[str] = []
    name = _text(payload, "name")
    trade = _text(payload, "trade")
    email = _text(payload, "email")
    vendor_type = _text(payload, "type") or "agency"
    status = _text(payload, "status") or "Active"
    contract_value = to_number(payload.get("contract_value"))
    start_date = _text(payload, "start_date")
    end_date = _text(payload, "end_date")

    if not name:
        errors.append("Vendor name is required.")
    if not trade:
        errors.append("Trade is required.")
    if email and not is_valid_email(email):
        errors.append("Email address is invalid.")
    if contract_value < 0:
        errors.append("Contract value cannot be negative.")
    if vendor_type not in VENDOR_TYPES:
        errors.append(f"Vendor type must be one of: {', '.join(VENDOR_TYPES)}.")
    if status not in VENDOR_STATUSES:
        errors.append(f"Vendor status must be one of: {', '.join(VENDOR_STATUSES)}.")
    start = parse_day(start_date)
    end = parse_day(end_date)
    if start and end and end < start:
        errors.append("End date cannot be before start date.")

    if errors:
        raise ValueError("\n".join(errors))

    cleaned = dict(payload)
    cleaned.update(
        {
            "name": name,
            "trade": trade,
            "email": email,
            "type": vendor_type,
            "status": status,
            "contract_value": contract_value,
            "start_date": start_date,
            "end_date": end_date,
        }
    )
    return cleaned


def _find_agency(project: Project, agency_id: str) -> Agency:
    for agency in project.agencies or []:
        if agency.id == agency_id:
            return agency
    raise ValueError(f"Vendor not found: {agency_id}")


def _replace_agency(project: Project, agency: Agency) -> Project:
    agencies = [agency if existing.id == agency.id else existing for existing in (project.agencies or [])]
    return project.model_copy(update={"agencies": agencies})


def add_agency(project: Project, payload: dict, now: datetime) -> Project:
    cleaned = validate_agency_payload(payload)
    cleaned.pop("id", None)
    prefix = "sub" if cleaned["type"] == "subcontractor" else "agency"
    agency = Agency(id=make_id(prefix, now), **cleaned)
    return project.model_copy(update={"agencies": [*(project.agencies or []), agency]})


def update_agency(project: Project, agency_id: str, payload: dict) -> Project:
    existing = _find_agency(project, agency_id)
    merged = existing.model_dump()
    merged.update(snake_keys(payload))
    cleaned = validate_agency_payload(merged)
    cleaned["id"] = agency_id
    return _replace_agency(project, Agency(**cleaned))


def remove_agency(project: Project, agency_id: str) -> Project:
    return project.model_copy(
        update={
            "agencies": [agency for agency in (project.agencies or []) if agency.id != agency_id],
            "agency_payments": [row for row in (project.agency_payments or []) if row.agency_id != agency_id],
            "agency_materials": [row for row in (project.agency_materials or []) if row.agency_id != agency_id],
            "agency_bills": [row for row in (project.agency_bills or []) if row.agency_id != agency_id],
        }
    )


def add_agency_rate(project: Project, agency_id: str, payload: dict, now: datetime) -> Project:
    agency = _find_agency(project, agency_id)
    material_id = _text(payload, "material_id", "materialId")
    effective_date = _text(payload, "effective_date", "effectiveDate")
    status = _text(payload, "status") or "Active"
    if not material_id:
        raise ValueError("Material or BOQ item is required for a rate.")
    if payload.get("rate") in (None, ""):
        raise ValueError("Rate is required.")
    rate = to_number(payload.get("rate"))
    if rate < 0:
        raise ValueError("Rate cannot be negative.")
    if not effective_date:
        raise ValueError("Effective date is required.")
    if status not in RATE_STATUSES:
        raise ValueError(f"Rate status must be one of: {', '.join(RATE_STATUSES)}.")

    entry = AgencyRateEntry(
        id=make_id("rate", now),
        agency_id=agency_id,
        material_id=material_id,
        boq_item_id=_text(payload, "boq_item_id", "boqItemId") or None,
        rate=rate,
        effective_date=effective_date,
        expiry_date=_text(payload, "expiry_date", "expiryDate") or None,
        description=_text(payload, "description") or None,
        status=status,
    )
    return _replace_agency(project, agency.model_copy(update={"rates": [*agency.rates, entry]}))


def active_rate_for(agency, material_id: str, on_date: Optional[date] = None):
    when = on_date or date.today()
    candidates = []
    for entry in getattr(agency, "rates", None) or []:
        if entry.material_id != material_id or entry.status != "Active":
            continue
        effective = parse_day(entry.effective_date)
        if effective is None or effective > when:
            continue
        expiry = parse_day(entry.expiry_date)
        if expiry is not None and expiry < when:
            continue
        candidates.append((effective, entry))
    if not candidates:
        return None
    candidates.sort(key=lambda pair: pair[0])
    return candidates[-1][1]


def material_total_amount(quantity, rate, tax_amount=0, delivery_charges=0) -> float:
    return to_number(quantity) * to_number(rate) + to_number(tax_amount) + to_number(delivery_charges)


def add_agency_material(project: Project, agency_id: str, payload: dict, now: datetime) -> Project:
    _find_agency(project, agency_id)
    name = _text(payload, "material_name", "materialName", "name")
    unit = _text(payload, "unit")
    quantity = to_number(payload.get("quantity"))
    rate = to_number(payload.get("rate"))
    status = _text(payload, "status") or "Ordered"

    if not name:
        raise ValueError("Material name is required.")
    if quantity <= 0:
        raise ValueError("Quantity must be greater than zero.")
    if rate < 0:
        raise ValueError("Rate cannot be negative.")
    if not unit:
        raise ValueError("Unit is required.")
    if status not in MATERIAL_STATUSES:
        raise ValueError(f"Material status must be one of: {', '.join(MATERIAL_STATUSES)}.")

    tax_amount = to_number(payload.get("tax_amount", payload.get("taxAmount")))
    delivery_charges = to_number(payload.get("delivery_charges", payload.get("deliveryCharges")))
    material = AgencyMaterial(
        id=make_id("mat", now),
        agency_id=agency_id,
        name=name,
        material_name=name,
        description=_text(payload, "description"),
        category=_text(payload, "category"),
        unit=unit,
        quantity=quantity,
        location=_text(payload, "location") or "Vendor",
        last_updated=to_day(now),
        rate=rate,
        total_amount=material_total_amount(quantity, rate, tax_amount, delivery_charges),
        received_date=_text(payload, "received_date", "receivedDate"),
        invoice_number=_text(payload, "invoice_number", "invoiceNumber") or None,
        ordered_date=_text(payload, "ordered_date", "orderedDate") or None,
        expected_delivery_date=_text(payload, "expected_delivery_date", "expectedDeliveryDate") or None,
        delivery_location=_text(payload, "delivery_location", "deliveryLocation") or None,
        transport_mode=_text(payload, "transport_mode", "transportMode") or None,
        delivery_charges=delivery_charges,
        tax_amount=tax_amount,
        status=status,
    )
    return project.model_copy(update={"agency_materials": [*(project.agency_materials or []), material]})


def add_agency_bill(project: Project, agency_id: str, payload: dict, now: datetime) -> Project:
    _find_agency(project, agency_id)
    bill_number = _text(payload, "bill_number", "billNumber")
    bill_date = _text(payload, "date")
    gross_amount = to_number(payload.get("gross_amount", payload.get("grossAmount")))
    net_amount = to_number(payload.get("net_amount", payload.get("netAmount")))

    if not bill_number:
        raise ValueError("Bill number is required.")
    if not bill_date:
        raise ValueError("Bill date is required.")
    if gross_amount < 0 or net_amount < 0:
        raise ValueError("Bill amounts cannot be negative.")

    bill = AgencyBill(
        id=make_id("abill", now),
        agency_id=agency_id,
        bill_number=bill_number,
        date=bill_date,
        period_from=_text(payload, "period_from", "periodFrom") or bill_date,
        period_to=_text(payload, "period_to", "periodTo") or bill_date,
        items=payload.get("items") or [],
        gross_amount=gross_amount,
        tax_amount=to_number(payload.get("tax_amount", payload.get("taxAmount"))),
        net_amount=net_amount,
        status=_text(payload, "status") or "Draft",
        description=_text(payload, "description") or None,
    )
    return project.model_copy(update={"agency_bills": [*(project.agency_bills or []), bill]})


def record_agency_payment(project: Project, agency_id: str, payload: dict, now: datetime) -> Project:
    _find_agency(project, agency_id)
    amount = to_number(payload.get("amount"))
    payment_type = _text(payload, "type") or "Bill Payment"
    if amount <= 0:
        raise ValueError("Payment amount must be greater than zero.")
    if payment_type not in PAYMENT_TYPES:
        raise ValueError(f"Payment type must be one of: {', '.join(PAYMENT_TYPES)}.")

    payment = AgencyPayment(
        id=make_id("pay", now),
        agency_id=agency_id,
        date=_text(payload, "date") or to_day(now),
        amount=amount,
        reference=_text(payload, "reference"),
        type=payment_type,
        description=_text(payload, "description"),
        status="Draft",
    )
    return project.model_copy(update={"agency_payments": [*(project.agency_payments or []), payment]})


def confirm_agency_payment(project: Project, payment_id: str) -> Project:
    payments = []
    found = False
    for payment in project.agency_payments or []:
        if payment.id == payment_id:
            found = True
            payment = payment.model_copy(update={"status": "Confirmed"})
        payments.append(payment)
    if not found:
        raise ValueError(f"Payment not found: {payment_id}")
    return project.model_copy(update={"agency_payments": payments})


def agency_summary(project, agency_id: str) -> dict:
    payments = [row for row in (getattr(project, "agency_payments", None) or []) if row.agency_id == agency_id]
    total_paid = sum(to_number(row.amount) for row in payments)
    pending = sum(to_number(row.amount) for row in payments if row.status == "Draft")

    contract_value_by_rates = 0.0
    agency = next((row for row in (getattr(project, "agencies", None) or []) if row.id == agency_id), None)
    if agency is not None:
        quantities = {item.id: to_number(item.quantity) for item in (getattr(project, "boq", None) or [])}
        for entry in agency.rates or []:
            if entry.material_id in quantities:
                contract_value_by_rates += quantities[entry.material_id] * to_number(entry.rate)

    bills = [row for row in (getattr(project, "agency_bills", None) or []) if row.agency_id == agency_id]
    return {
        "total_paid": total_paid,
        "pending_payments": pending,
        "net_amount": total_paid - pending,
        "total_billed": sum(to_number(row.net_amount) for row in bills),
        "total_contract_value_based_on_rates": contract_value_by_rates,
    }


def delivery_performance(materials: Optional[Iterable[object]]) -> dict:
    received = [row for row in (materials or []) if getattr(row, "status", "") == "Received"]
    on_time = 0
    for row in received:
        expected = parse_day(getattr(row, "expected_delivery_date", None))
        actual = parse_day(getattr(row, "received_date", None))
        if expected and actual and expected >= actual:
            on_time += 1
    delayed = len(received) - on_time
    return {
        "received": len(received),
        "on_time": on_time,
        "delayed": delayed,
        "on_time_percentage": round(on_time / max(1, len(received)) * 100),
    }


def portfolio_contract_value(projects: Optional[Iterable[object]]) -> float:
    return sum(
        to_number(getattr(agency, "contract_value", 0))
        for project in (projects or [])
        for agency in (getattr(project, "agencies", None) or [])
    )
