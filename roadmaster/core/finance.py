from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from typing import Optional

from ..schemas import BILL_STATUS_FLOW, AppSettings, BillItem, ContractBill, Project, SubcontractorBill
from .boq_logic import boq_item_amount, derive_boq_status, to_number


def _percent_env(name: str) -> float:
    return max(0.0, to_number(os.getenv(name, "0")))


BILL_DEFAULT_VAT_PERCENT = _percent_env("BILL_DEFAULT_VAT_PERCENT")
BILL_AIT_PERCENT = _percent_env("BILL_AIT_PERCENT")
BILL_DEV_FUND_PERCENT = _percent_env("BILL_DEV_FUND_PERCENT")
BILL_VAT_DEDUCTION_PERCENT = _percent_env("BILL_VAT_DEDUCTION_PERCENT")


def _bill_payable(bill) -> float:
    payable = getattr(bill, "total_amount_payable", None)
    if payable is not None:
        return to_number(payable)
    return to_number(getattr(bill, "net_amount", 0))


def financial_stats(project) -> dict:
    boq = list(getattr(project, "boq", None) or [])
    original_contract = sum(boq_item_amount(item) for item in boq)
    variations = sum(
        to_number(getattr(item, "variation_quantity", 0)) * to_number(getattr(item, "rate", 0)) for item in boq
    )
    revised_contract = original_contract + variations
    total_billed = sum(_bill_payable(bill) for bill in (getattr(project, "contract_bills", None) or []))
    total_sub_billed = sum(
        to_number(getattr(bill, "net_amount", 0)) for bill in (getattr(project, "subcontractor_bills", None) or [])
    )

    payment_percentage = 0.0
    if total_billed > 0 and revised_contract > 0:
        payment_percentage = total_billed / revised_contract * 100

    return {
        "original_contract": original_contract,
        "variations": variations,
        "revised_contract": revised_contract,
        "total_billed": total_billed,
        "total_sub_billed": total_sub_billed,
        "balance_to_bill": revised_contract - total_billed,
        "payment_percentage": payment_percentage,
    }


def _latest_upto_quantities(previous_bills: Iterable[object]) -> dict[str, float]:
    ordered = sorted(
        previous_bills or [],
        key=lambda bill: (to_number(getattr(bill, "order_of_bill", 0)), str(getattr(bill, "date", "") or "")),
    )
    latest: dict[str, float] = {}
    for bill in ordered:
        for row in getattr(bill, "items", None) or []:
            latest[row.boq_item_id] = to_number(row.upto_date_quantity)
    return latest


def build_bill_items(
    project: Project,
    current_quantities: Mapping[str, object],
    previous_bills: Optional[Iterable[object]] = None,
) -> list[BillItem]:
    """Build IPC rows for every BOQ item that has billed or current work.

    ``current_quantities`` maps BOQ item ids to this period's measured quantity.
    Previous quantities come from the latest prior bill carrying the same item.
    """

    previous = _latest_upto_quantities(previous_bills or [])
    rows: list[BillItem] = []
    for item in project.boq or []:
        current_quantity = to_number(current_quantities.get(item.id, 0))
        if current_quantity < 0:
            raise ValueError(f"Current quantity cannot be negative for {item.item_no or item.id}.")
        previous_quantity = previous.get(item.id, 0.0)
        if current_quantity == 0 and previous_quantity == 0:
            continue

        rate = to_number(item.rate)
        upto_quantity = previous_quantity + current_quantity
        rows.append(
            BillItem(
                id=f"bi-{item.id}",
                boq_item_id=item.id,
                item_no=item.item_no,
                description=item.description,
                unit=item.unit,
                contract_quantity=to_number(item.quantity),
                rate=rate,
                previous_quantity=previous_quantity,
                current_quantity=current_quantity,
                upto_date_quantity=upto_quantity,
                previous_amount=previous_quantity * rate,
                current_amount=current_quantity * rate,
                upto_date_amount=upto_quantity * rate,
            )
        )
    return rows


def compute_contract_bill(bill: ContractBill, settings: Optional[AppSettings] = None) -> ContractBill:
    vat_percent = BILL_DEFAULT_VAT_PERCENT
    if settings is not None and to_number(settings.vat_rate) > 0:
        vat_percent = to_number(settings.vat_rate)

    retention_percent = to_number(bill.retention_percent)
    if retention_percent < 0 or retention_percent > 100:
        raise ValueError("Retention percent must be between 0 and 100.")

    gross = sum(to_number(row.current_amount) for row in bill.items)
    with_cpa = gross + to_number(bill.cpa_amount)
    without_ps = with_cpa - to_number(bill.provisional_sum)
    vat_amount = with_cpa * vat_percent / 100
    total_with_vat = with_cpa + vat_amount
    retention_amount = with_cpa * retention_percent / 100
    advance_income_tax = with_cpa * BILL_AIT_PERCENT / 100
    dev_fund = with_cpa * BILL_DEV_FUND_PERCENT / 100
    deductable_vat = vat_amount * BILL_VAT_DEDUCTION_PERCENT / 100
    liquidated_damages = to_number(bill.liquidated_damages)
    advance_deduction = to_number(bill.advance_payment_deduction)

    net_amount = with_cpa - retention_amount - liquidated_damages - advance_deduction
    payable = (
        total_with_vat
        - retention_amount
        - advance_income_tax
        - dev_fund
        - deductable_vat
        - liquidated_damages
        - advance_deduction
    )

    return bill.model_copy(
        update={
            "gross_amount": gross,
            "bill_amount_gross": gross,
            "bill_amount_with_cpa": with_cpa,
            "bill_amount_without_ps": without_ps,
            "vat_amount": vat_amount,
            "total_bill_with_vat": total_with_vat,
            "retention_amount": retention_amount,
            "advance_income_tax": advance_income_tax,
            "contractor_dev_fund": dev_fund,
            "deductable_vat": deductable_vat,
            "net_amount": net_amount,
            "total_amount_payable": payable,
        }
    )


def compute_subcontractor_bill(bill: SubcontractorBill) -> SubcontractorBill:
    retention_percent = to_number(bill.retention_percent)
    if retention_percent < 0 or retention_percent > 100:
        raise ValueError("Retention percent must be between 0 and 100.")
    gross = sum(to_number(row.current_amount) for row in bill.items)
    return bill.model_copy(
        update={
            "gross_amount": gross,
            "net_amount": gross - gross * retention_percent / 100,
        }
    )


def next_bill_number(bills: Optional[Iterable[object]], prefix: str = "IPC") -> str:
    highest = 0
    marker = f"{prefix}-"
    for bill in bills or []:
        number = str(getattr(bill, "bill_number", "") or "")
        if not number.startswith(marker):
            continue
        suffix = number[len(marker):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}-{highest + 1:02d}"


def next_bill_order(project: Project) -> int:
    orders = [int(to_number(bill.order_of_bill)) for bill in project.contract_bills or []]
    return max(orders, default=0) + 1


def advance_bill_status(bill, target: str):
    current = getattr(bill, "status", "Draft")
    if target not in BILL_STATUS_FLOW:
        raise ValueError(f"Unknown bill status: {target}")
    if current not in BILL_STATUS_FLOW:
        raise ValueError(f"Unknown bill status: {current}")
    if BILL_STATUS_FLOW.index(target) != BILL_STATUS_FLOW.index(current) + 1:
        raise ValueError(f"Cannot move bill from {current} to {target}.")
    return bill.model_copy(update={"status": target})


def apply_bill_progress(project: Project, bill: ContractBill) -> Project:
    if bill.status not in ("Approved", "Paid"):
        raise ValueError("Only approved bills can update BOQ progress.")
    upto_by_item = {row.boq_item_id: to_number(row.upto_date_quantity) for row in bill.items}
    boq = []
    for item in project.boq or []:
        if item.id in upto_by_item:
            item = item.model_copy(update={"completed_quantity": upto_by_item[item.id]})
            item = item.model_copy(update={"status": derive_boq_status(item)})
        boq.append(item)
    return project.model_copy(update={"boq": boq})
