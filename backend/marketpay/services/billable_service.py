# Overview: Resolves gateway account references to the contract or attendance being paid.

"""
Billable Lookup

WHY: Gateways only know the string the payer typed in (a store number) or
the id printed on a stall ticket (an attendance id). This module turns that
string into the entity being paid, the amount it expects, and whether it
can be paid right now.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal

from ..extensions import db
from ..models import Attendance, Contract, Store, Transaction
from ..models.market import ATTENDANCE_PAID
from ..models.payments import STATUS_PAID
from marketpay.time_utils import day_bounds, utcnow
from . import period_service

KIND_CONTRACT = "CONTRACT"
KIND_ATTENDANCE = "ATTENDANCE"

_SEPARATORS = re.compile(r"[/\\,]")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class BillableMatch:
    kind: str
    expected_amount: Decimal | None
    is_payable: bool
    contract: Contract | None = None
    attendance: Attendance | None = None

    @property
    def contract_id(self) -> int | None:
        return self.contract.id if self.contract is not None else None

    @property
    def attendance_id(self) -> int | None:
        return self.attendance.id if self.attendance is not None else None


def normalize_store_number(value) -> str:
    """'A 12/3' -> 'A12.3': whitespace dropped, separators unified to '.'."""
    if value is None:
        return ""
    text = _WHITESPACE.sub("", str(value).strip())
    return _SEPARATORS.sub(".", text)


# =============================================================================
# CONTRACTS
# =============================================================================

def find_active_contract(store_number) -> Contract | None:
    number = normalize_store_number(store_number)
    if not number:
        return None
    return (
        db.session.query(Contract)
        .join(Store, Store.id == Contract.store_id)
        .filter(Store.store_number == number, Contract.is_active.is_(True))
        .order_by(Contract.id.desc())
        .first()
    )


def match_contract(contract: Contract) -> BillableMatch:
    """Payable unless the current month already has a PAID period row."""
    period_service.ensure_contract_seeded(contract.id)
    return BillableMatch(
        kind=KIND_CONTRACT,
        expected_amount=contract.shop_monthly_fee,
        is_payable=not period_service.is_current_month_paid(contract.id),
        contract=contract,
    )


def resolve_contract(store_number) -> BillableMatch | None:
    contract = find_active_contract(store_number)
    if contract is None:
        return None
    return match_contract(contract)


# =============================================================================
# ATTENDANCES
# =============================================================================

def attendance_paid_today(attendance_id: int) -> bool:
    start, end = day_bounds(utcnow().date())
    return (
        db.session.query(Transaction.id)
        .filter(
            Transaction.attendance_id == attendance_id,
            Transaction.status == STATUS_PAID,
            Transaction.created_at >= start,
            Transaction.created_at < end,
        )
        .first()
    ) is not None


def match_attendance(attendance: Attendance) -> BillableMatch:
    return BillableMatch(
        kind=KIND_ATTENDANCE,
        expected_amount=attendance.amount,
        is_payable=attendance.status != ATTENDANCE_PAID and not attendance_paid_today(attendance.id),
        attendance=attendance,
    )


def resolve_attendance(attendance_id) -> BillableMatch | None:
    text = str(attendance_id).strip() if attendance_id is not None else ""
    if not text.isdigit():
        return None
    attendance = db.session.get(Attendance, int(text))
    if attendance is None:
        return None
    return match_attendance(attendance)


# =============================================================================
# GENERIC REFERENCE
# =============================================================================

def resolve(reference) -> BillableMatch | None:
    """
    Store number first (active contract), then numeric attendance id.

    Returns None when neither matches; callers map that to their
    gateway's not-found code.
    """
    match = resolve_contract(reference)
    if match is not None:
        return match
    return resolve_attendance(reference)


def resolve_for_transaction(txn: Transaction) -> BillableMatch | None:
    """Re-read the billable a transaction is linked to."""
    if txn.contract_id is not None:
        contract = db.session.get(Contract, txn.contract_id)
        return match_contract(contract) if contract is not None else None
    attendance = db.session.get(Attendance, txn.attendance_id)
    return match_attendance(attendance) if attendance is not None else None
