# Overview: Service-layer operations for contract payment periods; allocation, backfill, snapshots and manual payments.

"""
Contract Period Allocator

WHY: A contract payment may cover several months at once, and "is this
month paid" must have one answer everywhere (gateways, operator screens,
reports). ContractPaymentPeriod rows are that answer; this module is the
only writer of PAID months.

DESIGN PRINCIPLES:
- One row per (contract, month); every write is an upsert, so replaying a
  transaction is harmless.
- PAID months are appended after the latest PAID month. The first
  allocation for a contract ends on the transaction's own month and never
  starts before the contract's issue month.
- Contracts that predate the period table are seeded lazily by replaying
  their PAID transactions oldest first (backfill).
- Gateway allocation rounds amount / fee; manual entry requires an exact
  multiple of the fee.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Contract, ContractPaymentPeriod, Transaction
from ..models.payments import (
    METHOD_CASH,
    PERIOD_PAID,
    PERIOD_PENDING,
    PERIOD_STATUSES,
    STATE_PAID,
    STATUS_PAID,
)
from ..validation import ConflictError, NotFoundError, ValidationError, parse_month
from marketpay.money import format_amount, to_decimal
from marketpay.time_utils import add_months, month_label, month_start, months_between, parse_iso_datetime, utcnow
from .concurrency import lock_for_update, run_with_retry

DEFAULT_MAX_PREPAID_MONTHS = 24


def _max_months() -> int:
    return int(current_app.config.get("MAX_PREPAID_MONTHS", DEFAULT_MAX_PREPAID_MONTHS))


def _clamp_months(months: int) -> int:
    return min(_max_months(), max(1, int(months)))


def get_contract(contract_id: int) -> Contract:
    contract = db.session.get(Contract, contract_id)
    if contract is None:
        raise NotFoundError(f"Contract {contract_id} not found")
    return contract


def contract_floor(contract: Contract) -> date:
    """Earliest month a contract can be billed for (issue month)."""
    return month_start(contract.issue_date or contract.created_at or utcnow())


def months_for_amount(amount, fee) -> int:
    """
    Months covered by a gateway payment: round(amount / fee), clamped.

    A missing or zero fee still allocates one month.
    """
    if fee is None or Decimal(fee) <= 0:
        return 1
    quotient = (Decimal(amount) / Decimal(fee)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return _clamp_months(int(quotient))


# =============================================================================
# PERIOD QUERIES
# =============================================================================

def latest_paid_period(contract_id: int) -> ContractPaymentPeriod | None:
    return (
        db.session.query(ContractPaymentPeriod)
        .filter_by(contract_id=contract_id, status=PERIOD_PAID)
        .order_by(ContractPaymentPeriod.period_start.desc())
        .first()
    )


def is_month_paid(contract_id: int, month: date) -> bool:
    return (
        db.session.query(ContractPaymentPeriod.id)
        .filter_by(contract_id=contract_id, status=PERIOD_PAID, period_start=month_start(month))
        .first()
    ) is not None


def is_current_month_paid(contract_id: int) -> bool:
    return is_month_paid(contract_id, utcnow().date())


def has_periods(contract_id: int) -> bool:
    return db.session.query(ContractPaymentPeriod.id).filter_by(contract_id=contract_id).first() is not None


def allocation_start(contract: Contract, reference, months: int) -> date:
    """
    First month a new allocation covers.

    After the latest PAID month if there is one; otherwise shifted back so
    the last covered month is the reference month, floored at the issue
    month.
    """
    latest = latest_paid_period(contract.id)
    if latest is not None:
        return add_months(latest.period_start, 1)

    start = add_months(month_start(reference or utcnow()), -(months - 1))
    floor = contract_floor(contract)
    return start if start >= floor else floor


# =============================================================================
# ALLOCATION
# =============================================================================

def upsert_sequential_periods(
    contract: Contract,
    start: date,
    months: int,
    status: str,
    amount=None,
    transaction_id: int | None = None,
    created_by_id: int | None = None,
    notes: str | None = None,
) -> list[ContractPaymentPeriod]:
    """
    Write `months` consecutive month rows starting at `start`.

    Existing rows are updated only when status or funding transaction
    differ; missing rows are inserted. Caller owns the commit.
    """
    periods = []
    for offset in range(months):
        period_start = add_months(start, offset)
        existing = (
            db.session.query(ContractPaymentPeriod)
            .filter_by(contract_id=contract.id, period_start=period_start)
            .first()
        )
        if existing is not None:
            if existing.status != status or existing.transaction_id != transaction_id:
                existing.status = status
                if transaction_id is not None:
                    existing.transaction_id = transaction_id
                if amount is not None:
                    existing.amount = amount
                if notes is not None:
                    existing.notes = notes
            periods.append(existing)
            continue

        period = ContractPaymentPeriod(
            contract_id=contract.id,
            period_start=period_start,
            period_end=add_months(period_start, 1),
            status=status,
            amount=amount,
            transaction_id=transaction_id,
            created_by_id=created_by_id,
            notes=notes,
        )
        db.session.add(period)
        periods.append(period)

    db.session.flush()
    return periods


def _allocate(transaction: Transaction) -> list[ContractPaymentPeriod]:
    if transaction.contract_id is None or transaction.status != STATUS_PAID:
        return []

    linked = db.session.query(ContractPaymentPeriod.id).filter_by(transaction_id=transaction.id).first()
    if linked is not None:
        return []

    contract = db.session.get(Contract, transaction.contract_id)
    fee = contract.shop_monthly_fee
    months = months_for_amount(transaction.amount, fee)
    start = allocation_start(contract, transaction.performed_at or transaction.created_at, months)

    periods = upsert_sequential_periods(
        contract,
        start,
        months,
        PERIOD_PAID,
        amount=fee if fee is not None else transaction.amount,
        transaction_id=transaction.id,
    )
    current_app.logger.info(
        "Allocated %s month(s) from %s for contract %s (transaction %s)",
        months, month_label(start), contract.id, transaction.external_reference,
    )
    return periods


def ensure_contract_seeded(contract_id: int) -> int:
    """
    Backfill a contract that has no period rows yet.

    Replays every PAID transaction, oldest first, through the allocator.
    Returns the number of transactions replayed. Caller owns the commit.
    """
    if has_periods(contract_id):
        return 0

    transactions = (
        db.session.query(Transaction)
        .filter_by(contract_id=contract_id, status=STATUS_PAID)
        .order_by(Transaction.created_at.asc(), Transaction.id.asc())
        .all()
    )
    for txn in transactions:
        _allocate(txn)
    return len(transactions)


def ensure_contracts_seeded(contract_ids) -> int:
    """Backfill every listed contract lacking period rows; returns contracts seeded."""
    seeded = 0
    for contract_id in contract_ids:
        if ensure_contract_seeded(contract_id):
            seeded += 1
    return seeded


def seed_and_commit(contract_ids) -> int:
    """Backfill outside a ledger write (read paths, CLI) and persist the result."""
    ids = list(contract_ids)

    def _op():
        seeded = ensure_contracts_seeded(ids)
        db.session.commit()
        return seeded

    return run_with_retry(_op, retry_on=(IntegrityError,))


def allocate(transaction: Transaction) -> list[ContractPaymentPeriod]:
    """
    Turn a PAID contract transaction into PAID month rows.

    No-op for attendance payments, unpaid transactions, and transactions
    already linked to a period. Caller owns the commit.
    """
    if transaction.contract_id is None or transaction.status != STATUS_PAID:
        return []
    ensure_contract_seeded(transaction.contract_id)
    return _allocate(transaction)


def release_transaction_periods(transaction: Transaction, note: str) -> int:
    """Reopen the months a reversed transaction paid for. Caller owns the commit."""
    periods = (
        db.session.query(ContractPaymentPeriod)
        .filter_by(transaction_id=transaction.id, status=PERIOD_PAID)
        .all()
    )
    for period in periods:
        period.status = PERIOD_PENDING
        period.notes = note
    return len(periods)


# =============================================================================
# SNAPSHOT / LISTING
# =============================================================================

def build_snapshot(contract: Contract) -> dict:
    latest = latest_paid_period(contract.id)
    now_month = month_start(utcnow())
    paid_through = latest.period_end if latest is not None else None
    next_period_start = paid_through if paid_through is not None else contract_floor(contract)
    months_ahead = months_between(now_month, next_period_start)
    return {
        "paid_through": paid_through.isoformat() if paid_through else None,
        "next_period_start": next_period_start.isoformat(),
        "months_ahead": months_ahead if months_ahead > 0 else 0,
        "has_current_period_paid": is_month_paid(contract.id, now_month),
    }


def get_snapshot(contract_id: int) -> dict:
    contract = get_contract(contract_id)
    seed_and_commit([contract.id])
    return build_snapshot(contract)


def list_periods(contract_id: int) -> dict:
    contract = get_contract(contract_id)
    seed_and_commit([contract.id])
    items = (
        db.session.query(ContractPaymentPeriod)
        .filter_by(contract_id=contract.id)
        .order_by(ContractPaymentPeriod.period_start.asc())
        .all()
    )
    return {
        "contract_id": contract.id,
        "items": [p.to_dict() for p in items],
        "snapshot": build_snapshot(contract),
    }


# =============================================================================
# OPERATOR CORRECTIONS
# =============================================================================

def _check_status(status: str) -> str:
    status = (status or "").strip().upper()
    if status not in PERIOD_STATUSES:
        raise ValidationError(f"status must be one of {list(PERIOD_STATUSES)}")
    return status


def _check_transaction_link(contract: Contract, transaction_id: int | None) -> int | None:
    if transaction_id is None:
        return None
    txn = db.session.get(Transaction, transaction_id)
    if txn is None or txn.contract_id != contract.id:
        raise ValidationError(f"Transaction {transaction_id} does not belong to contract {contract.id}")
    return txn.id


def create_periods(
    contract_id: int,
    start_month: date,
    months: int = 1,
    status: str = PERIOD_PAID,
    amount=None,
    transaction_id: int | None = None,
    notes: str | None = None,
    created_by_id: int | None = None,
) -> dict:
    """
    Operator-written months (e.g. marking arrears SKIPPED).

    Same upsert as the allocator, so re-submitting is harmless.
    """
    def _op():
        contract = get_contract(contract_id)
        period_status = _check_status(status)
        if months < 1 or months > _max_months():
            raise ValidationError(f"months must be between 1 and {_max_months()}")
        linked_id = _check_transaction_link(contract, transaction_id)
        ensure_contract_seeded(contract.id)

        period_amount = amount if amount is not None else contract.shop_monthly_fee
        upsert_sequential_periods(
            contract,
            month_start(start_month),
            months,
            period_status,
            amount=period_amount,
            transaction_id=linked_id,
            created_by_id=created_by_id,
            notes=notes,
        )
        db.session.commit()
        current_app.logger.info(
            "Contract %s: %s month(s) from %s set to %s",
            contract.id, months, month_label(start_month), period_status,
        )
        return list_periods(contract.id)

    try:
        return run_with_retry(_op, retry_on=(IntegrityError,))
    except (ValidationError, NotFoundError):
        db.session.rollback()
        raise


def update_period(
    contract_id: int,
    period_id: int,
    status: str | None = None,
    amount=None,
    notes: str | None = None,
    transaction_id: int | None = None,
) -> ContractPaymentPeriod:
    def _op():
        contract = get_contract(contract_id)
        period = lock_for_update(
            db.session.query(ContractPaymentPeriod).filter_by(id=period_id, contract_id=contract.id)
        ).first()
        if period is None:
            raise NotFoundError(f"Period {period_id} not found for contract {contract.id}")

        if status is not None:
            period.status = _check_status(status)
        if amount is not None:
            period.amount = amount
        if notes is not None:
            period.notes = notes
        if transaction_id is not None:
            period.transaction_id = _check_transaction_link(contract, transaction_id)

        db.session.commit()
        return period

    try:
        return run_with_retry(_op)
    except (ValidationError, NotFoundError):
        db.session.rollback()
        raise


# =============================================================================
# MANUAL PAYMENT
# =============================================================================

def record_manual_payment(
    contract_id: int,
    transfer_number: str | None,
    transfer_date: str | None = None,
    amount=None,
    months: int | None = None,
    start_month: str | None = None,
    notes: str | None = None,
    created_by_id: int | None = None,
) -> dict:
    """
    Record a bank transfer / cash desk payment for a contract.

    Creates a PAID CASH transaction dated at the transfer date and writes
    its months in the same database transaction. Nothing is written when
    any check fails.

    Raises:
        NotFoundError: contract missing
        ConflictError: current month already paid, or transfer number reused
        ValidationError: malformed input or fee not configured
    """
    def _op():
        contract = get_contract(contract_id)
        ensure_contract_seeded(contract.id)

        if is_current_month_paid(contract.id):
            raise ConflictError("Current period already paid; manual payment not allowed")

        reference = (transfer_number or "").strip()
        if not reference:
            raise ValidationError("transfer_number is required")
        if db.session.query(Transaction.id).filter_by(external_reference=reference).first():
            raise ConflictError("A transaction with this transfer_number already exists")

        fee = contract.shop_monthly_fee
        if fee is None or Decimal(fee) <= 0:
            raise ValidationError("Contract monthly fee is not configured")
        fee = Decimal(fee)

        month_count = _clamp_months(months) if months else None
        if amount is not None:
            try:
                total = to_decimal(amount)
            except ValueError:
                raise ValidationError("Invalid amount")
            if total <= 0:
                raise ValidationError("Invalid amount")
            quotient = total / fee
            if quotient != quotient.to_integral_value():
                raise ValidationError("Amount must be an exact multiple of the monthly fee")
            if month_count is None:
                month_count = _clamp_months(int(quotient))
            elif total != fee * month_count:
                raise ValidationError("Amount does not match months * monthly fee")
        if month_count is None:
            month_count = 1
        total = fee * month_count if amount is None else to_decimal(amount)

        explicit_start = parse_month(start_month) if start_month else None

        try:
            paid_at = parse_iso_datetime(transfer_date) if transfer_date else utcnow()
        except (TypeError, ValueError):
            raise ValidationError("transfer_date is invalid")

        txn = Transaction(
            external_reference=reference,
            amount=total,
            status=STATUS_PAID,
            payment_method=METHOD_CASH,
            contract_id=contract.id,
            gateway_state=STATE_PAID,
            created_at=paid_at,
            performed_at=paid_at,
        )
        db.session.add(txn)
        db.session.flush()

        start = explicit_start or allocation_start(contract, paid_at, month_count)
        upsert_sequential_periods(
            contract,
            start,
            month_count,
            PERIOD_PAID,
            amount=fee,
            transaction_id=txn.id,
            created_by_id=created_by_id,
            notes=notes,
        )
        db.session.commit()

        current_app.logger.info(
            "Manual payment %s for contract %s: %s covering %s month(s) from %s",
            reference, contract.id, format_amount(total), month_count, month_label(start),
        )
        result = list_periods(contract.id)
        result["transaction"] = txn.to_dict()
        return result

    try:
        return run_with_retry(_op)
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A transaction with this transfer_number already exists")
    except (ValidationError, ConflictError, NotFoundError):
        db.session.rollback()
        raise
