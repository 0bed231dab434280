# Overview: Transaction ledger; the payment state machine shared by Click, Payme and manual entry.

"""
Transaction Ledger

WHY: Gateways deliver webhooks at least once, out of order, and retry at
will. Every payment attempt is therefore keyed by an external reference
and every operation here is idempotent against that key.

STATE MACHINE:
    PENDING --perform--> PAID --cancel--> CANCELED (state -2, reversal)
    PENDING --cancel---> CANCELED (state -1)
    PENDING older than PENDING_EXPIRY_MINUTES --any access--> CANCELED (reason 4)

Expiry is evaluated lazily, only when someone touches the transaction.
An attendance takes exactly one payment: when two reservations race, the
second to perform is canceled (reason 3) instead of paid. Those two
cancellations are the only writes that survive a failed call.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Attendance, Transaction
from ..models.market import ATTENDANCE_PAID, ATTENDANCE_UNPAID
from ..models.payments import (
    PAYMENT_METHODS,
    REASON_EXPIRED,
    REASON_GATEWAY_ERROR,
    STATE_PAID,
    STATE_PAID_CANCELED,
    STATE_PENDING,
    STATE_PENDING_CANCELED,
    STATUS_CANCELED,
    STATUS_PAID,
    STATUS_PENDING,
)
from marketpay.money import format_amount, to_decimal
from marketpay.time_utils import utcnow
from . import billable_service, period_service
from .billable_service import BillableMatch
from .concurrency import lock_for_update, run_with_retry
from .payment_errors import (
    AlreadyPaid,
    AmountMismatch,
    BillableNotFound,
    PaymentError,
    TransactionNotFound,
    TransactionNotPending,
)

DEFAULT_PENDING_EXPIRY_MINUTES = 720

REVERSAL_NOTE = "reversed: funding transaction canceled"


def expiry_window() -> timedelta:
    minutes = current_app.config.get("PENDING_EXPIRY_MINUTES", DEFAULT_PENDING_EXPIRY_MINUTES)
    return timedelta(minutes=int(minutes))


def is_expired(txn: Transaction, now: datetime | None = None) -> bool:
    if txn.status != STATUS_PENDING or txn.created_at is None:
        return False
    created = txn.created_at.replace(tzinfo=None) if txn.created_at.tzinfo else txn.created_at
    return (now or utcnow()) - created > expiry_window()


# =============================================================================
# LOOKUPS
# =============================================================================

def find(external_reference: str) -> Transaction | None:
    return db.session.query(Transaction).filter_by(external_reference=str(external_reference)).first()


def get(external_reference: str) -> Transaction:
    txn = find(external_reference)
    if txn is None:
        raise TransactionNotFound(f"Transaction {external_reference} not found")
    return txn


def get_by_id(transaction_id: int) -> Transaction:
    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise TransactionNotFound(f"Transaction {transaction_id} not found")
    return txn


def _locked(external_reference: str) -> Transaction | None:
    return lock_for_update(
        db.session.query(Transaction).filter_by(external_reference=str(external_reference))
    ).first()


def find_active_for_attendance(attendance_id: int) -> Transaction | None:
    """
    Most recent live PENDING or PAID transaction for an attendance, any method.

    Stale PENDING rows met on the way are expired (and committed).
    """
    rows = (
        db.session.query(Transaction)
        .filter(
            Transaction.attendance_id == attendance_id,
            Transaction.status.in_([STATUS_PENDING, STATUS_PAID]),
        )
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .all()
    )
    for txn in rows:
        if is_expired(txn):
            _expire(txn)
            continue
        return txn
    return None


def list_transactions(
    start: datetime | None = None,
    end: datetime | None = None,
    method: str | None = None,
    status: str | None = None,
    contract_id: int | None = None,
    attendance_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Transaction], int]:
    """Filtered, newest-first page of transactions plus the total count."""
    query = db.session.query(Transaction)
    if start is not None:
        query = query.filter(Transaction.created_at >= start)
    if end is not None:
        query = query.filter(Transaction.created_at < end)
    if method:
        query = query.filter(Transaction.payment_method == method.upper())
    if status:
        query = query.filter(Transaction.status == status.upper())
    if contract_id is not None:
        query = query.filter(Transaction.contract_id == contract_id)
    if attendance_id is not None:
        query = query.filter(Transaction.attendance_id == attendance_id)

    total = query.count()
    rows = (
        query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


# =============================================================================
# STATE TRANSITIONS
# =============================================================================

def _mark_canceled(txn: Transaction, reason: int | None, now: datetime) -> None:
    was_paid = txn.status == STATUS_PAID
    txn.status = STATUS_CANCELED
    txn.gateway_state = STATE_PAID_CANCELED if was_paid else STATE_PENDING_CANCELED
    txn.cancel_reason = reason
    txn.canceled_at = now

    if not was_paid:
        return

    # Reversal: give the billable back
    if txn.attendance_id is not None:
        attendance = db.session.get(Attendance, txn.attendance_id)
        if attendance is not None and attendance.transaction_id == txn.id:
            attendance.status = ATTENDANCE_UNPAID
            attendance.transaction_id = None
    if txn.contract_id is not None:
        period_service.release_transaction_periods(txn, REVERSAL_NOTE)


def _paid_by_another(txn: Transaction, attendance: Attendance | None) -> bool:
    """An attendance takes one payment; competing reservations lose at perform time."""
    if attendance is not None and attendance.status == ATTENDANCE_PAID and attendance.transaction_id != txn.id:
        return True
    return (
        db.session.query(Transaction.id)
        .filter(
            Transaction.attendance_id == txn.attendance_id,
            Transaction.status == STATUS_PAID,
            Transaction.id != txn.id,
        )
        .first()
    ) is not None


def _expire(txn: Transaction) -> Transaction:
    """Cancel an expired PENDING row and commit (survives the caller's failure)."""
    _mark_canceled(txn, REASON_EXPIRED, utcnow())
    db.session.commit()
    current_app.logger.info("Transaction %s expired after %s", txn.external_reference, expiry_window())
    return txn


def create_or_get_pending(
    external_reference: str,
    amount,
    method: str,
    billable: BillableMatch | None = None,
    reference: str | None = None,
) -> Transaction:
    """
    Idempotent creation of a PENDING transaction.

    Args:
        external_reference: caller's idempotency key
        amount: amount the gateway intends to charge (currency units)
        method: CLICK, PAYME or CASH
        billable: pre-resolved billable; resolved from `reference` if omitted
        reference: account reference used when billable is None

    Returns:
        The existing transaction unchanged (expired PENDING rows come back
        canceled), or a newly inserted PENDING transaction.

    Raises:
        BillableNotFound, AlreadyPaid
        AmountMismatch: also for amounts that do not parse or carry
            sub-cent digits
    """
    if method not in PAYMENT_METHODS:
        raise PaymentError(f"Invalid payment method: {method}. Must be one of {list(PAYMENT_METHODS)}")
    external_reference = str(external_reference)
    try:
        requested = to_decimal(amount)
    except ValueError:
        raise AmountMismatch(None, str(amount))

    def _op():
        existing = _locked(external_reference)
        if existing is not None:
            if is_expired(existing):
                return _expire(existing)
            return existing

        match = billable
        if match is None:
            match = billable_service.resolve(reference if reference is not None else external_reference)
        if match is None:
            raise BillableNotFound(f"No billable found for {reference or external_reference}")
        if not match.is_payable:
            raise AlreadyPaid(f"{match.kind.title()} is already paid")

        expected = match.expected_amount
        if expected is None or Decimal(expected) != requested:
            raise AmountMismatch(format_amount(expected), format_amount(requested))

        txn = Transaction(
            external_reference=external_reference,
            amount=requested,
            status=STATUS_PENDING,
            payment_method=method,
            contract_id=match.contract_id,
            attendance_id=match.attendance_id,
            gateway_state=STATE_PENDING,
            created_at=utcnow(),
        )
        db.session.add(txn)
        db.session.commit()
        current_app.logger.info(
            "Transaction %s created PENDING via %s for %s (%s)",
            external_reference, method, match.kind, format_amount(requested),
        )
        return txn

    try:
        return run_with_retry(_op)
    except IntegrityError:
        # Lost the insert race: the winner's row is the answer
        db.session.rollback()
        winner = find(external_reference)
        if winner is None:
            raise
        if is_expired(winner):
            return _expire(winner)
        return winner
    except PaymentError:
        db.session.rollback()
        raise


def perform(external_reference: str) -> Transaction:
    """
    PENDING -> PAID, applying the billable side effects in the same commit.

    Attendance payments flip the attendance to PAID and link it; contract
    payments go through the period allocator. Re-performing a PAID
    transaction returns it unchanged.

    Raises:
        TransactionNotFound
        TransactionNotPending: canceled, failed, expired, or its attendance
            was paid by another transaction (the cancellation is committed
            before raising)
    """
    external_reference = str(external_reference)

    def _op():
        txn = _locked(external_reference)
        if txn is None:
            raise TransactionNotFound(f"Transaction {external_reference} not found")
        if txn.status == STATUS_PAID:
            return txn
        if is_expired(txn):
            _expire(txn)
            raise TransactionNotPending(txn, f"Transaction {external_reference} expired")
        if txn.status != STATUS_PENDING:
            raise TransactionNotPending(txn)

        now = utcnow()
        attendance = None
        if txn.attendance_id is not None:
            attendance = lock_for_update(
                db.session.query(Attendance).filter_by(id=txn.attendance_id)
            ).first()
            if _paid_by_another(txn, attendance):
                _mark_canceled(txn, REASON_GATEWAY_ERROR, now)
                db.session.commit()
                current_app.logger.warning(
                    "Transaction %s canceled: attendance %s already paid",
                    external_reference, txn.attendance_id,
                )
                raise TransactionNotPending(txn, f"Attendance {txn.attendance_id} is already paid")

        txn.status = STATUS_PAID
        txn.gateway_state = STATE_PAID
        txn.performed_at = now
        db.session.flush()

        if txn.attendance_id is not None:
            if attendance is not None:
                attendance.status = ATTENDANCE_PAID
                attendance.transaction_id = txn.id
        else:
            period_service.allocate(txn)

        db.session.commit()
        current_app.logger.info("Transaction %s performed (%s)", external_reference, txn.payment_method)
        return txn

    try:
        return run_with_retry(_op, retry_on=(IntegrityError,))
    except TransactionNotPending:
        raise
    except PaymentError:
        db.session.rollback()
        raise


def release_pending(external_reference: str, reason: int | None = None) -> Transaction | None:
    """
    Cancel a PENDING transaction inside the caller's unit of work.

    Nothing is committed here; the caller commits this together with its
    own writes. Rows that are not PENDING are returned untouched.
    """
    txn = _locked(external_reference)
    if txn is None or txn.status != STATUS_PENDING:
        return txn
    _mark_canceled(txn, reason, utcnow())
    return txn


def cancel(external_reference: str, reason: int | None = None) -> Transaction:
    """
    Cancel a PENDING (state -1) or reverse a PAID (state -2) transaction.

    Already canceled transactions are returned unchanged with their
    original cancel time and reason.
    """
    external_reference = str(external_reference)

    def _op():
        txn = _locked(external_reference)
        if txn is None:
            raise TransactionNotFound(f"Transaction {external_reference} not found")
        if txn.status == STATUS_CANCELED:
            return txn

        _mark_canceled(txn, reason, utcnow())
        db.session.commit()
        current_app.logger.info(
            "Transaction %s canceled (state %s, reason %s)",
            external_reference, txn.gateway_state, reason,
        )
        return txn

    try:
        return run_with_retry(_op)
    except PaymentError:
        db.session.rollback()
        raise

