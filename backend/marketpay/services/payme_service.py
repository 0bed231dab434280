# Overview: Payme merchant JSON-RPC methods on top of the transaction ledger.

"""
Payme Adapter

Payme drives the payment with JSON-RPC calls against one endpoint:

    CheckPerformTransaction -> CreateTransaction -> PerformTransaction
                                      \\-> CancelTransaction
    CheckTransaction / GetStatement are read-only.

Wire conventions:
- amounts are tiyin (1/100 sum); the ledger stores sums
- times are epoch milliseconds
- params.id is Payme's transaction id and our external reference
- account.contractId is the store number, account.attendanceId the attendance id

Every reply is HTTP 200; failures are `error` members, never exceptions.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Contract, Store, Transaction
from ..models.payments import METHOD_PAYME, REASON_EXPIRED, STATUS_CANCELED, STATUS_PENDING
from marketpay.money import from_tiyin, to_tiyin
from marketpay.time_utils import from_epoch_ms, to_epoch_ms
from . import billable_service, transaction_service
from . import payme_errors as errors
from .billable_service import BillableMatch
from .payme_errors import PaymeException
from .payment_errors import AlreadyPaid, AmountMismatch, BillableNotFound, TransactionNotFound, TransactionNotPending


def _blank(value) -> bool:
    return value is None or str(value).strip() in ("", "null", "0")


def _resolve_account(params: dict) -> BillableMatch:
    account = params.get("account")
    if not isinstance(account, dict):
        raise PaymeException(errors.ACCOUNT_NOT_FOUND)

    contract_ref = account.get("contractId")
    attendance_ref = account.get("attendanceId")
    if not _blank(contract_ref):
        match = billable_service.resolve_contract(contract_ref)
    elif not _blank(attendance_ref):
        match = billable_service.resolve_attendance(attendance_ref)
    else:
        raise PaymeException(errors.ACCOUNT_NOT_FOUND)

    if match is None:
        raise PaymeException(errors.ACCOUNT_NOT_FOUND)
    return match


def _requested_amount(params: dict) -> Decimal:
    try:
        return from_tiyin(params.get("amount"))
    except ValueError:
        raise PaymeException(errors.INVALID_AMOUNT)


def _check(params: dict) -> tuple[BillableMatch, Decimal]:
    match = _resolve_account(params)
    if not match.is_payable:
        raise PaymeException(errors.ALREADY_DONE)
    amount = _requested_amount(params)
    if match.expected_amount is None or Decimal(match.expected_amount) != amount:
        raise PaymeException(errors.INVALID_AMOUNT)
    return match, amount


def _transaction_id(params: dict) -> str:
    payme_id = params.get("id")
    if _blank(payme_id):
        raise PaymeException(errors.TRANSACTION_NOT_FOUND)
    return str(payme_id)


def _expired_error(txn: Transaction) -> PaymeException:
    return PaymeException(errors.CANT_DO_OPERATION, state=txn.gateway_state, reason=txn.cancel_reason)


# =============================================================================
# METHODS
# =============================================================================

def check_perform_transaction(params: dict) -> dict:
    """Billable and amount check only; writes nothing."""
    _check(params)
    return {"allow": True}


def create_transaction(params: dict) -> dict:
    payme_id = _transaction_id(params)

    existing = transaction_service.find(payme_id)
    if existing is not None:
        match = _resolve_account(params)
        if (match.contract_id, match.attendance_id) != (existing.contract_id, existing.attendance_id):
            raise PaymeException(errors.ACCOUNT_NOT_FOUND)
        if _requested_amount(params) != Decimal(existing.amount):
            raise PaymeException(errors.INVALID_AMOUNT)
        if existing.status != STATUS_PENDING:
            raise PaymeException(errors.CANT_DO_OPERATION)
        txn = transaction_service.create_or_get_pending(payme_id, existing.amount, METHOD_PAYME)
        if txn.status == STATUS_CANCELED and txn.cancel_reason == REASON_EXPIRED:
            raise _expired_error(txn)
        if txn.status != STATUS_PENDING:
            raise PaymeException(errors.CANT_DO_OPERATION)
        return _create_result(txn)

    match, amount = _check(params)

    if match.attendance is not None:
        active = transaction_service.find_active_for_attendance(match.attendance_id)
        if active is not None and active.external_reference != payme_id:
            raise PaymeException(errors.ATTENDANCE_BUSY)

    try:
        txn = transaction_service.create_or_get_pending(payme_id, amount, METHOD_PAYME, billable=match)
    except AmountMismatch:
        raise PaymeException(errors.INVALID_AMOUNT)
    except AlreadyPaid:
        raise PaymeException(errors.ALREADY_DONE)
    except BillableNotFound:
        raise PaymeException(errors.ACCOUNT_NOT_FOUND)

    if txn.status != STATUS_PENDING:
        if txn.cancel_reason == REASON_EXPIRED:
            raise _expired_error(txn)
        raise PaymeException(errors.CANT_DO_OPERATION)
    return _create_result(txn)


def _create_result(txn: Transaction) -> dict:
    return {
        "transaction": str(txn.id),
        "state": txn.gateway_state,
        "create_time": to_epoch_ms(txn.created_at),
    }


def perform_transaction(params: dict) -> dict:
    payme_id = _transaction_id(params)
    try:
        txn = transaction_service.perform(payme_id)
    except TransactionNotFound:
        raise PaymeException(errors.TRANSACTION_NOT_FOUND)
    except TransactionNotPending as exc:
        if exc.transaction.cancel_reason == REASON_EXPIRED:
            raise _expired_error(exc.transaction)
        raise PaymeException(errors.CANT_DO_OPERATION)

    return {
        "transaction": str(txn.id),
        "perform_time": to_epoch_ms(txn.performed_at),
        "state": txn.gateway_state,
    }


def cancel_transaction(params: dict) -> dict:
    payme_id = _transaction_id(params)
    reason = params.get("reason")
    try:
        reason = int(reason) if reason is not None else None
    except (TypeError, ValueError):
        reason = None

    try:
        txn = transaction_service.cancel(payme_id, reason)
    except TransactionNotFound:
        raise PaymeException(errors.TRANSACTION_NOT_FOUND)

    return {
        "transaction": str(txn.id),
        "cancel_time": to_epoch_ms(txn.canceled_at),
        "state": txn.gateway_state,
    }


def check_transaction(params: dict) -> dict:
    payme_id = _transaction_id(params)
    txn = transaction_service.find(payme_id)
    if txn is None:
        raise PaymeException(errors.TRANSACTION_NOT_FOUND)
    return {
        "create_time": to_epoch_ms(txn.created_at),
        "perform_time": to_epoch_ms(txn.performed_at),
        "cancel_time": to_epoch_ms(txn.canceled_at),
        "transaction": str(txn.id),
        "state": txn.gateway_state,
        "reason": txn.cancel_reason,
    }


def get_statement(params: dict) -> dict:
    try:
        start = from_epoch_ms(int(params.get("from")))
        end = from_epoch_ms(int(params.get("to")))
    except (TypeError, ValueError):
        raise PaymeException(errors.PARSE_ERROR)

    rows = (
        db.session.query(Transaction)
        .filter(
            Transaction.payment_method == METHOD_PAYME,
            Transaction.created_at >= start,
            Transaction.created_at <= end,
        )
        .order_by(Transaction.created_at.asc(), Transaction.id.asc())
        .all()
    )

    store_numbers = {}
    contract_ids = {t.contract_id for t in rows if t.contract_id is not None}
    if contract_ids:
        pairs = (
            db.session.query(Contract.id, Store.store_number)
            .join(Store, Store.id == Contract.store_id)
            .filter(Contract.id.in_(contract_ids))
            .all()
        )
        store_numbers = dict(pairs)

    transactions = []
    for txn in rows:
        account = {}
        if txn.contract_id is not None:
            account["contractId"] = store_numbers.get(txn.contract_id)
        else:
            account["attendanceId"] = txn.attendance_id
        transactions.append({
            "id": txn.external_reference,
            "time": to_epoch_ms(txn.created_at),
            "amount": to_tiyin(txn.amount),
            "account": account,
            "create_time": to_epoch_ms(txn.created_at),
            "perform_time": to_epoch_ms(txn.performed_at),
            "cancel_time": to_epoch_ms(txn.canceled_at),
            "transaction": str(txn.id),
            "state": txn.gateway_state,
            "reason": txn.cancel_reason,
        })
    return {"transactions": transactions}


METHODS = {
    "CheckPerformTransaction": check_perform_transaction,
    "CreateTransaction": create_transaction,
    "PerformTransaction": perform_transaction,
    "CancelTransaction": cancel_transaction,
    "CheckTransaction": check_transaction,
    "GetStatement": get_statement,
}


# =============================================================================
# DISPATCH
# =============================================================================

def error_reply(rpc_id, error: errors.PaymeError, **extra) -> dict:
    return {"id": rpc_id, "error": error.body(**extra)}


def handle(payload) -> dict:
    """Dispatch one JSON-RPC request; always returns a reply body."""
    if not isinstance(payload, dict):
        return error_reply(None, errors.PARSE_ERROR)

    rpc_id = payload.get("id")
    method = payload.get("method")
    handler = METHODS.get(method)
    if handler is None:
        return error_reply(rpc_id, errors.METHOD_NOT_FOUND, data=method)

    params = payload.get("params") or {}
    if not isinstance(params, dict):
        return error_reply(rpc_id, errors.PARSE_ERROR)

    try:
        result = handler(params)
    except PaymeException as exc:
        db.session.rollback()
        current_app.logger.info("Payme %s rejected: %s", method, exc)
        return error_reply(rpc_id, exc.error, **exc.extra)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Payme %s failed", method)
        return error_reply(rpc_id, errors.SYSTEM_ERROR)

    return {"id": rpc_id, "result": result}
