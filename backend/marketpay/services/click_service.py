# Overview: Click prepare/complete protocol on top of the transaction ledger.

"""
Click Adapter

Click pays in two calls:
- prepare (action=0): reserve. We create a PENDING ledger row and a
  ClickTransaction whose id becomes merchant_prepare_id.
- complete (action=1): confirm or abort. We perform (or cancel) the
  ledger row and echo the ClickTransaction id as merchant_confirm_id.

Every reply is a flat envelope echoing click_trans_id / merchant_trans_id
with a numeric error code; successful replies carry our own sign_string.
Business failures never raise out of this module.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import ClickTransaction
from ..models.payments import (
    CLICK_CANCELED,
    CLICK_OPEN,
    CLICK_PAID,
    METHOD_CLICK,
    REASON_GATEWAY_ERROR,
    STATUS_CANCELED,
    STATUS_FAILED,
    STATUS_PAID,
)
from marketpay.money import to_decimal
from . import billable_service, transaction_service
from .concurrency import lock_for_update
from .payment_errors import AlreadyPaid, AmountMismatch, BillableNotFound, TransactionNotFound, TransactionNotPending
from .signature_service import SignatureVerifier

# =============================================================================
# CLICK ERROR CODES
# =============================================================================

SUCCESS = 0
SIGN_CHECK_FAILED = -1
INCORRECT_AMOUNT = -2
ALREADY_PAID = -4
USER_NOT_FOUND = -5
TRANSACTION_NOT_FOUND = -6
SYSTEM_ERROR = -8
TRANSACTION_CANCELLED = -9

ERROR_NOTES = {
    SUCCESS: "Success",
    SIGN_CHECK_FAILED: "SIGN CHECK FAILED",
    INCORRECT_AMOUNT: "Incorrect amount",
    ALREADY_PAID: "Already paid",
    USER_NOT_FOUND: "Already paid for current period",
    TRANSACTION_NOT_FOUND: "Transaction not found",
    SYSTEM_ERROR: "System error",
    TRANSACTION_CANCELLED: "Transaction cancelled",
}

ACTION_PREPARE = 0
ACTION_COMPLETE = 1


def external_reference_for(click_trans_id) -> str:
    return f"CLICK-{click_trans_id}"


def _verifier() -> SignatureVerifier:
    return current_app.extensions["click_signatures"]


def _tenant_id() -> str:
    return current_app.config.get("CLICK_TENANT_ID", "")


def _int_field(fields, name: str, default: int = 0) -> int:
    value = fields.get(name)
    if value is None or str(value).strip() == "":
        return default
    return int(str(value).strip())


def _reply(fields, error: int, note: str | None = None, **extra) -> dict:
    body = {
        "click_trans_id": fields.get("click_trans_id"),
        "merchant_trans_id": fields.get("merchant_trans_id"),
    }
    body.update(extra)
    body["error"] = error
    body["error_note"] = note or ERROR_NOTES.get(error, "")
    return body


def _signature_ok(fields, stage: str) -> bool:
    ok = _verifier().verify(_tenant_id(), fields, fields.get("sign_string"))
    if not ok:
        current_app.logger.warning(
            "Click %s signature rejected (tenant=%s click_trans_id=%s)",
            stage, _tenant_id(), fields.get("click_trans_id"),
        )
    return ok


# =============================================================================
# PREPARE
# =============================================================================

def prepare(fields) -> dict:
    """Handle action=0. Returns the reply envelope; never raises."""
    try:
        return _prepare(fields)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Click prepare failed (click_trans_id=%s)", fields.get("click_trans_id"))
        return _reply(fields, SYSTEM_ERROR)


def _prepare(fields) -> dict:
    if not _signature_ok(fields, "prepare"):
        return _reply(fields, SIGN_CHECK_FAILED)

    click_trans_id = str(fields.get("click_trans_id") or "").strip()
    merchant_trans_id = str(fields.get("merchant_trans_id") or "").strip()
    try:
        amount = to_decimal(fields.get("amount"))
    except ValueError:
        return _reply(fields, INCORRECT_AMOUNT)

    if db.session.query(ClickTransaction.id).filter_by(click_trans_id=click_trans_id).first():
        return _reply(fields, ALREADY_PAID, "Duplicate transaction")

    match = billable_service.resolve(merchant_trans_id)
    if match is None:
        return _reply(fields, TRANSACTION_NOT_FOUND, "Billable not found")
    if not match.is_payable:
        return _reply(fields, USER_NOT_FOUND)

    try:
        txn = transaction_service.create_or_get_pending(
            external_reference_for(click_trans_id),
            amount,
            METHOD_CLICK,
            billable=match,
        )
    except AmountMismatch:
        return _reply(fields, INCORRECT_AMOUNT)
    except AlreadyPaid:
        return _reply(fields, USER_NOT_FOUND)
    except BillableNotFound:
        return _reply(fields, TRANSACTION_NOT_FOUND, "Billable not found")

    if txn.status in (STATUS_CANCELED, STATUS_FAILED):
        return _reply(fields, TRANSACTION_CANCELLED)
    if txn.status == STATUS_PAID:
        return _reply(fields, ALREADY_PAID)

    record = ClickTransaction(
        click_trans_id=click_trans_id,
        click_paydoc_id=fields.get("click_paydoc_id"),
        merchant_trans_id=merchant_trans_id,
        transaction_id=txn.id,
        amount=amount,
        action=ACTION_PREPARE,
        sign_time=fields.get("sign_time"),
        status=CLICK_OPEN,
        error=SUCCESS,
    )
    db.session.add(record)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return _reply(fields, ALREADY_PAID, "Duplicate transaction")

    current_app.logger.info(
        "Click prepare %s -> merchant_prepare_id %s (transaction %s)",
        click_trans_id, record.id, txn.external_reference,
    )
    signed = dict(fields)
    signed["merchant_prepare_id"] = record.id
    return _reply(
        fields,
        SUCCESS,
        merchant_prepare_id=record.id,
        sign_string=_verifier().sign(_tenant_id(), signed),
    )


# =============================================================================
# COMPLETE
# =============================================================================

def complete(fields) -> dict:
    """Handle action=1. Returns the reply envelope; never raises."""
    try:
        return _complete(fields)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Click complete failed (click_trans_id=%s)", fields.get("click_trans_id"))
        return _reply(fields, SYSTEM_ERROR, merchant_prepare_id=fields.get("merchant_prepare_id"))


def _complete(fields) -> dict:
    prepare_id = fields.get("merchant_prepare_id")

    def reply(error, note=None, **extra):
        extra.setdefault("merchant_prepare_id", prepare_id)
        return _reply(fields, error, note, **extra)

    if not _signature_ok(fields, "complete"):
        return reply(SIGN_CHECK_FAILED)

    prepare_text = str(prepare_id or "").strip()
    if not prepare_text.isdigit():
        return reply(TRANSACTION_NOT_FOUND)

    record = lock_for_update(
        db.session.query(ClickTransaction).filter_by(id=int(prepare_text))
    ).first()
    if record is None or record.click_trans_id != str(fields.get("click_trans_id") or "").strip():
        return reply(TRANSACTION_NOT_FOUND)

    gateway_error = _int_field(fields, "error")
    if gateway_error < 0:
        return _abort(record, gateway_error, fields.get("error_note"), reply)

    if record.status == CLICK_PAID:
        return reply(ALREADY_PAID)
    if record.status == CLICK_CANCELED:
        return reply(TRANSACTION_CANCELLED)

    try:
        if to_decimal(fields.get("amount")) != to_decimal(record.amount):
            return reply(INCORRECT_AMOUNT)
    except ValueError:
        return reply(INCORRECT_AMOUNT)

    if record.transaction is None:
        return reply(TRANSACTION_NOT_FOUND)

    try:
        transaction_service.perform(record.transaction.external_reference)
    except TransactionNotPending as exc:
        _close_record(record, CLICK_CANCELED, TRANSACTION_CANCELLED, str(exc))
        return reply(TRANSACTION_CANCELLED)
    except TransactionNotFound:
        return reply(TRANSACTION_NOT_FOUND)

    record = db.session.get(ClickTransaction, record.id)
    record.status = CLICK_PAID
    record.action = ACTION_COMPLETE
    record.error = SUCCESS
    if fields.get("click_paydoc_id"):
        record.click_paydoc_id = fields.get("click_paydoc_id")
    db.session.commit()

    current_app.logger.info("Click complete %s confirmed (merchant_confirm_id %s)", record.click_trans_id, record.id)
    return reply(
        SUCCESS,
        merchant_confirm_id=record.id,
        sign_string=_verifier().sign(_tenant_id(), fields),
    )


def _close_record(record: ClickTransaction, status: int, error: int, note: str | None) -> None:
    record = db.session.get(ClickTransaction, record.id)
    record.status = status
    record.error = error
    record.error_note = (note or "")[:255] or None
    db.session.commit()


def _abort(record: ClickTransaction, gateway_error: int, note, reply) -> dict:
    """
    Click reports the payment failed on its side: release the reservation.

    The record and its ledger row are canceled in one commit. A record that
    is already paid is left exactly as it is.
    """
    if record.status == CLICK_PAID:
        current_app.logger.warning(
            "Click complete %s abort ignored: already paid (error %s)", record.click_trans_id, gateway_error,
        )
        return reply(SUCCESS)

    record.status = CLICK_CANCELED
    record.action = ACTION_COMPLETE
    record.error = gateway_error
    record.error_note = str(note or "Cancelled by Click")[:255]
    if record.transaction is not None:
        transaction_service.release_pending(record.transaction.external_reference, REASON_GATEWAY_ERROR)
    db.session.commit()

    current_app.logger.info(
        "Click complete %s aborted by gateway (error %s)", record.click_trans_id, gateway_error,
    )
    return reply(SUCCESS)
