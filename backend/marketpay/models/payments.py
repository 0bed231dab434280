from __future__ import annotations

from ..extensions import db
from marketpay.money import format_amount
from marketpay.time_utils import to_utc_z

# =============================================================================
# TRANSACTION VOCABULARY
# =============================================================================

STATUS_PENDING = "PENDING"
STATUS_PAID = "PAID"
STATUS_CANCELED = "CANCELED"
STATUS_FAILED = "FAILED"

METHOD_CASH = "CASH"
METHOD_CLICK = "CLICK"
METHOD_PAYME = "PAYME"
PAYMENT_METHODS = (METHOD_CASH, METHOD_CLICK, METHOD_PAYME)

# Gateway state (Payme vocabulary, mirrored for every method)
STATE_PENDING = 1
STATE_PAID = 2
STATE_PENDING_CANCELED = -1
STATE_PAID_CANCELED = -2

# Cancel reasons written by the core itself
REASON_GATEWAY_ERROR = 3
REASON_EXPIRED = 4

# Click prepare record status
CLICK_OPEN = 0
CLICK_PAID = 1
CLICK_CANCELED = -1

# Contract period status
PERIOD_PAID = "PAID"
PERIOD_PENDING = "PENDING"
PERIOD_SKIPPED = "SKIPPED"
PERIOD_STATUSES = (PERIOD_PAID, PERIOD_PENDING, PERIOD_SKIPPED)


class Transaction(db.Model):
    """
    One payment attempt, whatever the channel (Click, Payme, cash desk).

    external_reference is the caller's idempotency key: every redelivery of
    the same gateway call resolves to this row. A transaction pays exactly
    one billable: a Contract (monthly rent) or an Attendance (daily fee).

    LIFECYCLE: PENDING -> PAID | CANCELED, PAID -> CANCELED (reversal).
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.CheckConstraint(
            "(contract_id IS NULL) <> (attendance_id IS NULL)",
            name="one_billable",
        ),
        db.Index("ix_transactions_method_created", "payment_method", "created_at"),
        db.Index("ix_transactions_contract_status", "contract_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    external_reference = db.Column(db.String(128), nullable=False, unique=True)

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING, index=True)
    payment_method = db.Column(db.String(16), nullable=False, index=True)

    contract_id = db.Column(db.Integer, db.ForeignKey("contracts.id"), nullable=True, index=True)
    attendance_id = db.Column(db.Integer, db.ForeignKey("attendances.id"), nullable=True, index=True)

    gateway_state = db.Column(db.Integer, nullable=False, default=STATE_PENDING)
    cancel_reason = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    performed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    contract = db.relationship("Contract", backref=db.backref("transactions", lazy=True))
    attendance = db.relationship("Attendance", foreign_keys=[attendance_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def billable_kind(self) -> str:
        return "CONTRACT" if self.contract_id is not None else "ATTENDANCE"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "external_reference": self.external_reference,
            "amount": format_amount(self.amount),
            "status": self.status,
            "payment_method": self.payment_method,
            "contract_id": self.contract_id,
            "attendance_id": self.attendance_id,
            "gateway_state": self.gateway_state,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "performed_at": to_utc_z(self.performed_at) if self.performed_at else None,
            "canceled_at": to_utc_z(self.canceled_at) if self.canceled_at else None,
        }


class ClickTransaction(db.Model):
    """
    Shadow of a Click prepare call.

    WHY: Click splits a payment into prepare (reserve) and complete
    (confirm), and needs a merchant_prepare_id of its own. The id of this
    row is that merchant_prepare_id (and later the merchant_confirm_id).
    """
    __tablename__ = "click_transactions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    click_trans_id = db.Column(db.String(64), nullable=False, unique=True)
    click_paydoc_id = db.Column(db.String(64), nullable=True)
    merchant_trans_id = db.Column(db.String(128), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    action = db.Column(db.Integer, nullable=False, default=0)
    sign_time = db.Column(db.String(32), nullable=True)

    status = db.Column(db.Integer, nullable=False, default=CLICK_OPEN, index=True)
    error = db.Column(db.Integer, nullable=False, default=0)
    error_note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    transaction = db.relationship("Transaction", backref=db.backref("click_records", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "click_trans_id": self.click_trans_id,
            "click_paydoc_id": self.click_paydoc_id,
            "merchant_trans_id": self.merchant_trans_id,
            "transaction_id": self.transaction_id,
            "amount": format_amount(self.amount),
            "action": self.action,
            "sign_time": self.sign_time,
            "status": self.status,
            "error": self.error,
            "error_note": self.error_note,
            "created_at": to_utc_z(self.created_at),
        }


class ContractPaymentPeriod(db.Model):
    """
    One calendar month of contract rent accounted for.

    A month appears at most once per contract; the row is the source of
    truth for "is this month paid", independent of which transaction(s)
    funded it.
    """
    __tablename__ = "contract_payment_periods"
    __table_args__ = (
        db.UniqueConstraint("contract_id", "period_start", name="uq_contract_periods_contract_start"),
        db.Index("ix_contract_periods_contract_status", "contract_id", "status", "period_start"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    contract_id = db.Column(db.Integer, db.ForeignKey("contracts.id"), nullable=False, index=True)

    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PERIOD_PAID)
    amount = db.Column(db.Numeric(14, 2), nullable=True)

    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)
    created_by_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    contract = db.relationship("Contract", backref=db.backref("payment_periods", lazy=True))
    transaction = db.relationship("Transaction", backref=db.backref("periods", lazy=True))

    def to_dict(self) -> dict:
        txn = self.transaction
        return {
            "id": self.id,
            "contract_id": self.contract_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "status": self.status,
            "amount": format_amount(self.amount),
            "transaction_id": self.transaction_id,
            "transaction": {
                "id": txn.id,
                "external_reference": txn.external_reference,
                "amount": format_amount(txn.amount),
                "status": txn.status,
                "payment_method": txn.payment_method,
                "created_at": to_utc_z(txn.created_at),
            } if txn else None,
            "notes": self.notes,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
        }
