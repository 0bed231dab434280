# Overview: Pytest coverage for the transaction ledger state machine.

"""
Transaction Ledger Tests

Verifies:
- create_or_get_pending is idempotent per external reference
- the amount invariant (no row for a mismatched or sub-cent amount)
- perform applies billable side effects exactly once
- an attendance is paid at most once, whichever gateway performs first
- lazy expiry at PENDING_EXPIRY_MINUTES (721 minutes expires, 1 does not)
- cancel and reversal semantics
"""

from decimal import Decimal

import pytest
from conftest import make_pending
from marketpay.extensions import db
from marketpay.models import Attendance, ContractPaymentPeriod, Transaction
from marketpay.models.market import ATTENDANCE_PAID, ATTENDANCE_UNPAID
from marketpay.models.payments import (
    METHOD_CLICK,
    METHOD_PAYME,
    PERIOD_PAID,
    PERIOD_PENDING,
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
from marketpay.services import transaction_service
from marketpay.services.payment_errors import (
    AlreadyPaid,
    AmountMismatch,
    BillableNotFound,
    PaymentError,
    TransactionNotFound,
    TransactionNotPending,
)
from marketpay.time_utils import month_start, utcnow


# =============================================================================
# CREATION
# =============================================================================


class TestCreateOrGetPending:
    def test_creates_pending_row(self, db_session, attendance):
        txn = transaction_service.create_or_get_pending("P-1", "15000", METHOD_PAYME, reference="42")
        assert txn.status == STATUS_PENDING
        assert txn.gateway_state == STATE_PENDING
        assert txn.attendance_id == 42
        assert txn.contract_id is None
        assert txn.amount == Decimal("15000.00")

    def test_idempotent_for_same_reference(self, db_session, attendance):
        first = transaction_service.create_or_get_pending("P-1", "15000", METHOD_PAYME, reference="42")
        second = transaction_service.create_or_get_pending("P-1", "15000", METHOD_PAYME, reference="42")
        assert first.id == second.id
        assert db_session.query(Transaction).count() == 1

    def test_amount_mismatch_creates_nothing(self, db_session, attendance):
        with pytest.raises(AmountMismatch) as exc_info:
            transaction_service.create_or_get_pending("P-1", "14999", METHOD_PAYME, reference="42")
        assert exc_info.value.expected == "15000.00"
        assert db_session.query(Transaction).count() == 0

    @pytest.mark.parametrize("amount", [
        "15000.004",
        "15000.001",
        "14999.995",
        "15000.0001",
        15000.004,
        "fifteen thousand",
        "NaN",
    ])
    def test_sub_cent_or_garbage_amount_creates_nothing(self, db_session, attendance, amount):
        with pytest.raises(AmountMismatch):
            transaction_service.create_or_get_pending("P-1", amount, METHOD_CLICK, reference="42")
        assert db_session.query(Transaction).count() == 0

    @pytest.mark.parametrize("amount", ["15000", "15000.0", "15000.000", 15000, Decimal("15000.00")])
    def test_equal_amount_spellings_accepted(self, db_session, attendance, amount):
        txn = transaction_service.create_or_get_pending("P-1", amount, METHOD_CLICK, reference="42")
        assert txn.amount == Decimal("15000.00")

    def test_unknown_billable(self, db_session):
        with pytest.raises(BillableNotFound):
            transaction_service.create_or_get_pending("P-1", "15000", METHOD_PAYME, reference="nope")

    def test_paid_attendance_rejected(self, db_session, attendance):
        attendance.status = ATTENDANCE_PAID
        db_session.commit()
        with pytest.raises(AlreadyPaid):
            transaction_service.create_or_get_pending("P-1", "15000", METHOD_PAYME, reference="42")

    def test_invalid_method_rejected(self, db_session, attendance):
        with pytest.raises(PaymentError):
            transaction_service.create_or_get_pending("P-1", "15000", "BITCOIN", reference="42")

    def test_contract_reference_links_contract(self, db_session, contract):
        txn = transaction_service.create_or_get_pending("P-7", "500000", METHOD_PAYME, reference="A-12")
        assert txn.contract_id == contract.id
        assert txn.attendance_id is None


# =============================================================================
# PERFORM
# =============================================================================


class TestPerform:
    def test_perform_marks_attendance_paid(self, db_session, attendance):
        txn = transaction_service.create_or_get_pending("P-1", "15000", METHOD_PAYME, reference="42")
        performed = transaction_service.perform("P-1")

        assert performed.status == STATUS_PAID
        assert performed.gateway_state == STATE_PAID
        assert performed.performed_at is not None
        row = db.session.get(Attendance, 42)
        assert row.status == ATTENDANCE_PAID
        assert row.transaction_id == txn.id

    def test_perform_is_idempotent(self, db_session, attendance):
        transaction_service.create_or_get_pending("P-1", "15000", METHOD_PAYME, reference="42")
        first = transaction_service.perform("P-1")
        performed_at = first.performed_at
        second = transaction_service.perform("P-1")
        assert second.id == first.id
        assert second.performed_at == performed_at

    def test_perform_contract_allocates_current_month(self, db_session, contract):
        transaction_service.create_or_get_pending("P-7", "500000", METHOD_PAYME, reference="A-12")
        txn = transaction_service.perform("P-7")

        periods = db_session.query(ContractPaymentPeriod).filter_by(contract_id=contract.id).all()
        assert len(periods) == 1
        assert periods[0].period_start == month_start(utcnow())
        assert periods[0].status == PERIOD_PAID
        assert periods[0].transaction_id == txn.id

    def test_perform_twice_allocates_once(self, db_session, contract):
        make_pending("P-7", "500000", METHOD_PAYME, contract=contract)
        transaction_service.perform("P-7")
        transaction_service.perform("P-7")
        assert db_session.query(ContractPaymentPeriod).filter_by(contract_id=contract.id).count() == 1

    def test_unknown_reference(self, db_session):
        with pytest.raises(TransactionNotFound):
            transaction_service.perform("missing")

    def test_canceled_cannot_be_performed(self, db_session, attendance):
        make_pending("P-1", "15000", METHOD_CLICK, attendance=attendance)
        transaction_service.cancel("P-1")
        with pytest.raises(TransactionNotPending):
            transaction_service.perform("P-1")


class TestOnePaymentPerAttendance:
    """Two reservations for one attendance: only the first to perform is paid."""

    def test_second_reservation_canceled_on_perform(self, db_session, attendance):
        make_pending("CLICK-1", "15000", METHOD_CLICK, attendance=attendance)
        make_pending("CLICK-2", "15000", METHOD_CLICK, attendance=attendance)

        winner = transaction_service.perform("CLICK-1")
        with pytest.raises(TransactionNotPending):
            transaction_service.perform("CLICK-2")

        db_session.expire_all()
        loser = transaction_service.get("CLICK-2")
        assert loser.status == STATUS_CANCELED
        assert loser.gateway_state == STATE_PENDING_CANCELED
        assert loser.cancel_reason == REASON_GATEWAY_ERROR
        assert db_session.query(Transaction).filter_by(attendance_id=42, status=STATUS_PAID).count() == 1
        assert db.session.get(Attendance, 42).transaction_id == winner.id

    def test_across_gateways(self, db_session, attendance):
        make_pending("pm-1", "15000", METHOD_PAYME, attendance=attendance)
        make_pending("CLICK-1", "15000", METHOD_CLICK, attendance=attendance)

        transaction_service.perform("CLICK-1")
        with pytest.raises(TransactionNotPending):
            transaction_service.perform("pm-1")

        db_session.expire_all()
        paid = db_session.query(Transaction).filter_by(attendance_id=42, status=STATUS_PAID).all()
        assert [t.external_reference for t in paid] == ["CLICK-1"]

    def test_attendance_marked_paid_by_hand(self, db_session, attendance):
        make_pending("CLICK-1", "15000", METHOD_CLICK, attendance=attendance)
        attendance.status = ATTENDANCE_PAID
        db_session.commit()

        with pytest.raises(TransactionNotPending):
            transaction_service.perform("CLICK-1")
        assert transaction_service.get("CLICK-1").status == STATUS_CANCELED

    def test_active_lookup_spans_methods(self, db_session, attendance):
        make_pending("CLICK-1", "15000", METHOD_CLICK, attendance=attendance)
        active = transaction_service.find_active_for_attendance(42)
        assert active.external_reference == "CLICK-1"

    def test_active_lookup_expires_stale_rows(self, db_session, attendance):
        make_pending("CLICK-old", "15000", METHOD_CLICK, attendance=attendance, age_minutes=721)
        assert transaction_service.find_active_for_attendance(42) is None
        assert transaction_service.get("CLICK-old").cancel_reason == REASON_EXPIRED


class TestReleasePending:
    def test_leaves_commit_to_caller(self, db_session, attendance):
        make_pending("CLICK-1", "15000", METHOD_CLICK, attendance=attendance)
        txn = transaction_service.release_pending("CLICK-1", REASON_GATEWAY_ERROR)
        assert txn.status == STATUS_CANCELED

        db_session.rollback()
        assert transaction_service.get("CLICK-1").status == STATUS_PENDING

    def test_paid_row_untouched(self, db_session, attendance):
        make_pending("CLICK-1", "15000", METHOD_CLICK, attendance=attendance)
        transaction_service.perform("CLICK-1")
        txn = transaction_service.release_pending("CLICK-1", REASON_GATEWAY_ERROR)
        assert txn.status == STATUS_PAID


# =============================================================================
# LAZY EXPIRY
# =============================================================================


class TestExpiry:
    def test_pending_older_than_window_expires_on_perform(self, db_session, attendance):
        make_pending("P-old", "15000", METHOD_PAYME, attendance=attendance, age_minutes=721)

        with pytest.raises(TransactionNotPending):
            transaction_service.perform("P-old")

        db_session.expire_all()
        txn = transaction_service.get("P-old")
        assert txn.status == STATUS_CANCELED
        assert txn.gateway_state == STATE_PENDING_CANCELED
        assert txn.cancel_reason == REASON_EXPIRED
        assert db.session.get(Attendance, 42).status == ATTENDANCE_UNPAID

    def test_recent_pending_performs(self, db_session, attendance):
        make_pending("P-new", "15000", METHOD_PAYME, attendance=attendance, age_minutes=1)
        txn = transaction_service.perform("P-new")
        assert txn.status == STATUS_PAID

    def test_expired_row_returned_canceled_on_create(self, db_session, attendance):
        make_pending("P-old", "15000", METHOD_PAYME, attendance=attendance, age_minutes=721)
        txn = transaction_service.create_or_get_pending("P-old", "15000", METHOD_PAYME, reference="42")
        assert txn.status == STATUS_CANCELED
        assert txn.cancel_reason == REASON_EXPIRED

    def test_is_expired_window(self, db_session, attendance):
        old = make_pending("P-old", "15000", METHOD_PAYME, attendance=attendance, age_minutes=721)
        new = make_pending("P-new", "15000", METHOD_CLICK, attendance=attendance, age_minutes=1)
        assert transaction_service.is_expired(old) is True
        assert transaction_service.is_expired(new) is False


# =============================================================================
# CANCEL / REVERSAL
# =============================================================================


class TestCancel:
    def test_cancel_pending(self, db_session, attendance):
        make_pending("P-1", "15000", METHOD_PAYME, attendance=attendance)
        txn = transaction_service.cancel("P-1", 3)
        assert txn.status == STATUS_CANCELED
        assert txn.gateway_state == STATE_PENDING_CANCELED
        assert txn.cancel_reason == 3

    def test_cancel_is_idempotent(self, db_session, attendance):
        make_pending("P-1", "15000", METHOD_PAYME, attendance=attendance)
        first = transaction_service.cancel("P-1", 3)
        canceled_at = first.canceled_at
        second = transaction_service.cancel("P-1", 5)
        assert second.canceled_at == canceled_at
        assert second.cancel_reason == 3

    def test_reversal_releases_attendance(self, db_session, attendance):
        make_pending("P-1", "15000", METHOD_PAYME, attendance=attendance)
        transaction_service.perform("P-1")
        txn = transaction_service.cancel("P-1", 5)

        assert txn.gateway_state == STATE_PAID_CANCELED
        row = db.session.get(Attendance, 42)
        assert row.status == ATTENDANCE_UNPAID
        assert row.transaction_id is None

    def test_reversal_reopens_contract_months(self, db_session, contract):
        make_pending("P-7", "500000", METHOD_PAYME, contract=contract)
        transaction_service.perform("P-7")
        transaction_service.cancel("P-7", 5)

        period = db_session.query(ContractPaymentPeriod).filter_by(contract_id=contract.id).one()
        assert period.status == PERIOD_PENDING
        assert period.notes == transaction_service.REVERSAL_NOTE

    def test_cancel_unknown(self, db_session):
        with pytest.raises(TransactionNotFound):
            transaction_service.cancel("missing")


class TestListTransactions:
    def test_filters_and_total(self, db_session, attendance, contract):
        make_pending("P-1", "15000", METHOD_PAYME, attendance=attendance)
        make_pending("C-1", "15000", METHOD_CLICK, attendance=attendance)
        make_pending("P-7", "500000", METHOD_PAYME, contract=contract)

        rows, total = transaction_service.list_transactions(method="payme")
        assert total == 2
        assert {t.external_reference for t in rows} == {"P-1", "P-7"}

        rows, total = transaction_service.list_transactions(contract_id=contract.id)
        assert total == 1

        rows, total = transaction_service.list_transactions(limit=1)
        assert total == 3
        assert len(rows) == 1
