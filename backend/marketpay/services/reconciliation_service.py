# Overview: Read-only reconciliation reports over transactions, attendances and contract periods.

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, time, timedelta
from decimal import Decimal

from flask import current_app

from marketpay.extensions import db
from marketpay.models import Attendance, Contract, ContractPaymentPeriod, Section, Stall, Store, Transaction
from marketpay.models.payments import (
    METHOD_CASH,
    PAYMENT_METHODS,
    PERIOD_PAID,
    STATUS_CANCELED,
    STATUS_FAILED,
    STATUS_PAID,
    STATUS_PENDING,
)
from marketpay.money import format_amount
from marketpay.services import period_service
from marketpay.time_utils import add_months, day_bounds, month_bounds, month_label, month_start, to_local_iso, utcnow

TYPE_STALL = "stall"
TYPE_STORE = "store"
TYPE_ALL = "all"
ENTITY_TYPES = (TYPE_STALL, TYPE_STORE, TYPE_ALL)

MAX_ROLLUP_MONTHS = 24


class ReportError(Exception):
    """Raised when report parameters are invalid."""
    pass


def _tz() -> str:
    return current_app.config.get("REPORT_TIMEZONE", "Asia/Tashkent")


def resolve_range(
    start: datetime | None = None,
    end: datetime | None = None,
    year: int | None = None,
    month: int | None = None,
) -> tuple[datetime, datetime]:
    """
    [start, end) of a report.

    year+month wins over an explicit range; with neither, today (UTC).
    """
    if year and month:
        try:
            return month_bounds(int(year), int(month))
        except ValueError as exc:
            raise ReportError(str(exc))
    today_start, today_end = day_bounds(utcnow().date())
    start = start or today_start
    end = end or today_end
    if end <= start:
        raise ReportError("'to' must be after 'from'")
    return start, end


def _check_type(entity_type: str | None) -> str:
    entity_type = (entity_type or TYPE_ALL).lower()
    if entity_type not in ENTITY_TYPES:
        raise ReportError(f"type must be one of {list(ENTITY_TYPES)}")
    return entity_type


def _check_method(method: str | None) -> str | None:
    if not method:
        return None
    method = method.upper()
    if method not in PAYMENT_METHODS:
        raise ReportError(f"method must be one of {list(PAYMENT_METHODS)}")
    return method


def _status_filter(status: str | None) -> str | None:
    if not status or status.lower() == "all":
        return None
    return status.upper()


def _naive(dt: datetime) -> datetime:
    return dt.replace(tzinfo=None) if dt.tzinfo else dt


def _date_window(start: datetime, end: datetime):
    """Attendance dates covered by a [start, end) datetime range."""
    last = end.date() if end.time() != time.min else end.date() - timedelta(days=1)
    return start.date(), last


# =============================================================================
# LEDGER
# =============================================================================

def _stall_rows(start, end, method, status, section_id, stall_id, tz) -> list[dict]:
    first_day, last_day = _date_window(start, end)
    query = (
        db.session.query(Attendance, Stall, Section)
        .join(Stall, Stall.id == Attendance.stall_id)
        .outerjoin(Section, Section.id == Stall.section_id)
        .filter(Attendance.date >= first_day, Attendance.date <= last_day)
    )
    if stall_id:
        query = query.filter(Attendance.stall_id == stall_id)
    if section_id:
        query = query.filter(Stall.section_id == section_id)
    records = query.all()

    txn_ids = {a.transaction_id for a, _, _ in records if a.transaction_id}
    transactions = {}
    if txn_ids:
        transactions = {
            t.id: t for t in db.session.query(Transaction).filter(Transaction.id.in_(txn_ids)).all()
        }

    rows = []
    for attendance, stall, section in records:
        txn = transactions.get(attendance.transaction_id)
        row_method = txn.payment_method if txn else METHOD_CASH
        row_status = txn.status if txn else attendance.status
        if method and row_method != method:
            continue
        if status and row_status != status:
            continue
        paid_at = txn.created_at if txn else datetime.combine(attendance.date, time.min)
        rows.append({
            "date": attendance.date.isoformat(),
            "type": TYPE_STALL,
            "stall_id": attendance.stall_id,
            "stall_number": stall.stall_number,
            "section_id": stall.section_id,
            "section_name": section.name if section else None,
            "amount": format_amount(txn.amount if txn else attendance.amount),
            "status": row_status,
            "method": row_method,
            "source": "attendance",
            "id": attendance.id,
            "transaction_id": attendance.transaction_id,
            "external_reference": txn.external_reference if txn else None,
            "paid_at": to_local_iso(paid_at, tz),
            "note": None if txn else "Manual",
            "_sort": _naive(paid_at),
        })
    return rows


def _store_rows(start, end, method, status, section_id, contract_id, tz) -> list[dict]:
    query = (
        db.session.query(Transaction, Contract, Store, Section)
        .join(Contract, Contract.id == Transaction.contract_id)
        .join(Store, Store.id == Contract.store_id)
        .outerjoin(Section, Section.id == Store.section_id)
        .filter(Transaction.created_at >= start, Transaction.created_at < end)
    )
    if status:
        query = query.filter(Transaction.status == status)
    if method:
        query = query.filter(Transaction.payment_method == method)
    if contract_id:
        query = query.filter(Transaction.contract_id == contract_id)
    if section_id:
        query = query.filter(Store.section_id == section_id)

    rows = []
    for txn, contract, store, section in query.all():
        rows.append({
            "date": to_local_iso(txn.created_at, tz),
            "type": TYPE_STORE,
            "contract_id": contract.id,
            "store_id": store.id,
            "store_number": store.store_number,
            "section_id": store.section_id,
            "section_name": section.name if section else None,
            "owner": contract.owner.full_name if contract.owner else None,
            "amount": format_amount(txn.amount),
            "status": txn.status,
            "method": txn.payment_method,
            "source": "transaction",
            "id": txn.id,
            "transaction_id": txn.id,
            "external_reference": txn.external_reference,
            "paid_at": to_local_iso(txn.performed_at or txn.created_at, tz),
            "note": None,
            "_sort": _naive(txn.performed_at or txn.created_at),
        })
    return rows


def ledger(
    *,
    start: datetime,
    end: datetime,
    entity_type: str | None = None,
    method: str | None = None,
    status: str | None = None,
    section_id: int | None = None,
    contract_id: int | None = None,
    stall_id: int | None = None,
) -> dict:
    """Every stall attendance and contract transaction in [start, end), newest first."""
    entity_type = _check_type(entity_type)
    method = _check_method(method)
    status = _status_filter(status)
    tz = _tz()

    rows = []
    if entity_type in (TYPE_STALL, TYPE_ALL) and not contract_id:
        rows.extend(_stall_rows(start, end, method, status, section_id, stall_id, tz))
    if entity_type in (TYPE_STORE, TYPE_ALL) and not stall_id:
        rows.extend(_store_rows(start, end, method, status, section_id, contract_id, tz))

    rows.sort(key=lambda r: r["_sort"], reverse=True)
    for row in rows:
        row.pop("_sort")

    return {
        "from": to_local_iso(start, tz),
        "to": to_local_iso(end, tz),
        "time_zone": tz,
        "count": len(rows),
        "rows": rows,
    }


# =============================================================================
# CONTRACT SUMMARY
# =============================================================================

def contract_summary(
    *,
    start: datetime,
    end: datetime,
    method: str | None = None,
    status: str | None = None,
    section_id: int | None = None,
) -> dict:
    """Per-contract expected vs paid inside the range."""
    method = _check_method(method)
    status = _status_filter(status)
    tz = _tz()

    contracts_query = db.session.query(Contract).join(Store, Store.id == Contract.store_id)
    if section_id:
        contracts_query = contracts_query.filter(Store.section_id == section_id)
    contracts = contracts_query.order_by(Contract.id.asc()).all()

    tx_query = db.session.query(Transaction).filter(
        Transaction.contract_id.in_([c.id for c in contracts] or [0]),
        Transaction.created_at >= start,
        Transaction.created_at < end,
    )
    if status:
        tx_query = tx_query.filter(Transaction.status == status)
    if method:
        tx_query = tx_query.filter(Transaction.payment_method == method)

    by_contract = defaultdict(list)
    for txn in tx_query.all():
        by_contract[txn.contract_id].append(txn)

    summary = []
    for contract in contracts:
        txns = by_contract.get(contract.id, [])
        expected = Decimal(contract.shop_monthly_fee or 0)
        paid_txns = [t for t in txns if t.status == STATUS_PAID]
        paid = sum((Decimal(t.amount) for t in paid_txns), Decimal("0"))
        unpaid = expected - paid if expected > paid else Decimal("0")
        last = max(txns, key=lambda t: (t.created_at, t.id)) if txns else None

        methods = defaultdict(Decimal)
        for txn in txns:
            methods[txn.payment_method] += Decimal(txn.amount)

        summary.append({
            "contract_id": contract.id,
            "store_number": contract.store.store_number if contract.store else f"#{contract.store_id}",
            "section_name": contract.store.section.name if contract.store and contract.store.section else None,
            "owner": contract.owner.full_name if contract.owner else None,
            "expected": format_amount(expected),
            "paid": format_amount(paid),
            "unpaid": format_amount(unpaid),
            # More than one full month's fee inside the range
            "overpaid": expected > 0 and paid > expected * Decimal("1.01"),
            "payments_count": len(txns),
            "paid_count": len(paid_txns),
            "pending_count": sum(1 for t in txns if t.status == STATUS_PENDING),
            "failed_count": sum(1 for t in txns if t.status in (STATUS_FAILED, STATUS_CANCELED)),
            "last_payment_at": to_local_iso(last.created_at, tz) if last else None,
            "last_payment_method": last.payment_method if last else None,
            "methods": {k: format_amount(v) for k, v in methods.items()},
        })

    return {"from": to_local_iso(start, tz), "to": to_local_iso(end, tz), "time_zone": tz, "summary": summary}


# =============================================================================
# ROLLUP / TOTALS
# =============================================================================

def _sum_rows(rows, entity_type: str) -> Decimal:
    return sum((Decimal(r["amount"] or 0) for r in rows if r["type"] == entity_type), Decimal("0"))


def monthly_rollup(
    *,
    months: int = 12,
    entity_type: str | None = None,
    method: str | None = None,
    status: str | None = None,
) -> dict:
    """Revenue per calendar month for the last `months` months, split stall / store."""
    entity_type = _check_type(entity_type)
    months = min(MAX_ROLLUP_MONTHS, max(1, int(months or 12)))
    current = month_start(utcnow())

    labels, stall_series, store_series = [], [], []
    for offset in range(months - 1, -1, -1):
        first = add_months(current, -offset)
        start, end = month_bounds(first.year, first.month)
        report = ledger(start=start, end=end, entity_type=entity_type, method=method, status=status)
        labels.append(month_label(first))
        stall_series.append(format_amount(_sum_rows(report["rows"], TYPE_STALL)))
        store_series.append(format_amount(_sum_rows(report["rows"], TYPE_STORE)))

    series = []
    if entity_type != TYPE_STALL:
        series.append({"key": TYPE_STORE, "data": store_series})
    if entity_type != TYPE_STORE:
        series.append({"key": TYPE_STALL, "data": stall_series})
    return {"labels": labels, "series": series}


def totals(
    *,
    start: datetime,
    end: datetime,
    entity_type: str | None = None,
    method: str | None = None,
    status: str | None = STATUS_PAID,
) -> dict:
    """Count and revenue of money in the range (PAID unless another status is asked for)."""
    report = ledger(
        start=start,
        end=end,
        entity_type=entity_type,
        method=method,
        status=status or STATUS_PAID,
    )
    stall = _sum_rows(report["rows"], TYPE_STALL)
    store = _sum_rows(report["rows"], TYPE_STORE)
    return {
        "from": report["from"],
        "to": report["to"],
        "count": report["count"],
        "revenue": format_amount(stall + store),
        "stall": {
            "count": sum(1 for r in report["rows"] if r["type"] == TYPE_STALL),
            "revenue": format_amount(stall),
        },
        "store": {
            "count": sum(1 for r in report["rows"] if r["type"] == TYPE_STORE),
            "revenue": format_amount(store),
        },
    }


# =============================================================================
# PERIOD COVERAGE
# =============================================================================

def period_coverage(*, year: int, month: int, section_id: int | None = None) -> dict:
    """
    Which active contracts have the month PAID in the period table.

    Contracts without period rows are backfilled first.
    """
    try:
        start, _ = month_bounds(int(year), int(month))
    except ValueError as exc:
        raise ReportError(str(exc))
    first = start.date()

    query = db.session.query(Contract).join(Store, Store.id == Contract.store_id).filter(Contract.is_active.is_(True))
    if section_id:
        query = query.filter(Store.section_id == section_id)
    contracts = query.order_by(Contract.id.asc()).all()

    period_service.seed_and_commit(c.id for c in contracts)

    paid_ids = {
        row.contract_id
        for row in db.session.query(ContractPaymentPeriod.contract_id).filter(
            ContractPaymentPeriod.contract_id.in_([c.id for c in contracts] or [0]),
            ContractPaymentPeriod.period_start == first,
            ContractPaymentPeriod.status == PERIOD_PAID,
        )
    }

    paid, unpaid = [], []
    expected = collected = Decimal("0")
    for contract in contracts:
        fee = Decimal(contract.shop_monthly_fee or 0)
        expected += fee
        entry = {
            "contract_id": contract.id,
            "store_number": contract.store.store_number if contract.store else None,
            "owner": contract.owner.full_name if contract.owner else None,
            "monthly_fee": format_amount(fee),
        }
        if contract.id in paid_ids:
            collected += fee
            paid.append(entry)
        else:
            unpaid.append(entry)

    return {
        "month": month_label(first),
        "paid_count": len(paid),
        "unpaid_count": len(unpaid),
        "expected": format_amount(expected),
        "collected": format_amount(collected),
        "paid": paid,
        "unpaid": unpaid,
    }
