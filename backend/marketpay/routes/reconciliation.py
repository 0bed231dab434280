from flask import Blueprint, jsonify, request

from marketpay.decorators import require_operator
from marketpay.services import reconciliation_service
from marketpay.validation import ValidationError, parse_datetime


reconciliation_bp = Blueprint("reconciliation", __name__, url_prefix="/api/reconciliation")


def _range():
    return reconciliation_service.resolve_range(
        start=parse_datetime(request.args.get("from"), "from"),
        end=parse_datetime(request.args.get("to"), "to"),
        year=request.args.get("year", type=int),
        month=request.args.get("month", type=int),
    )


@reconciliation_bp.get("/ledger")
@require_operator
def ledger_report():
    try:
        start, end = _range()
        report = reconciliation_service.ledger(
            start=start,
            end=end,
            entity_type=request.args.get("type"),
            method=request.args.get("method"),
            status=request.args.get("status"),
            section_id=request.args.get("section_id", type=int),
            contract_id=request.args.get("contract_id", type=int),
            stall_id=request.args.get("stall_id", type=int),
        )
        return jsonify(report), 200
    except (reconciliation_service.ReportError, ValidationError) as exc:
        return jsonify({"error": str(exc)}), 400


@reconciliation_bp.get("/contracts")
@require_operator
def contract_summary_report():
    try:
        start, end = _range()
        report = reconciliation_service.contract_summary(
            start=start,
            end=end,
            method=request.args.get("method"),
            status=request.args.get("status"),
            section_id=request.args.get("section_id", type=int),
        )
        return jsonify(report), 200
    except (reconciliation_service.ReportError, ValidationError) as exc:
        return jsonify({"error": str(exc)}), 400


@reconciliation_bp.get("/rollup")
@require_operator
def monthly_rollup_report():
    try:
        report = reconciliation_service.monthly_rollup(
            months=request.args.get("months", 12, type=int),
            entity_type=request.args.get("type"),
            method=request.args.get("method"),
            status=request.args.get("status"),
        )
        return jsonify(report), 200
    except reconciliation_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reconciliation_bp.get("/totals")
@require_operator
def totals_report():
    try:
        start, end = _range()
        report = reconciliation_service.totals(
            start=start,
            end=end,
            entity_type=request.args.get("type"),
            method=request.args.get("method"),
            status=request.args.get("status"),
        )
        return jsonify(report), 200
    except (reconciliation_service.ReportError, ValidationError) as exc:
        return jsonify({"error": str(exc)}), 400


@reconciliation_bp.get("/coverage")
@require_operator
def period_coverage_report():
    year = request.args.get("year", type=int)
    month = request.args.get("month", type=int)
    if not year or not month:
        return jsonify({"error": "year and month are required"}), 400

    try:
        report = reconciliation_service.period_coverage(
            year=year,
            month=month,
            section_id=request.args.get("section_id", type=int),
        )
        return jsonify(report), 200
    except reconciliation_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400
