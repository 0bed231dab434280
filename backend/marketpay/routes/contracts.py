# Overview: Operator API for contract payment periods, snapshots and manual payments.

"""
Contract Payment API Routes

WHY: Bank transfers and cash-desk payments never pass through a gateway.
Operators record them here, and correct month rows (e.g. mark arrears
SKIPPED) when the market agrees to it.

SECURITY:
- Every route requires the operator bearer token
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_operator
from ..services import period_service
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    parse_amount,
    parse_month,
    parse_positive_int,
    require_json_object,
)


contracts_bp = Blueprint("contracts", __name__, url_prefix="/api/contracts")


def _optional_int(data: dict, field: str) -> int | None:
    value = data.get(field)
    if value is None or value == "":
        return None
    return parse_positive_int(value, field)


@contracts_bp.get("/<int:contract_id>/payments")
@require_operator
def list_payments_route(contract_id: int):
    """
    Month rows and paid-through snapshot for a contract.

    Returns:
        200: {contract_id, items: [...], snapshot: {...}}
        404: Contract not found
    """
    try:
        return jsonify(period_service.list_periods(contract_id)), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to list contract payments")
        return jsonify({"error": "Internal server error"}), 500


@contracts_bp.post("/<int:contract_id>/payments/manual")
@require_operator
def manual_payment_route(contract_id: int):
    """
    Record a manual (bank transfer / cash) payment.

    Request body:
    {
        "transfer_number": "PP-000123",
        "transfer_date": "2024-06-01",   (optional, defaults to now)
        "amount": "1500000",             (optional, exact multiple of the fee)
        "months": 3,                     (optional)
        "start_month": "2024-04",        (optional)
        "notes": "...",                  (optional)
        "created_by_id": 5               (optional)
    }

    Returns:
        201: {contract_id, items, snapshot, transaction}
        400: Invalid input
        404: Contract not found
        409: Current month already paid / transfer number reused
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        amount = data.get("amount")
        result = period_service.record_manual_payment(
            contract_id,
            transfer_number=data.get("transfer_number"),
            transfer_date=data.get("transfer_date"),
            amount=parse_amount(amount) if amount not in (None, "") else None,
            months=_optional_int(data, "months"),
            start_month=data.get("start_month"),
            notes=data.get("notes"),
            created_by_id=_optional_int(data, "created_by_id"),
        )
        return jsonify(result), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to record manual payment")
        return jsonify({"error": "Internal server error"}), 500


@contracts_bp.post("/<int:contract_id>/payments/periods")
@require_operator
def create_periods_route(contract_id: int):
    """
    Write month rows directly.

    Request body:
    {
        "start_month": "2024-01",
        "months": 2,              (optional, default 1)
        "status": "SKIPPED",      (PAID | PENDING | SKIPPED)
        "amount": "500000",       (optional, defaults to the monthly fee)
        "transaction_id": 12,     (optional, must belong to the contract)
        "notes": "...",
        "created_by_id": 5
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        amount = data.get("amount")
        result = period_service.create_periods(
            contract_id,
            start_month=parse_month(data.get("start_month")),
            months=_optional_int(data, "months") or 1,
            status=data.get("status") or "PAID",
            amount=parse_amount(amount) if amount not in (None, "") else None,
            transaction_id=_optional_int(data, "transaction_id"),
            notes=data.get("notes"),
            created_by_id=_optional_int(data, "created_by_id"),
        )
        return jsonify(result), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to create contract periods")
        return jsonify({"error": "Internal server error"}), 500


@contracts_bp.patch("/<int:contract_id>/payments/periods/<int:period_id>")
@require_operator
def update_period_route(contract_id: int, period_id: int):
    """
    Change one month row (status, amount, notes, funding transaction).

    Returns:
        200: Updated period
        400: Invalid input
        404: Contract or period not found
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        amount = data.get("amount")
        period = period_service.update_period(
            contract_id,
            period_id,
            status=data.get("status"),
            amount=parse_amount(amount) if amount not in (None, "") else None,
            notes=data.get("notes"),
            transaction_id=_optional_int(data, "transaction_id"),
        )
        return jsonify(period.to_dict()), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update contract period")
        return jsonify({"error": "Internal server error"}), 500
