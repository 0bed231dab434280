# Overview: Read-only operator API over the transaction ledger.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_operator
from ..models.payments import PAYMENT_METHODS
from ..services import transaction_service
from ..services.payment_errors import TransactionNotFound
from ..validation import ValidationError, parse_datetime


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")

MAX_PAGE_SIZE = 500


@transactions_bp.get("")
@require_operator
def list_transactions_route():
    """
    List transactions, newest first.

    Query params: from, to (ISO-8601 or epoch ms), method, status,
    contract_id, attendance_id, limit (<= 500), offset.
    """
    try:
        method = request.args.get("method")
        if method and method.upper() not in PAYMENT_METHODS:
            raise ValidationError(f"method must be one of {list(PAYMENT_METHODS)}")

        limit = min(request.args.get("limit", 100, type=int) or 100, MAX_PAGE_SIZE)
        offset = max(request.args.get("offset", 0, type=int) or 0, 0)

        rows, total = transaction_service.list_transactions(
            start=parse_datetime(request.args.get("from"), "from"),
            end=parse_datetime(request.args.get("to"), "to"),
            method=method,
            status=request.args.get("status"),
            contract_id=request.args.get("contract_id", type=int),
            attendance_id=request.args.get("attendance_id", type=int),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [t.to_dict() for t in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/<path:reference>")
@require_operator
def get_transaction_route(reference: str):
    """
    One transaction by external reference, with its Click records and
    funded periods.
    """
    try:
        txn = transaction_service.get(reference)
        body = txn.to_dict()
        body["click_records"] = [c.to_dict() for c in txn.click_records]
        body["periods"] = [
            {
                "id": p.id,
                "period_start": p.period_start.isoformat(),
                "status": p.status,
            }
            for p in sorted(txn.periods, key=lambda p: p.period_start)
        ]
        return jsonify(body), 200
    except TransactionNotFound as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to get transaction")
        return jsonify({"error": "Internal server error"}), 500
