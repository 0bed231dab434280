# Overview: Click merchant webhook endpoints (prepare / complete).

"""
Click Webhook API Routes

Click posts form-encoded fields (JSON is accepted too) and expects a flat
JSON envelope with HTTP 200 whatever the outcome. All protocol logic lives
in click_service; these views only normalize the request body.
"""

from flask import Blueprint, jsonify, request

from ..services import click_service


click_bp = Blueprint("click", __name__, url_prefix="/api/click")


def _fields() -> dict:
    if request.form:
        return request.form.to_dict()
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


@click_bp.post("/prepare")
def prepare_route():
    """
    Click prepare (action=0).

    Returns:
        200: {click_trans_id, merchant_trans_id, merchant_prepare_id?, error, error_note, sign_string?}
    """
    return jsonify(click_service.prepare(_fields())), 200


@click_bp.post("/complete")
def complete_route():
    """
    Click complete (action=1).

    Returns:
        200: {click_trans_id, merchant_trans_id, merchant_confirm_id?, error, error_note, sign_string?}
    """
    return jsonify(click_service.complete(_fields())), 200
