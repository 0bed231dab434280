# Overview: Payme merchant JSON-RPC endpoint.

from flask import Blueprint, jsonify, request

from ..decorators import require_payme_auth
from ..services import payme_errors, payme_service


payme_bp = Blueprint("payme", __name__, url_prefix="/api")


@payme_bp.post("/payme")
@require_payme_auth
def payme_route():
    """
    Single JSON-RPC endpoint for every Payme merchant method.

    Always HTTP 200; failures travel in the `error` member.
    """
    payload = request.get_json(silent=True)
    if payload is None:
        return jsonify(payme_service.error_reply(None, payme_errors.PARSE_ERROR)), 200
    return jsonify(payme_service.handle(payload)), 200
