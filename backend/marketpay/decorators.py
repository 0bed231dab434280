# Overview: Request authentication decorators for the operator API and the Payme endpoint.

import base64
import binascii
import hmac
from functools import wraps

from flask import current_app, jsonify, request

from .services import payme_errors


def require_operator(f):
    """
    Require the shared operator bearer token.

    SECURITY: Returns 401 if:
    - No Authorization header or not a Bearer token
    - OPERATOR_API_TOKEN is not configured (operator API disabled)
    - Token does not match
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        expected = current_app.config.get("OPERATOR_API_TOKEN") or ""
        token = auth_header.split(" ", 1)[1].strip()
        if not expected or not hmac.compare_digest(token, expected):
            current_app.logger.warning("Operator API token rejected for %s %s", request.method, request.path)
            return jsonify({"error": "Invalid token"}), 401

        return f(*args, **kwargs)

    return decorated_function


def _basic_credentials() -> tuple[str, str] | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Basic "):
        return None
    try:
        decoded = base64.b64decode(auth_header.split(" ", 1)[1].strip()).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    login, _, password = decoded.partition(":")
    return login, password


def require_payme_auth(f):
    """
    Check Payme's HTTP Basic credentials.

    The Payme protocol requires HTTP 200 for every outcome, so a failure is
    a JSON-RPC InvalidAuthorization error, never a 401.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        credentials = _basic_credentials()
        expected_login = current_app.config.get("PAYME_LOGIN") or ""
        expected_key = current_app.config.get("PAYME_KEY") or ""

        ok = (
            credentials is not None
            and bool(expected_key)
            and hmac.compare_digest(credentials[0], expected_login)
            and hmac.compare_digest(credentials[1], expected_key)
        )
        if not ok:
            payload = request.get_json(silent=True)
            rpc_id = payload.get("id") if isinstance(payload, dict) else None
            current_app.logger.warning("Payme authorization rejected from %s", request.remote_addr)
            return jsonify({"id": rpc_id, "error": payme_errors.INVALID_AUTHORIZATION.body()}), 200

        return f(*args, **kwargs)

    return decorated_function
