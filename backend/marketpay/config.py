# backend/marketpay/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ClickTenantConfig:
    """Merchant credentials issued by Click for one market (tenant)."""
    tenant_id: str
    service_id: str
    merchant_id: str
    secret_key: str


def load_click_tenants(raw: str | dict | None) -> dict[str, ClickTenantConfig]:
    """
    Parse the CLICK_TENANTS setting into typed credentials.

    Accepts either a JSON string or an already-decoded mapping:
        {"bogdod": {"service_id": "84296", "merchant_id": "46927", "secret_key": "..."}}
    """
    if not raw:
        return {}
    data = json.loads(raw) if isinstance(raw, str) else raw
    if not isinstance(data, dict):
        raise ValueError("CLICK_TENANTS must be a JSON object keyed by tenant id")

    tenants = {}
    for tenant_id, entry in data.items():
        missing = [k for k in ("service_id", "merchant_id", "secret_key") if not entry.get(k)]
        if missing:
            raise ValueError(f"CLICK_TENANTS[{tenant_id}] missing: {', '.join(missing)}")
        tenants[tenant_id] = ClickTenantConfig(
            tenant_id=tenant_id,
            service_id=str(entry["service_id"]),
            merchant_id=str(entry["merchant_id"]),
            secret_key=str(entry["secret_key"]),
        )
    return tenants


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/marketpay.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///marketpay.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Click: credentials per market, and which market this deployment serves
    CLICK_TENANTS = os.environ.get("CLICK_TENANTS", "")
    CLICK_TENANT_ID = os.environ.get("CLICK_TENANT_ID", os.environ.get("TENANT_ID", ""))

    # Payme: HTTP Basic credentials the gateway presents on every call
    PAYME_LOGIN = os.environ.get("PAYME_LOGIN", "Paycom")
    PAYME_KEY = os.environ.get("PAYME_KEY", "")

    # Shared bearer token for the operator (manual payment / reconciliation) API
    OPERATOR_API_TOKEN = os.environ.get("OPERATOR_API_TOKEN", "")

    # Ledger policy
    PENDING_EXPIRY_MINUTES = int(os.environ.get("PENDING_EXPIRY_MINUTES", "720"))
    MAX_PREPAID_MONTHS = int(os.environ.get("MAX_PREPAID_MONTHS", "24"))

    # Reconciliation reports are rendered in the market's local time
    REPORT_TIMEZONE = os.environ.get("REPORT_TIMEZONE", "Asia/Tashkent")
