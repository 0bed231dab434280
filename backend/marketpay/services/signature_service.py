# Overview: Click request signature check; per-tenant credentials, no database access.

"""
Click Signature Verifier

Click signs every webhook with an MD5 digest over the request fields plus
the merchant secret:

    md5(click_trans_id + service_id + secret_key + merchant_trans_id
        + [merchant_prepare_id] + amount + action + sign_time)

merchant_prepare_id is only part of the digest on complete calls. The same
construction signs our replies (sign_string).
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Mapping

from ..config import ClickTenantConfig


class SignatureVerifier:
    def __init__(self, tenants: Mapping[str, ClickTenantConfig]):
        self._tenants = dict(tenants)

    def tenant(self, tenant_id: str) -> ClickTenantConfig | None:
        return self._tenants.get(tenant_id)

    @property
    def tenant_ids(self) -> list[str]:
        return sorted(self._tenants)

    def _digest(self, tenant: ClickTenantConfig, fields: Mapping) -> str:
        parts = [
            _field(fields, "click_trans_id"),
            tenant.service_id,
            tenant.secret_key,
            _field(fields, "merchant_trans_id"),
        ]
        prepare_id = _field(fields, "merchant_prepare_id")
        if prepare_id:
            parts.append(prepare_id)
        parts.extend([
            _field(fields, "amount"),
            _field(fields, "action"),
            _field(fields, "sign_time"),
        ])
        return hashlib.md5("".join(parts).encode("utf-8")).hexdigest()

    def sign(self, tenant_id: str, fields: Mapping) -> str:
        """Outbound sign_string for a reply; unknown tenant signs as empty."""
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            return ""
        return self._digest(tenant, fields)

    def verify(self, tenant_id: str, fields: Mapping, provided_signature: str | None) -> bool:
        """
        True when provided_signature matches the expected digest.

        Never raises: an unknown tenant or a missing signature is a failed
        check like any other.
        """
        tenant = self._tenants.get(tenant_id)
        if tenant is None or not provided_signature:
            return False
        expected = self._digest(tenant, fields)
        return hmac.compare_digest(expected.lower(), str(provided_signature).strip().lower())


def _field(fields: Mapping, name: str) -> str:
    value = fields.get(name)
    return "" if value is None else str(value)
