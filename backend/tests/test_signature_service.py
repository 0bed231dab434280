# Overview: Pytest coverage for Click signature verification.

import hashlib

import pytest
from marketpay.config import ClickTenantConfig, load_click_tenants
from marketpay.services.signature_service import SignatureVerifier


TENANTS = {
    "bozor": ClickTenantConfig(tenant_id="bozor", service_id="84296", merchant_id="46927", secret_key="s3cret"),
}

PREPARE_FIELDS = {
    "click_trans_id": "1001",
    "merchant_trans_id": "42",
    "amount": "15000",
    "action": "0",
    "sign_time": "2024-06-01 10:00:00",
}


def _md5(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


class TestSignatureVerifier:
    """MD5 digest over request fields plus the tenant secret."""

    def test_prepare_digest_layout(self):
        """click_trans_id + service_id + secret + merchant_trans_id + amount + action + sign_time."""
        verifier = SignatureVerifier(TENANTS)
        expected = _md5("1001" + "84296" + "s3cret" + "42" + "15000" + "0" + "2024-06-01 10:00:00")
        assert verifier.sign("bozor", PREPARE_FIELDS) == expected

    def test_complete_digest_includes_prepare_id(self):
        verifier = SignatureVerifier(TENANTS)
        fields = dict(PREPARE_FIELDS, action="1", merchant_prepare_id="5")
        expected = _md5("1001" + "84296" + "s3cret" + "42" + "5" + "15000" + "1" + "2024-06-01 10:00:00")
        assert verifier.sign("bozor", fields) == expected

    def test_verify_accepts_uppercase_signature(self):
        verifier = SignatureVerifier(TENANTS)
        signature = verifier.sign("bozor", PREPARE_FIELDS).upper()
        assert verifier.verify("bozor", PREPARE_FIELDS, signature) is True

    def test_verify_rejects_tampered_amount(self):
        verifier = SignatureVerifier(TENANTS)
        signature = verifier.sign("bozor", PREPARE_FIELDS)
        tampered = dict(PREPARE_FIELDS, amount="1500")
        assert verifier.verify("bozor", tampered, signature) is False

    @pytest.mark.parametrize("tenant_id,signature", [
        ("unknown", "abc"),
        ("bozor", None),
        ("bozor", ""),
    ])
    def test_verify_never_raises(self, tenant_id, signature):
        """Unknown tenant or missing signature is just a failed check."""
        verifier = SignatureVerifier(TENANTS)
        assert verifier.verify(tenant_id, PREPARE_FIELDS, signature) is False

    def test_unknown_tenant_signs_empty(self):
        assert SignatureVerifier(TENANTS).sign("unknown", PREPARE_FIELDS) == ""


class TestLoadClickTenants:
    def test_parses_json_string(self):
        tenants = load_click_tenants(
            '{"bozor": {"service_id": 84296, "merchant_id": "46927", "secret_key": "x"}}'
        )
        assert tenants["bozor"].service_id == "84296"
        assert tenants["bozor"].tenant_id == "bozor"

    def test_empty_setting(self):
        assert load_click_tenants("") == {}
        assert load_click_tenants(None) == {}

    def test_missing_credentials_rejected(self):
        with pytest.raises(ValueError):
            load_click_tenants({"bozor": {"service_id": "1"}})
