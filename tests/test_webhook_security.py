"""Tests for gateway signature and credential checks"""

from mathbridge.webhook_security import (
    build_payos_signature_data,
    compute_hmac_sha256,
    sign_payos_data,
    verify_payos_signature,
    verify_sepay_api_key,
)

CHECKSUM_KEY = "test-checksum-key"


class TestPayOSSignature:
    def test_canonical_string_sorts_keys(self):
        data = {"orderCode": 123, "amount": 2000, "description": "MB 123", "currency": None}
        assert build_payos_signature_data(data) == (
            "amount=2000&currency=&description=MB 123&orderCode=123"
        )

    def test_booleans_render_lowercase(self):
        assert build_payos_signature_data({"b": True, "a": False}) == "a=false&b=true"

    def test_sign_matches_hmac_of_canonical_string(self):
        data = {"orderCode": 1, "amount": 5000}
        expected = compute_hmac_sha256(CHECKSUM_KEY, b"amount=5000&orderCode=1")
        assert sign_payos_data(CHECKSUM_KEY, data) == expected

    def test_valid_signature_accepted(self):
        data = {"orderCode": 42, "amount": 10000, "description": "top up"}
        signature = sign_payos_data(CHECKSUM_KEY, data)
        assert verify_payos_signature(CHECKSUM_KEY, data, signature)
        assert verify_payos_signature(CHECKSUM_KEY, data, signature.upper())

    def test_tampered_data_rejected(self):
        data = {"orderCode": 42, "amount": 10000}
        signature = sign_payos_data(CHECKSUM_KEY, data)
        assert not verify_payos_signature(CHECKSUM_KEY, {"orderCode": 42, "amount": 1}, signature)

    def test_missing_signature_rejected(self):
        assert not verify_payos_signature(CHECKSUM_KEY, {"orderCode": 1}, None)


class TestSePayApiKey:
    def test_valid_key(self):
        assert verify_sepay_api_key("Apikey secret-key", "secret-key")

    def test_scheme_is_case_insensitive(self):
        assert verify_sepay_api_key("APIKEY secret-key", "secret-key")

    def test_wrong_key(self):
        assert not verify_sepay_api_key("Apikey other", "secret-key")

    def test_wrong_scheme(self):
        assert not verify_sepay_api_key("Bearer secret-key", "secret-key")

    def test_missing_header(self):
        assert not verify_sepay_api_key(None, "secret-key")
