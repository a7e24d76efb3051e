"""Unit tests for x402pay callback signature verification."""

import hashlib
import hmac

import pytest

from src.soulforge.callbacks import sign_payload, verify_callback_signature


@pytest.mark.unit
class TestSignatureVerification:
    """Test HMAC-SHA256 signature verification."""

    payload = b'{"paymentId":"pay_123","status":"completed"}'
    secret = "my_secret_key"

    def test_valid_signature(self):
        """Test that valid signatures pass verification."""
        expected_sig = hmac.new(self.secret.encode(), self.payload, hashlib.sha256).hexdigest()

        assert verify_callback_signature(self.payload, expected_sig, self.secret) is True

    def test_sign_payload_matches_hmac(self):
        expected_sig = hmac.new(self.secret.encode(), self.payload, hashlib.sha256).hexdigest()
        assert sign_payload(self.payload, self.secret) == expected_sig

    def test_invalid_signature(self):
        """Test that invalid signatures fail verification."""
        assert verify_callback_signature(self.payload, "0" * 64, self.secret) is False

    def test_wrong_secret(self):
        """Test that signatures with wrong secret fail."""
        wrong_sig = sign_payload(self.payload, "wrong_secret")

        assert verify_callback_signature(self.payload, wrong_sig, self.secret) is False

    def test_modified_payload(self):
        """Test that modified payloads fail verification."""
        signature = sign_payload(self.payload, self.secret)
        modified_payload = b'{"paymentId":"pay_123","status":"failed"}'

        assert verify_callback_signature(modified_payload, signature, self.secret) is False

    def test_empty_signature(self):
        """Test that empty signatures fail verification."""
        assert verify_callback_signature(self.payload, "", self.secret) is False

    def test_missing_secret(self):
        signature = sign_payload(self.payload, self.secret)

        assert verify_callback_signature(self.payload, signature, "") is False
        with pytest.raises(ValueError):
            sign_payload(self.payload, "")
