"""
Tests for the logging redaction functionality.

Activation secrets and decrypted credentials must never be rendered.
"""
import hashlib
import json

import pytest
import structlog
from structlog.testing import capture_logs

from attestation_verifier.core.logging import (
    SensitiveDataRedactor,
    key_fingerprint,
    log_security_event,
    redact_sensitive_data,
    sensitive_data_redactor_processor,
)


class TestSensitiveDataRedactor:
    """Test the SensitiveDataRedactor class."""

    @pytest.fixture
    def redactor(self):
        """Create a fresh redactor instance for each test."""
        return SensitiveDataRedactor()

    # Test fully redacted keys
    @pytest.mark.parametrize("key", [
        "secret",
        "SECRET",
        "activation_secret",
        "pending_activation_secret",
        "decrypted_credential",
        "credential",
        "private_key",
        "seed",
    ])
    def test_fully_redacted_keys(self, redactor, key):
        """Test that sensitive keys are fully redacted."""
        result = redactor.redact({key: b"\x01\x02\x03"})
        assert result[key] == "[REDACTED]"

    # Test pattern-based redaction
    @pytest.mark.parametrize("key", [
        "expected_secret",
        "ek_private",
        "device_credentials",
        "db_password",
    ])
    def test_pattern_based_redaction(self, redactor, key):
        """Test that keys matching patterns are redacted."""
        result = redactor.redact({key: "sensitive_value_123"})
        assert result[key] == "[REDACTED]"

    def test_bytes_replaced_by_length(self, redactor):
        result = redactor.redact({"nonce": b"\x00" * 32})
        assert result["nonce"] == "<32 bytes>"

    def test_fingerprint_kept(self, redactor):
        result = redactor.redact({"fingerprint": "ab" * 32})
        assert result["fingerprint"] == "ab" * 32

    def test_nested_dict_redaction(self, redactor):
        data = {
            "details": {
                "already_activated": False,
                "activation_secret": b"\xff" * 32,
                "attempts": [{"credential": "x"}],
            }
        }
        result = redactor.redact(data)
        assert result["details"]["already_activated"] is False
        assert result["details"]["activation_secret"] == "[REDACTED]"
        assert result["details"]["attempts"][0]["credential"] == "[REDACTED]"

    def test_disabled_redactor(self):
        redactor = SensitiveDataRedactor(enabled=False)
        assert redactor.redact({"secret": "value"}) == {"secret": "value"}

    def test_module_helper(self):
        assert redact_sensitive_data({"secret": "x", "event": "ok"}) == {
            "secret": "[REDACTED]",
            "event": "ok",
        }


class TestRedactionProcessor:
    """The structlog processor must strip secrets before rendering."""

    def test_secret_never_rendered(self):
        secret = b"\xaa" * 32
        rendered = structlog.processors.JSONRenderer()(
            None,
            "info",
            sensitive_data_redactor_processor(
                None, "info", {"event": "Activation succeeded", "activation_secret": secret}
            ),
        )
        assert secret.hex() not in rendered
        assert json.loads(rendered)["activation_secret"] == "[REDACTED]"


class TestHelpers:
    def test_key_fingerprint_is_sha256_hex(self):
        assert key_fingerprint(b"ak") == hashlib.sha256(b"ak").hexdigest()

    def test_security_event_logged_as_warning(self):
        with capture_logs() as logs:
            log_security_event("ActivationFailed", fingerprint="ab", details={"n": 1})
        assert logs[0]["log_level"] == "warning"
        assert logs[0]["event_type"] == "ActivationFailed"
        assert logs[0]["fingerprint"] == "ab"
