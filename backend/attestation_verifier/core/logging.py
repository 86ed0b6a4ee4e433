"""
Logging configuration with automatic redaction of protocol secrets.

Activation secrets and decrypted credentials must never leave the verifier
process, so a structlog processor strips them from every event before it is
rendered.
"""

import hashlib
import logging
import sys
from typing import Any, Dict, List, Set

import structlog
from structlog.stdlib import LoggerFactory

from attestation_verifier.core.config import settings


class SensitiveDataRedactor:
    """
    Redacts sensitive data from log entries.

    Handles:
    - Exact key matches (activation_secret, decrypted_credential, etc.)
    - Pattern-based key matches (contains 'secret', 'private', etc.)
    - Raw byte values, which are replaced by their length
    - Nested dictionaries and lists
    """

    # Keys that should be fully redacted (exact match, case-insensitive)
    FULLY_REDACTED_KEYS: Set[str] = {
        "secret",
        "activation_secret",
        "pending_activation_secret",
        "decrypted_credential",
        "credential",
        "private_key",
        "privatekey",
        "seed",
    }

    # Key patterns that should be fully redacted (substring match)
    REDACTED_KEY_PATTERNS: List[str] = [
        "secret",
        "private",
        "credential",
        "password",
    ]

    REDACTED_PLACEHOLDER = "[REDACTED]"

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._fully_redacted_lower = {k.lower() for k in self.FULLY_REDACTED_KEYS}

    def redact(self, data: Any, key: str = None) -> Any:
        """
        Recursively redact sensitive data.

        Args:
            data: The data to redact (can be dict, list, or primitive)
            key: The key name if this data is a value in a dict

        Returns:
            Redacted version of the data
        """
        if not self.enabled:
            return data

        if data is None:
            return None

        if key:
            key_lower = key.lower()

            if key_lower in self._fully_redacted_lower:
                return self.REDACTED_PLACEHOLDER

            for pattern in self.REDACTED_KEY_PATTERNS:
                if pattern in key_lower:
                    return self.REDACTED_PLACEHOLDER

        if isinstance(data, dict):
            return {k: self.redact(v, k) for k, v in data.items()}

        if isinstance(data, (list, tuple)):
            return [self.redact(item) for item in data]

        # Raw bytes are never useful in a log line and may be key material
        if isinstance(data, (bytes, bytearray)):
            return f"<{len(data)} bytes>"

        return data


def sensitive_data_redactor_processor(
    logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Structlog processor that redacts sensitive data from log events.

    Runs before the final renderer so secrets never reach log output.
    """
    return _redactor.redact(event_dict)


def setup_logging() -> None:
    """Setup structured logging with automatic sensitive data redaction."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            sensitive_data_redactor_processor,
            structlog.processors.JSONRenderer()
            if settings.LOG_FORMAT == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL.upper()),
    )

    # Set specific loggers to reduce noise
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger"""
    return structlog.get_logger(name)


def key_fingerprint(identity_public: bytes) -> str:
    """Hex SHA-256 of an identity key public blob, used to name devices in logs."""
    return hashlib.sha256(identity_public).hexdigest()


def log_security_event(
    event_type: str,
    fingerprint: str = None,
    details: Dict[str, Any] = None,
    **kwargs: Any,
) -> None:
    """Log security event"""
    logger = get_logger("security")

    log_data = {
        "event_type": event_type,
        "fingerprint": fingerprint,
        "details": details or {},
        **kwargs,
    }

    logger.warning("Security event", **log_data)


# Global redactor instance for manual use
_redactor = SensitiveDataRedactor()


def redact_sensitive_data(data: Any) -> Any:
    """
    Manually redact sensitive data from any data structure.

    Example:
        >>> redact_sensitive_data({"fingerprint": "ab12", "activation_secret": b"..."})
        {'fingerprint': 'ab12', 'activation_secret': '[REDACTED]'}
    """
    return _redactor.redact(data)
