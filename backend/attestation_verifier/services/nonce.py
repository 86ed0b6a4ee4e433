"""
Nonce Issuer

Issues the fresh, unpredictable challenge a device must embed in its next
quote. This is the only replay defence for quote verification.
"""

import secrets

from attestation_verifier.core.logging import get_logger, key_fingerprint

from .models import DeviceRecord

logger = get_logger(__name__)

MIN_NONCE_SIZE = 32


class NonceIssuer:
    """Generates per-round nonces and records them on the device."""

    def __init__(self, nonce_size: int = MIN_NONCE_SIZE):
        if nonce_size < MIN_NONCE_SIZE:
            raise ValueError(f"nonce_size must be at least {MIN_NONCE_SIZE} bytes")
        self.nonce_size = nonce_size

    def issue(self, record: DeviceRecord) -> bytes:
        """
        Store a new nonce as the record's expected challenge and return it.
        Any earlier outstanding nonce is invalidated. The caller holds the
        registry lock.
        """
        nonce = secrets.token_bytes(self.nonce_size)
        record.last_nonce = nonce
        logger.info(
            "Sent nonce",
            fingerprint=key_fingerprint(record.identity_params.public),
        )
        return nonce
