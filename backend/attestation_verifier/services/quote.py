"""
Quote Verifier

Validates a TPM quote: the identity key's signature over it, the nonce it is
bound to, and the PCR digest it commits to.
"""

import hmac
from datetime import datetime, timezone

from attestation_verifier.core.exceptions import InvalidInput, NoNonceIssued
from attestation_verifier.core.logging import (
    get_logger,
    key_fingerprint,
    log_security_event,
)
from attestation_verifier.tpm import (
    TPMVersion,
    decode_attest,
    decode_public,
    decode_signature,
    pcr_composite_digest,
    verify_signature,
)
from attestation_verifier.tpm.constants import TPM_ST_ATTEST_QUOTE

from .models import DeviceRecord, PCRValues, QuoteVerificationResult

logger = get_logger(__name__)


class QuoteVerifier:
    """Checks quotes against the issued nonce and reference PCR values."""

    def verify(
        self,
        version: TPMVersion,
        identity_public: bytes,
        quote: bytes,
        signature: bytes,
        pcrs: PCRValues,
        nonce: bytes,
    ) -> QuoteVerificationResult:
        """
        Verify a quote without touching device state.

        Steps:
        1. Signature over the quote under the identity key
        2. Embedded extra data equals the nonce
        3. Embedded PCR digest equals the digest recomputed from pcrs over
           the PCRs the quote selects, in index order

        Returns:
            QuoteVerificationResult with a flag per failure cause

        Raises:
            InvalidInput: For unsupported versions, undecodable blobs, or
                reference values missing a PCR the quote selects
        """
        if version != TPMVersion.TPM_20:
            raise InvalidInput(f"unsupported TPM version: {version!r}")

        pub = decode_public(identity_public)
        sig = decode_signature(signature)

        if not verify_signature(pub, quote, sig):
            # Nothing in an unauthenticated quote is worth interpreting
            return QuoteVerificationResult(
                succeeded=False,
                signature_mismatch=True,
                timestamp=datetime.now(timezone.utc),
            )

        att = decode_attest(quote)
        if att.type != TPM_ST_ATTEST_QUOTE:
            raise InvalidInput(f"attestation type 0x{att.type:04x} is not a quote")

        composite = pcr_composite_digest(sig.hash_alg, att.selected_pcrs, pcrs)
        if composite is None:
            missing = sorted(set(att.selected_pcrs) - set(pcrs))
            raise InvalidInput(f"no reference value for selected PCRs {missing}")

        nonce_mismatch = not hmac.compare_digest(att.extra_data, nonce)
        digest_mismatch = not hmac.compare_digest(att.pcr_digest, composite)

        return QuoteVerificationResult(
            succeeded=not nonce_mismatch and not digest_mismatch,
            pcr_digest=composite,
            pcr_digest_mismatch=digest_mismatch,
            nonce_mismatch=nonce_mismatch,
            timestamp=datetime.now(timezone.utc),
        )

    def attest(
        self,
        record: DeviceRecord,
        version: TPMVersion,
        quote: bytes,
        signature: bytes,
        pcrs: PCRValues,
    ) -> QuoteVerificationResult:
        """
        Verify a quote against the record's outstanding nonce. The caller
        holds the registry lock.

        The nonce is consumed by every verification decision, pass or fail;
        the device must request a new one for the next round. The result is
        stored on the record either way.

        Raises:
            NoNonceIssued: If the device has no outstanding nonce
            InvalidInput: See verify(); the nonce is not consumed
        """
        fingerprint = key_fingerprint(record.identity_params.public)
        if not record.last_nonce:
            raise NoNonceIssued(f"no nonce outstanding for {fingerprint}")

        result = self.verify(
            version,
            record.identity_params.public,
            quote,
            signature,
            pcrs,
            record.last_nonce,
        )

        record.last_nonce = b""
        record.last_attestation_result = result

        if result.succeeded:
            logger.info(
                "Quote verified",
                fingerprint=fingerprint,
                pcr_digest=result.pcr_digest.hex(),
            )
        else:
            log_security_event(
                "QuoteVerificationFailed",
                fingerprint=fingerprint,
                details={"failures": [f.value for f in result.failures]},
            )
        return result
