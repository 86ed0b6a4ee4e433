"""
Attestation Result and Device State Models

Data models for per-device protocol state and verification outcomes.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class VerificationFailure(str, Enum):
    """Security verification failures. Recorded in results, never raised."""

    ACTIVATION_FAILED = "ActivationFailed"
    NONCE_MISMATCH = "NonceMismatch"
    PCR_DIGEST_MISMATCH = "PcrDigestMismatch"
    SIGNATURE_MISMATCH = "SignatureMismatch"


class AttestationParameters(BaseModel):
    """
    Identity key (AK) parameters as reported by the device.

    public is the TPMT_PUBLIC blob; the create_* fields are the TPM2_Create
    outputs proving the key was generated inside the TPM.
    """

    model_config = ConfigDict(frozen=True)

    public: bytes
    create_data: bytes = b""
    create_attestation: bytes = b""
    create_signature: bytes = b""


class QuoteVerificationResult(BaseModel):
    """
    Outcome of a quote check. Each failure cause has its own flag so callers
    can tell them apart for audit.
    """

    succeeded: bool
    signature_mismatch: bool = False
    pcr_digest: bytes = b""
    pcr_digest_mismatch: bool = False
    nonce_mismatch: bool = False
    timestamp: datetime

    @property
    def failures(self) -> List[VerificationFailure]:
        failures = []
        if self.signature_mismatch:
            failures.append(VerificationFailure.SIGNATURE_MISMATCH)
        if self.nonce_mismatch:
            failures.append(VerificationFailure.NONCE_MISMATCH)
        if self.pcr_digest_mismatch:
            failures.append(VerificationFailure.PCR_DIGEST_MISMATCH)
        return failures


class ActivationResult(BaseModel):
    """Outcome of a credential activation attempt."""

    succeeded: bool
    activated: bool
    failure: Optional[VerificationFailure] = None


class CertSummary(BaseModel):
    issuer_cn: str
    issuer_org: str
    serial: str


class EKCertVerificationResult(BaseModel):
    """Outcome of an EK certificate chain check."""

    succeeded: bool
    chain_verified: bool
    chain: List[CertSummary] = Field(default_factory=list)
    verification_error: str = ""


class DeviceRecord(BaseModel):
    """
    Protocol state for one identity key.

    Owned by ClientRegistry; only mutated while the registry lock is held.
    """

    identity_params: AttestationParameters
    endorsement_key_pem: Optional[bytes] = None
    pending_activation_secret: bytes = Field(default=b"", repr=False)
    activated: bool = False
    last_nonce: bytes = b""
    last_attestation_result: Optional[QuoteVerificationResult] = None


class DeviceStatus(BaseModel):
    """Read-only audit view of a DeviceRecord. Never carries the secret."""

    fingerprint: str
    activated: bool
    challenge_pending: bool
    nonce_outstanding: bool
    endorsement_key_known: bool
    last_attestation_result: Optional[QuoteVerificationResult] = None
    last_attestation_failures: List[VerificationFailure] = Field(default_factory=list)


# PCR index -> expected digest
PCRValues = Dict[int, bytes]
