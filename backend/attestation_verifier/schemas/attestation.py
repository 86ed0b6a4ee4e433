"""
Attestation Protocol Schemas

Pydantic models for the attestation API. Binary fields travel as standard
base64 strings.
"""

import base64
import binascii
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from attestation_verifier.services.models import (
    AttestationParameters,
    CertSummary,
    DeviceStatus,
    EKCertVerificationResult,
)
from attestation_verifier.tpm import EncryptedCredential, TPMVersion


def decode_base64(value: Any) -> Any:
    """Decode a base64 string, passing anything else through to field validation."""
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("must be standard base64")
    return value


def encode_base64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


class AIKParameters(BaseModel):
    """Identity key parameters produced by the device TPM"""

    public: bytes = Field(..., description="TPMT_PUBLIC of the identity key")
    create_data: bytes = Field(b"", description="TPMS_CREATION_DATA")
    create_attestation: bytes = Field(b"", description="TPMS_ATTEST for the creation")
    create_signature: bytes = Field(b"", description="TPMT_SIGNATURE over create_attestation")

    @field_validator(
        "public", "create_data", "create_attestation", "create_signature", mode="before"
    )
    @classmethod
    def validate_base64(cls, v: Any) -> Any:
        return decode_base64(v)

    @field_validator("public")
    @classmethod
    def validate_public(cls, v: bytes) -> bytes:
        if not v:
            raise ValueError("public must not be empty")
        return v

    def to_params(self) -> AttestationParameters:
        return AttestationParameters(
            public=self.public,
            create_data=self.create_data,
            create_attestation=self.create_attestation,
            create_signature=self.create_signature,
        )


class ActivationChallengeRequest(BaseModel):
    """Request for a credential activation challenge"""

    tpm_version: TPMVersion = Field(..., description="1 for TPM 1.2, 2 for TPM 2.0")
    ek_pem: Optional[str] = Field(None, description="Endorsement public key, PEM")
    ek_certificate: Optional[bytes] = Field(
        None, description="Endorsement key certificate, DER or PEM"
    )
    aik: AIKParameters

    @field_validator("ek_certificate", mode="before")
    @classmethod
    def validate_base64(cls, v: Any) -> Any:
        return decode_base64(v)

    @model_validator(mode="after")
    def validate_endorsement_key(self) -> "ActivationChallengeRequest":
        if not self.ek_pem and not self.ek_certificate:
            raise ValueError("ek_pem or ek_certificate is required")
        return self


class EncryptedCredentialResponse(BaseModel):
    credential: str
    secret: str

    @classmethod
    def from_credential(cls, challenge: EncryptedCredential) -> "EncryptedCredentialResponse":
        return cls(
            credential=encode_base64(challenge.credential),
            secret=encode_base64(challenge.secret),
        )


class ActivationChallengeResponse(BaseModel):
    activation_challenge: EncryptedCredentialResponse


class ActivationRequest(BaseModel):
    """Decrypted credential returned by the device"""

    aik: AIKParameters
    decrypted_credential: bytes

    @field_validator("decrypted_credential", mode="before")
    @classmethod
    def validate_base64(cls, v: Any) -> Any:
        return decode_base64(v)


class ActivationResponse(BaseModel):
    activated: bool


class DeviceRequest(BaseModel):
    """Request naming a device by its identity key"""

    aik: AIKParameters


class NonceResponse(BaseModel):
    nonce: str


class QuoteData(BaseModel):
    quote: bytes = Field(..., description="TPMS_ATTEST of the quote")
    signature: bytes = Field(..., description="TPMT_SIGNATURE over quote")

    @field_validator("quote", "signature", mode="before")
    @classmethod
    def validate_base64(cls, v: Any) -> Any:
        return decode_base64(v)


class AttestRequest(BaseModel):
    """Quote submitted against the outstanding nonce"""

    tpm_version: TPMVersion
    aik: AIKParameters
    quote: QuoteData
    pcrs: Dict[int, bytes] = Field(
        ..., description="Reference PCR values, index to digest"
    )

    @field_validator("pcrs", mode="before")
    @classmethod
    def validate_pcrs(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {index: decode_base64(value) for index, value in v.items()}
        return v

    @field_validator("pcrs")
    @classmethod
    def validate_pcr_indices(cls, v: Dict[int, bytes]) -> Dict[int, bytes]:
        for index in v:
            if index < 0:
                raise ValueError(f"invalid PCR index {index}")
        return v


class AttestResponse(BaseModel):
    succeeded: bool


class EKCertificateRequest(BaseModel):
    certificate: bytes = Field(..., description="EK certificate, DER or PEM")

    @field_validator("certificate", mode="before")
    @classmethod
    def validate_base64(cls, v: Any) -> Any:
        return decode_base64(v)


class EKCertificateResponse(BaseModel):
    """Chain verification outcome, leaf first"""

    succeeded: bool
    chain_verified: bool
    chain: List[CertSummary]
    verification_error: str = ""

    @classmethod
    def from_result(cls, result: EKCertVerificationResult) -> "EKCertificateResponse":
        return cls(**result.model_dump())


class AttestationSummary(BaseModel):
    succeeded: bool
    timestamp: datetime


class DeviceStatusResponse(BaseModel):
    """
    Public view of one device. Failure causes and protocol progress stay in
    the server logs.
    """

    fingerprint: str
    activated: bool
    endorsement_key_known: bool
    last_attestation: Optional[AttestationSummary] = None

    @classmethod
    def from_status(cls, status: DeviceStatus) -> "DeviceStatusResponse":
        last = None
        result = status.last_attestation_result
        if result is not None:
            last = AttestationSummary(
                succeeded=result.succeeded,
                timestamp=result.timestamp,
            )
        return cls(
            fingerprint=status.fingerprint,
            activated=status.activated,
            endorsement_key_known=status.endorsement_key_known,
            last_attestation=last,
        )
