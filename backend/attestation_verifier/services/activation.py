"""
Credential Activation

ActivationChallenger issues a challenge that only the TPM holding both the
endorsement key and the claimed identity key can answer; ActivationVerifier
checks the answer.
"""

import hmac
import os
from typing import Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from attestation_verifier.core.exceptions import (
    InvalidChallengeInput,
    NoChallengeIssued,
    TPMStructureError,
)
from attestation_verifier.core.logging import (
    get_logger,
    key_fingerprint,
    log_security_event,
)
from attestation_verifier.tpm import (
    EncryptedCredential,
    Public,
    TPMVersion,
    decode_attest,
    decode_public,
    decode_signature,
    make_credential,
    verify_signature,
)
from attestation_verifier.tpm.constants import (
    AK_REQUIRED_ATTRIBUTES,
    ALG_ECC,
    ALG_RSA,
    ECC_CURVES,
    FLAG_DECRYPT,
    TPM_ST_ATTEST_CREATION,
)
from attestation_verifier.tpm.structures import digest

from .models import (
    ActivationResult,
    AttestationParameters,
    DeviceRecord,
    VerificationFailure,
)

logger = get_logger(__name__)

# Signatures shorter than this cannot be a TPMT_SIGNATURE
MIN_SIGNATURE_SIZE = 8


def load_endorsement_key(data: bytes) -> rsa.RSAPublicKey:
    """
    Parse an endorsement public key given as PEM (PKCS#1 or
    SubjectPublicKeyInfo) or DER SubjectPublicKeyInfo.

    Raises:
        InvalidChallengeInput: If the key is malformed or not RSA
    """
    try:
        if data.lstrip().startswith(b"-----BEGIN"):
            key = serialization.load_pem_public_key(data)
        else:
            key = serialization.load_der_public_key(data)
    except (ValueError, TypeError) as e:
        raise InvalidChallengeInput(f"malformed endorsement key: {e}")

    if not isinstance(key, rsa.RSAPublicKey):
        raise InvalidChallengeInput(
            f"unsupported endorsement key type: {type(key).__name__}"
        )
    return key


def check_ak_parameters(params: AttestationParameters, min_rsa_bits: int) -> Public:
    """
    Verify that the identity key was created inside a TPM as a restricted
    signing key, using the creation data, attestation and signature the TPM
    produced when the key was made.

    Returns:
        The decoded identity key

    Raises:
        InvalidChallengeInput: If any check fails
    """
    if len(params.create_signature) < MIN_SIGNATURE_SIZE:
        raise InvalidChallengeInput("creation signature is too short to be a TPM signature")

    try:
        pub = decode_public(params.public)

        if pub.type == ALG_RSA and pub.key_bits < min_rsa_bits:
            raise InvalidChallengeInput(
                f"identity key is {pub.key_bits} bits, minimum is {min_rsa_bits}"
            )
        if pub.type == ALG_ECC and pub.curve_id not in ECC_CURVES:
            raise InvalidChallengeInput(
                f"identity key uses unsupported curve 0x{pub.curve_id:04x}"
            )

        if pub.attributes & AK_REQUIRED_ATTRIBUTES != AK_REQUIRED_ATTRIBUTES:
            raise InvalidChallengeInput(
                f"identity key attributes 0x{pub.attributes:08x} are missing "
                "fixedTPM, fixedParent, sensitiveDataOrigin, restricted or sign"
            )
        if pub.attributes & FLAG_DECRYPT:
            raise InvalidChallengeInput("identity key must not be a decryption key")

        att = decode_attest(params.create_attestation)
        if att.type != TPM_ST_ATTEST_CREATION:
            raise InvalidChallengeInput("attestation was not for a creation event")
        if not hmac.compare_digest(att.creation_hash, digest(pub.name_alg, params.create_data)):
            raise InvalidChallengeInput("creation data does not match creation attestation")
        if att.creation_name != pub.name():
            raise InvalidChallengeInput("creation attestation refers to a different key")

        sig = decode_signature(params.create_signature)
        if not verify_signature(pub, params.create_attestation, sig):
            raise InvalidChallengeInput("creation attestation signature does not verify")

    except TPMStructureError as e:
        raise InvalidChallengeInput(f"malformed identity key parameters: {e}")

    return pub


class ActivationChallenger:
    """
    Builds activation challenges and records the expected secret on the
    device's record.
    """

    def __init__(self, secret_size: int = 32, min_rsa_bits: int = 2048):
        self.secret_size = secret_size
        self.min_rsa_bits = min_rsa_bits

    def generate(
        self,
        version: TPMVersion,
        ek: rsa.RSAPublicKey,
        params: AttestationParameters,
    ) -> Tuple[bytes, EncryptedCredential]:
        """
        Create a fresh secret and wrap it for the device.

        Does not touch any device state.

        Returns:
            (secret, challenge) pair

        Raises:
            InvalidChallengeInput: For unsupported TPM versions or invalid keys
        """
        if version != TPMVersion.TPM_20:
            raise InvalidChallengeInput(f"unsupported TPM version: {version!r}")

        pub = check_ak_parameters(params, self.min_rsa_bits)

        secret = os.urandom(self.secret_size)
        try:
            challenge = make_credential(ek, pub.name(), pub.name_alg, secret)
        except ValueError as e:
            # e.g. an EK too small for OAEP with the AK's name hash
            raise InvalidChallengeInput(f"cannot wrap credential to endorsement key: {e}")

        return secret, challenge

    def issue(
        self,
        record: DeviceRecord,
        version: TPMVersion,
        ek: rsa.RSAPublicKey,
        params: AttestationParameters,
    ) -> EncryptedCredential:
        """
        Generate a challenge and commit it to record. The caller holds the
        registry lock. Any previous pending secret is replaced.
        """
        secret, challenge = self.generate(version, ek, params)
        self.commit(record, ek, params, secret)
        return challenge

    def commit(
        self,
        record: DeviceRecord,
        ek: rsa.RSAPublicKey,
        params: AttestationParameters,
        secret: bytes,
    ) -> None:
        """Record a generated challenge. The caller holds the registry lock."""
        record.identity_params = params
        record.endorsement_key_pem = ek.public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        record.pending_activation_secret = secret
        record.activated = False

        logger.info(
            "Generated activation challenge",
            fingerprint=key_fingerprint(params.public),
        )


class ActivationVerifier:
    """Checks a decrypted credential against the pending secret."""

    def verify(self, record: DeviceRecord, decrypted_credential: bytes) -> ActivationResult:
        """
        Compare decrypted_credential with the record's pending secret in
        constant time. The caller holds the registry lock.

        Raises:
            NoChallengeIssued: If no challenge is pending for this device
        """
        fingerprint = key_fingerprint(record.identity_params.public)
        expected = record.pending_activation_secret
        if not expected:
            raise NoChallengeIssued(f"no activation challenge pending for {fingerprint}")

        if not hmac.compare_digest(expected, bytes(decrypted_credential)):
            # The pending secret is kept so a late correct answer still works
            log_security_event(
                VerificationFailure.ACTIVATION_FAILED.value,
                fingerprint=fingerprint,
                details={"already_activated": record.activated},
            )
            return ActivationResult(
                succeeded=False,
                activated=record.activated,
                failure=VerificationFailure.ACTIVATION_FAILED,
            )

        record.activated = True
        logger.info("Activation succeeded", fingerprint=fingerprint)
        return ActivationResult(succeeded=True, activated=True)
