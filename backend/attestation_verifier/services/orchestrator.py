"""
Attestation Orchestrator

Single entry point for the transport layer. Each public method handles one
protocol request and performs its device-state changes while holding the
registry lock, so concurrent requests for the same device are serialized.
"""

from typing import Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from attestation_verifier.core.config import Settings
from attestation_verifier.core.exceptions import (
    InvalidChallengeInput,
    InvalidInput,
    UnknownDevice,
)
from attestation_verifier.core.logging import get_logger, key_fingerprint
from attestation_verifier.tpm import EncryptedCredential, TPMVersion

from .activation import ActivationChallenger, ActivationVerifier, load_endorsement_key
from .ekcert import EKCertVerifier, parse_certificates
from .models import (
    ActivationResult,
    AttestationParameters,
    DeviceStatus,
    EKCertVerificationResult,
    PCRValues,
    QuoteVerificationResult,
)
from .nonce import NonceIssuer
from .quote import QuoteVerifier
from .registry import ClientRegistry

logger = get_logger(__name__)


class AttestationOrchestrator:
    """Wires the registry and the protocol components together."""

    def __init__(
        self,
        registry: ClientRegistry,
        challenger: ActivationChallenger,
        activation_verifier: ActivationVerifier,
        nonce_issuer: NonceIssuer,
        quote_verifier: QuoteVerifier,
        ek_verifier: Optional[EKCertVerifier] = None,
        require_ek_certificate: bool = False,
    ):
        if require_ek_certificate and ek_verifier is None:
            raise ValueError("require_ek_certificate needs an EK certificate verifier")
        self.registry = registry
        self.challenger = challenger
        self.activation_verifier = activation_verifier
        self.nonce_issuer = nonce_issuer
        self.quote_verifier = quote_verifier
        self.ek_verifier = ek_verifier
        self.require_ek_certificate = require_ek_certificate

    def get_activation_challenge(
        self,
        version: TPMVersion,
        ek_public: Optional[bytes],
        identity_params: AttestationParameters,
        ek_certificate: Optional[bytes] = None,
    ) -> EncryptedCredential:
        """
        Issue an activation challenge for identity_params, bound to the
        endorsement key given directly, through a verified EK certificate,
        or both (in which case they must agree).

        Raises:
            InvalidChallengeInput: If the keys, parameters or certificate
                are unusable
        """
        ek = self._resolve_endorsement_key(ek_public, ek_certificate)
        # Rejected challenges must not register the device
        secret, challenge = self.challenger.generate(version, ek, identity_params)

        with self.registry.transaction(identity_params.public) as record:
            self.challenger.commit(record, ek, identity_params, secret)
        return challenge

    def _resolve_endorsement_key(
        self, ek_public: Optional[bytes], ek_certificate: Optional[bytes]
    ) -> rsa.RSAPublicKey:
        if ek_certificate is None:
            if self.require_ek_certificate:
                raise InvalidChallengeInput("an EK certificate is required")
            if not ek_public:
                raise InvalidChallengeInput("no endorsement key supplied")
            return load_endorsement_key(ek_public)

        if self.ek_verifier is None:
            raise InvalidChallengeInput(
                "EK certificate supplied but no manufacturer certificates are configured"
            )

        try:
            cert = parse_certificates(ek_certificate)[0]
        except ValueError as e:
            raise InvalidChallengeInput(f"EK certificate parse failed: {e}")

        result = self.ek_verifier.verify_certificate(cert)
        logger.info(
            "EK certificate checked",
            succeeded=result.succeeded,
            chain=[c.model_dump() for c in result.chain],
            error=result.verification_error,
        )
        if not result.succeeded:
            raise InvalidChallengeInput(
                f"EK certificate chain rejected: {result.verification_error}"
            )

        cert_key = cert.public_key()
        if not isinstance(cert_key, rsa.RSAPublicKey):
            raise InvalidChallengeInput(
                f"unsupported endorsement key type: {type(cert_key).__name__}"
            )

        if ek_public:
            ek = load_endorsement_key(ek_public)
            if ek.public_numbers() != cert_key.public_numbers():
                raise InvalidChallengeInput(
                    "endorsement key does not match the EK certificate"
                )
            return ek
        return cert_key

    def activate(self, identity_public: bytes, decrypted_credential: bytes) -> ActivationResult:
        """
        Raises:
            NoChallengeIssued
        """
        with self.registry.transaction(identity_public) as record:
            return self.activation_verifier.verify(record, decrypted_credential)

    def get_nonce(self, identity_public: bytes) -> bytes:
        with self.registry.transaction(identity_public) as record:
            return self.nonce_issuer.issue(record)

    def attest(
        self,
        version: TPMVersion,
        identity_public: bytes,
        quote: bytes,
        signature: bytes,
        pcrs: PCRValues,
    ) -> QuoteVerificationResult:
        """
        Raises:
            NoNonceIssued
            InvalidInput
        """
        with self.registry.transaction(identity_public) as record:
            return self.quote_verifier.attest(record, version, quote, signature, pcrs)

    def verify_ek_certificate(self, cert_bytes: bytes) -> EKCertVerificationResult:
        if self.ek_verifier is None:
            raise InvalidInput("no manufacturer certificates are configured")
        return self.ek_verifier.verify_ek_cert(cert_bytes)

    def device_status(self, identity_public: bytes) -> DeviceStatus:
        """
        Snapshot of a device's protocol state for audit. Unlike the protocol
        requests this never registers a new device.

        Raises:
            UnknownDevice
        """
        fingerprint = key_fingerprint(identity_public)
        with self.registry.transaction_if_known(identity_public) as record:
            if record is None:
                raise UnknownDevice(f"no device with fingerprint {fingerprint}")
            result = record.last_attestation_result
            return DeviceStatus(
                fingerprint=fingerprint,
                activated=record.activated,
                challenge_pending=bool(record.pending_activation_secret),
                nonce_outstanding=bool(record.last_nonce),
                endorsement_key_known=record.endorsement_key_pem is not None,
                last_attestation_result=result,
                last_attestation_failures=result.failures if result else [],
            )


def build_orchestrator(
    settings: Settings,
    registry: Optional[ClientRegistry] = None,
) -> AttestationOrchestrator:
    """
    Construct an orchestrator from settings.

    Raises:
        TrustStoreConstructionError: If EK_CERT_DIRS cannot be loaded
    """
    ek_verifier = None
    if settings.ek_cert_dirs:
        ek_verifier = EKCertVerifier.from_directories(settings.ek_cert_dirs)

    return AttestationOrchestrator(
        registry=registry if registry is not None else ClientRegistry(),
        challenger=ActivationChallenger(
            secret_size=settings.ACTIVATION_SECRET_SIZE,
            min_rsa_bits=settings.MIN_RSA_KEY_BITS,
        ),
        activation_verifier=ActivationVerifier(),
        nonce_issuer=NonceIssuer(nonce_size=settings.NONCE_SIZE),
        quote_verifier=QuoteVerifier(),
        ek_verifier=ek_verifier,
        require_ek_certificate=settings.REQUIRE_EK_CERTIFICATE,
    )
