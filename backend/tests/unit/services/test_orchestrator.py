"""
Tests for the attestation orchestrator: the full protocol against one
registry, as the HTTP layer drives it.
"""
import os
import threading

import pytest
from cryptography.hazmat.primitives import serialization

from attestation_verifier.core.config import Settings
from attestation_verifier.core.exceptions import (
    InvalidChallengeInput,
    InvalidInput,
    NoChallengeIssued,
    NoNonceIssued,
    UnknownDevice,
)
from attestation_verifier.services import (
    ActivationChallenger,
    ActivationVerifier,
    AttestationOrchestrator,
    AttestationParameters,
    ClientRegistry,
    NonceIssuer,
    QuoteVerifier,
    VerificationFailure,
    build_orchestrator,
)
from attestation_verifier.tpm import TPMVersion
from tpm_fixtures import ManufacturerPKI


def _activate(orchestrator, device):
    challenge = orchestrator.get_activation_challenge(
        TPMVersion.TPM_20, device.ek_public_pem(), device.attestation_parameters()
    )
    return orchestrator.activate(device.ak_public, device.activate_credential(challenge))


class TestProtocolFlow:
    """End to end over the orchestrator."""

    def test_full_flow(self, orchestrator, tpm, pcrs):
        assert _activate(orchestrator, tpm).activated is True

        nonce = orchestrator.get_nonce(tpm.ak_public)
        quote, signature = tpm.quote(nonce, pcrs)
        result = orchestrator.attest(TPMVersion.TPM_20, tpm.ak_public, quote, signature, pcrs)
        assert result.succeeded is True

        status = orchestrator.device_status(tpm.ak_public)
        assert status.activated is True
        assert status.nonce_outstanding is False
        assert status.last_attestation_result.succeeded is True

    def test_activation_with_wrong_credential(self, orchestrator, tpm):
        orchestrator.get_activation_challenge(
            TPMVersion.TPM_20, tpm.ek_public_pem(), tpm.attestation_parameters()
        )
        result = orchestrator.activate(tpm.ak_public, os.urandom(32))
        assert result.succeeded is False
        assert result.failure == VerificationFailure.ACTIVATION_FAILED

    @pytest.mark.parametrize("version", [TPMVersion.TPM_12, TPMVersion.TPM_20])
    def test_rejected_challenge_registers_nothing(self, orchestrator, tpm, version):
        params = AttestationParameters(
            public=b"\x00\x01garbage",
            create_data=b"",
            create_attestation=b"",
            create_signature=b"\x00" * 8,
        )
        with pytest.raises(InvalidChallengeInput):
            orchestrator.get_activation_challenge(version, tpm.ek_public_pem(), params)
        assert len(orchestrator.registry) == 0
        with pytest.raises(UnknownDevice):
            orchestrator.device_status(params.public)

    def test_activation_before_challenge(self, orchestrator, tpm):
        with pytest.raises(NoChallengeIssued):
            orchestrator.activate(tpm.ak_public, os.urandom(32))

    def test_attest_before_nonce(self, orchestrator, tpm, pcrs):
        quote, signature = tpm.quote(os.urandom(32), pcrs)
        with pytest.raises(NoNonceIssued):
            orchestrator.attest(TPMVersion.TPM_20, tpm.ak_public, quote, signature, pcrs)

    def test_quote_does_not_require_activation(self, orchestrator, tpm, pcrs):
        nonce = orchestrator.get_nonce(tpm.ak_public)
        quote, signature = tpm.quote(nonce, pcrs)
        assert orchestrator.attest(
            TPMVersion.TPM_20, tpm.ak_public, quote, signature, pcrs
        ).succeeded is True

    def test_devices_are_isolated(self, orchestrator, tpm, other_tpm, pcrs):
        _activate(orchestrator, tpm)
        nonce = orchestrator.get_nonce(tpm.ak_public)
        orchestrator.get_nonce(other_tpm.ak_public)

        assert orchestrator.device_status(other_tpm.ak_public).activated is False

        # A quote over tpm's nonce does not satisfy other_tpm's
        quote, signature = other_tpm.quote(nonce, pcrs)
        result = orchestrator.attest(
            TPMVersion.TPM_20, other_tpm.ak_public, quote, signature, pcrs
        )
        assert result.nonce_mismatch is True
        assert orchestrator.device_status(tpm.ak_public).nonce_outstanding is True

    def test_concurrent_nonce_requests(self, orchestrator, tpm, pcrs):
        nonces = []

        def worker():
            nonces.append(orchestrator.get_nonce(tpm.ak_public))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(orchestrator.registry) == 1
        # Exactly one of them is the outstanding nonce
        outstanding = orchestrator.registry.get(tpm.ak_public).last_nonce
        assert nonces.count(outstanding) == 1


class TestDeviceStatus:
    def test_unknown_device(self, orchestrator):
        with pytest.raises(UnknownDevice):
            orchestrator.device_status(b"never seen")
        assert len(orchestrator.registry) == 0

    def test_pending_challenge_reported(self, orchestrator, tpm):
        orchestrator.get_activation_challenge(
            TPMVersion.TPM_20, tpm.ek_public_pem(), tpm.attestation_parameters()
        )
        status = orchestrator.device_status(tpm.ak_public)
        assert status.challenge_pending is True
        assert status.endorsement_key_known is True
        assert status.activated is False
        assert "secret" not in status.model_dump_json()

    def test_failures_reported(self, orchestrator, tpm, pcrs):
        orchestrator.get_nonce(tpm.ak_public)
        quote, signature = tpm.quote(os.urandom(32), pcrs)
        orchestrator.attest(TPMVersion.TPM_20, tpm.ak_public, quote, signature, pcrs)
        status = orchestrator.device_status(tpm.ak_public)
        assert status.last_attestation_failures == [VerificationFailure.NONCE_MISMATCH]


class TestEKCertificateBinding:
    """Activation challenges bound to a verified EK certificate."""

    @pytest.fixture
    def cert_orchestrator(self, ek_verifier):
        return AttestationOrchestrator(
            registry=ClientRegistry(),
            challenger=ActivationChallenger(),
            activation_verifier=ActivationVerifier(),
            nonce_issuer=NonceIssuer(),
            quote_verifier=QuoteVerifier(),
            ek_verifier=ek_verifier,
            require_ek_certificate=True,
        )

    def test_certificate_alone_supplies_ek(self, cert_orchestrator, manufacturer_pki, tpm):
        challenge = cert_orchestrator.get_activation_challenge(
            TPMVersion.TPM_20,
            None,
            tpm.attestation_parameters(),
            ek_certificate=manufacturer_pki.ek_cert_der(),
        )
        result = cert_orchestrator.activate(tpm.ak_public, tpm.activate_credential(challenge))
        assert result.succeeded is True

    def test_certificate_and_matching_key(self, cert_orchestrator, manufacturer_pki, tpm):
        cert_orchestrator.get_activation_challenge(
            TPMVersion.TPM_20,
            tpm.ek_public_pem(),
            tpm.attestation_parameters(),
            ek_certificate=manufacturer_pki.ek_cert_der(),
        )
        assert cert_orchestrator.device_status(tpm.ak_public).challenge_pending is True

    def test_certificate_for_other_key_rejected(self, cert_orchestrator, manufacturer_pki, tpm, other_ak_rsa_key):
        other_pem = other_ak_rsa_key.public_key().public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        with pytest.raises(InvalidChallengeInput, match="does not match"):
            cert_orchestrator.get_activation_challenge(
                TPMVersion.TPM_20,
                other_pem,
                tpm.attestation_parameters(),
                ek_certificate=manufacturer_pki.ek_cert_der(),
            )
        assert tpm.ak_public not in cert_orchestrator.registry

    def test_untrusted_certificate_rejected(self, cert_orchestrator, ek_key, tpm):
        stranger = ManufacturerPKI(ek_key.public_key(), name="Unknown Manufacturer")
        with pytest.raises(InvalidChallengeInput, match="chain"):
            cert_orchestrator.get_activation_challenge(
                TPMVersion.TPM_20,
                None,
                tpm.attestation_parameters(),
                ek_certificate=stranger.ek_cert_der(),
            )

    def test_certificate_required(self, cert_orchestrator, tpm):
        with pytest.raises(InvalidChallengeInput, match="required"):
            cert_orchestrator.get_activation_challenge(
                TPMVersion.TPM_20, tpm.ek_public_pem(), tpm.attestation_parameters()
            )

    def test_certificate_without_trust_store(self, orchestrator, manufacturer_pki, tpm):
        with pytest.raises(InvalidChallengeInput, match="configured"):
            orchestrator.get_activation_challenge(
                TPMVersion.TPM_20,
                None,
                tpm.attestation_parameters(),
                ek_certificate=manufacturer_pki.ek_cert_der(),
            )

    def test_verify_ek_certificate_without_trust_store(self, orchestrator, manufacturer_pki):
        with pytest.raises(InvalidInput):
            orchestrator.verify_ek_certificate(manufacturer_pki.ek_cert_der())


class TestBuildOrchestrator:
    def test_defaults(self):
        orchestrator = build_orchestrator(Settings(EK_CERT_DIRS=""))
        assert orchestrator.ek_verifier is None
        assert orchestrator.nonce_issuer.nonce_size == 32
        assert len(orchestrator.registry) == 0

    def test_with_trust_store(self, ek_cert_dir):
        orchestrator = build_orchestrator(
            Settings(EK_CERT_DIRS=str(ek_cert_dir), REQUIRE_EK_CERTIFICATE=True)
        )
        assert orchestrator.require_ek_certificate is True
        assert len(orchestrator.ek_verifier.trust_store.roots) == 1

    def test_existing_registry_kept(self):
        registry = ClientRegistry()
        assert build_orchestrator(Settings(EK_CERT_DIRS=""), registry=registry).registry is registry
