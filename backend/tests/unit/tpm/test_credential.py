"""
Tests for KDFa and the software TPM2_MakeCredential.
"""
import os

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from attestation_verifier.tpm import make_credential
from attestation_verifier.tpm.constants import ALG_SHA1, ALG_SHA256, ALG_SHA384
from attestation_verifier.tpm.kdf import kdfa
from tpm_fixtures import SoftwareTPM, reference_kdfa


class TestKDFa:
    """KDFa must match the construction in the TPM library specification."""

    @pytest.mark.parametrize("alg", [ALG_SHA1, ALG_SHA256, ALG_SHA384])
    @pytest.mark.parametrize("bits", [128, 256, 520])
    def test_matches_reference(self, alg, bits):
        key = bytes(range(16))
        assert kdfa(alg, key, b"STORAGE", b"name", b"", bits) == reference_kdfa(
            alg, key, b"STORAGE", b"name", b"", bits
        )

    def test_label_terminator_optional(self):
        key = os.urandom(16)
        assert kdfa(ALG_SHA256, key, b"IDENTITY\x00", b"", b"", 256) == kdfa(
            ALG_SHA256, key, b"IDENTITY", b"", b"", 256
        )

    def test_context_changes_output(self):
        key = os.urandom(16)
        assert kdfa(ALG_SHA256, key, b"STORAGE", b"a", b"", 128) != kdfa(
            ALG_SHA256, key, b"STORAGE", b"b", b"", 128
        )

    @pytest.mark.parametrize("bits", [0, 12])
    def test_partial_bytes_rejected(self, bits):
        with pytest.raises(ValueError):
            kdfa(ALG_SHA256, b"key", b"STORAGE", b"", b"", bits)


class TestMakeCredential:
    """The device must be able to recover the secret with ActivateCredential."""

    @pytest.mark.parametrize("device", ["tpm", "ecc_tpm"])
    def test_device_recovers_secret(self, request, device):
        device = request.getfixturevalue(device)
        secret = os.urandom(32)
        challenge = make_credential(
            device.ek_key.public_key(), device.ak_name, device.name_alg, secret
        )
        assert device.activate_credential(challenge) == secret

    def test_bound_to_identity_key_name(self, tpm, other_tpm):
        challenge = make_credential(
            tpm.ek_key.public_key(), tpm.ak_name, tpm.name_alg, os.urandom(32)
        )
        # Same EK, different AK: the integrity check fails on the device
        with pytest.raises(ValueError, match="integrity"):
            other_tpm.activate_credential(challenge)

    @pytest.mark.slow
    def test_bound_to_endorsement_key(self, tpm):
        other_ek = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        challenge = make_credential(
            other_ek.public_key(), tpm.ak_name, tpm.name_alg, os.urandom(32)
        )
        with pytest.raises(ValueError):
            tpm.activate_credential(challenge)

    def test_fixed_seed_is_deterministic_apart_from_oaep(self, tpm):
        seed = b"\x01" * 16
        secret = b"s" * 32
        first = make_credential(tpm.ek_key.public_key(), tpm.ak_name, tpm.name_alg, secret, seed=seed)
        second = make_credential(tpm.ek_key.public_key(), tpm.ak_name, tpm.name_alg, secret, seed=seed)
        assert first.credential == second.credential
        # OAEP is randomized
        assert first.secret != second.secret

    def test_layout_has_length_prefixes(self, tpm):
        challenge = make_credential(
            tpm.ek_key.public_key(), tpm.ak_name, tpm.name_alg, os.urandom(32)
        )
        assert int.from_bytes(challenge.secret[:2], "big") == len(challenge.secret) - 2 == 256
        assert int.from_bytes(challenge.credential[:2], "big") == len(challenge.credential) - 2
