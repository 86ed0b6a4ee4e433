"""
Pytest configuration and shared fixtures for all tests.

Key generation dominates test time, so the endorsement and identity keys are
generated once per session and shared. Everything holding protocol state
(registry, orchestrator) is created fresh per test.
"""
import sys
from pathlib import Path

import pytest
from cryptography.hazmat.primitives.asymmetric import ec, rsa

# Add backend and tests directories to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from attestation_verifier.services import (
    ActivationChallenger,
    ActivationVerifier,
    AttestationOrchestrator,
    ClientRegistry,
    EKCertVerifier,
    NonceIssuer,
    QuoteVerifier,
    TrustStore,
)
from tpm_fixtures import ManufacturerPKI, SoftwareTPM, default_pcrs


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: HTTP-level tests exercising the full protocol"
    )
    config.addinivalue_line(
        "markers", "slow: generates additional RSA keys"
    )


# ============================================================================
# Keys
# ============================================================================

@pytest.fixture(scope="session")
def ek_key():
    """RSA 2048 endorsement key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ak_rsa_key():
    """RSA 2048 identity key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_ak_rsa_key():
    """Second identity key, for tests needing two devices."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ak_ecc_key():
    """NIST P-256 identity key."""
    return ec.generate_private_key(ec.SECP256R1())


# ============================================================================
# Devices
# ============================================================================

@pytest.fixture
def tpm(ek_key, ak_rsa_key):
    """Software TPM with an RSA identity key."""
    return SoftwareTPM(ek_key, ak_rsa_key)


@pytest.fixture
def ecc_tpm(ek_key, ak_ecc_key):
    """Software TPM with an ECC identity key."""
    return SoftwareTPM(ek_key, ak_ecc_key)


@pytest.fixture
def other_tpm(ek_key, other_ak_rsa_key):
    """A second device sharing the EK but with its own identity key."""
    return SoftwareTPM(ek_key, other_ak_rsa_key)


@pytest.fixture
def pcrs():
    """Reference values for PCRs 0-7."""
    return default_pcrs()


# ============================================================================
# Verifier components
# ============================================================================

@pytest.fixture
def registry():
    return ClientRegistry()


@pytest.fixture
def orchestrator(registry):
    """Orchestrator without EK certificate checking."""
    return AttestationOrchestrator(
        registry=registry,
        challenger=ActivationChallenger(),
        activation_verifier=ActivationVerifier(),
        nonce_issuer=NonceIssuer(),
        quote_verifier=QuoteVerifier(),
    )


@pytest.fixture(scope="session")
def manufacturer_pki(ek_key):
    """Root, intermediate and EK certificate for the session EK."""
    return ManufacturerPKI(ek_key.public_key())


@pytest.fixture
def ek_cert_dir(tmp_path, manufacturer_pki):
    """Manufacturer certificate directory holding manufacturer_pki."""
    return manufacturer_pki.write(tmp_path / "ek-certs")


@pytest.fixture
def ek_verifier(ek_cert_dir):
    return EKCertVerifier(TrustStore.from_directories([str(ek_cert_dir)]))
