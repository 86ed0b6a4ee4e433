"""
Attestation Services

Protocol components and the orchestrator that drives them.
"""

from .activation import ActivationChallenger, ActivationVerifier, check_ak_parameters
from .ekcert import EKCertVerifier, TrustStore
from .models import (
    ActivationResult,
    AttestationParameters,
    CertSummary,
    DeviceRecord,
    DeviceStatus,
    EKCertVerificationResult,
    QuoteVerificationResult,
    VerificationFailure,
)
from .nonce import NonceIssuer
from .orchestrator import AttestationOrchestrator, build_orchestrator
from .quote import QuoteVerifier
from .registry import ClientRegistry

__all__ = [
    "ActivationChallenger",
    "ActivationVerifier",
    "check_ak_parameters",
    "EKCertVerifier",
    "TrustStore",
    "ActivationResult",
    "AttestationParameters",
    "CertSummary",
    "DeviceRecord",
    "DeviceStatus",
    "EKCertVerificationResult",
    "QuoteVerificationResult",
    "VerificationFailure",
    "NonceIssuer",
    "AttestationOrchestrator",
    "build_orchestrator",
    "QuoteVerifier",
    "ClientRegistry",
]
