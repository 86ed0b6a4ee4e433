"""Exceptions raised by the attestation verifier."""


class AttestationError(Exception):
    """Base exception for the attestation verifier."""

    pass


class InvalidInput(AttestationError):
    """Raised when keys or parameters supplied by the caller are malformed."""

    pass


class InvalidChallengeInput(InvalidInput):
    """Raised when an activation challenge cannot be built from the inputs."""

    pass


class TPMStructureError(InvalidInput):
    """Raised when a TPM wire structure cannot be decoded."""

    pass


class ProtocolSequenceError(AttestationError):
    """Raised when a request arrives before the step it depends on."""

    pass


class NoChallengeIssued(ProtocolSequenceError):
    """Raised when activation is attempted without a pending challenge."""

    pass


class NoNonceIssued(ProtocolSequenceError):
    """Raised when a quote is submitted without an outstanding nonce."""

    pass


class TrustStoreConstructionError(AttestationError):
    """Raised when the EK certificate trust store cannot be built."""

    pass


class UnknownDevice(AttestationError):
    """Raised when a read-only query names an identity key never seen."""

    pass
