"""
Attestation API Endpoints

The device-facing protocol: credential activation, nonce issue and quote
verification, plus EK certificate and device status queries for operators.

Handlers are plain functions so FastAPI runs them in its threadpool; the
registry lock is a threading lock.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from attestation_verifier.core.exceptions import NoChallengeIssued
from attestation_verifier.core.logging import get_logger
from attestation_verifier.schemas.attestation import (
    ActivationChallengeRequest,
    ActivationChallengeResponse,
    ActivationRequest,
    ActivationResponse,
    AttestRequest,
    AttestResponse,
    DeviceRequest,
    DeviceStatusResponse,
    EKCertificateRequest,
    EKCertificateResponse,
    EncryptedCredentialResponse,
    NonceResponse,
    encode_base64,
)
from attestation_verifier.services.orchestrator import AttestationOrchestrator

logger = get_logger(__name__)

router = APIRouter()


def get_orchestrator(request: Request) -> AttestationOrchestrator:
    """Dependency returning the orchestrator built at startup"""
    return request.app.state.orchestrator


@router.post("/get/activation-challenge", response_model=ActivationChallengeResponse)
def get_activation_challenge(
    body: ActivationChallengeRequest,
    orchestrator: AttestationOrchestrator = Depends(get_orchestrator),
) -> ActivationChallengeResponse:
    """
    Issue a credential activation challenge.

    The challenge can only be decrypted by a TPM holding both the endorsement
    key and the identity key described by aik.
    """
    challenge = orchestrator.get_activation_challenge(
        body.tpm_version,
        body.ek_pem.encode() if body.ek_pem else None,
        body.aik.to_params(),
        ek_certificate=body.ek_certificate,
    )
    return ActivationChallengeResponse(
        activation_challenge=EncryptedCredentialResponse.from_credential(challenge)
    )


@router.post("/do/activation", response_model=ActivationResponse)
def do_activation(
    body: ActivationRequest,
    orchestrator: AttestationOrchestrator = Depends(get_orchestrator),
) -> ActivationResponse:
    """
    Check the device's decrypted credential against the pending challenge.

    A missing challenge gets the same answer as a wrong secret.
    """
    try:
        result = orchestrator.activate(body.aik.public, body.decrypted_credential)
    except NoChallengeIssued as e:
        logger.warning("Activation without a pending challenge", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Activation failed",
        )
    if not result.succeeded:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Activation failed",
        )
    return ActivationResponse(activated=result.activated)


@router.post("/get/attest-nonce", response_model=NonceResponse)
def get_attest_nonce(
    body: DeviceRequest,
    orchestrator: AttestationOrchestrator = Depends(get_orchestrator),
) -> NonceResponse:
    """Issue the nonce the device must embed in its next quote."""
    nonce = orchestrator.get_nonce(body.aik.public)
    return NonceResponse(nonce=encode_base64(nonce))


@router.post("/do/attest", response_model=AttestResponse)
def do_attest(
    body: AttestRequest,
    orchestrator: AttestationOrchestrator = Depends(get_orchestrator),
) -> AttestResponse:
    """
    Verify a quote against the outstanding nonce and the supplied reference
    PCR values. The nonce is consumed whatever the outcome.
    """
    result = orchestrator.attest(
        body.tpm_version,
        body.aik.public,
        body.quote.quote,
        body.quote.signature,
        body.pcrs,
    )
    if not result.succeeded:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Attestation failed",
        )
    return AttestResponse(succeeded=True)


@router.post("/verify/ek-certificate", response_model=EKCertificateResponse)
def verify_ek_certificate(
    body: EKCertificateRequest,
    orchestrator: AttestationOrchestrator = Depends(get_orchestrator),
) -> EKCertificateResponse:
    """Check an EK certificate against the configured manufacturer roots."""
    result = orchestrator.verify_ek_certificate(body.certificate)
    return EKCertificateResponse.from_result(result)


@router.post("/get/device-status", response_model=DeviceStatusResponse)
def get_device_status(
    body: DeviceRequest,
    orchestrator: AttestationOrchestrator = Depends(get_orchestrator),
) -> DeviceStatusResponse:
    """Public status of one device. Never includes secrets or failure causes."""
    return DeviceStatusResponse.from_status(orchestrator.device_status(body.aik.public))
