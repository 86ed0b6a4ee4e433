"""Main FastAPI application entry point"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from attestation_verifier import __version__
from attestation_verifier.api import api_router
from attestation_verifier.core.config import settings
from attestation_verifier.core.exceptions import (
    InvalidInput,
    ProtocolSequenceError,
    UnknownDevice,
)
from attestation_verifier.core.logging import get_logger, setup_logging
from attestation_verifier.services.orchestrator import build_orchestrator

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler
    """
    logger.info("Starting attestation verifier...", env=settings.APP_ENV)

    # Fails startup if the EK trust store cannot be built
    app.state.orchestrator = build_orchestrator(settings)

    logger.info(
        "Attestation verifier started",
        ek_verification=app.state.orchestrator.ek_verifier is not None,
        require_ek_certificate=settings.REQUIRE_EK_CERTIFICATE,
    )

    try:
        yield
    finally:
        logger.info(
            "Attestation verifier shutdown complete",
            devices=len(app.state.orchestrator.registry),
        )


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="TPM 2.0 remote attestation verifier",
    version=__version__,
    lifespan=lifespan,
)


# Exception handlers. Responses stay generic, the reason is only logged.
@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    logger.warning(
        "Rejected invalid input",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return JSONResponse(
        status_code=400,
        content={
            "error": "INVALID_INPUT",
            "message": "Invalid attestation request",
        },
    )


@app.exception_handler(ProtocolSequenceError)
async def protocol_sequence_handler(request: Request, exc: ProtocolSequenceError):
    logger.warning(
        "Request out of protocol sequence",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return JSONResponse(
        status_code=409,
        content={
            "error": "PROTOCOL_SEQUENCE_ERROR",
            "message": "Request is out of protocol sequence",
        },
    )


@app.exception_handler(UnknownDevice)
async def unknown_device_handler(request: Request, exc: UnknownDevice):
    logger.info("Unknown device", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=404,
        content={
            "error": "UNKNOWN_DEVICE",
            "message": "Device not found",
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": exc.detail,
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handle validation errors without echoing user input.

    Request bodies carry key material, so the offending input is never
    reflected back.
    """
    errors = []
    for error in exc.errors():
        errors.append(
            {
                "type": error.get("type", ""),
                "location": error.get("loc", []),
                "message": error.get("msg", ""),
            }
        )

    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Invalid request data",
            "details": errors,
        },
    )


# Include API routes
app.include_router(api_router)
