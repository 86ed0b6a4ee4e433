"""Run the attestation verifier with uvicorn"""

import uvicorn

from attestation_verifier.core.config import settings


def main():
    uvicorn.run(
        "attestation_verifier.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
