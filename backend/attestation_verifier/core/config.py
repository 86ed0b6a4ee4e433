"""
Configuration settings for the attestation verifier
"""

import os
import sys
from typing import List

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = os.getenv("APP_NAME", "Attestation Verifier")
    APP_ENV: str = os.getenv("APP_ENV", "development")
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = int(os.getenv("APP_PORT", "8030"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")

    # Manufacturer EK certificate hierarchies (comma-separated directories).
    # Each directory holds one subdirectory per manufacturer with RootCA/ and
    # optionally IntermediateCA/.
    EK_CERT_DIRS: str = os.getenv("EK_CERT_DIRS", "")
    REQUIRE_EK_CERTIFICATE: bool = os.getenv(
        "REQUIRE_EK_CERTIFICATE", "False"
    ).lower() in ("true", "1", "yes")

    # Protocol parameters
    NONCE_SIZE: int = int(os.getenv("NONCE_SIZE", "32"))
    ACTIVATION_SECRET_SIZE: int = int(os.getenv("ACTIVATION_SECRET_SIZE", "32"))
    MIN_RSA_KEY_BITS: int = int(os.getenv("MIN_RSA_KEY_BITS", "2048"))

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError("LOG_FORMAT must be 'json' or 'console'")
        return v

    @field_validator("NONCE_SIZE")
    @classmethod
    def validate_nonce_size(cls, v: int) -> int:
        # Anything shorter gives an attacker a realistic chance of
        # pre-computing a quote for a future nonce.
        if v < 32:
            raise ValueError("NONCE_SIZE must be at least 32 bytes")
        return v

    @field_validator("ACTIVATION_SECRET_SIZE")
    @classmethod
    def validate_secret_size(cls, v: int) -> int:
        if v < 16 or v > 64:
            raise ValueError("ACTIVATION_SECRET_SIZE must be between 16 and 64 bytes")
        return v

    @property
    def ek_cert_dirs(self) -> List[str]:
        """EK certificate directories as a list."""
        return [d.strip() for d in self.EK_CERT_DIRS.split(",") if d.strip()]

    @model_validator(mode="after")
    def validate_ek_settings(self) -> "Settings":
        """
        Cross-field validation of EK certificate settings.

        Requiring an EK certificate without any trust anchors would reject
        every device, so it is refused at startup.
        """
        if self.REQUIRE_EK_CERTIFICATE and not self.ek_cert_dirs:
            raise ValueError(
                "REQUIRE_EK_CERTIFICATE is set but EK_CERT_DIRS is empty. "
                "Configure at least one manufacturer certificate directory."
            )

        if self.APP_ENV == "production" and not self.ek_cert_dirs:
            print(
                "\033[93mSECURITY WARNING: No EK certificate directories configured. "
                "Endorsement key provenance will not be checked.\033[0m",
                file=sys.stderr,
            )

        return self


# Global settings instance
settings = Settings()
