"""
TPM 2.0 Support

Wire-format decoding and the software side of credential activation:
- decode_public / decode_attest / decode_signature: structure decoders
- verify_signature: TPM signature check with a decoded key
- make_credential: TPM2_MakeCredential for activation challenges
"""

from .constants import TPMVersion
from .credential import EncryptedCredential, make_credential
from .structures import (
    Attest,
    Public,
    Signature,
    decode_attest,
    decode_public,
    decode_signature,
    pcr_composite_digest,
    verify_signature,
)

__all__ = [
    "TPMVersion",
    "EncryptedCredential",
    "make_credential",
    "Attest",
    "Public",
    "Signature",
    "decode_attest",
    "decode_public",
    "decode_signature",
    "pcr_composite_digest",
    "verify_signature",
]
