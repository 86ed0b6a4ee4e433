"""
TPM 2.0 constants used by the verifier.

Values are taken from TPM 2.0 Library Part 2 (Structures).
"""

from enum import IntEnum

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec


class TPMVersion(IntEnum):
    """Protocol version tag carried by device requests."""

    TPM_12 = 1
    TPM_20 = 2


# TPM_ALG_ID
ALG_RSA = 0x0001
ALG_SHA1 = 0x0004
ALG_AES = 0x0006
ALG_SHA256 = 0x000B
ALG_SHA384 = 0x000C
ALG_SHA512 = 0x000D
ALG_NULL = 0x0010
ALG_RSASSA = 0x0014
ALG_RSAES = 0x0015
ALG_RSAPSS = 0x0016
ALG_OAEP = 0x0017
ALG_ECDSA = 0x0018
ALG_ECDAA = 0x001A
ALG_ECC = 0x0023
ALG_CFB = 0x0043

# TPM_ST
TPM_ST_ATTEST_QUOTE = 0x8018
TPM_ST_ATTEST_CREATION = 0x801A

# TPM_GENERATED_VALUE, prefix of every TPMS_ATTEST produced by a TPM
TPM_GENERATED_VALUE = 0xFF544347

# TPMA_OBJECT
FLAG_FIXED_TPM = 1 << 1
FLAG_ST_CLEAR = 1 << 2
FLAG_FIXED_PARENT = 1 << 4
FLAG_SENSITIVE_DATA_ORIGIN = 1 << 5
FLAG_USER_WITH_AUTH = 1 << 6
FLAG_ADMIN_WITH_POLICY = 1 << 7
FLAG_NO_DA = 1 << 10
FLAG_RESTRICTED = 1 << 16
FLAG_DECRYPT = 1 << 17
FLAG_SIGN = 1 << 18

# Attributes every attestation key must carry
AK_REQUIRED_ATTRIBUTES = (
    FLAG_FIXED_TPM
    | FLAG_FIXED_PARENT
    | FLAG_SENSITIVE_DATA_ORIGIN
    | FLAG_RESTRICTED
    | FLAG_SIGN
)

# TPM_ECC_CURVE
ECC_NIST_P256 = 0x0003
ECC_NIST_P384 = 0x0004
ECC_NIST_P521 = 0x0005

HASH_ALGORITHMS = {
    ALG_SHA1: hashes.SHA1,
    ALG_SHA256: hashes.SHA256,
    ALG_SHA384: hashes.SHA384,
    ALG_SHA512: hashes.SHA512,
}

ECC_CURVES = {
    ECC_NIST_P256: ec.SECP256R1,
    ECC_NIST_P384: ec.SECP384R1,
    ECC_NIST_P521: ec.SECP521R1,
}

# Default RSA public exponent, encoded on the wire as 0
DEFAULT_RSA_EXPONENT = 65537

# Label used when wrapping a credential seed to an endorsement key
LABEL_IDENTITY = b"IDENTITY\x00"
LABEL_STORAGE = b"STORAGE"
LABEL_INTEGRITY = b"INTEGRITY"
