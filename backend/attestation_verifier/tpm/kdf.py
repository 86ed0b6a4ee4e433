"""
KDFa key derivation (TPM 2.0 Part 1, 11.4.10.2).

KDFa is SP800-108 in counter mode with HMAC as the PRF, a 32-bit counter
placed before the fixed input, and a 32-bit output length in bits placed
after it. The fixed input is ``label || 0x00 || contextU || contextV``.
"""

from cryptography.hazmat.primitives.kdf.kbkdf import (
    CounterLocation,
    KBKDFHMAC,
    Mode,
)

from .structures import hash_for


def kdfa(
    hash_alg: int,
    key: bytes,
    label: bytes,
    context_u: bytes,
    context_v: bytes,
    bits: int,
) -> bytes:
    """Derive ``bits`` bits of key material from ``key``."""
    if bits <= 0 or bits % 8:
        raise ValueError(f"KDFa output must be a positive whole number of bytes, got {bits} bits")

    kdf = KBKDFHMAC(
        algorithm=hash_for(hash_alg),
        mode=Mode.CounterMode,
        length=bits // 8,
        rlen=4,
        llen=4,
        location=CounterLocation.BeforeFixed,
        # The 0x00 separator is added by KBKDF itself
        label=label.rstrip(b"\x00"),
        context=context_u + context_v,
        fixed=None,
    )
    return kdf.derive(key)
