"""
TPM 2.0 Structure Decoding

Decoders for the handful of TPM 2.0 wire structures a verifier has to read:
TPMT_PUBLIC (identity key), TPMS_ATTEST (quote / creation attestation) and
TPMT_SIGNATURE. All integers are big-endian as produced by the TPM.
"""

import struct
from dataclasses import dataclass, field
from typing import List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from attestation_verifier.core.exceptions import TPMStructureError

from .constants import (
    ALG_ECC,
    ALG_ECDAA,
    ALG_ECDSA,
    ALG_NULL,
    ALG_RSA,
    ALG_RSAPSS,
    ALG_RSASSA,
    DEFAULT_RSA_EXPONENT,
    ECC_CURVES,
    HASH_ALGORITHMS,
    TPM_GENERATED_VALUE,
    TPM_ST_ATTEST_CREATION,
    TPM_ST_ATTEST_QUOTE,
)


class _Reader:
    """Sequential big-endian reader over a TPM blob."""

    def __init__(self, data: bytes, what: str):
        self._data = bytes(data)
        self._offset = 0
        self._what = what

    def _take(self, n: int) -> bytes:
        if self._offset + n > len(self._data):
            raise TPMStructureError(
                f"{self._what}: truncated at offset {self._offset} (wanted {n} bytes)"
            )
        chunk = self._data[self._offset:self._offset + n]
        self._offset += n
        return chunk

    def u8(self) -> int:
        return self._take(1)[0]

    def u16(self) -> int:
        return struct.unpack(">H", self._take(2))[0]

    def u32(self) -> int:
        return struct.unpack(">I", self._take(4))[0]

    def u64(self) -> int:
        return struct.unpack(">Q", self._take(8))[0]

    def raw(self, n: int) -> bytes:
        return self._take(n)

    def sized(self) -> bytes:
        """Read a TPM2B: a 16-bit length followed by that many bytes."""
        return self._take(self.u16())

    def finish(self) -> None:
        remaining = len(self._data) - self._offset
        if remaining:
            raise TPMStructureError(f"{self._what}: {remaining} trailing bytes")


def hash_for(alg: int) -> hashes.HashAlgorithm:
    """Map a TPM_ALG_ID hash identifier to a cryptography hash instance."""
    try:
        return HASH_ALGORITHMS[alg]()
    except KeyError:
        raise TPMStructureError(f"unsupported hash algorithm 0x{alg:04x}")


def digest(alg: int, data: bytes) -> bytes:
    h = hashes.Hash(hash_for(alg))
    h.update(data)
    return h.finalize()


@dataclass
class Public:
    """Decoded TPMT_PUBLIC for an RSA or ECC key."""

    type: int
    name_alg: int
    attributes: int
    auth_policy: bytes
    symmetric_alg: int
    scheme: int
    scheme_hash: int
    raw: bytes
    key_bits: int = 0
    exponent: int = 0
    modulus: bytes = b""
    curve_id: int = 0
    x: bytes = b""
    y: bytes = b""

    def name(self) -> bytes:
        """TPM object name: nameAlg followed by the digest of the public area."""
        return struct.pack(">H", self.name_alg) + digest(self.name_alg, self.raw)

    def public_key(self):
        """Return the key as a cryptography public key object."""
        if self.type == ALG_RSA:
            try:
                return rsa.RSAPublicNumbers(
                    self.exponent, int.from_bytes(self.modulus, "big")
                ).public_key()
            except ValueError as e:
                raise TPMStructureError(f"invalid RSA public key: {e}")

        curve = ECC_CURVES.get(self.curve_id)
        if curve is None:
            raise TPMStructureError(f"unsupported ECC curve 0x{self.curve_id:04x}")
        try:
            return ec.EllipticCurvePublicNumbers(
                int.from_bytes(self.x, "big"),
                int.from_bytes(self.y, "big"),
                curve(),
            ).public_key()
        except ValueError as e:
            raise TPMStructureError(f"invalid ECC point: {e}")


def _read_scheme(r: _Reader) -> tuple:
    scheme = r.u16()
    scheme_hash = ALG_NULL
    if scheme != ALG_NULL:
        scheme_hash = r.u16()
        if scheme == ALG_ECDAA:
            r.u16()  # count
    return scheme, scheme_hash


def decode_public(data: bytes) -> Public:
    """Decode a TPMT_PUBLIC blob."""
    r = _Reader(data, "TPMT_PUBLIC")
    key_type = r.u16()
    name_alg = r.u16()
    attributes = r.u32()
    auth_policy = r.sized()

    symmetric_alg = r.u16()
    if symmetric_alg != ALG_NULL:
        r.u16()  # key bits
        r.u16()  # mode

    scheme, scheme_hash = _read_scheme(r)

    if key_type == ALG_RSA:
        key_bits = r.u16()
        exponent = r.u32() or DEFAULT_RSA_EXPONENT
        modulus = r.sized()
        r.finish()
        if len(modulus) * 8 != key_bits:
            raise TPMStructureError(
                f"TPMT_PUBLIC: modulus is {len(modulus) * 8} bits, declared {key_bits}"
            )
        return Public(
            type=key_type,
            name_alg=name_alg,
            attributes=attributes,
            auth_policy=auth_policy,
            symmetric_alg=symmetric_alg,
            scheme=scheme,
            scheme_hash=scheme_hash,
            raw=bytes(data),
            key_bits=key_bits,
            exponent=exponent,
            modulus=modulus,
        )

    if key_type == ALG_ECC:
        curve_id = r.u16()
        kdf = r.u16()
        if kdf != ALG_NULL:
            r.u16()  # kdf hash
        x = r.sized()
        y = r.sized()
        r.finish()
        return Public(
            type=key_type,
            name_alg=name_alg,
            attributes=attributes,
            auth_policy=auth_policy,
            symmetric_alg=symmetric_alg,
            scheme=scheme,
            scheme_hash=scheme_hash,
            raw=bytes(data),
            curve_id=curve_id,
            x=x,
            y=y,
        )

    raise TPMStructureError(f"TPMT_PUBLIC: unsupported key type 0x{key_type:04x}")


@dataclass
class PCRSelection:
    hash_alg: int
    indices: List[int] = field(default_factory=list)


@dataclass
class Attest:
    """Decoded TPMS_ATTEST for quote and creation attestations."""

    type: int
    qualified_signer: bytes
    extra_data: bytes
    clock: int
    reset_count: int
    restart_count: int
    safe: bool
    firmware_version: int
    pcr_selections: List[PCRSelection] = field(default_factory=list)
    pcr_digest: bytes = b""
    creation_name: bytes = b""
    creation_hash: bytes = b""

    @property
    def selected_pcrs(self) -> List[int]:
        """Every selected PCR index, in the order the TPM digested them."""
        return [i for sel in self.pcr_selections for i in sel.indices]


def _read_pcr_selection(r: _Reader) -> List[PCRSelection]:
    selections = []
    for _ in range(r.u32()):
        hash_alg = r.u16()
        bitmap = r.raw(r.u8())
        indices = [
            byte_index * 8 + bit
            for byte_index, byte in enumerate(bitmap)
            for bit in range(8)
            if byte & (1 << bit)
        ]
        selections.append(PCRSelection(hash_alg=hash_alg, indices=indices))
    return selections


def decode_attest(data: bytes) -> Attest:
    """Decode a TPMS_ATTEST blob of type quote or creation."""
    r = _Reader(data, "TPMS_ATTEST")
    magic = r.u32()
    if magic != TPM_GENERATED_VALUE:
        raise TPMStructureError(
            f"TPMS_ATTEST: magic 0x{magic:08x} is not TPM_GENERATED_VALUE"
        )

    attest = Attest(
        type=r.u16(),
        qualified_signer=r.sized(),
        extra_data=r.sized(),
        clock=r.u64(),
        reset_count=r.u32(),
        restart_count=r.u32(),
        safe=bool(r.u8()),
        firmware_version=r.u64(),
    )

    if attest.type == TPM_ST_ATTEST_QUOTE:
        attest.pcr_selections = _read_pcr_selection(r)
        attest.pcr_digest = r.sized()
    elif attest.type == TPM_ST_ATTEST_CREATION:
        attest.creation_name = r.sized()
        attest.creation_hash = r.sized()
    else:
        raise TPMStructureError(
            f"TPMS_ATTEST: unsupported attestation type 0x{attest.type:04x}"
        )

    r.finish()
    return attest


@dataclass
class Signature:
    """Decoded TPMT_SIGNATURE."""

    alg: int
    hash_alg: int
    rsa_signature: bytes = b""
    r: bytes = b""
    s: bytes = b""


def decode_signature(data: bytes) -> Signature:
    """Decode a TPMT_SIGNATURE blob (RSASSA, RSAPSS or ECDSA)."""
    r = _Reader(data, "TPMT_SIGNATURE")
    alg = r.u16()
    hash_alg = r.u16()
    if alg in (ALG_RSASSA, ALG_RSAPSS):
        sig = Signature(alg=alg, hash_alg=hash_alg, rsa_signature=r.sized())
    elif alg == ALG_ECDSA:
        sig = Signature(alg=alg, hash_alg=hash_alg, r=r.sized(), s=r.sized())
    else:
        raise TPMStructureError(
            f"TPMT_SIGNATURE: unsupported signature algorithm 0x{alg:04x}"
        )
    r.finish()
    return sig


def verify_signature(public: Public, data: bytes, sig: Signature) -> bool:
    """
    Check a TPM signature over data with the given key.

    Returns False for a bad signature or a signature scheme that does not fit
    the key type; raises TPMStructureError for unusable key material.
    """
    key = public.public_key()
    algorithm = hash_for(sig.hash_alg)

    try:
        if public.type == ALG_RSA and sig.alg == ALG_RSASSA:
            key.verify(sig.rsa_signature, data, padding.PKCS1v15(), algorithm)
        elif public.type == ALG_RSA and sig.alg == ALG_RSAPSS:
            key.verify(
                sig.rsa_signature,
                data,
                padding.PSS(
                    mgf=padding.MGF1(hash_for(sig.hash_alg)),
                    salt_length=padding.PSS.AUTO,
                ),
                algorithm,
            )
        elif public.type == ALG_ECC and sig.alg == ALG_ECDSA:
            der = encode_dss_signature(
                int.from_bytes(sig.r, "big"), int.from_bytes(sig.s, "big")
            )
            key.verify(der, data, ec.ECDSA(algorithm))
        else:
            return False
    except InvalidSignature:
        return False
    return True


def pcr_composite_digest(
    hash_alg: int, indices: List[int], pcr_values: dict
) -> Optional[bytes]:
    """
    Digest over the concatenated PCR values, in selection order.

    Returns None when a selected index has no value in pcr_values.
    """
    h = hashes.Hash(hash_for(hash_alg))
    for index in indices:
        value = pcr_values.get(index)
        if value is None:
            return None
        h.update(value)
    return h.finalize()
