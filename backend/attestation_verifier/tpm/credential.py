"""
Software TPM2_MakeCredential.

Wraps a secret so that only a TPM holding both the endorsement key (to unwrap
the seed) and the named attestation key (whose name is mixed into the
encryption and integrity keys) can recover it with TPM2_ActivateCredential.
"""

import hmac
import os
import struct
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.decrepit.ciphers.modes import CFB
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms

from .constants import LABEL_IDENTITY, LABEL_INTEGRITY, LABEL_STORAGE
from .kdf import kdfa
from .structures import hash_for

# Size of the seed and of the AES key protecting the credential. EKs in the
# default TCG template use AES-128.
SYMMETRIC_BLOCK_SIZE = 16


@dataclass
class EncryptedCredential:
    """Challenge blobs in the layout TPM2_ActivateCredential consumes."""

    credential: bytes  # TPM2B_ID_OBJECT
    secret: bytes  # TPM2B_ENCRYPTED_SECRET


def _tpm2b(data: bytes) -> bytes:
    return struct.pack(">H", len(data)) + data


def make_credential(
    ek: rsa.RSAPublicKey,
    ak_name: bytes,
    name_alg: int,
    secret: bytes,
    seed: Optional[bytes] = None,
) -> EncryptedCredential:
    """
    Produce an activation challenge for ``secret``.

    Args:
        ek: Endorsement public key of the device
        ak_name: TPM name of the attestation key (nameAlg || digest)
        name_alg: TPM_ALG_ID of the AK's name algorithm
        secret: Credential the device must recover
        seed: Fixed seed, only for deterministic tests

    Returns:
        EncryptedCredential with the wrapped credential and seed
    """
    hash_alg = hash_for(name_alg)
    if seed is None:
        seed = os.urandom(SYMMETRIC_BLOCK_SIZE)

    enc_seed = ek.encrypt(
        seed,
        padding.OAEP(
            mgf=padding.MGF1(algorithm=hash_alg),
            algorithm=hash_alg,
            label=LABEL_IDENTITY,
        ),
    )

    sym_key = kdfa(name_alg, seed, LABEL_STORAGE, ak_name, b"", len(seed) * 8)
    encryptor = Cipher(
        algorithms.AES(sym_key), CFB(b"\x00" * SYMMETRIC_BLOCK_SIZE)
    ).encryptor()
    enc_identity = encryptor.update(_tpm2b(secret)) + encryptor.finalize()

    hmac_key = kdfa(name_alg, seed, LABEL_INTEGRITY, b"", b"", hash_alg.digest_size * 8)
    integrity = hmac.new(hmac_key, enc_identity + ak_name, hash_alg.name).digest()

    return EncryptedCredential(
        credential=_tpm2b(_tpm2b(integrity) + enc_identity),
        secret=_tpm2b(enc_seed),
    )
