from __future__ import annotations

import hmac
import secrets
from typing import List, Sequence

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from shroud.crypto_core.rescue import P, STATE_WIDTH, RescueBlockCipher, rescue_hash
from shroud.errors import DecryptionError

NONCE_BYTES = 16
ELEMENT_BYTES = 32
_ELEMENT_SEED_BYTES = 48
_KDF_INFO = b"shroud-rescue-cipher-v1"


def serialize_le(value: int, length: int = ELEMENT_BYTES) -> bytes:
    return int(value).to_bytes(length, "little")


def deserialize_le(data: bytes) -> int:
    return int.from_bytes(bytes(data), "little")


def random_nonce() -> bytes:
    return secrets.token_bytes(NONCE_BYTES)


def derive_cipher_keys(shared_secret: bytes) -> List[int]:
    """HKDF the x25519 secret into 5 cipher-key elements followed by 1 MAC-key element."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=_ELEMENT_SEED_BYTES * (STATE_WIDTH + 1),
        salt=None,
        info=_KDF_INFO,
    )
    okm = hkdf.derive(bytes(shared_secret))
    return [
        deserialize_le(okm[i * _ELEMENT_SEED_BYTES:(i + 1) * _ELEMENT_SEED_BYTES]) % P
        for i in range(STATE_WIDTH + 1)
    ]


def _nonce_int(nonce: bytes) -> int:
    if not isinstance(nonce, (bytes, bytearray)) or len(nonce) != NONCE_BYTES:
        raise DecryptionError(f"nonce must be {NONCE_BYTES} bytes")
    return deserialize_le(nonce)


class RescueCipher:
    """
    Authenticated stream cipher keyed by an x25519 shared secret.

    encrypt() returns one 32-byte little-endian element per plaintext plus a
    trailing tag element. Both parties of the key agreement (client and MPC
    cluster) build the same cipher from the same secret.
    """

    def __init__(self, shared_secret: bytes):
        keys = derive_cipher_keys(shared_secret)
        self._block = RescueBlockCipher(keys[:STATE_WIDTH])
        self._mac_key = keys[STATE_WIDTH]

    def _keystream(self, nonce_int: int, n: int) -> List[int]:
        out: List[int] = []
        counter = 0
        while len(out) < n:
            out.extend(self._block.encrypt_block([nonce_int, counter, 0, 0, 0]))
            counter += 1
        return out[:n]

    def _tag(self, nonce_int: int, elements: Sequence[int]) -> int:
        return rescue_hash([self._mac_key, nonce_int, len(elements), *elements])

    def encrypt_raw(self, plaintexts: Sequence[int], nonce: bytes) -> List[int]:
        if not isinstance(nonce, (bytes, bytearray)) or len(nonce) != NONCE_BYTES:
            raise ValueError(f"nonce must be {NONCE_BYTES} bytes")
        nonce_int = deserialize_le(nonce)
        values = [int(x) for x in plaintexts]
        for x in values:
            if not 0 <= x < P:
                raise ValueError("plaintext must be a field element in [0, p)")
        ks = self._keystream(nonce_int, len(values))
        ct = [(x + k) % P for x, k in zip(values, ks)]
        return ct + [self._tag(nonce_int, ct)]

    def decrypt_raw(self, ciphertexts: Sequence[int], nonce: bytes) -> List[int]:
        nonce_int = _nonce_int(nonce)
        if len(ciphertexts) < 2:
            raise DecryptionError("ciphertext too short (missing tag)")
        *ct, tag = [int(c) for c in ciphertexts]
        expected = self._tag(nonce_int, ct)
        if not hmac.compare_digest(serialize_le(expected), serialize_le(tag % P)) or tag >= P:
            raise DecryptionError("authentication tag mismatch (wrong key, nonce or ciphertext)")
        ks = self._keystream(nonce_int, len(ct))
        return [(c - k) % P for c, k in zip(ct, ks)]

    def encrypt(self, plaintexts: Sequence[int], nonce: bytes) -> List[bytes]:
        return [serialize_le(c) for c in self.encrypt_raw(plaintexts, nonce)]

    def decrypt(self, ciphertexts: Sequence[bytes], nonce: bytes) -> List[int]:
        elements = []
        for blob in ciphertexts:
            if not isinstance(blob, (bytes, bytearray)) or len(blob) != ELEMENT_BYTES:
                raise DecryptionError(f"ciphertext elements must be {ELEMENT_BYTES} bytes")
            value = deserialize_le(blob)
            if value >= P:
                raise DecryptionError("ciphertext element is not a canonical field element")
            elements.append(value)
        return self.decrypt_raw(elements, nonce)


def encrypt(cipher_key: bytes, nonce: bytes, plaintexts: Sequence[int]) -> List[bytes]:
    return RescueCipher(cipher_key).encrypt(plaintexts, nonce)


def decrypt(cipher_key: bytes, nonce: bytes, ciphertexts: Sequence[bytes]) -> List[int]:
    return RescueCipher(cipher_key).decrypt(ciphertexts, nonce)


def split_elements(blob: bytes) -> List[bytes]:
    """Cut a stored fixed-width ciphertext back into its 32-byte elements."""
    if len(blob) % ELEMENT_BYTES:
        raise DecryptionError(f"ciphertext length must be a multiple of {ELEMENT_BYTES}")
    return [bytes(blob[i:i + ELEMENT_BYTES]) for i in range(0, len(blob), ELEMENT_BYTES)]
