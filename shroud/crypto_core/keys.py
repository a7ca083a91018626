from __future__ import annotations
from typing import Tuple
from nacl.public import PrivateKey
from nacl.bindings import crypto_scalarmult, crypto_scalarmult_base
from nacl.exceptions import CryptoError

from shroud.errors import KeyAgreementError

KEY_BYTES = 32


def generate_keypair() -> Tuple[bytes, bytes]:
    """Fresh ephemeral x25519 keypair as raw 32-byte (private, public)."""
    sk = PrivateKey.generate()
    return bytes(sk), bytes(sk.public_key)


def public_key_from_private(private_key: bytes) -> bytes:
    if not isinstance(private_key, (bytes, bytearray)) or len(private_key) != KEY_BYTES:
        raise KeyAgreementError("x25519 private key must be 32 bytes")
    return crypto_scalarmult_base(bytes(private_key))


def derive_shared_secret(private_key: bytes, peer_public_key: bytes) -> bytes:
    """
    Raw x25519 ECDH between our private key and the peer's public key.

    Unlike Box.shared_key() no HSalsa step is applied here; the cipher runs its
    own HKDF over the raw secret.
    """
    if not isinstance(private_key, (bytes, bytearray)) or len(private_key) != KEY_BYTES:
        raise KeyAgreementError("x25519 private key must be 32 bytes")
    if not isinstance(peer_public_key, (bytes, bytearray)) or len(peer_public_key) != KEY_BYTES:
        raise KeyAgreementError("x25519 public key must be 32 bytes")
    try:
        shared = crypto_scalarmult(bytes(private_key), bytes(peer_public_key))
    except CryptoError as e:
        # libsodium refuses low-order points (all-zero output)
        raise KeyAgreementError(f"invalid peer public key: {e}") from e
    if shared == bytes(KEY_BYTES):
        raise KeyAgreementError("invalid peer public key: low-order point")
    return shared
