import pytest

from shroud.crypto_core import rescue
from shroud.crypto_core.cipher import (
    ELEMENT_BYTES,
    RescueCipher,
    decrypt,
    encrypt,
    random_nonce,
    serialize_le,
    split_elements,
)
from shroud.crypto_core.keys import derive_shared_secret, generate_keypair, public_key_from_private
from shroud.errors import DecryptionError, KeyAgreementError


# ---------- keys ----------
def test_shared_secret_agrees_on_both_sides():
    a_sk, a_pk = generate_keypair()
    b_sk, b_pk = generate_keypair()
    assert derive_shared_secret(a_sk, b_pk) == derive_shared_secret(b_sk, a_pk)
    assert public_key_from_private(a_sk) == a_pk


def test_keypairs_are_fresh():
    assert generate_keypair()[0] != generate_keypair()[0]


@pytest.mark.parametrize("peer", [b"", b"\x01" * 31, b"\x01" * 33, "not-bytes"])
def test_bad_public_key_length_rejected(peer):
    sk, _ = generate_keypair()
    with pytest.raises(KeyAgreementError):
        derive_shared_secret(sk, peer)


def test_low_order_public_key_rejected():
    sk, _ = generate_keypair()
    with pytest.raises(KeyAgreementError):
        derive_shared_secret(sk, bytes(32))


def test_bad_private_key_rejected():
    _, pk = generate_keypair()
    with pytest.raises(KeyAgreementError):
        derive_shared_secret(b"\x00" * 16, pk)


# ---------- cipher ----------
@pytest.fixture
def pair():
    client_sk, client_pk = generate_keypair()
    mxe_sk, mxe_pk = generate_keypair()
    client = RescueCipher(derive_shared_secret(client_sk, mxe_pk))
    mxe = RescueCipher(derive_shared_secret(mxe_sk, client_pk))
    return client, mxe


def test_client_ciphertext_opens_on_cluster_side(pair):
    client, mxe = pair
    nonce = random_nonce()
    ct = client.encrypt([400], nonce)
    assert len(ct) == 2
    assert all(len(c) == ELEMENT_BYTES for c in ct)
    assert mxe.decrypt(ct, nonce) == [400]


def test_same_value_under_different_nonces_differs(pair):
    client, _ = pair
    assert client.encrypt([7], random_nonce()) != client.encrypt([7], random_nonce())


def test_encryption_is_deterministic_for_fixed_nonce(pair):
    client, _ = pair
    nonce = b"\x05" * 16
    assert client.encrypt([1, 2, 3], nonce) == client.encrypt([1, 2, 3], nonce)


def test_wrong_key_fails_authentication(pair):
    client, _ = pair
    nonce = random_nonce()
    ct = client.encrypt([10], nonce)
    stranger_sk, _ = generate_keypair()
    _, other_pk = generate_keypair()
    stranger = RescueCipher(derive_shared_secret(stranger_sk, other_pk))
    with pytest.raises(DecryptionError):
        stranger.decrypt(ct, nonce)


def test_wrong_nonce_fails_authentication(pair):
    client, mxe = pair
    ct = client.encrypt([10], b"\x01" * 16)
    with pytest.raises(DecryptionError):
        mxe.decrypt(ct, b"\x02" * 16)


def test_tampered_ciphertext_fails_authentication(pair):
    client, mxe = pair
    nonce = random_nonce()
    value, tag = client.encrypt([10], nonce)
    bumped = serialize_le((int.from_bytes(value, "little") + 1) % rescue.P)
    with pytest.raises(DecryptionError):
        mxe.decrypt([bumped, tag], nonce)


def test_non_canonical_element_rejected(pair):
    client, mxe = pair
    nonce = random_nonce()
    _, tag = client.encrypt([10], nonce)
    with pytest.raises(DecryptionError):
        mxe.decrypt([serialize_le(rescue.P), tag], nonce)


def test_missing_tag_rejected(pair):
    _, mxe = pair
    with pytest.raises(DecryptionError):
        mxe.decrypt([bytes(32)], random_nonce())


def test_plaintext_outside_field_rejected(pair):
    client, _ = pair
    with pytest.raises(ValueError):
        client.encrypt([rescue.P], random_nonce())


def test_bad_nonce_rejected(pair):
    client, mxe = pair
    with pytest.raises(ValueError):
        client.encrypt([1], b"short")
    with pytest.raises(DecryptionError):
        mxe.decrypt([bytes(32), bytes(32)], b"short")


def test_module_level_helpers_share_the_cipher():
    secret = b"\x11" * 32
    nonce = random_nonce()
    assert decrypt(secret, nonce, encrypt(secret, nonce, [99, 100])) == [99, 100]


def test_split_elements():
    blob = bytes(range(64))
    assert split_elements(blob) == [blob[:32], blob[32:]]
    with pytest.raises(DecryptionError):
        split_elements(blob[:40])


# ---------- rescue ----------
def test_sbox_inverse():
    assert (rescue.ALPHA * rescue.ALPHA_INV) % (rescue.P - 1) == 1
    state = [0, 1, 2, rescue.P - 1, 123456789]
    assert rescue.sbox_inv(rescue.sbox(state)) == state


def test_permutation_is_deterministic_and_width_checked():
    state = [1, 2, 3, 4, 5]
    assert rescue.permute(state) == rescue.permute(state)
    assert rescue.permute(state) != rescue.permute([1, 2, 3, 4, 6])
    with pytest.raises(ValueError):
        rescue.permute([1, 2, 3])


def test_hash_binds_length():
    assert rescue.rescue_hash([0]) != rescue.rescue_hash([0, 0])
    assert rescue.rescue_hash([1, 2, 3, 4, 5]) == rescue.rescue_hash([1, 2, 3, 4, 5])


def test_block_cipher_key_schedule():
    cipher = rescue.RescueBlockCipher([1, 2, 3, 4, 5])
    assert len(cipher.round_keys) == 2 * rescue.N_ROUNDS + 1
    block = [9, 8, 7, 6, 5]
    assert cipher.encrypt_block(block) != rescue.RescueBlockCipher([1, 2, 3, 4, 6]).encrypt_block(block)
    with pytest.raises(ValueError):
        rescue.RescueBlockCipher([1, 2])
