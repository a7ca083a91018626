import pytest

from shroud.clients.wallet import ConfidentialWallet
from shroud.crypto_core.keys import generate_keypair
from shroud.ledger.types import ComputationKind, FailureReason, SealedBalance, TransferArguments, WrapArguments
from shroud.mpc.circuits import CIRCUITS, CircuitFailure, MxeContext


def scripted(*nonces):
    it = iter(nonces)
    return lambda: next(it)


def sealed(wallet, value, nonce):
    _, cts = wallet.encrypt([value], nonce)
    return SealedBalance(encryption_pubkey=wallet.public_key, nonce=nonce, ciphertexts=cts)


@pytest.fixture
def mxe_secret():
    sk, _ = generate_keypair()
    return sk


def test_transfer_reseals_under_fresh_cluster_nonces(mxe_secret):
    old_a, old_b = b"\x01" * 16, b"\x02" * 16
    # the first draw repeats the sender's nonce and must be skipped
    ctx = MxeContext(mxe_secret, nonce_source=scripted(old_a, b"\x03" * 16, b"\x04" * 16))
    alice = ConfidentialWallet("alice", ctx.public_key)
    bob = ConfidentialWallet("bob", ctx.public_key)
    args = TransferArguments(sender=sealed(alice, 500, old_a), receiver=sealed(bob, 20, old_b), amount=200)

    out_a, out_b = CIRCUITS[ComputationKind.TRANSFER](ctx, args)

    assert (out_a.nonce, out_b.nonce) == (b"\x03" * 16, b"\x04" * 16)
    assert alice.cipher.decrypt(out_a.ciphertexts, out_a.nonce) == [300]
    assert bob.cipher.decrypt(out_b.ciphertexts, out_b.nonce) == [220]


def test_wrap_reseals_under_the_callers_nonce(mxe_secret):
    def no_cluster_nonces():
        raise AssertionError("wrap must not draw a cluster nonce")

    ctx = MxeContext(mxe_secret, nonce_source=no_cluster_nonces)
    alice = ConfidentialWallet("alice", ctx.public_key)
    nonce = b"\x09" * 16
    args = WrapArguments(
        amount=40,
        encryption_pubkey=alice.public_key,
        nonce=nonce,
        current=sealed(alice, 60, b"\x08" * 16),
    )

    (out,) = CIRCUITS[ComputationKind.WRAP](ctx, args)

    assert out.nonce == nonce
    assert alice.cipher.decrypt(out.ciphertexts, out.nonce) == [100]


def test_wrap_with_the_current_nonce_fails(mxe_secret):
    ctx = MxeContext(mxe_secret)
    alice = ConfidentialWallet("alice", ctx.public_key)
    nonce = b"\x05" * 16
    args = WrapArguments(amount=1, encryption_pubkey=alice.public_key, nonce=nonce, current=sealed(alice, 1, nonce))
    with pytest.raises(CircuitFailure) as e:
        CIRCUITS[ComputationKind.WRAP](ctx, args)
    assert e.value.reason == FailureReason.NONCE_REUSE
