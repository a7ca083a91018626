import asyncio

import pytest

from shroud.errors import ComputationFailed, InsufficientFunds, InvalidAmount, InvalidRequest, NonceReuse
from shroud.ledger.balances import balance_address
from shroud.ledger.custody import POOL_AUTHORITY
from shroud.ledger.types import U64_MAX, ComputationStatus


def test_first_wrap_creates_account(program, make_wallet, settle):
    alice = make_wallet("alice", 1000)
    handle = alice.wrap(program, 400)

    # plaintext moved at queue time, the encrypted balance waits for finalization
    assert program.token_ledger.balance_of("alice") == 600
    assert program.custody_balance() == 400
    assert program.account("alice") is None

    outcome = settle(handle.offset)
    assert outcome.status == ComputationStatus.FINALIZED
    state = program.account("alice")
    assert state.address == balance_address("alice")
    assert state.encryption_pubkey == alice.public_key
    assert len(state.encrypted_balance) == 2
    assert alice.decrypt_balance(state) == 400
    assert outcome.accounts == [state]


def test_wrap_increments_existing_balance(program, make_wallet, settle):
    alice = make_wallet("alice", 1000)
    settle(alice.wrap(program, 100).offset)
    first = program.account("alice")
    settle(alice.wrap(program, 50).offset)
    second = program.account("alice")

    assert alice.balance(program) == 150
    assert second.nonce != first.nonce
    assert second.updates == 2
    assert program.custody_balance() == 150
    assert program.token_ledger.balance_of("alice") == 850


@pytest.mark.parametrize("amount", [0, -5, U64_MAX + 1, True, 1.5])
def test_invalid_amount_rejected_without_side_effects(program, make_wallet, amount):
    alice = make_wallet("alice", 1000)
    with pytest.raises(InvalidAmount):
        alice.wrap(program, amount)
    assert program.token_ledger.balance_of("alice") == 1000
    assert program.custody_balance() == 0
    assert program.coordinator.in_flight() == []


def test_insufficient_plaintext_rejected(program, make_wallet):
    alice = make_wallet("alice", 10)
    with pytest.raises(InsufficientFunds):
        alice.wrap(program, 11)
    assert program.token_ledger.balance_of("alice") == 10
    assert program.coordinator.in_flight() == []


def test_reused_nonce_rejected(program, make_wallet, settle):
    alice = make_wallet("alice", 1000)
    nonce = b"\x07" * 16
    req = alice.prepare_wrap(100, nonce=nonce)
    settle(program.wrap(req.payer, req.offset, req.amount, req.encryption_pubkey, req.nonce).offset)

    again = alice.prepare_wrap(100, nonce=nonce)
    with pytest.raises(NonceReuse):
        program.wrap(again.payer, again.offset, again.amount, again.encryption_pubkey, again.nonce)
    assert program.token_ledger.balance_of("alice") == 900
    assert program.balances.nonce_history("alice") == [nonce]


@pytest.mark.parametrize("pubkey, nonce", [(b"\x01" * 31, b"\x00" * 16), (b"\x01" * 32, b"\x00" * 15)])
def test_bad_key_material_rejected(program, make_wallet, pubkey, nonce):
    make_wallet("alice", 100)
    with pytest.raises(InvalidRequest):
        program.wrap("alice", 1, 10, pubkey, nonce)
    assert program.token_ledger.balance_of("alice") == 100


def test_overflow_refunds_escrow(program, make_wallet, settle):
    alice = make_wallet("alice", U64_MAX + 10)
    settle(alice.wrap(program, U64_MAX - 5).offset)
    before = program.account("alice")

    handle = alice.wrap(program, 10)
    assert program.token_ledger.balance_of("alice") == 5
    program.cluster.process_pending()
    with pytest.raises(ComputationFailed) as e:
        asyncio.run(program.await_finalization(handle.offset, timeout=1.0))

    assert e.value.reason == "Overflow"
    assert program.token_ledger.balance_of("alice") == 15
    assert program.custody_balance() == U64_MAX - 5
    assert program.account("alice") == before
    assert alice.balance(program) == U64_MAX - 5


def test_rewrap_to_new_key(program, make_wallet, settle):
    from shroud.clients.wallet import ConfidentialWallet

    alice = make_wallet("alice", 1000)
    settle(alice.wrap(program, 100).offset)

    rotated = ConfidentialWallet("alice", program.mxe_public_key)
    settle(rotated.wrap(program, 20).offset)
    assert program.account("alice").encryption_pubkey == rotated.public_key
    assert rotated.balance(program) == 120


def test_custody_sits_with_pool_authority(program, make_wallet, settle):
    alice = make_wallet("alice", 1000)
    settle(alice.wrap(program, 250).offset)
    assert program.custody.authority == POOL_AUTHORITY
    assert program.token_ledger.balance_of(POOL_AUTHORITY) == 250


def test_wrap_half_of_a_minted_supply(program, make_wallet, settle):
    holder = make_wallet("holder", 1_000_000_000)
    outcome = settle(holder.wrap(program, 500_000_000).offset)

    assert outcome.status == ComputationStatus.FINALIZED
    assert holder.balance(program) == 500_000_000
    assert program.custody_balance() == 500_000_000
    assert program.token_ledger.balance_of("holder") == 500_000_000
