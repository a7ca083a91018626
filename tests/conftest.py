import asyncio

import pytest

from shroud.clients.wallet import ConfidentialWallet
from shroud.ledger.custody import InMemoryTokenLedger
from shroud.ledger.program import ConfidentialTokenProgram
from shroud.mpc.cluster import LocalCluster
from shroud.settings import ProtocolSettings


@pytest.fixture
def settings():
    return ProtocolSettings(poll_interval=0.01, finalize_timeout=2.0)


@pytest.fixture
def token_ledger():
    return InMemoryTokenLedger()


@pytest.fixture
def cluster():
    return LocalCluster()


@pytest.fixture
def bare_program(settings, cluster, token_ledger):
    """Program with no computation definitions set up."""
    prog = ConfidentialTokenProgram(settings, cluster, token_ledger)
    yield prog
    prog.close()


@pytest.fixture
def program(bare_program):
    bare_program.setup_definitions()
    return bare_program


@pytest.fixture
def make_wallet(bare_program, token_ledger):
    def _make(owner, funds=0):
        if funds:
            token_ledger.mint_to(owner, funds)
        return ConfidentialWallet(owner, bare_program.mxe_public_key)

    return _make


@pytest.fixture
def settle(bare_program):
    """Let the local cluster run everything queued, then await one offset."""

    def _settle(offset, timeout=2.0):
        bare_program.cluster.process_pending()
        return asyncio.run(bare_program.await_finalization(offset, timeout=timeout))

    return _settle


@pytest.fixture
def funded(program, make_wallet, settle):
    """alice and bob, each with an encrypted balance already wrapped."""

    def _funded(alice_wrapped=500, bob_wrapped=10, extra=1000):
        alice = make_wallet("alice", alice_wrapped + extra)
        bob = make_wallet("bob", bob_wrapped + extra)
        settle(alice.wrap(program, alice_wrapped).offset)
        settle(bob.wrap(program, bob_wrapped).offset)
        return alice, bob

    return _funded
