import logging

import pytest
from pydantic import ValidationError

from shroud.clients.wallet import ConfidentialWallet
from shroud.crypto_core.keys import generate_keypair
from shroud.errors import DecryptionError, InvalidAmount
from shroud.logging_config import get_logger, setup_logging
from shroud.settings import ProtocolSettings


# ---------- wallet ----------
def test_prepare_wrap_uses_fresh_offset_and_nonce():
    _, mxe_pk = generate_keypair()
    wallet = ConfidentialWallet("alice", mxe_pk)
    a = wallet.prepare_wrap(10)
    b = wallet.prepare_wrap(10)
    assert a.payer == "alice"
    assert a.encryption_pubkey == wallet.public_key
    assert a.offset != b.offset
    assert a.nonce != b.nonce
    assert len(a.nonce) == 16


@pytest.mark.parametrize("amount", [True, 1.5, "10"])
def test_prepare_wrap_rejects_non_integer_amounts(amount):
    _, mxe_pk = generate_keypair()
    with pytest.raises(InvalidAmount):
        ConfidentialWallet("alice", mxe_pk).prepare_wrap(amount)


def test_prepare_wrap_leaves_range_checks_to_the_program():
    _, mxe_pk = generate_keypair()
    assert ConfidentialWallet("alice", mxe_pk).prepare_wrap(0).amount == 0


def test_wallet_keeps_a_given_private_key():
    _, mxe_pk = generate_keypair()
    sk, pk = generate_keypair()
    assert ConfidentialWallet("alice", mxe_pk, private_key=sk).public_key == pk


def test_foreign_balance_cannot_be_decrypted(program, make_wallet, settle):
    alice = make_wallet("alice", 100)
    mallory = make_wallet("mallory")
    settle(alice.wrap(program, 60).offset)
    with pytest.raises(DecryptionError):
        mallory.decrypt_balance(program.account("alice"))
    assert mallory.balance(program) is None


def test_wallet_encrypt_opens_on_cluster_side(program, make_wallet):
    alice = make_wallet("alice")
    nonce, cts = alice.encrypt([5, 6])
    assert program.cluster.mxe.cipher_for(alice.public_key).decrypt(cts, nonce) == [5, 6]


# ---------- settings ----------
def test_settings_defaults():
    s = ProtocolSettings()
    assert s.database_url.startswith("sqlite")
    assert s.cluster_url is None
    assert s.cluster_max_retries == 3


def test_settings_from_env():
    s = ProtocolSettings.from_env(
        {
            "SHROUD_DATABASE_URL": "sqlite+pysqlite:///ledger.db",
            "SHROUD_POLL_INTERVAL": "0.2",
            "SHROUD_FINALIZE_TIMEOUT": "5",
            "SHROUD_CLUSTER_URL": "http://mxe.local:8080",
            "SHROUD_CLUSTER_MAX_RETRIES": "5",
            "SHROUD_LOG_LEVEL": "debug",
            "SHROUD_CLUSTER_TIMEOUT": " ",
        }
    )
    assert s.database_url == "sqlite+pysqlite:///ledger.db"
    assert s.poll_interval == 0.2
    assert s.finalize_timeout == 5.0
    assert s.cluster_url == "http://mxe.local:8080"
    assert s.cluster_max_retries == 5
    assert s.cluster_timeout == 10.0
    assert s.log_level == "debug"


def test_settings_validation():
    with pytest.raises(ValidationError):
        ProtocolSettings(poll_interval=0)
    with pytest.raises(ValidationError):
        ProtocolSettings.from_env({"SHROUD_CLUSTER_MAX_RETRIES": "zero"})


# ---------- logging ----------
def test_loggers_live_under_the_package():
    assert get_logger("ledger.coordinator").name == "shroud.ledger.coordinator"
    assert get_logger("shroud.api").name == "shroud.api"


def test_setup_logging_does_not_stack_handlers():
    root = logging.getLogger("shroud")
    before = len(root.handlers)
    try:
        setup_logging("DEBUG")
        setup_logging("INFO")
        assert len(root.handlers) == before + 1
        assert root.level == logging.INFO
    finally:
        for h in list(root.handlers):
            if getattr(h, "_shroud_handler", False):
                root.removeHandler(h)
        root.setLevel(logging.NOTSET)
