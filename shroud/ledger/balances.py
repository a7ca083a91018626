from __future__ import annotations

import hashlib
from typing import List, Optional

import base58
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from shroud.crypto_core.cipher import ELEMENT_BYTES, NONCE_BYTES, split_elements
from shroud.errors import AccountNotFound, NonceReuse
from shroud.ledger.models import BalanceNonce, EncryptedBalanceAccount
from shroud.ledger.types import AccountState
from shroud.logging_config import get_logger

logger = get_logger("ledger.balances")

BALANCE_SEED = b"encrypted_balance"
BALANCE_ELEMENTS = 2  # value + tag


def balance_address(owner: str) -> str:
    """Deterministic base58 address of an owner's encrypted balance account."""
    return base58.b58encode(hashlib.sha256(BALANCE_SEED + owner.encode("utf-8")).digest()).decode()


def to_state(row: EncryptedBalanceAccount) -> AccountState:
    return AccountState(
        owner=row.owner,
        address=row.address,
        encryption_pubkey=bytes(row.encryption_pubkey),
        nonce=bytes(row.nonce),
        encrypted_balance=split_elements(bytes(row.encrypted_balance)),
        updates=row.updates,
    )


class BalanceStore:
    """
    Per-owner ciphertext balances and the nonce history that guards their freshness.

    Read helpers open their own session; the `*_in` helpers run inside a caller's
    unit of work so account writes commit atomically with the finalization.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # ---------- reads ----------
    def get(self, owner: str) -> Optional[AccountState]:
        with self._session_factory() as session:
            row = session.get(EncryptedBalanceAccount, owner)
            return to_state(row) if row is not None else None

    def exists(self, owner: str) -> bool:
        return self.get(owner) is not None

    def all_accounts(self) -> List[AccountState]:
        with self._session_factory() as session:
            rows = session.scalars(select(EncryptedBalanceAccount).order_by(EncryptedBalanceAccount.owner))
            return [to_state(r) for r in rows]

    def nonce_history(self, owner: str) -> List[bytes]:
        with self._session_factory() as session:
            stmt = select(BalanceNonce.nonce).where(BalanceNonce.owner == owner).order_by(BalanceNonce.id)
            return [bytes(n) for n in session.scalars(stmt)]

    def nonce_used(self, owner: str, nonce: bytes) -> bool:
        with self._session_factory() as session:
            return self.nonce_used_in(session, owner, nonce)

    # ---------- unit-of-work helpers ----------
    @staticmethod
    def nonce_used_in(session: Session, owner: str, nonce: bytes) -> bool:
        stmt = select(BalanceNonce.id).where(BalanceNonce.owner == owner, BalanceNonce.nonce == bytes(nonce))
        return session.scalars(stmt).first() is not None

    @staticmethod
    def require_in(session: Session, owner: str) -> EncryptedBalanceAccount:
        row = session.get(EncryptedBalanceAccount, owner)
        if row is None:
            raise AccountNotFound(f"No encrypted balance account for {owner!r}")
        return row

    def check_write_in(self, session: Session, owner: str, nonce: bytes, ciphertexts: List[bytes]) -> None:
        """Validate a pending write without touching state."""
        if len(nonce) != NONCE_BYTES:
            raise ValueError(f"nonce must be {NONCE_BYTES} bytes")
        if len(ciphertexts) != BALANCE_ELEMENTS or any(len(c) != ELEMENT_BYTES for c in ciphertexts):
            raise ValueError(f"balance ciphertext must be {BALANCE_ELEMENTS} x {ELEMENT_BYTES} bytes")
        if self.nonce_used_in(session, owner, nonce):
            raise NonceReuse(f"nonce already used for {owner!r}")

    def write_in(
        self,
        session: Session,
        owner: str,
        encryption_pubkey: bytes,
        nonce: bytes,
        ciphertexts: List[bytes],
    ) -> EncryptedBalanceAccount:
        """Create or overwrite an account's sealed balance and record the nonce."""
        self.check_write_in(session, owner, nonce, ciphertexts)
        row = session.get(EncryptedBalanceAccount, owner)
        blob = b"".join(ciphertexts)
        if row is None:
            row = EncryptedBalanceAccount(
                owner=owner,
                address=balance_address(owner),
                encryption_pubkey=bytes(encryption_pubkey),
                encrypted_balance=blob,
                nonce=bytes(nonce),
                updates=1,
            )
            session.add(row)
            logger.info("Created encrypted balance account for %s", owner)
        else:
            row.encryption_pubkey = bytes(encryption_pubkey)
            row.encrypted_balance = blob
            row.nonce = bytes(nonce)
            row.updates = (row.updates or 0) + 1
        session.flush()
        session.add(BalanceNonce(owner=owner, nonce=bytes(nonce)))
        return row
