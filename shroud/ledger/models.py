"""
SQLAlchemy models for ledger-visible state.

Nothing stored here is plaintext except what the protocol makes public anyway
(wrap amounts, which already moved on the plaintext token ledger).
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, LargeBinary, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class EncryptedBalanceAccount(Base):
    __tablename__ = "encrypted_balances"

    owner: Mapped[str] = mapped_column(String(128), primary_key=True)
    address: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    encryption_pubkey: Mapped[bytes] = mapped_column(LargeBinary(32))
    # value element || tag element, 32 bytes each
    encrypted_balance: Mapped[bytes] = mapped_column(LargeBinary(64))
    nonce: Mapped[bytes] = mapped_column(LargeBinary(16))
    updates: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<EncryptedBalanceAccount owner={self.owner!r} updates={self.updates}>"


class BalanceNonce(Base):
    """Every nonce a balance was ever sealed under (freshness record)."""

    __tablename__ = "balance_nonces"
    __table_args__ = (UniqueConstraint("owner", "nonce", name="uq_balance_nonce"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner: Mapped[str] = mapped_column(String(128), ForeignKey("encrypted_balances.owner"), index=True)
    nonce: Mapped[bytes] = mapped_column(LargeBinary(16))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ComputationDefinitionRecord(Base):
    __tablename__ = "computation_definitions"

    kind: Mapped[str] = mapped_column(String(16), primary_key=True)
    comp_def_offset: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(16))
    source: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    circuit_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    finalized_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class ComputationRequest(Base):
    __tablename__ = "computations"

    # u64 does not fit SQLite's signed INTEGER, keep the decimal string
    offset: Mapped[str] = mapped_column("computation_offset", String(20), primary_key=True)
    kind: Mapped[str] = mapped_column(String(16), index=True)
    status: Mapped[str] = mapped_column(String(16), index=True)
    payer: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    sender: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    receiver: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    # wrap only; a transfer amount is never written to the ledger
    amount: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    encryption_pubkey: Mapped[Optional[bytes]] = mapped_column(LargeBinary(32), nullable=True)
    nonce: Mapped[Optional[bytes]] = mapped_column(LargeBinary(16), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    result: Mapped[Optional[bytes]] = mapped_column(LargeBinary, nullable=True)
    # JSON account snapshots taken at finalization
    snapshot: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    finalized_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def accounts(self) -> list[str]:
        return [a for a in (self.payer, self.sender, self.receiver) if a]


class AccountLock(Base):
    """One row per account with a computation in flight; removed when it finalizes."""

    __tablename__ = "account_locks"

    owner: Mapped[str] = mapped_column(String(128), primary_key=True)
    offset: Mapped[str] = mapped_column("computation_offset", String(20), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class LedgerEvent(Base):
    __tablename__ = "ledger_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[str] = mapped_column(String(32), index=True)
    ts: Mapped[str] = mapped_column(String(32))
    payload: Mapped[str] = mapped_column(Text)
