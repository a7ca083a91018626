from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

U64_MAX = 2**64 - 1


class ComputationKind(str, Enum):
    WRAP = "wrap"
    TRANSFER = "transfer"


class ComputationStatus(str, Enum):
    QUEUED = "queued"
    EXECUTING = "executing"
    FINALIZED = "finalized"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ComputationStatus.FINALIZED, ComputationStatus.FAILED)


class DefinitionStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    FINALIZED = "finalized"


class FailureReason(str, Enum):
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    OVERFLOW = "Overflow"
    MALFORMED_INPUT = "MalformedInput"
    NONCE_REUSE = "NonceReuse"
    ABORTED = "Aborted"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ---------- cluster arguments ----------
class SealedBalance(_Frozen):
    """An encrypted balance as the cluster needs it: who it is sealed to, under which nonce."""

    encryption_pubkey: bytes
    nonce: bytes
    ciphertexts: List[bytes]

    def to_json(self) -> Dict[str, Any]:
        return {
            "encryption_pubkey": self.encryption_pubkey.hex(),
            "nonce": self.nonce.hex(),
            "ciphertexts": [c.hex() for c in self.ciphertexts],
        }

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "SealedBalance":
        return cls(
            encryption_pubkey=bytes.fromhex(d["encryption_pubkey"]),
            nonce=bytes.fromhex(d["nonce"]),
            ciphertexts=[bytes.fromhex(c) for c in d["ciphertexts"]],
        )


class WrapArguments(_Frozen):
    amount: int
    encryption_pubkey: bytes
    nonce: bytes
    current: Optional[SealedBalance] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount),
            "encryption_pubkey": self.encryption_pubkey.hex(),
            "nonce": self.nonce.hex(),
            "current": self.current.to_json() if self.current else None,
        }

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "WrapArguments":
        cur = d.get("current")
        return cls(
            amount=int(d["amount"]),
            encryption_pubkey=bytes.fromhex(d["encryption_pubkey"]),
            nonce=bytes.fromhex(d["nonce"]),
            current=SealedBalance.from_json(cur) if cur else None,
        )


class TransferArguments(_Frozen):
    sender: SealedBalance
    receiver: SealedBalance
    amount: int

    def to_json(self) -> Dict[str, Any]:
        return {
            "sender": self.sender.to_json(),
            "receiver": self.receiver.to_json(),
            "amount": str(self.amount),
        }

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "TransferArguments":
        return cls(
            sender=SealedBalance.from_json(d["sender"]),
            receiver=SealedBalance.from_json(d["receiver"]),
            amount=int(d["amount"]),
        )


# ---------- ledger snapshots ----------
class AccountState(_Frozen):
    owner: str
    address: str
    encryption_pubkey: bytes
    nonce: bytes
    encrypted_balance: List[bytes] = Field(..., description="32-byte elements: value then tag.")
    updates: int = 0

    def sealed(self) -> SealedBalance:
        return SealedBalance(
            encryption_pubkey=self.encryption_pubkey,
            nonce=self.nonce,
            ciphertexts=list(self.encrypted_balance),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "address": self.address,
            "encryption_pubkey": self.encryption_pubkey.hex(),
            "nonce": self.nonce.hex(),
            "encrypted_balance": [c.hex() for c in self.encrypted_balance],
            "updates": self.updates,
        }

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "AccountState":
        return cls(
            owner=d["owner"],
            address=d["address"],
            encryption_pubkey=bytes.fromhex(d["encryption_pubkey"]),
            nonce=bytes.fromhex(d["nonce"]),
            encrypted_balance=[bytes.fromhex(c) for c in d["encrypted_balance"]],
            updates=int(d.get("updates", 0)),
        )


class DefinitionHandle(_Frozen):
    kind: ComputationKind
    comp_def_offset: int
    status: DefinitionStatus
    source: Optional[str] = None
    circuit_hash: Optional[str] = None


class PendingHandle(_Frozen):
    """Ticket returned by queue(); pass `offset` to await_finalization()."""

    offset: int
    kind: ComputationKind
    status: ComputationStatus


class ComputationOutcome(_Frozen):
    offset: int
    kind: ComputationKind
    status: ComputationStatus
    accounts: List[AccountState] = Field(default_factory=list)
    failure_reason: Optional[str] = None


class ClusterAck(_Frozen):
    offset: int
    accepted: bool = True
    detail: Optional[str] = None
