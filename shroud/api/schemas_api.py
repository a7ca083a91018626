from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from shroud.ledger.types import AccountState, ComputationOutcome, DefinitionHandle, PendingHandle


class _Api(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


class Ok(_Api):
    status: str = Field("ok", description="Fixed OK status for successful responses.")


# ---------- requests ----------
class DefinitionFinalizeReq(_Api):
    circuit_hex: Optional[str] = Field(None, description="Raw circuit upload (hex); finalized immediately.")
    offchain_source: bool = Field(False, description="Let the cluster source the circuit off-chain.")


class WrapReq(_Api):
    payer: str = Field(..., description="Owner whose plaintext tokens are wrapped.")
    offset: int = Field(..., description="Fresh random u64 computation offset.")
    amount: int = Field(..., description="Plaintext amount to wrap (u64).")
    encryption_pubkey: str = Field(..., description="Client x25519 public key (hex, 32 bytes).")
    nonce: str = Field(..., description="Fresh 16-byte nonce (hex) the new balance is sealed under.")


class TransferReq(_Api):
    sender: str = Field(..., description="Owner of the debited encrypted balance.")
    receiver: str = Field(..., description="Owner of the credited encrypted balance.")
    offset: int = Field(..., description="Fresh random u64 computation offset.")
    amount: int = Field(..., description="Amount to move (u64); never stored on the ledger.")


class FinalizeCallbackReq(_Api):
    record_hex: str = Field(..., description="Finalize record in wire format (hex).")


# ---------- responses ----------
class DefinitionRes(Ok):
    kind: str
    comp_def_offset: int
    definition_status: str
    source: Optional[str] = None
    circuit_hash: Optional[str] = None

    @classmethod
    def from_handle(cls, h: DefinitionHandle) -> "DefinitionRes":
        return cls(
            kind=h.kind.value,
            comp_def_offset=h.comp_def_offset,
            definition_status=h.status.value,
            source=h.source,
            circuit_hash=h.circuit_hash,
        )


class PendingRes(Ok):
    offset: int = Field(..., description="Pass to /computations/{offset}/await.")
    kind: str
    computation_status: str

    @classmethod
    def from_handle(cls, h: PendingHandle) -> "PendingRes":
        return cls(offset=h.offset, kind=h.kind.value, computation_status=h.status.value)


class AccountRes(_Api):
    owner: str
    address: str = Field(..., description="Deterministic base58 account address.")
    encryption_pubkey: str
    nonce: str
    encrypted_balance: List[str] = Field(..., description="32-byte elements (hex): value then tag.")
    updates: int

    @classmethod
    def from_state(cls, s: AccountState) -> "AccountRes":
        return cls(
            owner=s.owner,
            address=s.address,
            encryption_pubkey=s.encryption_pubkey.hex(),
            nonce=s.nonce.hex(),
            encrypted_balance=[c.hex() for c in s.encrypted_balance],
            updates=s.updates,
        )


class ComputationRes(Ok):
    offset: int
    kind: str
    computation_status: str
    failure_reason: Optional[str] = None
    accounts: List[AccountRes] = Field(default_factory=list)

    @classmethod
    def from_outcome(cls, o: ComputationOutcome) -> "ComputationRes":
        return cls(
            offset=o.offset,
            kind=o.kind.value,
            computation_status=o.status.value,
            failure_reason=o.failure_reason,
            accounts=[AccountRes.from_state(a) for a in o.accounts],
        )


class CustodyRes(Ok):
    authority: str
    balance: int


class MxeRes(Ok):
    public_key: str = Field(..., description="MXE x25519 public key (hex) clients agree keys with.")


class ErrorRes(_Api):
    error: str
    detail: str
    reason: Optional[str] = None
