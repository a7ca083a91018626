"""
Wrap and transfer: the two confidential instructions of the program.

Each operation validates and queues its request through the coordinator and
supplies the hooks the coordinator calls when the cluster's finalize record
arrives (output checks, balance writes, compensation).
"""
from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy.orm import Session

from shroud.crypto_core.cipher import NONCE_BYTES
from shroud.crypto_core.keys import KEY_BYTES
from shroud.errors import InsufficientFunds, InvalidAmount, InvalidRequest, NonceReuse
from shroud.ledger.balances import BalanceStore, to_state
from shroud.ledger.coordinator import ComputationCoordinator, RequestInputs
from shroud.ledger.custody import CustodyPool
from shroud.ledger.models import ComputationRequest, EncryptedBalanceAccount
from shroud.ledger.types import (
    U64_MAX,
    AccountState,
    ComputationKind,
    PendingHandle,
    TransferArguments,
    WrapArguments,
)
from shroud.ledger.wire import FinalizeRecord


def check_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount("amount must be an integer")
    if amount <= 0:
        raise InvalidAmount("amount must be greater than zero")
    if amount > U64_MAX:
        raise InvalidAmount("amount does not fit in u64")
    return amount


def _check_bytes(value: Any, size: int, what: str) -> bytes:
    if not isinstance(value, (bytes, bytearray)) or len(value) != size:
        raise InvalidRequest(f"{what} must be {size} bytes")
    return bytes(value)


def _expect_outputs(record: FinalizeRecord, n: int) -> None:
    if len(record.outputs) != n:
        raise ValueError(f"expected {n} output(s), got {len(record.outputs)}")


class WrapOperation:
    """Move plaintext tokens into custody and add them to the payer's encrypted balance."""

    kind = ComputationKind.WRAP

    def __init__(self, coordinator: ComputationCoordinator, balances: BalanceStore, custody: CustodyPool):
        self.coordinator = coordinator
        self.balances = balances
        self.custody = custody
        coordinator.register(self)

    def wrap(
        self,
        payer: str,
        offset: int,
        amount: int,
        encryption_pubkey: bytes,
        nonce: bytes,
    ) -> PendingHandle:
        """
        Queue a wrap. `encryption_pubkey`/`nonce` are what the new balance is
        sealed to; the nonce must never have been used for this payer.
        """
        if not payer:
            raise InvalidRequest("payer is required")
        inputs = RequestInputs(
            amount=check_amount(amount),
            payer=payer,
            encryption_pubkey=_check_bytes(encryption_pubkey, KEY_BYTES, "encryption pubkey"),
            nonce=_check_bytes(nonce, NONCE_BYTES, "nonce"),
        )
        return self.coordinator.queue(self.kind, offset, inputs)

    # ---------- queue hooks ----------
    def accounts(self, inputs: RequestInputs) -> List[str]:
        return [inputs.payer]

    def validate(self, session: Session, inputs: RequestInputs) -> None:
        if self.balances.nonce_used_in(session, inputs.payer, inputs.nonce):
            raise NonceReuse(f"nonce already used for {inputs.payer!r}")
        have = self.custody.token_ledger.balance_of(inputs.payer)
        if have < inputs.amount:
            raise InsufficientFunds(f"{inputs.payer} holds {have}, wrap needs {inputs.amount}")

    def columns(self, inputs: RequestInputs) -> Dict[str, Any]:
        return {
            "payer": inputs.payer,
            "amount": str(inputs.amount),
            "encryption_pubkey": inputs.encryption_pubkey,
            "nonce": inputs.nonce,
        }

    def arguments(self, session: Session, inputs: RequestInputs) -> WrapArguments:
        row = session.get(EncryptedBalanceAccount, inputs.payer)
        return WrapArguments(
            amount=inputs.amount,
            encryption_pubkey=inputs.encryption_pubkey,
            nonce=inputs.nonce,
            current=to_state(row).sealed() if row is not None else None,
        )

    def escrow(self, inputs: RequestInputs) -> None:
        self.custody.deposit(inputs.payer, inputs.amount)

    def release(self, inputs: RequestInputs) -> None:
        self.custody.refund(inputs.payer, inputs.amount)

    # ---------- finalize hooks ----------
    def owners(self, request: ComputationRequest) -> List[str]:
        return [request.payer]

    def check_outputs(self, session: Session, request: ComputationRequest, record: FinalizeRecord) -> None:
        _expect_outputs(record, 1)
        out = record.outputs[0]
        if out.nonce != request.nonce:
            raise ValueError("wrap output must be sealed under the caller's nonce")
        self.balances.check_write_in(session, request.payer, out.nonce, out.ciphertexts)

    def apply_outputs(
        self, session: Session, request: ComputationRequest, record: FinalizeRecord
    ) -> List[AccountState]:
        out = record.outputs[0]
        row = self.balances.write_in(session, request.payer, request.encryption_pubkey, out.nonce, out.ciphertexts)
        return [to_state(row)]

    def compensate(self, request: ComputationRequest) -> None:
        # plaintext moved at queue time; give it back
        self.custody.refund(request.payer, int(request.amount))


class TransferOperation:
    """Move value between two encrypted balances; the amount never touches ledger state."""

    kind = ComputationKind.TRANSFER

    def __init__(self, coordinator: ComputationCoordinator, balances: BalanceStore):
        self.coordinator = coordinator
        self.balances = balances
        coordinator.register(self)

    def transfer(self, sender: str, receiver: str, offset: int, amount: int) -> PendingHandle:
        if not sender or not receiver:
            raise InvalidRequest("sender and receiver are required")
        inputs = RequestInputs(amount=check_amount(amount), sender=sender, receiver=receiver)
        return self.coordinator.queue(self.kind, offset, inputs)

    # ---------- queue hooks ----------
    def accounts(self, inputs: RequestInputs) -> List[str]:
        return [inputs.sender, inputs.receiver]

    def validate(self, session: Session, inputs: RequestInputs) -> None:
        if inputs.sender == inputs.receiver:
            raise InvalidRequest("sender and receiver must be distinct accounts")
        self.balances.require_in(session, inputs.sender)
        self.balances.require_in(session, inputs.receiver)

    def columns(self, inputs: RequestInputs) -> Dict[str, Any]:
        return {"sender": inputs.sender, "receiver": inputs.receiver}

    def arguments(self, session: Session, inputs: RequestInputs) -> TransferArguments:
        return TransferArguments(
            sender=to_state(self.balances.require_in(session, inputs.sender)).sealed(),
            receiver=to_state(self.balances.require_in(session, inputs.receiver)).sealed(),
            amount=inputs.amount,
        )

    def escrow(self, inputs: RequestInputs) -> None:
        pass

    def release(self, inputs: RequestInputs) -> None:
        pass

    # ---------- finalize hooks ----------
    def owners(self, request: ComputationRequest) -> List[str]:
        return [request.sender, request.receiver]

    def check_outputs(self, session: Session, request: ComputationRequest, record: FinalizeRecord) -> None:
        _expect_outputs(record, 2)
        for owner, out in zip(self.owners(request), record.outputs):
            self.balances.require_in(session, owner)
            self.balances.check_write_in(session, owner, out.nonce, out.ciphertexts)

    def apply_outputs(
        self, session: Session, request: ComputationRequest, record: FinalizeRecord
    ) -> List[AccountState]:
        states = []
        for owner, out in zip(self.owners(request), record.outputs):
            current = self.balances.require_in(session, owner)
            row = self.balances.write_in(session, owner, current.encryption_pubkey, out.nonce, out.ciphertexts)
            states.append(to_state(row))
        return states

    def compensate(self, request: ComputationRequest) -> None:
        pass
