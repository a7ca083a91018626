"""
Cluster-side circuits for wrap and transfer.

These run with the MXE secret key: they unseal the client balances, do the
arithmetic in the clear inside the cluster and reseal the results. Failures are
reported as FailureReason codes, never as partial outputs.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List

from shroud.crypto_core.cipher import RescueCipher, random_nonce
from shroud.crypto_core.keys import derive_shared_secret, public_key_from_private
from shroud.errors import DecryptionError, KeyAgreementError
from shroud.ledger.types import (
    U64_MAX,
    ComputationKind,
    FailureReason,
    SealedBalance,
    TransferArguments,
    WrapArguments,
)
from shroud.ledger.wire import EncryptedOutput


class CircuitFailure(Exception):
    def __init__(self, reason: FailureReason, detail: str = ""):
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)
        self.reason = reason


class MxeContext:
    """The cluster's half of every key agreement, plus its nonce source."""

    def __init__(self, secret_key: bytes, nonce_source: Callable[[], bytes] = random_nonce):
        self._secret_key = bytes(secret_key)
        self._nonce_source = nonce_source
        self.public_key = public_key_from_private(self._secret_key)
        self._ciphers: Dict[bytes, RescueCipher] = {}

    def cipher_for(self, client_pubkey: bytes) -> RescueCipher:
        key = bytes(client_pubkey)
        cipher = self._ciphers.get(key)
        if cipher is None:
            try:
                cipher = RescueCipher(derive_shared_secret(self._secret_key, key))
            except KeyAgreementError as e:
                raise CircuitFailure(FailureReason.MALFORMED_INPUT, str(e)) from e
            self._ciphers[key] = cipher
        return cipher

    def unseal(self, sealed: SealedBalance) -> int:
        try:
            values = self.cipher_for(sealed.encryption_pubkey).decrypt(sealed.ciphertexts, sealed.nonce)
        except DecryptionError as e:
            raise CircuitFailure(FailureReason.MALFORMED_INPUT, str(e)) from e
        if len(values) != 1 or values[0] > U64_MAX:
            raise CircuitFailure(FailureReason.MALFORMED_INPUT, "balance is not a single u64")
        return values[0]

    def seal(self, client_pubkey: bytes, nonce: bytes, value: int) -> EncryptedOutput:
        return EncryptedOutput(nonce=nonce, ciphertexts=self.cipher_for(client_pubkey).encrypt([value], nonce))

    def fresh_nonce(self, previous: bytes) -> bytes:
        nonce = self._nonce_source()
        while nonce == previous:
            nonce = self._nonce_source()
        return nonce


def wrap_circuit(ctx: MxeContext, args: WrapArguments) -> List[EncryptedOutput]:
    old = ctx.unseal(args.current) if args.current is not None else 0
    new = old + args.amount
    if new > U64_MAX:
        raise CircuitFailure(FailureReason.OVERFLOW, "wrapped balance exceeds u64")
    if args.current is not None and args.nonce == args.current.nonce:
        raise CircuitFailure(FailureReason.NONCE_REUSE)
    # sealed under the caller's nonce, not a cluster one
    return [ctx.seal(args.encryption_pubkey, args.nonce, new)]


def transfer_circuit(ctx: MxeContext, args: TransferArguments) -> List[EncryptedOutput]:
    sender = ctx.unseal(args.sender)
    receiver = ctx.unseal(args.receiver)
    if sender < args.amount:
        raise CircuitFailure(FailureReason.INSUFFICIENT_BALANCE)
    if receiver + args.amount > U64_MAX:
        raise CircuitFailure(FailureReason.OVERFLOW, "receiver balance exceeds u64")
    return [
        ctx.seal(args.sender.encryption_pubkey, ctx.fresh_nonce(args.sender.nonce), sender - args.amount),
        ctx.seal(args.receiver.encryption_pubkey, ctx.fresh_nonce(args.receiver.nonce), receiver + args.amount),
    ]


CIRCUITS: Dict[ComputationKind, Callable[[MxeContext, Any], List[EncryptedOutput]]] = {
    ComputationKind.WRAP: wrap_circuit,
    ComputationKind.TRANSFER: transfer_circuit,
}
