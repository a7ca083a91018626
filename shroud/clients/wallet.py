"""
Client-side wallet: holds the owner's x25519 key, builds wrap/transfer
requests and decrypts balances locally. The private key never leaves it.
"""
from __future__ import annotations

from typing import List, Optional, Sequence, Tuple, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, StrictInt

from shroud.crypto_core.cipher import RescueCipher, random_nonce
from shroud.crypto_core.keys import derive_shared_secret, generate_keypair, public_key_from_private
from shroud.errors import DecryptionError, InvalidAmount
from shroud.ledger.coordinator import new_computation_offset
from shroud.ledger.types import AccountState, PendingHandle

if TYPE_CHECKING:
    from shroud.ledger.program import ConfidentialTokenProgram


class WrapRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    payer: str
    offset: int
    amount: StrictInt
    encryption_pubkey: bytes
    nonce: bytes


class ConfidentialWallet:
    def __init__(self, owner: str, mxe_public_key: bytes, private_key: Optional[bytes] = None):
        if private_key is None:
            private_key, _ = generate_keypair()
        self.owner = owner
        self._private_key = bytes(private_key)
        self.public_key = public_key_from_private(self._private_key)
        self.cipher = RescueCipher(derive_shared_secret(self._private_key, mxe_public_key))

    def prepare_wrap(self, amount: int, offset: Optional[int] = None, nonce: Optional[bytes] = None) -> WrapRequest:
        # the u64 range is checked by the program
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmount("amount must be an integer")
        return WrapRequest(
            payer=self.owner,
            offset=new_computation_offset() if offset is None else offset,
            amount=amount,
            encryption_pubkey=self.public_key,
            nonce=nonce or random_nonce(),
        )

    def wrap(self, program: "ConfidentialTokenProgram", amount: int, offset: Optional[int] = None) -> PendingHandle:
        req = self.prepare_wrap(amount, offset)
        return program.wrap(req.payer, req.offset, req.amount, req.encryption_pubkey, req.nonce)

    def transfer(
        self, program: "ConfidentialTokenProgram", receiver: str, amount: int, offset: Optional[int] = None
    ) -> PendingHandle:
        return program.transfer(
            self.owner, receiver, new_computation_offset() if offset is None else offset, amount
        )

    def encrypt(self, values: Sequence[int], nonce: Optional[bytes] = None) -> Tuple[bytes, List[bytes]]:
        nonce = nonce or random_nonce()
        return nonce, self.cipher.encrypt(values, nonce)

    def decrypt_balance(self, account: AccountState) -> int:
        if account.encryption_pubkey != self.public_key:
            raise DecryptionError(f"balance of {account.owner!r} is sealed to a different key")
        values = self.cipher.decrypt(account.encrypted_balance, account.nonce)
        if len(values) != 1:
            raise DecryptionError("balance ciphertext must hold exactly one value")
        return values[0]

    def balance(self, program: "ConfidentialTokenProgram") -> Optional[int]:
        """Decrypted balance, or None when the owner has never wrapped."""
        account = program.account(self.owner)
        return self.decrypt_balance(account) if account is not None else None
