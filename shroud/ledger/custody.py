from __future__ import annotations

import hashlib
import threading
from typing import Dict, Protocol

import base58

from shroud.errors import InsufficientFunds, InvalidAmount
from shroud.logging_config import get_logger

logger = get_logger("ledger.custody")

POOL_AUTHORITY_SEED = b"pool_authority"
POOL_AUTHORITY: str = base58.b58encode(hashlib.sha256(POOL_AUTHORITY_SEED).digest()).decode()


class TokenLedger(Protocol):
    """The plaintext fungible-token ledger this protocol sits on top of."""

    def transfer_plaintext(self, source: str, destination: str, amount: int) -> None: ...

    def balance_of(self, account: str) -> int: ...


class InMemoryTokenLedger:
    """Plaintext token balances kept in a dict; for local deployments and tests."""

    def __init__(self) -> None:
        self._balances: Dict[str, int] = {}
        self._lock = threading.Lock()

    def mint_to(self, account: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount("mint amount must be positive")
        with self._lock:
            self._balances[account] = self._balances.get(account, 0) + int(amount)

    def balance_of(self, account: str) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def transfer_plaintext(self, source: str, destination: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount("transfer amount must be positive")
        with self._lock:
            have = self._balances.get(source, 0)
            if have < amount:
                raise InsufficientFunds(f"{source} holds {have}, needs {amount}")
            self._balances[source] = have - int(amount)
            self._balances[destination] = self._balances.get(destination, 0) + int(amount)

    def total_supply(self) -> int:
        with self._lock:
            return sum(self._balances.values())


class CustodyPool:
    """Plaintext reserve backing every wrapped balance, held by the pool authority."""

    def __init__(self, token_ledger: TokenLedger, authority: str = POOL_AUTHORITY):
        self.token_ledger = token_ledger
        self.authority = authority

    def balance(self) -> int:
        return self.token_ledger.balance_of(self.authority)

    def deposit(self, source: str, amount: int) -> None:
        self.token_ledger.transfer_plaintext(source, self.authority, amount)
        logger.info("Custody pool received %d from %s", amount, source)

    def refund(self, destination: str, amount: int) -> None:
        self.token_ledger.transfer_plaintext(self.authority, destination, amount)
        logger.warning("Custody pool refunded %d to %s", amount, destination)
