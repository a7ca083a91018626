# shroud/errors.py
from __future__ import annotations

from typing import Optional


class ConfidentialError(RuntimeError):
    """Base class for every per-request failure raised by the protocol."""


# ===== Crypto =====
class KeyAgreementError(ConfidentialError):
    """The peer key is not a usable x25519 point."""


class DecryptionError(ConfidentialError):
    """Ciphertext, nonce or key do not match what produced the ciphertext."""


# ===== Validation (raised before any ledger mutation) =====
class InvalidRequest(ConfidentialError):
    pass


class InvalidAmount(InvalidRequest):
    pass


class DuplicateOffset(InvalidRequest):
    pass


class DefinitionNotReady(InvalidRequest):
    pass


class AlreadyInitialized(InvalidRequest):
    pass


class AccountNotFound(InvalidRequest):
    pass


class AccountBusy(InvalidRequest):
    """Another computation touching the same account has not finalized yet."""


class NonceReuse(InvalidRequest):
    pass


class InsufficientFunds(InvalidRequest):
    """Plaintext balance too low for the requested movement."""


class MalformedRecord(InvalidRequest):
    pass


class ComputationNotFound(InvalidRequest):
    pass


class AlreadyFinalized(InvalidRequest):
    pass


# ===== Lifecycle =====
class ComputationFailed(ConfidentialError):
    """The cluster (or finalization checks) rejected the computation."""

    def __init__(self, reason: str, offset: Optional[int] = None):
        self.reason = reason
        self.offset = offset
        where = f" (offset={offset})" if offset is not None else ""
        super().__init__(f"Computation failed{where}: {reason}")


class FinalizationTimeout(ConfidentialError):
    def __init__(self, offset: int, timeout: float):
        self.offset = offset
        self.timeout = timeout
        super().__init__(f"Computation {offset} not finalized after {timeout}s")


class ClusterUnavailable(ConfidentialError):
    """Raised when the MPC cluster cannot be reached after all retries."""
