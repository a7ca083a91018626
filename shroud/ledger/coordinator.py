# shroud/ledger/coordinator.py
from __future__ import annotations

import asyncio
import json
import secrets
import threading
from typing import Any, Dict, List, Optional, Protocol, Set, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from shroud.errors import (
    AccountBusy,
    AlreadyFinalized,
    ClusterUnavailable,
    ComputationFailed,
    ComputationNotFound,
    DecryptionError,
    DuplicateOffset,
    FinalizationTimeout,
    InvalidRequest,
    MalformedRecord,
    NonceReuse,
)
from shroud.ledger import eventlog as ev
from shroud.ledger.definitions import DefinitionRegistry
from shroud.ledger.models import AccountLock, ComputationRequest, utcnow
from shroud.ledger.types import (
    AccountState,
    ComputationKind,
    ComputationOutcome,
    ComputationStatus,
    FailureReason,
    PendingHandle,
)
from shroud.ledger.wire import FinalizeRecord
from shroud.logging_config import get_logger

if TYPE_CHECKING:
    from shroud.mpc.cluster import ClusterClient

logger = get_logger("ledger.coordinator")

OFFSET_LIMIT = 2**64
_IN_FLIGHT = (ComputationStatus.QUEUED.value, ComputationStatus.EXECUTING.value)


def new_computation_offset() -> int:
    """64 random bits; the only join key between a request and its finalization."""
    return int.from_bytes(secrets.token_bytes(8), "little")


def check_offset(offset: Any) -> int:
    if isinstance(offset, bool) or not isinstance(offset, int):
        raise InvalidRequest("computation offset must be an integer")
    if not 0 <= offset < OFFSET_LIMIT:
        raise InvalidRequest("computation offset must fit in u64")
    return offset


class RequestInputs(BaseModel):
    """What a caller hands to queue(); operations decide what of it is persisted."""

    model_config = ConfigDict(frozen=True)

    amount: int
    payer: Optional[str] = None
    sender: Optional[str] = None
    receiver: Optional[str] = None
    encryption_pubkey: Optional[bytes] = None
    nonce: Optional[bytes] = None


class ComputationHandler(Protocol):
    """Per-kind hooks the coordinator drives (implemented by the operations)."""

    kind: ComputationKind

    def accounts(self, inputs: RequestInputs) -> List[str]: ...

    def validate(self, session: Session, inputs: RequestInputs) -> None: ...

    def columns(self, inputs: RequestInputs) -> Dict[str, Any]: ...

    def arguments(self, session: Session, inputs: RequestInputs) -> Any: ...

    def escrow(self, inputs: RequestInputs) -> None: ...

    def release(self, inputs: RequestInputs) -> None: ...

    def owners(self, request: ComputationRequest) -> List[str]: ...

    def check_outputs(self, session: Session, request: ComputationRequest, record: FinalizeRecord) -> None: ...

    def apply_outputs(
        self, session: Session, request: ComputationRequest, record: FinalizeRecord
    ) -> List[AccountState]: ...

    def compensate(self, request: ComputationRequest) -> None: ...


class ComputationCoordinator:
    """
    Bridge between ledger-visible requests and the MPC cluster.

    queue() records a request keyed by its offset and forwards it; the cluster
    later posts a FinalizeRecord through finalize(); callers wait with
    await_finalization(). Offsets are claimed once, ever.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        cluster: "ClusterClient",
        registry: DefinitionRegistry,
        poll_interval: float = 0.05,
    ):
        self._session_factory = session_factory
        self._cluster = cluster
        self._registry = registry
        self.poll_interval = poll_interval
        self._handlers: Dict[ComputationKind, ComputationHandler] = {}
        self._claims: Set[int] = set()
        self._account_claims: Set[str] = set()
        self._claims_lock = threading.Lock()

    def register(self, handler: ComputationHandler) -> None:
        self._handlers[handler.kind] = handler

    def _handler(self, kind: ComputationKind) -> ComputationHandler:
        try:
            return self._handlers[kind]
        except KeyError:
            raise InvalidRequest(f"No operation registered for {kind.value!r}") from None

    # ===== Claims =====
    def _claim(self, offset: int, accounts: List[str]) -> None:
        """Claim the offset and every touched account together, or neither."""
        with self._claims_lock:
            if offset in self._claims:
                raise DuplicateOffset(f"Computation offset {offset} is already in flight")
            if self._account_claims.intersection(accounts):
                raise AccountBusy("Account is being queued by another request; await it before queueing another")
            self._claims.add(offset)
            self._account_claims.update(accounts)

    def _release_claim(self, offset: int, accounts: List[str]) -> None:
        with self._claims_lock:
            self._claims.discard(offset)
            self._account_claims.difference_update(accounts)

    # ===== Queue =====
    def queue(self, kind: ComputationKind | str, offset: int, inputs: RequestInputs) -> PendingHandle:
        kind = ComputationKind(kind)
        offset = check_offset(offset)
        handler = self._handler(kind)
        accounts = list(dict.fromkeys(handler.accounts(inputs)))
        self._claim(offset, accounts)
        try:
            return self._queue_claimed(kind, offset, inputs, handler, accounts)
        finally:
            # from here on the committed request and account_locks rows hold the claim
            self._release_claim(offset, accounts)

    def _queue_claimed(
        self,
        kind: ComputationKind,
        offset: int,
        inputs: RequestInputs,
        handler: ComputationHandler,
        accounts: List[str],
    ) -> PendingHandle:
        escrowed = False
        with self._session_factory() as session:
            try:
                with session.begin():
                    self._registry.require_ready(session, kind)
                    if session.get(ComputationRequest, str(offset)) is not None:
                        raise DuplicateOffset(f"Computation offset {offset} was already used")
                    handler.validate(session, inputs)
                    self._lock_accounts(session, offset, accounts)

                    row = ComputationRequest(
                        offset=str(offset),
                        kind=kind.value,
                        status=ComputationStatus.QUEUED.value,
                        **handler.columns(inputs),
                    )
                    session.add(row)
                    session.flush()

                    args = handler.arguments(session, inputs)
                    handler.escrow(inputs)
                    escrowed = True

                    ack = self._cluster.submit_computation(kind, offset, args)
                    if not ack.accepted:
                        raise ClusterUnavailable(f"Cluster rejected computation {offset}: {ack.detail}")
                    row.status = ComputationStatus.EXECUTING.value
                    ev.append_event(
                        session,
                        ev.COMPUTATION_QUEUED,
                        offset=str(offset),
                        computation_kind=kind.value,
                        accounts=accounts,
                    )
            except IntegrityError as e:
                if escrowed:
                    handler.release(inputs)
                raise DuplicateOffset(f"Computation offset {offset} was already used") from e
            except Exception:
                if escrowed:
                    handler.release(inputs)
                raise

        logger.info("Queued %s computation %d", kind.value, offset)
        return PendingHandle(offset=offset, kind=kind, status=ComputationStatus.EXECUTING)

    @staticmethod
    def _lock_accounts(session: Session, offset: int, accounts: List[str]) -> None:
        """
        Insert one account_locks row per account. The owner primary key makes a
        second in-flight computation on the same account fail even when it is
        queued by another process against the same database.
        """
        for owner in accounts:
            held = session.get(AccountLock, owner)
            if held is not None:
                raise AccountBusy(
                    f"Account {owner!r} has computation {held.offset} in flight; await it before queueing another"
                )
        session.add_all([AccountLock(owner=owner, offset=str(offset)) for owner in accounts])
        try:
            session.flush()
        except IntegrityError as e:
            raise AccountBusy("Account has a computation in flight; await it before queueing another") from e

    # ===== Finalize =====
    def finalize(self, record: FinalizeRecord) -> ComputationOutcome:
        """Apply a cluster's finalize record. At most one is accepted per offset."""
        compensate = None
        with self._session_factory() as session, session.begin():
            row = session.get(ComputationRequest, str(record.offset))
            if row is None:
                raise ComputationNotFound(f"No computation with offset {record.offset}")
            if ComputationStatus(row.status).terminal:
                raise AlreadyFinalized(f"Computation {record.offset} is already {row.status}")
            if row.kind != record.kind.value:
                raise MalformedRecord(f"Record kind {record.kind.value!r} does not match request kind {row.kind!r}")

            handler = self._handler(ComputationKind(row.kind))
            failure = record.failure
            if failure is None:
                try:
                    handler.check_outputs(session, row, record)
                except NonceReuse:
                    failure = FailureReason.NONCE_REUSE
                except (ValueError, MalformedRecord, DecryptionError) as e:
                    logger.warning("Rejecting outputs of computation %d: %s", record.offset, e)
                    failure = FailureReason.MALFORMED_INPUT

            if failure is None:
                states = handler.apply_outputs(session, row, record)
                row.status = ComputationStatus.FINALIZED.value
                row.result = record.to_bytes()
                ev.append_event(
                    session, ev.COMPUTATION_FINALIZED, offset=str(record.offset), computation_kind=row.kind
                )
            else:
                states = []
                row.status = ComputationStatus.FAILED.value
                row.failure_reason = failure.value
                row.result = FinalizeRecord(offset=record.offset, kind=record.kind, failure=failure).to_bytes()
                ev.append_event(
                    session,
                    ev.COMPUTATION_FAILED,
                    offset=str(record.offset),
                    computation_kind=row.kind,
                    reason=failure.value,
                )
                compensate = handler.compensate
            row.snapshot = json.dumps([s.to_json() for s in states], separators=(",", ":"))
            row.finalized_at = utcnow()
            session.execute(delete(AccountLock).where(AccountLock.offset == row.offset))

        if compensate is not None:
            compensate(row)
            logger.warning("Computation %d failed: %s", record.offset, row.failure_reason)
        else:
            logger.info("Finalized %s computation %d", row.kind, record.offset)
        return self._outcome(row)

    # ===== Status / await =====
    @staticmethod
    def _outcome(row: ComputationRequest) -> ComputationOutcome:
        accounts: List[AccountState] = []
        if row.snapshot:
            accounts = [AccountState.from_json(d) for d in json.loads(row.snapshot)]
        return ComputationOutcome(
            offset=int(row.offset),
            kind=ComputationKind(row.kind),
            status=ComputationStatus(row.status),
            accounts=accounts,
            failure_reason=row.failure_reason,
        )

    def outcome(self, offset: int) -> ComputationOutcome:
        offset = check_offset(offset)
        with self._session_factory() as session:
            row = session.get(ComputationRequest, str(offset))
            if row is None:
                raise ComputationNotFound(f"No computation with offset {offset}")
            return self._outcome(row)

    def status(self, offset: int) -> ComputationStatus:
        return self.outcome(offset).status

    def finalize_record(self, offset: int) -> Optional[FinalizeRecord]:
        offset = check_offset(offset)
        with self._session_factory() as session:
            row = session.get(ComputationRequest, str(offset))
            if row is None:
                raise ComputationNotFound(f"No computation with offset {offset}")
            return FinalizeRecord.from_bytes(row.result) if row.result else None

    async def await_finalization(
        self,
        offset: int,
        timeout: float,
        poll_interval: Optional[float] = None,
    ) -> ComputationOutcome:
        """
        Wait until the computation at `offset` is finalized.

        Raises ComputationFailed if the cluster or the finalization checks
        rejected it, FinalizationTimeout once `timeout` seconds pass. Neither
        touches ledger state, so the call can simply be repeated.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        interval = poll_interval or self.poll_interval
        while True:
            outcome = self.outcome(offset)
            if outcome.status == ComputationStatus.FINALIZED:
                return outcome
            if outcome.status == ComputationStatus.FAILED:
                raise ComputationFailed(outcome.failure_reason or FailureReason.ABORTED.value, offset=offset)
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise FinalizationTimeout(offset, timeout)
            await asyncio.sleep(min(interval, remaining))

    def in_flight(self) -> List[int]:
        with self._session_factory() as session:
            stmt = select(ComputationRequest.offset).where(ComputationRequest.status.in_(_IN_FLIGHT))
            return [int(o) for o in session.scalars(stmt)]
