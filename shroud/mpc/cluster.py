"""
MPC cluster collaborators.

`ClusterClient` is what the ledger talks to. `LocalCluster` is an in-process
stand-in that holds the MXE secret, runs the circuits and posts finalize
records back to whatever the program binds as its callback. It can be driven
by hand (`process_pending()`) or as a background asyncio task.
"""
from __future__ import annotations

import asyncio
import threading
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, Callable, Deque, Iterable, NamedTuple, Optional, Protocol

from shroud.crypto_core.cipher import random_nonce
from shroud.crypto_core.keys import generate_keypair
from shroud.errors import ConfidentialError
from shroud.ledger.types import ClusterAck, ComputationKind, FailureReason
from shroud.ledger.wire import FinalizeRecord
from shroud.logging_config import get_logger
from shroud.mpc.circuits import CIRCUITS, CircuitFailure, MxeContext

logger = get_logger("mpc.cluster")

FinalizeCallback = Callable[[FinalizeRecord], Any]


class ClusterClient(Protocol):
    @property
    def public_key(self) -> bytes: ...

    def submit_computation(self, kind: ComputationKind, offset: int, arguments: Any) -> ClusterAck: ...

    def source_circuit(self, kind: ComputationKind, comp_def_offset: int) -> bool: ...


class ClusterJob(NamedTuple):
    kind: ComputationKind
    offset: int
    arguments: Any


class LocalCluster:
    """
    In-process MPC cluster.

    Jobs are executed in submission order. A finalize record the ledger
    rejects is logged and dropped, the same way a real cluster's callback
    transaction would simply fail.
    """

    def __init__(
        self,
        secret_key: Optional[bytes] = None,
        offchain_circuits: Iterable[ComputationKind | str] = (ComputationKind.WRAP, ComputationKind.TRANSFER),
        poll_interval: float = 0.01,
        nonce_source: Callable[[], bytes] = random_nonce,
    ):
        if secret_key is None:
            secret_key, _ = generate_keypair()
        self.mxe = MxeContext(secret_key, nonce_source=nonce_source)
        self.offchain_circuits = {ComputationKind(k) for k in offchain_circuits}
        self.poll_interval = poll_interval
        self._jobs: Deque[ClusterJob] = deque()
        self._lock = threading.Lock()
        self._finalize: Optional[FinalizeCallback] = None
        self.running = False
        self.task: Optional[asyncio.Task] = None

    @property
    def public_key(self) -> bytes:
        return self.mxe.public_key

    def bind(self, finalize: FinalizeCallback) -> None:
        self._finalize = finalize

    # ---------- ClusterClient ----------
    def submit_computation(self, kind: ComputationKind, offset: int, arguments: Any) -> ClusterAck:
        kind = ComputationKind(kind)
        if kind not in CIRCUITS:
            return ClusterAck(offset=offset, accepted=False, detail=f"no circuit for {kind.value}")
        with self._lock:
            self._jobs.append(ClusterJob(kind, offset, arguments))
        logger.debug("Accepted %s computation %d", kind.value, offset)
        return ClusterAck(offset=offset)

    def source_circuit(self, kind: ComputationKind, comp_def_offset: int) -> bool:
        return ComputationKind(kind) in self.offchain_circuits

    # ---------- execution ----------
    def pending(self) -> int:
        with self._lock:
            return len(self._jobs)

    def execute(self, job: ClusterJob) -> FinalizeRecord:
        try:
            outputs = CIRCUITS[job.kind](self.mxe, job.arguments)
        except CircuitFailure as e:
            logger.info("Computation %d failed in circuit: %s", job.offset, e.reason.value)
            return FinalizeRecord(offset=job.offset, kind=job.kind, failure=e.reason)
        except Exception as e:
            logger.error(f"Computation {job.offset} aborted: {e}", exc_info=True)
            return FinalizeRecord(offset=job.offset, kind=job.kind, failure=FailureReason.ABORTED)
        return FinalizeRecord(offset=job.offset, kind=job.kind, outputs=outputs)

    def _next_job(self) -> Optional[ClusterJob]:
        with self._lock:
            return self._jobs.popleft() if self._jobs else None

    def _requeue(self, job: ClusterJob) -> None:
        with self._lock:
            self._jobs.appendleft(job)

    def process_pending(self, limit: Optional[int] = None) -> int:
        """Run queued jobs and post their records. Returns how many were processed."""
        done = 0
        while limit is None or done < limit:
            job = self._next_job()
            if job is None:
                break
            self._post(self.execute(job))
            done += 1
        return done

    def _post(self, record: FinalizeRecord) -> None:
        if self._finalize is None:
            raise RuntimeError("LocalCluster is not bound to a ledger; call bind() first")
        try:
            self._finalize(record)
        except ConfidentialError as e:
            logger.error(f"Finalize for computation {record.offset} rejected: {e}")

    # ---------- background worker ----------
    async def start(self):
        if self.running:
            logger.warning("Local cluster already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._loop())
        logger.info("Local cluster started")

    async def stop(self):
        if not self.running:
            return

        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None

        logger.info("Local cluster stopped")

    async def _loop(self):
        while self.running:
            try:
                job = self._next_job()
                if job is None:
                    await asyncio.sleep(self.poll_interval)
                    continue
                # circuits run off the event loop; the record is posted back on it
                try:
                    record = await asyncio.to_thread(self.execute, job)
                except asyncio.CancelledError:
                    self._requeue(job)
                    raise
                self._post(record)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Local cluster worker error: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval)

    @asynccontextmanager
    async def running_in_background(self):
        await self.start()
        try:
            yield self
        finally:
            await self.stop()
