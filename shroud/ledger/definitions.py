from __future__ import annotations

import hashlib
from typing import Optional, TYPE_CHECKING

from sqlalchemy.orm import Session, sessionmaker

from shroud.errors import AlreadyInitialized, DefinitionNotReady
from shroud.ledger import eventlog as ev
from shroud.ledger.models import ComputationDefinitionRecord, utcnow
from shroud.ledger.types import ComputationKind, DefinitionHandle, DefinitionStatus
from shroud.logging_config import get_logger

if TYPE_CHECKING:
    from shroud.mpc.cluster import ClusterClient

logger = get_logger("ledger.definitions")

SOURCE_RAW = "raw"
SOURCE_OFFCHAIN = "offchain"
SOURCE_CLUSTER = "cluster"


def comp_def_offset(kind: ComputationKind | str) -> int:
    """u32 id of a circuit: first four bytes of sha256(name), little-endian."""
    name = ComputationKind(kind).value
    return int.from_bytes(hashlib.sha256(name.encode("utf-8")).digest()[:4], "little")


def _handle(row: ComputationDefinitionRecord) -> DefinitionHandle:
    return DefinitionHandle(
        kind=ComputationKind(row.kind),
        comp_def_offset=row.comp_def_offset,
        status=DefinitionStatus(row.status),
        source=row.source,
        circuit_hash=row.circuit_hash,
    )


class DefinitionRegistry:
    """
    Uninitialized -> Initialized -> Finalized, one definition per kind.

    Owned by the program context; a computation of a kind can only be queued
    once that kind's definition is Finalized.
    """

    def __init__(self, session_factory: sessionmaker, cluster: "ClusterClient"):
        self._session_factory = session_factory
        self._cluster = cluster

    def status(self, kind: ComputationKind | str) -> DefinitionStatus:
        with self._session_factory() as session:
            row = session.get(ComputationDefinitionRecord, ComputationKind(kind).value)
            return DefinitionStatus(row.status) if row else DefinitionStatus.UNINITIALIZED

    def get(self, kind: ComputationKind | str) -> Optional[DefinitionHandle]:
        with self._session_factory() as session:
            row = session.get(ComputationDefinitionRecord, ComputationKind(kind).value)
            return _handle(row) if row else None

    def init_definition(self, kind: ComputationKind | str) -> DefinitionHandle:
        kind = ComputationKind(kind)
        with self._session_factory() as session, session.begin():
            if session.get(ComputationDefinitionRecord, kind.value) is not None:
                raise AlreadyInitialized(f"Computation definition {kind.value!r} already initialized")
            row = ComputationDefinitionRecord(
                kind=kind.value,
                comp_def_offset=comp_def_offset(kind),
                status=DefinitionStatus.INITIALIZED.value,
            )
            session.add(row)
            ev.append_event(
                session, ev.DEFINITION_INITIALIZED, definition_kind=kind.value, comp_def_offset=row.comp_def_offset
            )
        logger.info("Initialized computation definition %s (offset=%d)", kind.value, row.comp_def_offset)
        return _handle(row)

    def finalize_definition(
        self,
        kind: ComputationKind | str,
        circuit: Optional[bytes] = None,
        offchain_source: bool = False,
    ) -> DefinitionHandle:
        """
        Bind a circuit to an initialized definition.

        - `circuit` bytes: raw upload, finalized immediately.
        - `offchain_source`: the cluster fetches the circuit from its off-chain
          registry; finalized only once it acknowledges.
        - neither: bind the cluster's built-in circuit.
        """
        kind = ComputationKind(kind)
        if circuit is not None and offchain_source:
            raise ValueError("pass either raw circuit bytes or offchain_source, not both")

        with self._session_factory() as session, session.begin():
            row = session.get(ComputationDefinitionRecord, kind.value)
            if row is None:
                raise DefinitionNotReady(f"Computation definition {kind.value!r} is not initialized")
            if row.status == DefinitionStatus.FINALIZED.value:
                raise AlreadyInitialized(f"Computation definition {kind.value!r} already finalized")

            if circuit is not None:
                if not circuit:
                    raise ValueError("raw circuit upload is empty")
                row.source = SOURCE_RAW
                row.circuit_hash = hashlib.sha256(bytes(circuit)).hexdigest()
            elif offchain_source:
                if not self._cluster.source_circuit(kind, row.comp_def_offset):
                    raise DefinitionNotReady(
                        f"Cluster did not acknowledge off-chain circuit for {kind.value!r}"
                    )
                row.source = SOURCE_OFFCHAIN
            else:
                row.source = SOURCE_CLUSTER

            row.status = DefinitionStatus.FINALIZED.value
            row.finalized_at = utcnow()
            ev.append_event(session, ev.DEFINITION_FINALIZED, definition_kind=kind.value, source=row.source)
        logger.info("Finalized computation definition %s (source=%s)", kind.value, row.source)
        return _handle(row)

    @staticmethod
    def require_ready(session: Session, kind: ComputationKind) -> None:
        row = session.get(ComputationDefinitionRecord, kind.value)
        if row is None or row.status != DefinitionStatus.FINALIZED.value:
            state = row.status if row else DefinitionStatus.UNINITIALIZED.value
            raise DefinitionNotReady(f"Computation definition {kind.value!r} is {state}, not finalized")
