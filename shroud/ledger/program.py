"""
The confidential token program: one context object owning the ledger state
and its collaborators.

    program = ConfidentialTokenProgram.local()
    program.setup_definitions()
    handle = program.wrap(payer, offset, amount, pubkey, nonce)
    program.cluster.process_pending()
    outcome = asyncio.run(program.await_finalization(handle.offset))
"""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy.engine import Engine

from shroud.ledger import eventlog as ev
from shroud.ledger.balances import BalanceStore
from shroud.ledger.config import create_db_engine, init_database, make_session_factory
from shroud.ledger.coordinator import ComputationCoordinator
from shroud.ledger.custody import CustodyPool, InMemoryTokenLedger, TokenLedger
from shroud.ledger.definitions import DefinitionRegistry
from shroud.ledger.operations import TransferOperation, WrapOperation
from shroud.ledger.types import (
    AccountState,
    ComputationKind,
    ComputationOutcome,
    ComputationStatus,
    DefinitionHandle,
    DefinitionStatus,
    PendingHandle,
)
from shroud.ledger.wire import FinalizeRecord
from shroud.logging_config import get_logger
from shroud.mpc.cluster import ClusterClient, LocalCluster
from shroud.mpc.http_client import HttpClusterClient
from shroud.settings import ProtocolSettings

logger = get_logger("ledger.program")


class ConfidentialTokenProgram:
    def __init__(
        self,
        settings: ProtocolSettings,
        cluster: ClusterClient,
        token_ledger: TokenLedger,
        engine: Optional[Engine] = None,
    ):
        self.settings = settings
        self.engine = engine or create_db_engine(settings.database_url)
        init_database(self.engine)
        self.session_factory = make_session_factory(self.engine)

        self.cluster = cluster
        self.token_ledger = token_ledger
        self.custody = CustodyPool(token_ledger)
        self.balances = BalanceStore(self.session_factory)
        self.definitions = DefinitionRegistry(self.session_factory, cluster)
        self.coordinator = ComputationCoordinator(
            self.session_factory, cluster, self.definitions, poll_interval=settings.poll_interval
        )
        self.wrap_operation = WrapOperation(self.coordinator, self.balances, self.custody)
        self.transfer_operation = TransferOperation(self.coordinator, self.balances)

        # in-process clusters call straight back into the coordinator
        if isinstance(cluster, LocalCluster):
            cluster.bind(self.coordinator.finalize)

    @classmethod
    def local(
        cls,
        settings: Optional[ProtocolSettings] = None,
        token_ledger: Optional[TokenLedger] = None,
        cluster: Optional[LocalCluster] = None,
    ) -> "ConfidentialTokenProgram":
        """In-process deployment: LocalCluster plus an in-memory token ledger unless given."""
        return cls(
            settings or ProtocolSettings(),
            cluster or LocalCluster(poll_interval=(settings or ProtocolSettings()).poll_interval),
            token_ledger or InMemoryTokenLedger(),
        )

    @classmethod
    def from_settings(
        cls, settings: ProtocolSettings, token_ledger: Optional[TokenLedger] = None
    ) -> "ConfidentialTokenProgram":
        if settings.cluster_url:
            cluster: ClusterClient = HttpClusterClient(
                settings.cluster_url,
                max_retries=settings.cluster_max_retries,
                timeout=settings.cluster_timeout,
            )
        else:
            cluster = LocalCluster(poll_interval=settings.poll_interval)
        return cls(settings, cluster, token_ledger or InMemoryTokenLedger())

    @property
    def mxe_public_key(self) -> bytes:
        return self.cluster.public_key

    # ===== Definitions =====
    def init_comp_def(self, kind: ComputationKind | str) -> DefinitionHandle:
        return self.definitions.init_definition(kind)

    def finalize_comp_def(
        self, kind: ComputationKind | str, circuit: Optional[bytes] = None, offchain_source: bool = False
    ) -> DefinitionHandle:
        return self.definitions.finalize_definition(kind, circuit=circuit, offchain_source=offchain_source)

    def setup_definitions(self, offchain_source: bool = False) -> List[DefinitionHandle]:
        """Initialize and finalize every definition that is not finalized yet."""
        handles = []
        for kind in ComputationKind:
            status = self.definitions.status(kind)
            if status == DefinitionStatus.UNINITIALIZED:
                self.init_comp_def(kind)
            if status != DefinitionStatus.FINALIZED:
                self.finalize_comp_def(kind, offchain_source=offchain_source)
            handles.append(self.definitions.get(kind))
        return handles

    # ===== Instructions =====
    def wrap(self, payer: str, offset: int, amount: int, encryption_pubkey: bytes, nonce: bytes) -> PendingHandle:
        return self.wrap_operation.wrap(payer, offset, amount, encryption_pubkey, nonce)

    def transfer(self, sender: str, receiver: str, offset: int, amount: int) -> PendingHandle:
        return self.transfer_operation.transfer(sender, receiver, offset, amount)

    def finalize(self, record: FinalizeRecord) -> ComputationOutcome:
        """Callback instruction: the cluster posts its result for one offset."""
        return self.coordinator.finalize(record)

    async def await_finalization(self, offset: int, timeout: Optional[float] = None) -> ComputationOutcome:
        return await self.coordinator.await_finalization(
            offset, self.settings.finalize_timeout if timeout is None else timeout
        )

    # ===== Reads =====
    def account(self, owner: str) -> Optional[AccountState]:
        return self.balances.get(owner)

    def accounts(self) -> List[AccountState]:
        return self.balances.all_accounts()

    def computation(self, offset: int) -> ComputationOutcome:
        return self.coordinator.outcome(offset)

    def computation_status(self, offset: int) -> ComputationStatus:
        return self.coordinator.status(offset)

    def custody_balance(self) -> int:
        return self.custody.balance()

    def events(self, kind: Optional[str] = None, offset: Optional[int] = None) -> List[dict]:
        with self.session_factory() as session:
            return ev.events(session, kind=kind, offset=offset)

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Ledger engine disposed")
