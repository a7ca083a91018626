# shroud/api/app.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shroud.errors import (
    AccountBusy,
    AccountNotFound,
    AlreadyFinalized,
    AlreadyInitialized,
    ClusterUnavailable,
    ComputationFailed,
    ComputationNotFound,
    ConfidentialError,
    DefinitionNotReady,
    DuplicateOffset,
    FinalizationTimeout,
    InvalidRequest,
)
from shroud.ledger.program import ConfidentialTokenProgram
from shroud.ledger.types import ComputationKind
from shroud.ledger.wire import FinalizeRecord
from shroud.logging_config import get_logger, setup_logging
from shroud.mpc.cluster import LocalCluster
from shroud.settings import ProtocolSettings

from .schemas_api import (
    AccountRes,
    ComputationRes,
    CustodyRes,
    DefinitionFinalizeReq,
    DefinitionRes,
    FinalizeCallbackReq,
    MxeRes,
    PendingRes,
    TransferReq,
    WrapReq,
)

logger = get_logger("api")

# most specific first
ERROR_STATUS = (
    (DefinitionNotReady, 412),
    (AccountNotFound, 404),
    (ComputationNotFound, 404),
    (DuplicateOffset, 409),
    (AccountBusy, 409),
    (AlreadyInitialized, 409),
    (AlreadyFinalized, 409),
    (ComputationFailed, 422),
    (FinalizationTimeout, 504),
    (ClusterUnavailable, 503),
)


def status_for(exc: ConfidentialError) -> int:
    for cls, code in ERROR_STATUS:
        if isinstance(exc, cls):
            return code
    return 400


def _hex(value: str, field: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError:
        raise InvalidRequest(f"{field} must be hex") from None


def _kind(kind: str) -> ComputationKind:
    try:
        return ComputationKind(kind)
    except ValueError:
        raise InvalidRequest(f"Unknown computation kind {kind!r}") from None


def create_app(program: Optional[ConfidentialTokenProgram] = None, run_cluster: bool = False) -> FastAPI:
    """
    Build the HTTP surface over a program context.

    Without `program` one is built from the SHROUD_* environment. With
    `run_cluster` a LocalCluster runs as a background task for the app's lifetime.
    """
    if program is None:
        settings = ProtocolSettings.from_env()
        setup_logging(settings.log_level)
        program = ConfidentialTokenProgram.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        worker = program.cluster if run_cluster and isinstance(program.cluster, LocalCluster) else None
        if worker is not None:
            await worker.start()
        try:
            yield
        finally:
            if worker is not None:
                await worker.stop()

    app = FastAPI(title="Shroud Confidential Balance API", version="0.1.0", lifespan=lifespan)
    app.state.program = program

    @app.exception_handler(ConfidentialError)
    async def _confidential_error(request: Request, exc: ConfidentialError):
        code = status_for(exc)
        if code >= 500:
            logger.warning(f"{request.method} {request.url.path} -> {code}: {exc}")
        body = {"error": type(exc).__name__, "detail": str(exc)}
        if isinstance(exc, ComputationFailed):
            body["reason"] = exc.reason
        return JSONResponse(status_code=code, content=body)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "InvalidRequest", "detail": str(exc.errors())})

    # =========================
    # Definitions
    # =========================
    @app.post("/definitions/{kind}/init", response_model=DefinitionRes)
    def init_definition(kind: str):
        return DefinitionRes.from_handle(program.init_comp_def(_kind(kind)))

    @app.post("/definitions/{kind}/finalize", response_model=DefinitionRes)
    def finalize_definition(kind: str, req: Optional[DefinitionFinalizeReq] = None):
        req = req or DefinitionFinalizeReq()
        circuit = _hex(req.circuit_hex, "circuit_hex") if req.circuit_hex is not None else None
        try:
            handle = program.finalize_comp_def(_kind(kind), circuit=circuit, offchain_source=req.offchain_source)
        except ValueError as e:
            raise InvalidRequest(str(e)) from e
        return DefinitionRes.from_handle(handle)

    @app.get("/definitions/{kind}", response_model=DefinitionRes)
    def get_definition(kind: str):
        k = _kind(kind)
        handle = program.definitions.get(k)
        if handle is None:
            raise DefinitionNotReady(f"Computation definition {k.value!r} is not initialized")
        return DefinitionRes.from_handle(handle)

    # =========================
    # Instructions
    # =========================
    @app.get("/mxe", response_model=MxeRes)
    def mxe_public_key():
        return MxeRes(public_key=program.mxe_public_key.hex())

    @app.post("/wrap", response_model=PendingRes)
    def wrap(req: WrapReq):
        handle = program.wrap(
            req.payer,
            req.offset,
            req.amount,
            _hex(req.encryption_pubkey, "encryption_pubkey"),
            _hex(req.nonce, "nonce"),
        )
        return PendingRes.from_handle(handle)

    @app.post("/transfer", response_model=PendingRes)
    def transfer(req: TransferReq):
        return PendingRes.from_handle(program.transfer(req.sender, req.receiver, req.offset, req.amount))

    @app.post("/callbacks/finalize", response_model=ComputationRes)
    def finalize_callback(req: FinalizeCallbackReq):
        record = FinalizeRecord.from_bytes(_hex(req.record_hex, "record_hex"))
        return ComputationRes.from_outcome(program.finalize(record))

    # =========================
    # Reads
    # =========================
    @app.get("/computations/{offset}", response_model=ComputationRes)
    def get_computation(offset: int):
        return ComputationRes.from_outcome(program.computation(offset))

    @app.get("/computations/{offset}/await", response_model=ComputationRes)
    async def await_computation(offset: int, timeout: Optional[float] = Query(None, gt=0)):
        return ComputationRes.from_outcome(await program.await_finalization(offset, timeout=timeout))

    @app.get("/accounts/{owner}", response_model=AccountRes)
    def get_account(owner: str):
        state = program.account(owner)
        if state is None:
            raise AccountNotFound(f"No encrypted balance account for {owner!r}")
        return AccountRes.from_state(state)

    @app.get("/custody", response_model=CustodyRes)
    def custody():
        return CustodyRes(authority=program.custody.authority, balance=program.custody_balance())

    return app
