from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from shroud.ledger.models import LedgerEvent

# Ledger-visible transaction kinds
COMPUTATION_QUEUED = "ComputationQueued"
COMPUTATION_FINALIZED = "ComputationFinalized"
COMPUTATION_FAILED = "ComputationFailed"
DEFINITION_INITIALIZED = "DefinitionInitialized"
DEFINITION_FINALIZED = "DefinitionFinalized"

KNOWN_KINDS = {
    COMPUTATION_QUEUED,
    COMPUTATION_FINALIZED,
    COMPUTATION_FAILED,
    DEFINITION_INITIALIZED,
    DEFINITION_FINALIZED,
}


def _now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


# ---------- write ----------
def append_event(session: Session, kind: str, **payload) -> str:
    """
    Add an event row to the caller's unit of work; it commits (or rolls back)
    together with the state change it describes.
    """
    if kind not in KNOWN_KINDS:
        raise ValueError(f"Unknown event kind: {kind}")
    event_id = payload.pop("event_id", None) or str(uuid.uuid4())
    ts = payload.pop("ts", None) or _now()
    blob = json.dumps({"event_id": event_id, "kind": kind, "ts": ts, **payload}, separators=(",", ":"))
    session.add(LedgerEvent(id=event_id, kind=kind, ts=ts, payload=blob))
    return event_id


# ---------- read ----------
def events(session: Session, kind: Optional[str] = None, offset: Optional[int] = None) -> List[Dict[str, Any]]:
    stmt = select(LedgerEvent).order_by(LedgerEvent.ts, LedgerEvent.id)
    if kind:
        stmt = stmt.where(LedgerEvent.kind == kind)
    rows = [json.loads(r.payload) for r in session.scalars(stmt)]
    if offset is not None:
        rows = [r for r in rows if r.get("offset") == str(offset)]
    return rows


__all__ = [
    "COMPUTATION_QUEUED",
    "COMPUTATION_FINALIZED",
    "COMPUTATION_FAILED",
    "DEFINITION_INITIALIZED",
    "DEFINITION_FINALIZED",
    "append_event",
    "events",
]
