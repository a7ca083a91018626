"""
Engine and session wiring for the ledger database.

    engine = create_db_engine("sqlite+pysqlite:///ledger.db")
    init_database(engine)
    SessionLocal = make_session_factory(engine)
"""
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shroud.ledger.models import Base
from shroud.logging_config import get_logger

logger = get_logger("ledger.config")


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/").endswith("sqlite:") or url.endswith("://"))


def create_db_engine(url: str, echo: bool = False) -> Engine:
    if _is_memory_sqlite(url):
        # one shared connection, otherwise every checkout sees an empty database
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False, "timeout": 30})
    return create_engine(url, echo=echo, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    # snapshots are read after commit, keep loaded attributes
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_database(engine: Engine) -> None:
    Base.metadata.create_all(engine)
    logger.info("Ledger schema ready on %s", engine.url.render_as_string(hide_password=True))
