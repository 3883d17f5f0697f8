"""
core/database.py -- Process-wide SQLAlchemy engine registry.

Every store (auth/store.py, vault/store.py) gets its engine from get_engine()
instead of calling create_engine() itself. One engine (and therefore one
connection pool) exists per database URL for the lifetime of the process.

Initialization is lazy and idempotent: the first caller creates the engine,
later callers reuse it. The lock with a second lookup inside it keeps two
concurrent first requests from opening duplicate pools.

SQLite specifics:
  check_same_thread=False -- FastAPI runs sync handlers in a thread pool, so a
      pooled connection may be used from a different thread than the one that
      opened it.
  WAL journal mode -- readers proceed without blocking during writes. Set per
      connection because SQLite PRAGMAs are not inherited by new connections.

Layer rule: core/ is the kernel. No imports from api/, auth/, or vault/.
"""

from __future__ import annotations

import logging
import threading

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine

logger = logging.getLogger("nopass.database")

_engines: dict[str, Engine] = {}
_lock = threading.Lock()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _create(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and "mode=memory" not in db_url and ":memory:" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def get_engine(db_url: str) -> Engine:
    """Return the shared engine for db_url, creating it on first use."""
    engine = _engines.get(db_url)
    if engine is not None:
        return engine
    with _lock:
        engine = _engines.get(db_url)
        if engine is None:
            engine = _create(db_url)
            _engines[db_url] = engine
            logger.info("Database engine initialized (%s)", engine.url.render_as_string(hide_password=True))
    return engine


def dispose_engine(db_url: str) -> None:
    """Close the pool for db_url and forget the engine. Safe to call twice."""
    with _lock:
        engine = _engines.pop(db_url, None)
    if engine is not None:
        engine.dispose()


def ping(db_url: str) -> bool:
    """Return True if a trivial query succeeds on the shared engine."""
    try:
        with get_engine(db_url).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("Database ping failed")
        return False
