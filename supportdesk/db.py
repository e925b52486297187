"""PostgreSQL access for the support backend.

All services share one ``ThreadedConnectionPool``. Borrow a connection with
``get_db()``; commit explicitly, a failing block is rolled back::

    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("UPDATE chats SET status = 'archived' WHERE id = %s", (chat_id,))
        conn.commit()
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

import psycopg2
import psycopg2.pool

from .config import Config

logger = logging.getLogger("support.db")

_pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None


def init_pool() -> psycopg2.pool.ThreadedConnectionPool:
    """Open the shared pool if it is not open yet and return it."""
    global _pool
    if _pool is None:
        _pool = psycopg2.pool.ThreadedConnectionPool(
            Config.DB_POOL_MIN, Config.DB_POOL_MAX, dsn=Config.PG_CONN
        )
        logger.info(
            "Connected to PostgreSQL at %s (pool %d-%d)",
            Config.PG_CONN.split("@")[-1],
            Config.DB_POOL_MIN,
            Config.DB_POOL_MAX,
        )
    return _pool


def close_pool() -> None:
    global _pool
    if _pool is None:
        return
    _pool.closeall()
    _pool = None
    logger.info("PostgreSQL pool closed")


def pool_status() -> Dict[str, Any]:
    """Pool settings and state, reported by the admin health endpoint."""
    return {
        "initialised": _pool is not None and not _pool.closed,
        "min_connections": Config.DB_POOL_MIN,
        "max_connections": Config.DB_POOL_MAX,
    }


@contextmanager
def get_db():
    """Borrow a pooled connection for the duration of the block.

    The worker and seed script run without the API startup hook, so the
    pool is opened on first use.
    """
    pool = init_pool()
    conn = pool.getconn()
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)
