# db.py
import logging
import threading
from contextlib import contextmanager

import psycopg2
import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

from settings import settings


logger = logging.getLogger("fundrelease.db")

_pool: ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def init_pool() -> ThreadedConnectionPool:
    """
    Create the shared pool on first use. Route handlers run on the server's
    worker threads, so the pool must be the thread-safe variant.
    """
    global _pool
    with _pool_lock:
        if _pool is None:
            if not (settings.DATABASE_URL or "").strip():
                raise RuntimeError("DATABASE_URL is not set.")
            psycopg2.extras.register_uuid()
            _pool = ThreadedConnectionPool(
                minconn=settings.DB_POOL_MIN,
                maxconn=settings.DB_POOL_MAX,
                dsn=settings.DATABASE_URL,
                connect_timeout=5,
            )
            logger.info("db pool ready min=%s max=%s", settings.DB_POOL_MIN, settings.DB_POOL_MAX)
        return _pool


def close_pool() -> None:
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.closeall()
            _pool = None


@contextmanager
def get_conn():
    """
    One transaction per block: commit on clean exit, rollback on any error.
    A connection that broke mid-transaction is discarded instead of pooled.
    """
    pool = _pool or init_pool()
    conn = pool.getconn()
    broken = False
    try:
        with conn.cursor() as cur:
            cur.execute("SET statement_timeout = %s;", (f"{int(settings.DB_STATEMENT_TIMEOUT_MS)}ms",))
            cur.execute("SET application_name = 'fundrelease';")

        yield conn
        conn.commit()

    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        broken = True
        raise

    except Exception:
        conn.rollback()
        raise

    finally:
        pool.putconn(conn, close=broken or bool(conn.closed))
