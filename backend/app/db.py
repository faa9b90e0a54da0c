from contextlib import contextmanager

from psycopg.rows import dict_row
# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .config import settings
from .logging_utils import json_log

# Opened on first use: importing routers (tests, scripts) must not connect.
_pool = ConnectionPool(
    conninfo=settings.db_url,
    min_size=settings.db_pool_min,
    max_size=settings.db_pool_max,
    kwargs={"row_factory": dict_row},
    open=False,
)


@contextmanager
def _pooled_conn(pool: ConnectionPool):
    # `with get_conn() as conn:` commits on success, rolls back on exception and
    # hands the connection back. pool.connection() already runs the block in a
    # transaction; `with conn:` inside it would close the connection.
    if pool.closed:
        pool.open()
    with pool.connection() as conn:
        yield conn


def get_conn():
    return _pooled_conn(_pool)


def close_pools() -> None:
    # Best-effort shutdown hook (e.g. uvicorn shutdown).
    try:
        _pool.close()
    except Exception as exc:
        json_log("warning", "db.pool_close_failed", error=str(exc))
