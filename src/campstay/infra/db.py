"""psycopg2 connection and transaction helpers.

Every booking mutation runs inside one ``txn()``: the row locks taken with
``select_one(..., lock=True)`` are held until the whole edit commits or
rolls back.
"""

import os
from contextlib import contextmanager
from typing import Any, Iterator, Sequence
from urllib.parse import urlparse

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

Params = Sequence[Any] | None


def _dsn_has_password(dsn: str) -> bool:
    if "://" in dsn:
        return bool(urlparse(dsn).password)
    return any(part.startswith("password=") for part in dsn.split())


def get_conn() -> PgConnection:
    """Open a connection to DATABASE_URL.

    DB_PASSWORD is used when the DSN carries no password of its own
    (secret-manager deployments keep it out of the DSN).

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")

    db_password = os.environ.get("DB_PASSWORD")
    if db_password and not _dsn_has_password(dsn):
        return psycopg2.connect(dsn, password=db_password)
    return psycopg2.connect(dsn)


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Yield a cursor; commit on success, roll back on any exception.

    Without ``conn`` a fresh connection is opened and closed on exit.

    Example:
        with txn() as cur:
            add_tent(booking_id, ..., cur=cur)
            add_menu_product(booking_id, ..., cur=cur)
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()


def select_one(
    cur: PgCursor,
    query: str,
    params: Params = None,
    *,
    lock: bool = False,
) -> tuple[Any, ...] | None:
    """Run a single-row SELECT, optionally as SELECT ... FOR UPDATE.

    The lock is held until the surrounding transaction ends.
    """
    if lock:
        query = query.rstrip().rstrip(";") + " FOR UPDATE"
    cur.execute(query, params)
    return cur.fetchone()


def fetchall(cur: PgCursor, query: str, params: Params = None) -> list[tuple[Any, ...]]:
    cur.execute(query, params)
    return cur.fetchall()
