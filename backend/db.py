import threading
from contextlib import contextmanager

from psycopg2 import pool as pg_pool

from settings import SETTINGS, Settings

_POOL: pg_pool.SimpleConnectionPool | None = None
_POOL_LOCK = threading.Lock()


def init_pool(settings: Settings = SETTINGS) -> pg_pool.SimpleConnectionPool:
    global _POOL
    with _POOL_LOCK:
        if _POOL is None:
            if not settings.database_url:
                raise RuntimeError("DATABASE_URL environment variable is not set")
            _POOL = pg_pool.SimpleConnectionPool(
                settings.db_pool_min,
                settings.db_pool_max,
                dsn=settings.database_url,
                sslmode=settings.db_sslmode,
                connect_timeout=10,
            )
        return _POOL


def get_connection():
    return init_pool().getconn()


def release_connection(conn):
    if conn and _POOL is not None:
        _POOL.putconn(conn)


@contextmanager
def cursor(connect=get_connection, release=release_connection):
    """Yield a cursor; commit on success, roll back on any exception."""
    conn = connect()
    cur = conn.cursor()
    try:
        yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cur.close()
        release(conn)


SCHEMA = """
CREATE TABLE IF NOT EXISTS proposals (
    id SERIAL PRIMARY KEY,
    proposal_id BIGINT NOT NULL,
    contract_address TEXT NOT NULL,
    title VARCHAR(200) NOT NULL,
    description VARCHAR(2000) NOT NULL,
    creator TEXT NOT NULL,
    transaction_hash TEXT,
    block_number BIGINT NOT NULL DEFAULT 0,
    gas_used BIGINT NOT NULL DEFAULT 0,
    deadline BIGINT NOT NULL DEFAULT 0,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    vote_count INTEGER NOT NULL DEFAULT 0 CHECK (vote_count >= 0),
    voters TEXT[] NOT NULL DEFAULT '{}',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (contract_address, proposal_id)
);

CREATE TABLE IF NOT EXISTS votes (
    id CHAR(24) PRIMARY KEY,
    proposal_id BIGINT NOT NULL,
    contract_address TEXT NOT NULL,
    voter_address TEXT NOT NULL,
    transaction_hash TEXT NOT NULL,
    block_number BIGINT NOT NULL,
    gas_used BIGINT NOT NULL,
    gas_price TEXT NOT NULL,
    timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    is_verified BOOLEAN NOT NULL DEFAULT FALSE,
    verification_hash TEXT,
    UNIQUE (contract_address, proposal_id, voter_address)
);
"""


def ensure_schema() -> None:
    with cursor() as cur:
        cur.execute(SCHEMA)
        cur.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS proposals_unique_transaction_hash
            ON proposals (transaction_hash)
            WHERE transaction_hash IS NOT NULL;
            """
        )
        cur.execute("CREATE UNIQUE INDEX IF NOT EXISTS votes_unique_transaction_hash ON votes (transaction_hash);")
        cur.execute("CREATE INDEX IF NOT EXISTS proposals_active_created ON proposals (is_active, created_at DESC);")
        cur.execute("CREATE INDEX IF NOT EXISTS votes_voter_address ON votes (voter_address, timestamp DESC);")
        cur.execute("CREATE INDEX IF NOT EXISTS votes_timestamp ON votes (timestamp DESC);")
