import sqlite3
import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from trustforge.core.config import settings

logger = logging.getLogger(__name__)

# Global Connection Pool (asyncpg pools are bound to the loop that created them)
async_pg_pool = None

_PLACEHOLDER_PATTERN = r"(\'[^\']*\'|\"[^\"]*\")|\?"


def format_ts(moment: datetime) -> str:
    """Fixed-width UTC timestamp; stored as TEXT so string order is time order."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def utcnow_iso() -> str:
    return format_ts(datetime.now(timezone.utc))


def to_pg_placeholders(sql: str) -> str:
    """Convert ``?`` placeholders to asyncpg's ``$n``, leaving quoted literals alone."""
    counter = 0

    def replace_placeholder(match):
        nonlocal counter
        if match.group(1):
            return match.group(1)
        counter += 1
        return f"${counter}"

    return re.sub(_PLACEHOLDER_PATTERN, replace_placeholder, sql)


# ─── ASYNC PostgreSQL Wrapper ────────────────────────────────────────────────
class AsyncPostgresCursor:
    """Wraps asyncpg connection to support '?' placeholders"""
    def __init__(self, conn):
        self.conn = conn
        self._last_result = None

    async def execute(self, sql: str, params: Tuple = ()) -> Any:
        self._last_result = await self.conn.fetch(to_pg_placeholders(sql), *params)
        return self

    async def fetchone(self) -> Optional[Any]:
        if self._last_result:
            return self._last_result[0]
        return None

    async def fetchall(self) -> List[Any]:
        return self._last_result or []

    async def close(self):
        pass  # Nothing to close for asyncpg cursor-less execution


class AsyncPostgresConnection:
    """Wraps asyncpg pool connection"""
    def __init__(self, conn, pool=None):
        self.conn = conn
        self.pool = pool

    def cursor(self):
        return AsyncPostgresCursor(self.conn)

    async def execute(self, sql: str, params: Tuple = ()) -> AsyncPostgresCursor:
        cursor = self.cursor()
        await cursor.execute(sql, params)
        return cursor

    async def commit(self):
        pass  # asyncpg auto-commits each statement outside an explicit transaction

    async def close(self):
        if self.pool:
            await self.pool.release(self.conn)
        else:
            await self.conn.close()


# ─── ASYNC SQLite Wrapper ────────────────────────────────────────────────────
class AsyncSqliteConnection:
    """Wraps aiosqlite connection"""
    def __init__(self, conn):
        self.conn = conn

    async def execute(self, sql: str, params: Tuple = ()):
        return await self.conn.execute(sql, params)

    async def commit(self):
        await self.conn.commit()

    async def close(self):
        await self.conn.close()


# ─── Initialization ──────────────────────────────────────────────────────────
def init_db():
    """Sync Initialization (Schema Creation) - Runs on Startup"""
    if settings.DATABASE_URL:
        _init_postgres_sync()
    else:
        _init_sqlite_sync()


async def init_async_db():
    """Async Initialization (Pool Creation)"""
    global async_pg_pool
    if settings.DATABASE_URL and not async_pg_pool:
        import asyncpg
        async_pg_pool = await asyncpg.create_pool(
            dsn=settings.DATABASE_URL,
            min_size=1,
            max_size=20
        )
        logger.info("Async PostgreSQL Pool initialized.")


async def close_async_db():
    """Async Cleanup"""
    global async_pg_pool
    if async_pg_pool:
        await async_pg_pool.close()
        async_pg_pool = None
        logger.info("Async PostgreSQL Pool closed.")


# ─── Sync Implementation Details ─────────────────────────────────────────────
def _init_sqlite_sync():
    conn = sqlite3.connect(settings.SQLITE_PATH)
    try:
        cursor = conn.cursor()
        _create_schema(cursor)
        conn.commit()
    finally:
        conn.close()


def _init_postgres_sync():
    import psycopg2

    conn = psycopg2.connect(settings.DATABASE_URL)
    try:
        cursor = conn.cursor()
        _create_schema(cursor)
        conn.commit()
    except Exception as e:
        conn.rollback()
        logger.error(f"Postgres Init Failed: {e}")
        raise
    finally:
        conn.close()


def _create_schema(cursor):
    """Shared schema. Timestamps are ISO-8601 TEXT written by the application."""
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS scans (
        scan_id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        filename TEXT NOT NULL,
        file_ref TEXT NOT NULL,
        status TEXT NOT NULL,
        result_json TEXT,
        trust_score INTEGER,
        recommendations TEXT,
        report_ref TEXT,
        error TEXT,
        version INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_scans_status ON scans(status)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_scans_owner ON scans(owner_id)")


# ─── Context Factories ───────────────────────────────────────────────────────
@asynccontextmanager
async def get_async_db_connection():
    """Async Connection (FastAPI and the worker's event loop)"""
    if settings.DATABASE_URL:
        if not async_pg_pool:
            await init_async_db()
        async with async_pg_pool.acquire() as conn:
            yield AsyncPostgresConnection(conn)
    else:
        import aiosqlite
        async with aiosqlite.connect(settings.SQLITE_PATH) as conn:
            conn.row_factory = aiosqlite.Row
            yield AsyncSqliteConnection(conn)
