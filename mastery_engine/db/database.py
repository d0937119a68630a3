"""Database access for SQLite (aiosqlite) and PostgreSQL (asyncpg).

Backend is selected via the DATABASE_URL setting:
  - starts with "postgresql://" → asyncpg
  - absent / empty             → aiosqlite (uses DATABASE_PATH)

Store helpers are written once against the aiosqlite interface; the
PostgreSQL wrapper converts:
  - ? placeholders → $1, $2, …
  - cursor.lastrowid → RETURNING id
  - dict-style row access by column name

Writes that must land together go through `transaction(db)`.
"""

import re
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, date
from pathlib import Path

import aiosqlite
from alembic import command
from alembic.config import Config

from mastery_engine.config import settings

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"


def _is_postgres() -> bool:
    return settings.database_url.startswith("postgresql://")


# ── SQLite ────────────────────────────────────────────────────────────

async def _connect_sqlite():
    db = await aiosqlite.connect(settings.database_path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")
    await db.execute("PRAGMA busy_timeout = 5000")
    return db


# ── PostgreSQL wrapper ────────────────────────────────────────────────

_pg_pool = None


async def _get_pg_pool():
    global _pg_pool
    if _pg_pool is None:
        import asyncpg
        _pg_pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=2,
            max_size=10,
        )
    return _pg_pool


def _sqlite_compat(value):
    """Timestamps come back as ISO strings on both backends."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class PgRow:
    """asyncpg Record with the sqlite3.Row interface (keys() + __getitem__)."""

    __slots__ = ("_record",)

    def __init__(self, record):
        self._record = record

    def __getitem__(self, key):
        return _sqlite_compat(self._record[key])

    def __contains__(self, key):
        return key in self._record.keys()

    def __len__(self):
        return len(self._record)

    def keys(self):
        return self._record.keys()

    def get(self, key, default=None):
        try:
            return _sqlite_compat(self._record[key])
        except (KeyError, IndexError):
            return default


# ? placeholders outside quoted strings
_PARAM_RE = re.compile(r"'[^']*'|(\?)")


def _convert_placeholders(sql: str) -> str:
    counter = [0]

    def _replacer(match):
        if match.group(1) is None:
            return match.group(0)
        counter[0] += 1
        return f"${counter[0]}"

    return _PARAM_RE.sub(_replacer, sql)


class PgCursor:
    """Result of PgConnection.execute(), shaped like an aiosqlite cursor."""

    __slots__ = ("_rows", "_lastrowid", "_idx", "rowcount")

    def __init__(self, rows=None, lastrowid=None, rowcount=-1):
        self._rows = rows or []
        self._lastrowid = lastrowid
        self._idx = 0
        self.rowcount = rowcount

    @property
    def lastrowid(self):
        return self._lastrowid

    async def fetchone(self):
        if self._idx < len(self._rows):
            row = self._rows[self._idx]
            self._idx += 1
            return PgRow(row) if row is not None else None
        return None

    async def fetchall(self):
        remaining = self._rows[self._idx:]
        self._idx = len(self._rows)
        return [PgRow(r) for r in remaining]


class PgConnection:
    """asyncpg connection behind an aiosqlite-compatible interface."""

    def __init__(self, conn):
        self._conn = conn

    @property
    def raw(self):
        return self._conn

    async def execute(self, sql: str, params=None):
        pg_sql = _convert_placeholders(sql)
        args = tuple(params) if params else ()
        stripped = pg_sql.lstrip().upper()

        if stripped.startswith("INSERT"):
            if "RETURNING" not in stripped:
                pg_sql = pg_sql.rstrip().rstrip(";") + " RETURNING id"
            row = await self._conn.fetchrow(pg_sql, *args)
            return PgCursor(rows=[row] if row else [], lastrowid=row["id"] if row else None)
        if stripped.startswith("SELECT") or "RETURNING" in stripped:
            rows = await self._conn.fetch(pg_sql, *args)
            return PgCursor(rows=rows, rowcount=len(rows))
        status = await self._conn.execute(pg_sql, *args)
        # asyncpg status strings look like "UPDATE 3"
        tail = status.rsplit(" ", 1)[-1] if status else ""
        return PgCursor(rowcount=int(tail) if tail.isdigit() else -1)

    async def commit(self):
        # Statements outside transaction() autocommit
        pass

    async def rollback(self):
        pass

    async def close(self):
        # Pool release is handled by get_db()
        pass


# ── Transactions ──────────────────────────────────────────────────────

@asynccontextmanager
async def transaction(db):
    """Run the enclosed writes atomically.

    SQLite takes the write lock up front (BEGIN IMMEDIATE) so two writers
    never interleave a read-modify-write on the same path.
    """
    if isinstance(db, PgConnection):
        async with db.raw.transaction():
            yield db
        return

    if db.in_transaction:
        await db.commit()
    await db.execute("BEGIN IMMEDIATE")
    try:
        yield db
    except BaseException:
        await db.rollback()
        raise
    await db.commit()


def is_unique_violation(exc: BaseException) -> bool:
    if isinstance(exc, aiosqlite.IntegrityError):
        return "UNIQUE" in str(exc).upper()
    return type(exc).__name__ == "UniqueViolationError"


# ── Public API ────────────────────────────────────────────────────────

async def get_db() -> AsyncGenerator:
    """FastAPI dependency that yields a database connection and closes it after the request."""
    if _is_postgres():
        pool = await _get_pg_pool()
        conn = await pool.acquire()
        try:
            yield PgConnection(conn)
        finally:
            await pool.release(conn)
    else:
        db = await _connect_sqlite()
        try:
            yield db
        finally:
            await db.close()


def _run_alembic_upgrade():
    """Run Alembic migrations to head (synchronous, once at startup)."""
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))

    if _is_postgres():
        alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)
    else:
        alembic_cfg.set_main_option("sqlalchemy.url", f"sqlite:///{settings.database_path}")

    command.upgrade(alembic_cfg, "head")


async def init_db():
    if _is_postgres():
        logger.info("Using PostgreSQL backend: %s", settings.database_url.split("@")[-1])
    else:
        db_path = Path(settings.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Using SQLite backend: %s", settings.database_path)

    _run_alembic_upgrade()


async def close_db():
    """Shutdown hook: close the PostgreSQL pool if one was opened."""
    global _pg_pool
    if _pg_pool is not None:
        await _pg_pool.close()
        _pg_pool = None
