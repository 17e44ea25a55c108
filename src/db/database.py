# manages connection to db, provides helper methods internal to db package
import asyncio
import os.path
from contextlib import asynccontextmanager
from sqlite3 import Row

import aiosqlite

from utils import config
from utils.logger import get_logger

_logger = get_logger(__name__)

DB_PATH = config.DB_PATH
_HERE = os.path.dirname(__file__)

# run only on a database without an orders table; an older order schema is kept
DB_INIT_SCRIPTS = [
    os.path.join(_HERE, "orders.sql"),
]
# idempotent, run against every database on first connect
DB_ENSURE_SCRIPTS = [
    os.path.join(_HERE, "accounts.sql"),
]

_initialized = False
_init_lock = asyncio.Lock()


async def _run_scripts(conn: aiosqlite.Connection, scripts) -> None:
    for script in scripts:
        if not os.path.exists(script) or os.path.getsize(script) == 0:
            continue
        _logger.info(f"Initializing database with script {script}...")
        with open(script, "r") as f:
            await conn.executescript(f.read())
    await conn.commit()


async def table_exists(conn: aiosqlite.Connection, table_name: str) -> bool:
    cur = await conn.execute(
        """
        SELECT name
        FROM sqlite_master
        WHERE type = 'table'
          AND name = ?;
        """,
        (table_name,),
    )
    row = await cur.fetchone()
    await cur.close()
    return row is not None


@asynccontextmanager
async def connect() -> aiosqlite.Connection:
    """Async context manager yielding an aiosqlite connection with FK enabled.

    On first use, creates the order tables when the database has none and
    makes sure the profile and review tables exist. An existing orders
    table is left as it is, even if its schema is older.
    """
    global _initialized
    directory = os.path.dirname(DB_PATH)
    if directory:
        os.makedirs(directory, exist_ok=True)
    conn = await aiosqlite.connect(DB_PATH)
    conn.row_factory = Row
    await conn.execute("PRAGMA foreign_keys = ON;")

    if not _initialized:
        async with _init_lock:
            if not _initialized:
                if not await table_exists(conn, "orders"):
                    _logger.info("Initializing database...")
                    await _run_scripts(conn, DB_INIT_SCRIPTS)
                await _run_scripts(conn, DB_ENSURE_SCRIPTS)
                _initialized = True
    try:
        yield conn
    finally:
        await conn.close()
