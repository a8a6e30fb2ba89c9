import os
from typing import Any, Dict, Tuple

from sqlalchemy import event
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

_ASYNC_DRIVERS = {
    "sqlite": "sqlite+aiosqlite",
    "postgresql": "postgresql+asyncpg",
    # Supabase dashboards hand out both spellings
    "postgres": "postgresql+asyncpg",
}


def normalize_async_url(url: str) -> str:
    scheme, sep, rest = url.partition("://")
    if not sep or scheme not in _ASYNC_DRIVERS:
        return url
    return f"{_ASYNC_DRIVERS[scheme]}://{rest}"


def _asyncpg_connect_args(url: URL) -> Tuple[URL, Dict[str, Any]]:
    """
    Supabase connection strings carry libpq options (``sslmode=require``)
    that asyncpg refuses as keyword arguments; move them to connect_args.
    """
    args: Dict[str, Any] = {}
    query = dict(url.query)
    sslmode = query.pop("sslmode", None)
    if sslmode:
        args["ssl"] = sslmode
    # transaction pooler (port 6543) has no prepared statements
    if os.getenv("DB_PGBOUNCER", "0") == "1" or url.port == 6543:
        args["statement_cache_size"] = 0
    return url.set(query=query), args


def make_async_engine(
    database_url: str,
) -> Tuple[AsyncEngine, async_sessionmaker]:
    url = make_url(normalize_async_url(database_url))
    kw: Dict[str, Any] = dict(pool_pre_ping=True)

    if url.drivername == "postgresql+asyncpg":
        url, connect_args = _asyncpg_connect_args(url)
        kw.update(
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "5")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
            connect_args=connect_args,
        )

    engine = create_async_engine(url, **kw)

    if url.drivername == "sqlite+aiosqlite":
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _):
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute("PRAGMA busy_timeout=5000;")
            cur.execute("PRAGMA synchronous=NORMAL;")
            cur.close()

    SessionAsync = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, SessionAsync
