"""
Textbook API — Connection Pool Manager
=======================================

What:  The process-wide database handle: a lazily created async SQLAlchemy
       engine (whose queue pool is the connection pool) and a query function.
Why:   Serverless platforms run many short-lived instances side by side. Each
       must hold at most one real connection, and must reuse it across
       invocations instead of re-dialing on every request.
How:   `Database` is constructed once by the application factory and stored on
       `app.state`. Route handlers receive it through `get_database()`.
       `get_pool()` creates the engine on first call and returns the same
       object afterwards. `query()` runs one parameterized statement in its
       own transaction and always hands the connection back.
Who:   Auth collaborator and profile service (through query()), Alembic and
       tests (through Base.metadata).

Pool Configuration (defaults from settings):
    pool_size=1, max_overflow=0:  One connection per process, never more
    pool_timeout=5:               Callers queue at most 5s for the connection
    pool_recycle=30:              Connections idle past 30s are replaced on checkout
    connect timeout=5:            Bounded dial time on cold starts
    pool_pre_ping=True:           Catches connections the provider closed while idle
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional, Union

from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.sql import Executable

from textbook_api.config import Settings
from textbook_api.exceptions import ConfigurationError, DatabaseError

logger = logging.getLogger(__name__)

# How much statement text goes into logs and error context
QUERY_LOG_LENGTH = 100

Statement = Union[str, Executable]


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Models register their tables on this metadata, which Alembic reads for
    autogenerate and the test suite uses to create a throwaway schema.
    """
    pass


class Database:
    """
    Owner of the single connection pool for this process.

    Invariant: at most one engine exists per Database instance, and the
    application factory creates exactly one Database. Creation is guarded by
    a lock so that concurrent first calls (from coroutines or from worker
    threads) still build one engine.
    """

    def __init__(self, config: Settings):
        self._settings = config
        self._engine: Optional[AsyncEngine] = None
        self._lock = threading.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    def get_pool(self) -> AsyncEngine:
        """
        Return the shared engine, creating it on first call.

        Raises:
            ConfigurationError: DATABASE_URL is not set.
        """
        if self._engine is not None:
            return self._engine

        with self._lock:
            if self._engine is None:
                self._engine = self._create_engine()
        return self._engine

    def _create_engine(self) -> AsyncEngine:
        if not self._settings.database_url:
            raise ConfigurationError(
                "DATABASE_URL environment variable is required",
                context={"setting": "database_url"},
            )

        engine = create_async_engine(
            self._settings.async_database_url,
            pool_size=self._settings.db_pool_size,
            max_overflow=0,
            pool_timeout=self._settings.db_pool_timeout,
            pool_recycle=self._settings.db_idle_timeout,
            pool_pre_ping=True,
            connect_args=self._settings.database_connect_args,
        )

        # Pool lifecycle events fire on the sync engine underneath the async facade
        event.listen(engine.sync_engine, "connect", _on_connect)
        event.listen(engine.sync_engine, "handle_error", _on_error)

        logger.info(
            "Database pool initialized (size=%d, timeout=%.1fs, idle_recycle=%ds)",
            self._settings.db_pool_size,
            self._settings.db_pool_timeout,
            self._settings.db_idle_timeout,
        )
        return engine

    async def query(
        self,
        statement: Statement,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[RowMapping]:
        """
        Execute one parameterized statement and return its rows.

        What:    Acquires the pooled connection, runs the statement inside a
                 transaction (committed on success, rolled back on error) and
                 releases the connection in every case.
        Args:
            statement: SQL text with `:name` placeholders, or a SQLAlchemy
                       Core construct.
            params:    Bound parameter values.
        Returns:
            Rows as read-only mappings (empty for statements without RETURNING).
        Raises:
            ConfigurationError: No connection string at first use.
            DatabaseError:      The driver or the pool failed.
        """
        engine = self.get_pool()
        stmt = text(statement) if isinstance(statement, str) else statement
        params = params or {}
        start = time.perf_counter()

        try:
            async with engine.begin() as conn:
                result = await conn.execute(stmt, params)
                rows = list(result.mappings().all()) if result.returns_rows else []
                row_count = len(rows) if result.returns_rows else result.rowcount
        except (SQLAlchemyError, OSError) as e:
            param_count = _param_count(stmt, params, engine)
            logger.error(
                "Database query error: %s | query=%s | params=%d",
                type(e).__name__,
                _preview(stmt),
                param_count,
            )
            raise DatabaseError(
                context={
                    "error_type": type(e).__name__,
                    "query": _preview(stmt),
                    "param_count": param_count,
                },
            ) from e

        logger.debug(
            "Executed query in %.1fms (%d rows): %s",
            (time.perf_counter() - start) * 1000,
            row_count,
            _preview(stmt),
        )
        return rows

    async def dispose(self) -> None:
        """
        Close every pooled connection.

        When:  Application shutdown. The next get_pool() builds a fresh engine.
        """
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info("Database pool closed")


def _preview(stmt: Any) -> str:
    return " ".join(str(stmt).split())[:QUERY_LOG_LENGTH]


def _param_count(stmt: Any, params: Dict[str, Any], engine: AsyncEngine) -> int:
    # Core constructs carry their values as bound parameters, not in `params`
    if params:
        return len(params)
    return len(stmt.compile(dialect=engine.dialect).params)


def _on_connect(dbapi_connection, connection_record) -> None:
    logger.debug("New database client connected")


def _on_error(exception_context) -> None:
    # Statement errors are logged by query(); only connection loss is a pool event
    if exception_context.is_disconnect:
        logger.error(
            "Unexpected database pool error: %s",
            type(exception_context.original_exception).__name__,
        )


# ── Dependency ────────────────────────────────────────────────────────────
def get_database(request: Request) -> Database:
    """
    FastAPI dependency returning the process-wide Database handle.

    The handle lives on app.state, placed there by create_app(); tests swap it
    with `app.state.database = ...` or `app.dependency_overrides`.
    """
    return request.app.state.database
