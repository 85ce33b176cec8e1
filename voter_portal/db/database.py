import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, TypeVar, Union

from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.sql import Executable

from voter_portal.config.settings import settings
from voter_portal.utils.errors import DatabaseError, PoolClosedError
from voter_portal.utils.logging import get_logger

logger = get_logger()

T = TypeVar("T")

STATEMENT_LOG_PREFIX = 100


def _statement_prefix(statement: Any) -> str:
    return " ".join(str(statement).split())[:STATEMENT_LOG_PREFIX]


class Database:
    """
    Handle around one pooled async engine.

    Services receive this object instead of reaching for a module-level
    engine, so tests can hand them a throwaway database.

    - ``query`` runs a single statement in its own short transaction.
    - ``transaction`` runs a body inside BEGIN/COMMIT and rolls back on any error.
    - ``session`` yields a plain session for read paths.
    - ``close`` disposes the pool once; every later call raises ``PoolClosedError``.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        pool_size: Optional[int] = None,
        max_overflow: Optional[int] = None,
        pool_timeout: Optional[int] = None,
        pool_recycle: Optional[int] = None,
        echo: Optional[bool] = None,
    ):
        self.url = make_url(url or settings.database_url)
        self.pool_size = pool_size if pool_size is not None else settings.DB_POOL_MIN_SIZE
        self.max_overflow = (
            max_overflow
            if max_overflow is not None
            else max(settings.DB_POOL_MAX_SIZE - self.pool_size, 0)
        )
        self.pool_timeout = (
            pool_timeout if pool_timeout is not None else settings.DB_POOL_TIMEOUT
        )
        self._closed = False

        engine_kwargs: Dict[str, Any] = {
            "echo": settings.DB_ECHO if echo is None else echo,
            "pool_pre_ping": True,
        }
        if self.url.get_backend_name() == "postgresql":
            engine_kwargs["isolation_level"] = "READ COMMITTED"
        if not self._is_memory_sqlite:
            engine_kwargs.update(
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_timeout=self.pool_timeout,
                pool_recycle=(
                    pool_recycle
                    if pool_recycle is not None
                    else settings.DB_POOL_RECYCLE
                ),
            )

        self.engine = create_async_engine(self.url, **engine_kwargs)
        if self.dialect_name == "sqlite":
            self._install_sqlite_transaction_hooks()

        self.session_factory = async_sessionmaker(
            bind=self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @property
    def _is_memory_sqlite(self) -> bool:
        return self.url.get_backend_name() == "sqlite" and self.url.database in (
            None,
            "",
            ":memory:",
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _install_sqlite_transaction_hooks(self) -> None:
        """
        pysqlite defers BEGIN until the first write, which breaks savepoints
        and lets two writers read the same row before either locks it.
        Emit BEGIN IMMEDIATE ourselves so a transaction holds the write lock
        from its first statement, the closest SQLite gets to FOR UPDATE.
        """

        @event.listens_for(self.engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=10000")
            cursor.close()

        @event.listens_for(self.engine.sync_engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    def _ensure_open(self) -> None:
        if self._closed:
            raise PoolClosedError()

    async def query(
        self,
        statement: Union[str, Executable],
        params: Optional[Dict[str, Any]] = None,
    ) -> Union[List[Dict[str, Any]], int]:
        """
        Execute one parameterized statement on a pooled connection.

        Returns the rows as dicts for row-returning statements, otherwise the
        affected row count. The connection goes back to the pool either way.
        """
        self._ensure_open()
        stmt = text(statement) if isinstance(statement, str) else statement
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt, params or {})
                if result.returns_rows:
                    return [dict(row) for row in result.mappings().all()]
                return result.rowcount
        except SQLAlchemyError as e:
            logger.error(
                f"Query failed: {_statement_prefix(statement)} - {type(e).__name__}"
            )
            raise DatabaseError("Database query failed") from e

    async def transaction(self, body: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """
        Run ``body`` inside a single transaction.

        COMMIT on success; ROLLBACK on any exception, which is then re-raised.
        Driver errors surface as ``DatabaseError``; domain errors raised by the
        body propagate unchanged.
        """
        self._ensure_open()
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    return await body(session)
            except SQLAlchemyError as e:
                statement = getattr(e, "statement", None)
                logger.error(
                    f"Transaction rolled back: {_statement_prefix(statement or '')} "
                    f"- {type(e).__name__}"
                )
                raise DatabaseError("Database transaction failed") from e
            except Exception as e:
                logger.debug(f"Transaction rolled back: {type(e).__name__}")
                raise

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session for read paths; anything left open is rolled back on exit."""
        self._ensure_open()
        async with self.session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                await session.rollback()
                statement = getattr(e, "statement", None)
                logger.error(
                    f"Query failed: {_statement_prefix(statement or '')} "
                    f"- {type(e).__name__}"
                )
                raise DatabaseError("Database query failed") from e

    def pool_status(self) -> Dict[str, Any]:
        pool = self.engine.pool
        capacity = self.pool_size + self.max_overflow
        checked_out = pool.checkedout() if hasattr(pool, "checkedout") else 0
        checked_in = pool.checkedin() if hasattr(pool, "checkedin") else 0
        overflow = max(pool.overflow(), 0) if hasattr(pool, "overflow") else 0
        return {
            "size": self.pool_size,
            "max_overflow": self.max_overflow,
            "overflow": overflow,
            "checked_out": checked_out,
            "checked_in": checked_in,
            "utilization": round(checked_out / capacity, 4) if capacity else 0.0,
        }

    async def health_check(self) -> Dict[str, Any]:
        """Run a trivial query and report pool saturation."""
        started = time.perf_counter()
        try:
            await self.query("SELECT 1")
        except DatabaseError as e:
            logger.error(f"Database health check failed: {e.message}")
            return {
                "healthy": False,
                "error": e.message,
                "pool": None if self._closed else self.pool_status(),
            }

        return {
            "healthy": True,
            "dialect": self.dialect_name,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "pool": self.pool_status(),
        }

    async def close(self) -> None:
        """Drain and dispose the pool. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self.engine.dispose()
        logger.info("Database connection pool closed")


def get_database(request: Request) -> Database:
    """Dependency returning the application's database handle"""
    return request.app.state.database
