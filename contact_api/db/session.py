# contact_api/db/session.py
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional

from sqlalchemy import event, func, inspect, select, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from contact_api.core.config import Settings
from contact_api.core.exceptions import DatabaseError
from contact_api.core.logging import get_structlog_logger
from contact_api.db.base import Base
from contact_api.models import SalesRepresentative

logger = get_structlog_logger(__name__)

REQUIRED_TABLES = ["sales_representatives", "companies", "contacts", "leads", "interactions"]


class Database:
    """Pooled async engine with an explicit init/dispose lifecycle.

    One instance is built per application. Every request that writes acquires
    a single pooled connection through :meth:`transaction` and gives it back on
    every exit path.
    """

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 20,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        pool_recycle: int = 3600,
        statement_timeout: int = 30,
        echo: bool = False,
        use_null_pool: bool = False,
    ) -> None:
        self.url = url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_timeout = pool_timeout
        self.pool_recycle = pool_recycle
        self.statement_timeout = statement_timeout
        self.echo = echo
        self.use_null_pool = use_null_pool
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            statement_timeout=settings.database_statement_timeout,
            echo=settings.debug,
            use_null_pool=settings.is_testing,
        )

    @property
    def backend_name(self) -> str:
        return make_url(self.url).get_backend_name()

    @property
    def is_sqlite(self) -> bool:
        return self.backend_name == "sqlite"

    @property
    def is_postgres(self) -> bool:
        return self.backend_name == "postgresql"

    def init(self) -> AsyncEngine:
        """Create the engine and session factory (idempotent)."""
        if self.engine is not None:
            return self.engine

        if self.is_sqlite:
            # A single shared connection keeps in-memory databases alive.
            self.engine = create_async_engine(
                self.url,
                poolclass=StaticPool,
                echo=self.echo,
                connect_args={"check_same_thread": False},
            )
            self._install_sqlite_listeners(self.engine)
        elif self.use_null_pool:
            self.engine = create_async_engine(
                self.url,
                poolclass=NullPool,
                echo=self.echo,
            )
        else:
            self.engine = create_async_engine(
                self.url,
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_timeout=self.pool_timeout,
                pool_recycle=self.pool_recycle,
                pool_pre_ping=True,
                echo=self.echo,
                connect_args={
                    "command_timeout": 60,
                    "server_settings": {"application_name": "alltech_contact_api"},
                },
            )

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

        logger.info(
            "database.engine.created",
            dialect=self.engine.dialect.name,
            pool_size=None if self.is_sqlite else self.pool_size,
        )
        return self.engine

    @staticmethod
    def _install_sqlite_listeners(engine: AsyncEngine) -> None:
        # pysqlite/aiosqlite manage transactions themselves unless told not to,
        # which breaks SAVEPOINT; hand BEGIN back to SQLAlchemy.
        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

    async def dispose(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("database.connection_closed")
        self.engine = None
        self.session_factory = None

    async def create_schema(self) -> None:
        engine = self.init()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.schema_created", tables=sorted(Base.metadata.tables))

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Plain session for read-only work."""
        self.init()
        session = self.session_factory()
        try:
            yield session
        finally:
            await session.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """Context manager for a single ACID transaction.

        Commits when the block exits cleanly, rolls back on any exception and
        always returns the connection to the pool.
        """
        self.init()
        session = self.session_factory()

        try:
            await session.begin()

            if self.is_postgres:
                await session.execute(
                    text(f"SET LOCAL statement_timeout = {int(self.statement_timeout) * 1000}")
                )

            yield session

            await session.commit()

        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("database.transaction_error", error=str(e))
            raise DatabaseError(details={"error": str(e)}) from e

        except BaseException:
            await session.rollback()
            raise

        finally:
            await session.close()
            logger.debug("database.connection_released")

    async def test_connection(self) -> bool:
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("database.connection_failed", error=str(e))
            return False

    async def health_check(self) -> Dict[str, Any]:
        """Check database health."""
        start_time = time.perf_counter()
        try:
            async with self.session() as session:
                result = await session.execute(text("SELECT 1"))
                row = result.scalar()

            return {
                "status": "healthy" if row == 1 else "unhealthy",
                "dialect": self.engine.dialect.name,
                "response_time_ms": f"{(time.perf_counter() - start_time) * 1000:.2f}",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        except Exception as e:
            logger.error("database.health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

    async def diagnose(self) -> Dict[str, Any]:
        """Connection, schema, sales team and permission checks for operators."""
        diagnostic: Dict[str, Any] = {
            "connection": False,
            "tables": False,
            "missing_tables": [],
            "sales_reps": False,
            "active_sales_reps": 0,
            "permissions": False,
        }

        diagnostic["connection"] = await self.test_connection()
        if not diagnostic["connection"]:
            return diagnostic

        async with self.session() as session:
            connection = await session.connection()
            existing: List[str] = await connection.run_sync(
                lambda sync_conn: inspect(sync_conn).get_table_names()
            )
            missing = [table for table in REQUIRED_TABLES if table not in existing]
            diagnostic["missing_tables"] = missing
            diagnostic["tables"] = not missing

            if "sales_representatives" in existing:
                count = await session.scalar(
                    select(func.count())
                    .select_from(SalesRepresentative)
                    .where(SalesRepresentative.is_active.is_(True))
                )
                diagnostic["active_sales_reps"] = int(count or 0)
                diagnostic["sales_reps"] = diagnostic["active_sales_reps"] > 0

            try:
                for table in REQUIRED_TABLES:
                    await session.execute(text(f"SELECT 1 FROM {table} LIMIT 1"))
                diagnostic["permissions"] = True
            except SQLAlchemyError as e:
                logger.error("database.permission_check_failed", error=str(e))

        logger.info("database.diagnostic", **diagnostic)
        return diagnostic
