from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator, Self
from dependency_injector.resources import AsyncResource
from sqlalchemy import URL, MetaData
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.environment import SQLConfig
from core.logger import app_logger


class SQLDatabase(AsyncResource):
    async def init(
        self, db_config: SQLConfig, logger: logging.Logger = app_logger
    ) -> Self:
        db_url = URL.create(
            drivername=db_config.driver,
            username=db_config.username,
            password=db_config.password,
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            query=db_config.additional_config or {},
        )
        self._logger = logger

        self._engine = create_async_engine(db_url, pool_recycle=3600)

        self._session_factory = async_sessionmaker(
            class_=AsyncSession,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self._engine,
        )

        return self

    async def shutdown(self, _: None) -> None:
        self._logger.info("Shutting down...")
        await self._engine.dispose()

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    @property
    def dialect(self):
        return self._engine.dialect

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        session: AsyncSession = self._session_factory()
        try:
            yield session
        except Exception as e:
            self._logger.error("An error occurred. Rolling back", exc_info=e)
            await session.rollback()
            raise
        finally:
            self._logger.debug("Closing session")
            await session.close()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[AsyncConnection]:
        """Core-level connection in its own transaction, used for DDL and dynamic rows."""
        async with self._engine.begin() as conn:
            yield conn

    async def create_all(self, metadata: MetaData) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
