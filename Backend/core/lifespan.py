from contextlib import asynccontextmanager
from fastapi import FastAPI
from sqlmodel import SQLModel

from core.di_container import DependencyContainer
from core.environment import settings
from core.logger import app_logger, configure_uvicorn_logger


@asynccontextmanager
async def lifespan_manager(app: FastAPI):
    """Context manager that runs tasks at app start and shutdown."""

    # Run at start
    configure_uvicorn_logger()
    container = DependencyContainer()

    if settings.AUTO_CREATE_METADATA:
        pg_database = await container.pg_database()
        await pg_database.create_all(SQLModel.metadata)
        app_logger.info("Metadata tables are ready")

    # Yield to app
    yield

    # Run at shutdown
    try:
        await container.shutdown_resources()
    except Exception as exc:
        app_logger.warning(f"Failed to release resources: {exc}")
