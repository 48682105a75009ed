from logging import Logger

from dependency_injector import containers, providers

from core.environment import settings
from core.database import SQLDatabase
from core.logger import app_logger
from service.computed_fields.pipeline import ComputedFieldPipeline
from service.group_options import GroupOptionsService
from service.schema_manager import SchemaManager
from service.tables import DataTableService
from service.view_query import ViewQueryService
from service.views import ViewService


class DependencyContainer(containers.DeclarativeContainer):
    # Dependency wiring
    wiring_config = containers.WiringConfiguration(
        packages=["service", "api", "model.dao"]
    )

    # Resources/Singletons
    logger: Logger = providers.Object(app_logger)
    pg_database = providers.Resource(
        SQLDatabase,
        db_config=settings.PG_DB_CONFIG,
        logger=logger,
    )

    # Factories
    schema_manager_factory = providers.Factory(
        SchemaManager,
        pg_database=pg_database,
        logger=logger,
    )

    pipeline_factory = providers.Factory(
        ComputedFieldPipeline,
        pg_database=pg_database,
        logger=logger,
    )

    table_service_factory = providers.Factory(
        DataTableService,
        pg_database=pg_database,
        schema_manager=schema_manager_factory,
        pipeline=pipeline_factory,
        logger=logger,
    )

    view_service_factory = providers.Factory(
        ViewService,
        pg_database=pg_database,
        logger=logger,
    )

    view_query_service_factory = providers.Factory(
        ViewQueryService,
        pg_database=pg_database,
        pipeline=pipeline_factory,
        logger=logger,
    )

    group_options_service_factory = providers.Factory(
        GroupOptionsService,
        pg_database=pg_database,
        logger=logger,
    )
