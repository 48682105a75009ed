from logging import Logger
from typing import Any
from uuid import UUID

from core.database import SQLDatabase
from core.environment import settings
from core.logger import app_logger
from model.dto.data_table import ColumnDTO, DataTableDTO
from service.computed_fields.base import (
    ComputedFieldResolver,
    ResolverContext,
    RowLoader,
    TableDirectory,
)
from service.computed_fields.formula import FormulaResolver
from service.computed_fields.lookup import LookupResolver
from service.computed_fields.relation import RelationResolver
from service.computed_fields.rollup import RollupResolver


class ComputedFieldPipeline:
    """Runs relation, lookup, rollup and formula resolution, in that order.

    Lookups read the ids relation resolution has already enriched, and formulas
    may reference lookup or rollup outputs as plain fields.
    """

    def __init__(
        self,
        pg_database: SQLDatabase,
        logger: Logger = app_logger,
        batched: bool | None = None,
    ):
        self._db = pg_database
        self._logger = logger
        self._batched = settings.COMPUTED_FIELDS_BATCHED if batched is None else batched
        self._stages: list[ComputedFieldResolver] = [
            RelationResolver(logger),
            LookupResolver(logger),
            RollupResolver(logger),
            FormulaResolver(logger),
        ]

    async def resolve(
        self,
        rows: list[dict[str, Any]],
        table: DataTableDTO,
        columns: list[ColumnDTO],
        company_id: UUID,
    ) -> list[dict[str, Any]]:
        if not rows:
            return rows

        directory = TableDirectory(self._db, company_id)
        directory.seed(table, columns)
        context = ResolverContext(
            company_id=company_id,
            columns=columns,
            directory=directory,
            loader=RowLoader(self._db, self._logger),
            batched=self._batched,
        )

        for stage in self._stages:
            rows = await stage.resolve(rows, context)
        return rows
