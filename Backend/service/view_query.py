from dataclasses import dataclass
from logging import Logger
from typing import Any
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from core.database import SQLDatabase
from core.exceptions import NotFoundException, StorageException
from core.logger import app_logger
from model.dao.data_table import DataTableColumnDAO, DataTableDAO, DataTableViewDAO
from model.dto.data_table import ColumnDTO, DataTableDTO, ViewDTO
from model.dto.filters import FilterGroup, SortConfig
from model.dto.query import QueryRowsDTO, QueryRowsResultDTO, ViewSummaryDTO
from service.computed_fields.pipeline import ComputedFieldPipeline
from service.filter_compiler import CompiledQuery, compile_query
from service.schema_manager import build_table


@dataclass
class ViewContext:
    view: ViewDTO
    table: DataTableDTO
    columns: list[ColumnDTO]
    physical: sa.Table

    @property
    def columns_by_id(self) -> dict[UUID, ColumnDTO]:
        return {column.id: column for column in self.columns}

    @property
    def visible_columns(self) -> list[ColumnDTO]:
        """Visible columns in the view's stored order, all columns when none are set."""
        if not self.view.visible_columns:
            return list(self.columns)
        by_id = self.columns_by_id
        return [by_id[column_id] for column_id in self.view.visible_columns if column_id in by_id]

    def compile(
        self,
        filters: FilterGroup | None = None,
        additional_filters: FilterGroup | None = None,
        sorts: list[SortConfig] | None = None,
        logger: Logger = app_logger,
    ) -> CompiledQuery:
        return compile_query(
            self.physical,
            self.columns_by_id,
            filters=filters if filters is not None else self.view.filters,
            additional_filters=additional_filters,
            sorts=sorts if sorts is not None else self.view.sort,
            logger=logger,
        )


async def load_table_columns(db: SQLDatabase, table_id: UUID) -> list[ColumnDTO]:
    return [
        column.to_dto()
        for column in await DataTableColumnDAO.filter(table_id=table_id, db_resource=db)
    ]


async def load_view_context(
    db: SQLDatabase, view_id: UUID, company_id: UUID | None = None
) -> ViewContext:
    """Load a view with its table and columns, scoped to the company when given."""
    view = await DataTableViewDAO.get(view_id, db_resource=db)
    if view is None:
        raise NotFoundException("View not found")

    table = await DataTableDAO.get(view.table_id, db_resource=db)
    if table is None or (company_id is not None and table.company_id != company_id):
        raise NotFoundException("View not found")

    columns = await load_table_columns(db, table.id)
    return ViewContext(
        view=view.to_dto(),
        table=table.to_dto(),
        columns=columns,
        physical=build_table(table.table_name, columns),
    )


class ViewQueryService:
    def __init__(
        self,
        pg_database: SQLDatabase,
        pipeline: ComputedFieldPipeline,
        logger: Logger = app_logger,
    ):
        self._db = pg_database
        self._pipeline = pipeline
        self._logger = logger

    async def query_rows(
        self, view_id: UUID, dto: QueryRowsDTO, company_id: UUID | None = None
    ) -> QueryRowsResultDTO:
        context = await load_view_context(self._db, view_id, company_id)
        compiled = context.compile(
            filters=dto.filters,
            additional_filters=dto.additional_filters,
            sorts=dto.sorts,
            logger=self._logger,
        )

        physical = context.physical
        rows_query = (
            compiled.apply(sa.select(physical)).limit(dto.limit).offset(dto.offset)
        )
        count_query = compiled.apply(
            sa.select(sa.func.count()).select_from(physical), sort=False
        )

        try:
            async with self._db.connection() as conn:
                rows: list[dict[str, Any]] = [
                    dict(row._mapping) for row in await conn.execute(rows_query)
                ]
                total = (await conn.execute(count_query)).scalar_one()
        except SQLAlchemyError as exc:
            self._logger.error(f"Query on view {view_id} failed: {exc}")
            raise StorageException(f"Failed to query rows: {getattr(exc, 'orig', exc)}")

        rows = await self._pipeline.resolve(
            rows, context.table, context.columns, context.table.company_id
        )

        self._logger.debug(f"View {view_id}: {len(rows)} of {total} row(s)")

        return QueryRowsResultDTO(
            rows=rows,
            total=total,
            has_more=dto.offset + dto.limit < total,
            view=ViewSummaryDTO(
                id=context.view.id,
                name=context.view.name,
                type=context.view.type,
                columns=context.visible_columns,
            ),
        )
