from abc import ABC, abstractmethod
from dataclasses import dataclass
from logging import Logger
from typing import Any, Callable, Iterable
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from core.database import SQLDatabase
from core.exceptions import ComputedFieldException
from core.logger import app_logger
from model.dao.data_table import DataTableColumnDAO, DataTableDAO
from model.dto.data_table import ColumnDTO, DataTableDTO
from service.schema_manager import build_table


@dataclass
class ResolvedTable:
    """Metadata and physical table of a data table referenced by a computed field."""

    table: DataTableDTO
    columns: list[ColumnDTO]
    physical: sa.Table

    def column(self, name: str) -> ColumnDTO | None:
        return next((column for column in self.columns if column.name == name), None)

    def has_field(self, name: str) -> bool:
        return name in self.physical.c


class TableDirectory:
    """Looks up a company's tables by slug, memoised for one pipeline run."""

    def __init__(self, pg_database: SQLDatabase, company_id: UUID):
        self._db = pg_database
        self._company_id = company_id
        self._cache: dict[str, ResolvedTable | None] = {}

    def seed(self, table: DataTableDTO, columns: list[ColumnDTO]) -> None:
        self._cache[table.slug] = ResolvedTable(
            table, columns, build_table(table.table_name, columns)
        )

    async def get(self, slug: str | None) -> ResolvedTable | None:
        if not slug:
            return None
        if slug in self._cache:
            return self._cache[slug]

        table = (
            await DataTableDAO.filter(
                company_id=self._company_id, slug=slug, db_resource=self._db
            )
        ).first()
        resolved = None
        if table is not None:
            columns = [
                column.to_dto()
                for column in await DataTableColumnDAO.filter(
                    table_id=table.id, db_resource=self._db
                )
            ]
            table_dto = table.to_dto()
            resolved = ResolvedTable(
                table_dto, columns, build_table(table_dto.table_name, columns)
            )

        self._cache[slug] = resolved
        return resolved


def unwrap_relation_id(value: Any) -> Any:
    """Bare id(s) behind a relation value, enriched or not."""
    if isinstance(value, dict):
        return value.get("relatedId")
    if isinstance(value, list):
        return [unwrap_relation_id(item) for item in value]
    return value


def relation_ids(value: Any) -> list[str]:
    ids = unwrap_relation_id(value)
    if ids is None:
        return []
    if not isinstance(ids, list):
        ids = [ids]
    return [str(item) for item in ids if item is not None]


def _as_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


class RowLoader:
    """Fetches one field of target rows by id.

    In sequential mode each call issues its own query. Resolvers decide how many
    ids go into a call, so batching is a matter of calling once per run.
    """

    def __init__(self, pg_database: SQLDatabase, logger: Logger = app_logger):
        self._db = pg_database
        self._logger = logger

    async def load(
        self, target: ResolvedTable, ids: Iterable[str], field_name: str
    ) -> dict[str, Any]:
        if not target.has_field(field_name):
            raise ComputedFieldException(
                f"`{field_name}` is not a stored field of `{target.table.slug}`"
            )

        keys = {key: _as_uuid(key) for key in ids}
        uuids = [value for value in keys.values() if value is not None]
        if not uuids:
            return {}

        physical = target.physical
        query = sa.select(physical.c.id, physical.c[field_name])
        if len(uuids) == 1:
            query = query.where(physical.c.id == uuids[0])
        else:
            query = query.where(physical.c.id.in_(uuids))

        try:
            async with self._db.connection() as conn:
                result = await conn.execute(query)
                found = {row[0]: row[1] for row in result}
        except SQLAlchemyError as exc:
            raise ComputedFieldException(
                f"Failed to load `{field_name}` from `{target.table.slug}`: {exc}"
            )

        return {key: found.get(value) for key, value in keys.items() if value in found}

    async def scalar(self, query: sa.Select) -> Any:
        try:
            async with self._db.connection() as conn:
                return (await conn.execute(query)).scalar()
        except SQLAlchemyError as exc:
            raise ComputedFieldException(f"Query failed: {exc}")


@dataclass
class ResolverContext:
    company_id: UUID
    columns: list[ColumnDTO]
    directory: TableDirectory
    loader: RowLoader
    batched: bool = False

    def columns_of_type(self, column_type: str) -> list[ColumnDTO]:
        return [column for column in self.columns if column.type == column_type]


class ComputedFieldResolver(ABC):
    column_type: str

    def __init__(self, logger: Logger = app_logger):
        self._logger = logger

    async def resolve(
        self, rows: list[dict[str, Any]], context: ResolverContext
    ) -> list[dict[str, Any]]:
        columns = context.columns_of_type(self.column_type)
        if not columns or not rows:
            return rows

        self._logger.debug(
            f"Resolving {len(columns)} {self.column_type} field(s) for {len(rows)} row(s)"
        )
        for column in columns:
            await self.resolve_column(rows, column, context)
        return rows

    @abstractmethod
    async def resolve_column(
        self, rows: list[dict[str, Any]], column: ColumnDTO, context: ResolverContext
    ) -> None: ...

    async def load_per_row(
        self,
        rows: list[dict[str, Any]],
        ids_of: Callable[[dict[str, Any]], list[str]],
        target: ResolvedTable,
        field_name: str,
        context: ResolverContext,
    ) -> list[dict[str, Any] | None]:
        """For every row, the target values of the ids it references.

        ``None`` marks a row whose load failed. Rows without ids never query.
        """
        if context.batched:
            all_ids = {key for row in rows for key in ids_of(row)}
            try:
                values = await context.loader.load(target, all_ids, field_name) if all_ids else {}
            except ComputedFieldException as exc:
                self._logger.warning(str(exc))
                return [None] * len(rows)
            return [
                {key: values[key] for key in ids_of(row) if key in values} for row in rows
            ]

        loaded = []
        for row in rows:
            ids = ids_of(row)
            if not ids:
                loaded.append({})
                continue
            try:
                loaded.append(await context.loader.load(target, ids, field_name))
            except ComputedFieldException as exc:
                self._logger.warning(str(exc))
                loaded.append(None)
        return loaded
