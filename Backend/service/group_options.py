import json
from logging import Logger
from typing import Any
from uuid import UUID

import sqlalchemy as sa
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from core.database import SQLDatabase
from core.exceptions import (
    ComputedFieldException,
    NotFoundException,
    StorageException,
    ValidationException,
)
from core.logger import app_logger
from model.dao.enums import ColumnType
from model.dto.field_config import RelationFieldConfig
from model.dto.query import GroupOptionDTO, GroupOptionsDTO, GroupOptionsResultDTO
from service.computed_fields.base import RowLoader, TableDirectory
from service.field_types import is_computed, option_values, resolve
from service.filter_compiler import ColumnAccessor
from service.view_query import ViewContext, load_view_context


EMPTY_LABEL = "(Empty)"
NO_DATE_LABEL = "(No Date)"

TEXT_TYPES = {
    ColumnType.TEXT,
    ColumnType.LONG_TEXT,
    ColumnType.EMAIL,
    ColumnType.PHONE,
    ColumnType.URL,
    ColumnType.COLOR,
}
NUMBER_TYPES = {
    ColumnType.NUMBER,
    ColumnType.CURRENCY,
    ColumnType.PERCENT,
    ColumnType.RATING,
}
BOOLEAN_TYPES = {ColumnType.BOOLEAN, ColumnType.SWITCH}
DATE_TYPES = {ColumnType.DATE, ColumnType.DATETIME}


def _label(value: Any) -> str:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class GroupOptionsService:
    """Distinct values of one column with row counts, for grouped views."""

    def __init__(self, pg_database: SQLDatabase, logger: Logger = app_logger):
        self._db = pg_database
        self._logger = logger

    async def _grouped(
        self,
        context: ViewContext,
        expression: sa.ColumnElement,
        where: sa.ColumnElement | None,
        *,
        min_count: int | None = None,
        order_by: list | None = None,
        limit: int | None = None,
    ) -> list[tuple[Any, int]]:
        value = expression.label("group_value")
        count = sa.func.count().label("group_count")
        query = sa.select(value, count).select_from(context.physical)
        if where is not None:
            query = query.where(where)
        query = query.group_by(expression)
        if min_count is not None:
            query = query.having(sa.func.count() >= min_count)
        if order_by:
            query = query.order_by(*order_by)
        if limit is not None:
            query = query.limit(limit)

        try:
            async with self._db.connection() as conn:
                return [(row[0], int(row[1])) for row in await conn.execute(query)]
        except SQLAlchemyError as exc:
            self._logger.error(f"Group options query failed: {exc}")
            raise StorageException(f"Failed to group rows: {getattr(exc, 'orig', exc)}")

    async def group_options(
        self, view_id: UUID, dto: GroupOptionsDTO, company_id: UUID | None = None
    ) -> GroupOptionsResultDTO:
        context = await load_view_context(self._db, view_id, company_id)
        column = next((c for c in context.columns if c.name == dto.column_name), None)
        if column is None:
            raise NotFoundException(f"Column {dto.column_name} not found")
        if is_computed(column.type):
            raise ValidationException(f"Cannot group by computed column `{column.name}`")

        where = context.compile(
            filters=dto.filters,
            additional_filters=dto.additional_filters,
            logger=self._logger,
        ).where
        storage = resolve(column.type, column.config)
        accessor = ColumnAccessor(column, storage, context.physical.c[column.name])

        column_type = column.type
        if column_type == ColumnType.SELECT:
            options = await self._select_options(context, accessor, where, dto)
        elif column_type == ColumnType.MULTI_SELECT:
            options = await self._multi_select_options(context, accessor, where, dto)
        elif column_type == ColumnType.RELATION:
            options = await self._relation_options(context, accessor, where, dto)
        elif column_type in NUMBER_TYPES:
            options = await self._value_options(
                context, accessor.comparable, where, dto, ascending=True
            )
        elif column_type in BOOLEAN_TYPES:
            options = await self._boolean_options(context, accessor, where, dto)
        elif column_type in DATE_TYPES:
            options = await self._value_options(
                context, accessor.ref, where, dto, ascending=False, empty_label=NO_DATE_LABEL
            )
        else:
            options = await self._text_options(context, accessor, where, dto)

        return GroupOptionsResultDTO(
            column_type=column.type,
            options=options,
            total=sum(option.count for option in options),
            has_more=len(options) >= dto.max_options,
        )

    async def _select_options(
        self, context, accessor: ColumnAccessor, where, dto: GroupOptionsDTO
    ) -> list[GroupOptionDTO]:
        counts: dict[str | None, int] = {}
        for value, count in await self._grouped(context, accessor.text, where):
            key = None if value is None or str(value).strip() == "" else str(value).strip()
            counts[key] = counts.get(key, 0) + count

        options = []
        for option in accessor.column.config.get("options") or []:
            if isinstance(option, dict):
                value = str(option.get("value", option.get("label", "")))
                label = str(option.get("label") or value)
            else:
                value = label = str(option)
            # Older rows may hold the option label instead of its value
            count = counts.get(value, 0) or counts.get(label, 0)
            options.append(GroupOptionDTO(id=value, label=label, count=count))

        if dto.include_empty or None in counts:
            options.append(GroupOptionDTO(id=None, label=EMPTY_LABEL, count=counts.get(None, 0)))
        return options[: dto.max_options]

    async def _multi_select_options(
        self, context, accessor: ColumnAccessor, where, dto: GroupOptionsDTO
    ) -> list[GroupOptionDTO]:
        counts: dict[str, int] = {}
        empty = 0
        for value, count in await self._grouped(context, accessor.text, where):
            try:
                choices = json.loads(value) if value else []
            except ValueError:
                choices = [value]
            if not isinstance(choices, list):
                choices = [choices]
            if not choices:
                empty += count
            for choice in choices:
                counts[str(choice)] = counts.get(str(choice), 0) + count

        options = [
            GroupOptionDTO(id=value, label=value, count=counts.get(value, 0))
            for value in option_values(accessor.column.config)
        ]
        if dto.include_empty:
            options.append(GroupOptionDTO(id=None, label=EMPTY_LABEL, count=empty))
        return options[: dto.max_options]

    async def _relation_options(
        self, context: ViewContext, accessor: ColumnAccessor, where, dto: GroupOptionsDTO
    ) -> list[GroupOptionDTO]:
        try:
            config = RelationFieldConfig.model_validate(accessor.column.config)
        except ValidationError:
            self._logger.warning(f"Relation `{accessor.column.name}` has an invalid config")
            return []

        directory = TableDirectory(self._db, context.table.company_id)
        directory.seed(context.table, context.columns)
        target = await directory.get(config.target_table)
        if target is None:
            self._logger.warning(f"Related table not found: {config.target_table}")
            return []

        results = await self._grouped(
            context,
            accessor.text,
            where,
            min_count=dto.min_count,
            order_by=[sa.desc("group_count")],
            limit=dto.max_options,
        )

        related_ids = [str(value) for value, _ in results if value not in (None, "", "null")]
        labels: dict[str, Any] = {}
        if related_ids:
            try:
                labels = await RowLoader(self._db, self._logger).load(
                    target, related_ids, config.display_field
                )
            except ComputedFieldException as exc:
                self._logger.error(f"Failed to fetch display values for relation: {exc}")

        options = []
        for value, count in results:
            if value in (None, "", "null"):
                if dto.include_empty:
                    options.append(GroupOptionDTO(id=None, label=EMPTY_LABEL, count=count))
                continue
            label = labels.get(str(value))
            options.append(
                GroupOptionDTO(
                    id=str(value),
                    label=_label(label) if label not in (None, "") else str(value),
                    count=count,
                )
            )
        return options

    async def _text_options(
        self, context, accessor: ColumnAccessor, where, dto: GroupOptionsDTO
    ) -> list[GroupOptionDTO]:
        results = await self._grouped(
            context,
            accessor.text,
            where,
            min_count=dto.min_count,
            order_by=[sa.desc("group_count"), sa.asc("group_value")],
            limit=dto.max_options,
        )
        options = []
        for value, count in results:
            if value is None or value == "":
                if dto.include_empty:
                    options.append(GroupOptionDTO(id=None, label=EMPTY_LABEL, count=count))
                continue
            options.append(GroupOptionDTO(id=str(value), label=str(value), count=count))
        return options

    async def _value_options(
        self,
        context,
        expression: sa.ColumnElement,
        where,
        dto: GroupOptionsDTO,
        *,
        ascending: bool,
        empty_label: str = EMPTY_LABEL,
    ) -> list[GroupOptionDTO]:
        order = sa.asc("group_value") if ascending else sa.desc("group_value")
        results = await self._grouped(
            context,
            expression,
            where,
            min_count=dto.min_count,
            order_by=[order],
            limit=dto.max_options,
        )
        options = []
        for value, count in results:
            if value is None:
                if dto.include_empty:
                    options.append(GroupOptionDTO(id=None, label=empty_label, count=count))
                continue
            options.append(GroupOptionDTO(id=_label(value), label=_label(value), count=count))
        return options

    async def _boolean_options(
        self, context, accessor: ColumnAccessor, where, dto: GroupOptionsDTO
    ) -> list[GroupOptionDTO]:
        results = await self._grouped(context, accessor.ref, where, min_count=dto.min_count)
        options = []
        for value, count in sorted(results, key=lambda item: (item[0] is None, not item[0])):
            if value is None:
                if dto.include_empty:
                    options.append(GroupOptionDTO(id=None, label=EMPTY_LABEL, count=count))
                continue
            options.append(
                GroupOptionDTO(
                    id="true" if value else "false",
                    label="Yes" if value else "No",
                    count=count,
                )
            )
        return options
