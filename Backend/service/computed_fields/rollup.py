import re
from decimal import Decimal
from typing import Any
from uuid import UUID

import sqlalchemy as sa
from pydantic import ValidationError

from core.constants import SYSTEM_COLUMNS
from core.exceptions import ComputedFieldException, ValidationException
from model.dao.enums import Aggregation, ColumnType
from model.dto.data_table import ColumnDTO
from model.dto.field_config import RollupFieldConfig
from service.computed_fields.base import (
    ComputedFieldResolver,
    ResolvedTable,
    ResolverContext,
    unwrap_relation_id,
)
from service.field_types import resolve
from service.filter_compiler import ColumnAccessor, json_text


_TEMPLATE = re.compile(r"^\{\{(.+)\}\}$")


def substitute_template(value: Any, row: dict[str, Any]) -> Any:
    """Resolve a whole-string ``{{field}}`` placeholder against the row."""
    if not isinstance(value, str):
        return value
    match = _TEMPLATE.match(value)
    if match is None:
        return value
    return unwrap_relation_id(row.get(match.group(1).strip()))


def _field_expression(source: ResolvedTable, name: str, *, numeric: bool = False):
    column = source.column(name)
    if column is None:
        if name not in SYSTEM_COLUMNS:
            raise ComputedFieldException(f"`{name}` is not a field of `{source.table.slug}`")
        return source.physical.c[name], None

    storage = resolve(column.type, column.config)
    if not storage.is_physical:
        raise ComputedFieldException(f"`{name}` is computed and cannot be aggregated")
    accessor = ColumnAccessor(column, storage, source.physical.c[name])
    if numeric and storage.is_document_backed:
        return sa.cast(json_text(accessor.ref), sa.Numeric), accessor
    return accessor.comparable, accessor


def _match(source: ResolvedTable, name: str, value: Any):
    if value is None:
        return sa.false()
    expression, accessor = _field_expression(source, name)
    if accessor is None:
        if name in ("id", "created_by"):
            try:
                value = UUID(str(value))
            except ValueError:
                return sa.false()
        return expression == value
    try:
        return expression == accessor.coerce(value)
    except ValidationException as exc:
        raise ComputedFieldException(f"Cannot match `{name}` against {value!r}: {exc.detail}")


class RollupResolver(ComputedFieldResolver):
    """Aggregates records of another table that point back at the current row."""

    column_type = ColumnType.ROLLUP

    async def resolve_column(
        self, rows: list[dict[str, Any]], column: ColumnDTO, context: ResolverContext
    ) -> None:
        try:
            config = RollupFieldConfig.model_validate(column.config)
        except ValidationError:
            self._logger.warning(f"Rollup `{column.name}` has an invalid config")
            for row in rows:
                row[column.name] = None
            return

        source = await context.directory.get(config.source_table)
        for row in rows:
            if source is None:
                row[column.name] = None
                continue
            try:
                row[column.name] = await self.aggregate(config, source, row, context)
            except ComputedFieldException as exc:
                self._logger.warning(f"Rollup `{column.name}`: {exc.message}")
                row[column.name] = None

    async def aggregate(
        self,
        config: RollupFieldConfig,
        source: ResolvedTable,
        row: dict[str, Any],
        context: ResolverContext,
    ) -> Any:
        aggregation = config.aggregation
        if aggregation == Aggregation.COUNT:
            selected = sa.func.count()
        else:
            if not config.aggregation_field:
                self._logger.warning(f"{aggregation} rollup needs an aggregation field")
                return None
            numeric = aggregation in (Aggregation.SUM, Aggregation.AVG)
            expression, _ = _field_expression(source, config.aggregation_field, numeric=numeric)
            selected = {
                Aggregation.SUM: sa.func.sum,
                Aggregation.AVG: sa.func.avg,
                Aggregation.MIN: sa.func.min,
                Aggregation.MAX: sa.func.max,
            }[aggregation](expression)

        filter_by = config.filter_by
        clauses = [
            _match(source, filter_by.field, substitute_template(filter_by.matches_value, row))
        ]
        if filter_by.and_ is not None:
            clauses.append(
                _match(source, filter_by.and_.field, substitute_template(filter_by.and_.equals, row))
            )

        query = sa.select(selected).select_from(source.physical).where(sa.and_(*clauses))
        value = await context.loader.scalar(query)

        if value is None:
            return 0 if aggregation == Aggregation.COUNT else None
        if aggregation == Aggregation.COUNT:
            return int(value)
        if aggregation in (Aggregation.SUM, Aggregation.AVG):
            return float(value)
        if isinstance(value, Decimal):
            return float(value)
        return value
