"""Compiles view filter trees and sort lists into SQLAlchemy expressions.

Values are always bound as parameters. Column references come from a
``sa.Table`` built out of validated column metadata, so no user supplied
text ever reaches the statement as an identifier.
"""

from dataclasses import dataclass, field
from logging import Logger
from typing import Any, Mapping
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.functions import FunctionElement

from core.exceptions import ValidationException
from core.logger import app_logger
from model.dao.enums import FilterOperator, GroupOperator, SortDirection
from model.dto.data_table import ColumnDTO
from model.dto.filters import FilterCondition, FilterGroup, SortConfig
from service.field_types import (
    FieldCoercionError,
    StorageDescriptor,
    get_field_type,
    parse_date,
    parse_datetime,
    resolve,
    to_decimal,
)


class json_text(FunctionElement):
    """Scalar text of a JSON document column."""

    type = sa.String()
    name = "json_text"
    inherit_cache = True


@compiles(json_text, "postgresql")
def _json_text_postgresql(element, compiler, **kw):
    return "(%s #>> '{}')" % compiler.process(element.clauses, **kw)


@compiles(json_text, "sqlite")
def _json_text_sqlite(element, compiler, **kw):
    return "CAST(json_extract(%s, '$') AS TEXT)" % compiler.process(element.clauses, **kw)


@compiles(json_text)
def _json_text_default(element, compiler, **kw):
    return "CAST(%s AS TEXT)" % compiler.process(element.clauses, **kw)


@dataclass
class ColumnAccessor:
    """How one metadata column is referenced inside a query."""

    column: ColumnDTO
    storage: StorageDescriptor
    ref: sa.ColumnElement

    @property
    def text(self) -> sa.ColumnElement:
        if self.storage.is_document_backed:
            return json_text(self.ref)
        if isinstance(self.storage.sa_type, sa.String):
            return self.ref
        return sa.cast(self.ref, sa.String)

    @property
    def comparable(self) -> sa.ColumnElement:
        if not self.storage.is_document_backed:
            return self.ref
        if self.storage.is_numeric:
            return sa.cast(json_text(self.ref), sa.Numeric)
        return json_text(self.ref)

    def coerce(self, value: Any) -> Any:
        """Bind value matching the comparable expression."""
        try:
            if self.storage.is_numeric or isinstance(
                self.storage.sa_type, (sa.Integer, sa.Numeric)
            ):
                number = to_decimal(value)
                if number == number.to_integral_value():
                    return int(number)
                return float(number)
            if self.storage.is_document_backed or isinstance(self.storage.sa_type, sa.String):
                if isinstance(value, dict) and "relatedId" in value:
                    return str(value["relatedId"])
                return str(value)
            if isinstance(self.storage.sa_type, sa.Boolean):
                return get_field_type(self.column.type).coerce(value, self.column.config)
            if isinstance(self.storage.sa_type, sa.DateTime):
                return parse_datetime(value)
            if isinstance(self.storage.sa_type, sa.Date):
                return parse_date(value)
        except FieldCoercionError as exc:
            raise ValidationException(f"Invalid filter value for `{self.column.name}`: {exc}")
        return value


def build_accessors(
    table: sa.Table, columns_by_id: Mapping[UUID, ColumnDTO]
) -> dict[UUID, ColumnAccessor]:
    """Accessors for every column that has a physical counterpart in ``table``."""
    accessors = {}
    for column_id, column in columns_by_id.items():
        storage = resolve(column.type, column.config)
        if not storage.is_physical or column.name not in table.c:
            continue
        accessors[column_id] = ColumnAccessor(column, storage, table.c[column.name])
    return accessors


def merge_filters(
    base: FilterGroup | None, additional: FilterGroup | None
) -> FilterGroup | None:
    """AND two filter groups together, keeping both intact as children."""
    if base is None or not base.conditions:
        return additional
    if additional is None or not additional.conditions:
        return base
    return FilterGroup(operator=GroupOperator.AND, conditions=[base, additional])


class FilterCompiler:
    def __init__(
        self,
        table: sa.Table,
        columns_by_id: Mapping[UUID, ColumnDTO],
        logger: Logger = app_logger,
    ):
        self._table = table
        self._accessors = build_accessors(table, columns_by_id)
        self._logger = logger

    def accessor(self, column_id: UUID) -> ColumnAccessor | None:
        return self._accessors.get(column_id)

    def compile_group(self, group: FilterGroup | None) -> sa.ColumnElement | None:
        if group is None:
            return None

        clauses = []
        for child in group.conditions:
            if isinstance(child, FilterGroup):
                clause = self.compile_group(child)
            else:
                clause = self.compile_condition(child)
            if clause is not None:
                clauses.append(clause)

        if not clauses:
            return None
        if len(clauses) == 1:
            return clauses[0]
        if group.operator == GroupOperator.OR:
            return sa.or_(*clauses)
        return sa.and_(*clauses)

    def compile_condition(self, condition: FilterCondition) -> sa.ColumnElement | None:
        accessor = self.accessor(condition.column_id)
        if accessor is None:
            # Saved views may still point at deleted or computed columns
            self._logger.debug(f"Dropping filter on unknown column {condition.column_id}")
            return None

        operator = condition.operator
        value = condition.value

        if operator == FilterOperator.EQUALS:
            if value is None:
                return accessor.ref.is_(None)
            return accessor.comparable == accessor.coerce(value)
        if operator == FilterOperator.NOT_EQUALS:
            if value is None:
                return accessor.ref.is_not(None)
            return accessor.comparable != accessor.coerce(value)
        if operator == FilterOperator.IS_EMPTY:
            return sa.or_(accessor.ref.is_(None), accessor.text == "")
        if operator == FilterOperator.IS_NOT_EMPTY:
            return sa.and_(accessor.ref.is_not(None), accessor.text != "")

        if operator in (FilterOperator.BETWEEN, FilterOperator.IN, FilterOperator.NOT_IN):
            return self._compile_list_condition(accessor, operator, value)

        if value is None or value == "":
            self._logger.debug(f"Dropping `{operator}` filter without a value")
            return None

        if operator == FilterOperator.CONTAINS:
            return accessor.text.icontains(str(value), autoescape=True)
        if operator == FilterOperator.NOT_CONTAINS:
            return sa.not_(accessor.text.icontains(str(value), autoescape=True))
        if operator == FilterOperator.STARTS_WITH:
            return accessor.text.istartswith(str(value), autoescape=True)
        if operator == FilterOperator.ENDS_WITH:
            return accessor.text.iendswith(str(value), autoescape=True)
        if operator == FilterOperator.GT:
            return accessor.comparable > accessor.coerce(value)
        if operator == FilterOperator.GTE:
            return accessor.comparable >= accessor.coerce(value)
        if operator == FilterOperator.LT:
            return accessor.comparable < accessor.coerce(value)
        if operator == FilterOperator.LTE:
            return accessor.comparable <= accessor.coerce(value)

        raise ValidationException(f"Unsupported filter operator `{operator}`")

    def _compile_list_condition(
        self, accessor: ColumnAccessor, operator: FilterOperator, value: Any
    ) -> sa.ColumnElement | None:
        if not isinstance(value, (list, tuple)):
            self._logger.debug(f"Dropping `{operator}` filter, value is not a list")
            return None

        if operator == FilterOperator.BETWEEN:
            if len(value) != 2 or value[0] is None or value[1] is None:
                self._logger.debug("Dropping `between` filter without two bounds")
                return None
            return accessor.comparable.between(
                accessor.coerce(value[0]), accessor.coerce(value[1])
            )

        if not value:
            self._logger.debug(f"Dropping `{operator}` filter with an empty list")
            return None
        values = [accessor.coerce(item) for item in value]
        if operator == FilterOperator.IN:
            return accessor.comparable.in_(values)
        return accessor.comparable.not_in(values)

    def compile_sorts(self, sorts: list[SortConfig] | None) -> list[sa.ColumnElement]:
        order_by = []
        for sort in sorts or []:
            accessor = self.accessor(sort.column_id)
            if accessor is None:
                continue
            expression = accessor.comparable
            if sort.direction == SortDirection.DESC:
                order_by.append(expression.desc())
            else:
                order_by.append(expression.asc())

        if not order_by:
            order_by.append(self._table.c.created_at.desc())
        return order_by


@dataclass
class CompiledQuery:
    where: sa.ColumnElement | None = None
    order_by: list[sa.ColumnElement] = field(default_factory=list)

    def apply(self, query: sa.Select, *, sort: bool = True) -> sa.Select:
        if self.where is not None:
            query = query.where(self.where)
        if sort:
            query = query.order_by(*self.order_by)
        return query


def compile_query(
    table: sa.Table,
    columns_by_id: Mapping[UUID, ColumnDTO],
    filters: FilterGroup | None = None,
    additional_filters: FilterGroup | None = None,
    sorts: list[SortConfig] | None = None,
    logger: Logger = app_logger,
) -> CompiledQuery:
    compiler = FilterCompiler(table, columns_by_id, logger)
    merged = merge_filters(filters, additional_filters)
    return CompiledQuery(
        where=compiler.compile_group(merged),
        order_by=compiler.compile_sorts(sorts),
    )
