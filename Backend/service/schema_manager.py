from logging import Logger
from typing import Any, Iterable, Protocol

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateTable, DropTable

from core.database import SQLDatabase
from core.exceptions import ConflictException, StorageException, ValidationException
from core.logger import app_logger
from model.dao.enums import ColumnType
from service.field_types import get_field_type, resolve
from service.identifiers import ensure_column_name, ensure_table_name


# (from, to) pairs that never lose data
SAFE_TYPE_CONVERSIONS = frozenset(
    {
        (ColumnType.TEXT, ColumnType.LONG_TEXT),
        (ColumnType.NUMBER, ColumnType.CURRENCY),
        (ColumnType.DATE, ColumnType.DATETIME),
        (ColumnType.BOOLEAN, ColumnType.SWITCH),
        (ColumnType.SWITCH, ColumnType.BOOLEAN),
    }
)


class ColumnLike(Protocol):
    name: str
    type: str
    required: bool
    config: dict[str, Any]


def is_safe_conversion(from_type: str, to_type: str) -> bool:
    if from_type == to_type:
        return True
    return (ColumnType(from_type), ColumnType(to_type)) in SAFE_TYPE_CONVERSIONS


def system_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("created_by", sa.Uuid(), nullable=True),
    ]


def build_table(table_name: str, columns: Iterable[ColumnLike]) -> sa.Table:
    """SQLAlchemy Core table for a physical table, skipping computed columns.

    Every identifier is validated before it is bound into the table definition.
    """
    ensure_table_name(table_name)
    user_columns = []
    for column in columns:
        storage = resolve(column.type, column.config)
        if not storage.is_physical:
            continue
        ensure_column_name(column.name)
        user_columns.append(
            sa.Column(column.name, storage.sa_type, nullable=not column.required)
        )

    return sa.Table(table_name, sa.MetaData(), *system_columns(), *user_columns)


def compile_type(sa_type: sa.types.TypeEngine, dialect: sa.engine.Dialect) -> str:
    return sa_type.compile(dialect=dialect)


class SchemaManager:
    """Runs DDL against the physical tables backing data tables."""

    def __init__(self, pg_database: SQLDatabase, logger: Logger = app_logger):
        self._db = pg_database
        self._logger = logger

    def _quote(self, identifier: str) -> str:
        return self._db.dialect.identifier_preparer.quote(identifier)

    async def _execute(self, statement, description: str) -> None:
        self._logger.info(f"DDL: {description}")
        try:
            async with self._db.connection() as conn:
                await conn.execute(statement)
        except SQLAlchemyError as exc:
            self._logger.error(f"DDL failed ({description}): {exc}")
            raise StorageException(f"Failed to {description}: {getattr(exc, 'orig', exc)}")

    async def create_table(self, table_name: str, columns: Iterable[ColumnLike]) -> None:
        table = build_table(table_name, columns)
        await self._execute(CreateTable(table), f"create table {table_name}")

    async def drop_table(self, table_name: str) -> None:
        table = sa.Table(ensure_table_name(table_name), sa.MetaData())
        await self._execute(DropTable(table, if_exists=True), f"drop table {table_name}")

    async def add_column(self, table_name: str, column: ColumnLike) -> None:
        storage = resolve(column.type, column.config)
        if not storage.is_physical:
            self._logger.debug(f"`{column.name}` is computed, no physical column added")
            return

        ensure_table_name(table_name)
        ensure_column_name(column.name)
        type_sql = compile_type(storage.sa_type, self._db.dialect)
        not_null = ""
        if column.required:
            if self._db.dialect_name == "postgresql":
                not_null = " NOT NULL"
            else:
                # SQLite refuses NOT NULL columns without a default on ALTER TABLE
                self._logger.warning(
                    f"Adding `{column.name}` as nullable on {self._db.dialect_name}"
                )
        statement = sa.text(
            f"ALTER TABLE {self._quote(table_name)} "
            f"ADD COLUMN {self._quote(column.name)} {type_sql}{not_null}"
        )
        await self._execute(statement, f"add column {column.name} to {table_name}")

    async def drop_column(self, table_name: str, column_name: str) -> None:
        ensure_table_name(table_name)
        ensure_column_name(column_name)
        statement = sa.text(
            f"ALTER TABLE {self._quote(table_name)} DROP COLUMN {self._quote(column_name)}"
        )
        await self._execute(statement, f"drop column {column_name} from {table_name}")

    def alter_type_statement(
        self,
        table_name: str,
        column_name: str,
        from_type: str,
        to_type: str,
        config: dict | None = None,
        from_config: dict | None = None,
    ) -> sa.TextClause | None:
        """ALTER COLUMN TYPE for a whitelisted conversion, or None when storage is unchanged."""
        if not is_safe_conversion(from_type, to_type):
            raise ValidationException(
                f"Converting `{column_name}` from {from_type} to {to_type} may lose data"
            )

        ensure_table_name(table_name)
        ensure_column_name(column_name)
        dialect = self._db.dialect
        old_storage = resolve(from_type, from_config)
        new_storage = resolve(to_type, config)
        if not new_storage.is_physical or not old_storage.is_physical:
            raise ValidationException("Computed columns cannot change storage type")

        old_sql = compile_type(old_storage.sa_type, dialect)
        new_sql = compile_type(new_storage.sa_type, dialect)
        if old_sql == new_sql:
            return None

        column = self._quote(column_name)
        if new_storage.is_document_backed and not old_storage.is_document_backed:
            using = f"to_jsonb({column})"
        else:
            using = f"{column}::{new_sql}"
        return sa.text(
            f"ALTER TABLE {self._quote(table_name)} "
            f"ALTER COLUMN {column} TYPE {new_sql} USING {using}"
        )

    async def alter_column_type(
        self,
        table_name: str,
        column_name: str,
        from_type: str,
        to_type: str,
        config: dict | None = None,
        from_config: dict | None = None,
    ) -> None:
        statement = self.alter_type_statement(
            table_name, column_name, from_type, to_type, config, from_config
        )
        if statement is None:
            return
        if self._db.dialect_name != "postgresql":
            # SQLite keeps dynamically typed columns, nothing to rewrite
            self._logger.warning(
                f"Skipping ALTER COLUMN TYPE on {self._db.dialect_name} for {column_name}"
            )
            return
        await self._execute(
            statement, f"change type of {column_name} in {table_name} to {to_type}"
        )

    async def count_nulls(self, table_name: str, column_name: str) -> int:
        ensure_table_name(table_name)
        ensure_column_name(column_name)
        table = sa.table(table_name, sa.column(column_name))
        query = (
            sa.select(sa.func.count())
            .select_from(table)
            .where(table.c[column_name].is_(None))
        )
        try:
            async with self._db.connection() as conn:
                return (await conn.execute(query)).scalar_one()
        except SQLAlchemyError as exc:
            raise StorageException(f"Failed to inspect {column_name}: {getattr(exc, 'orig', exc)}")

    async def count_rows(self, table_name: str) -> int:
        ensure_table_name(table_name)
        query = sa.select(sa.func.count()).select_from(sa.table(table_name))
        try:
            async with self._db.connection() as conn:
                return (await conn.execute(query)).scalar_one()
        except SQLAlchemyError as exc:
            raise StorageException(f"Failed to count rows: {getattr(exc, 'orig', exc)}")

    async def set_required(self, table_name: str, column: ColumnLike, required: bool) -> None:
        """Toggle NOT NULL, refusing when existing rows hold NULLs."""
        if not resolve(column.type, column.config).is_physical:
            return

        if required:
            null_count = await self.count_nulls(table_name, column.name)
            if null_count:
                raise ConflictException(
                    f"Cannot make `{column.name}` required: {null_count} row(s) have no value"
                )

        if self._db.dialect_name != "postgresql":
            self._logger.warning(
                f"Skipping NOT NULL change on {self._db.dialect_name} for {column.name}"
            )
            return

        action = "SET NOT NULL" if required else "DROP NOT NULL"
        statement = sa.text(
            f"ALTER TABLE {self._quote(ensure_table_name(table_name))} "
            f"ALTER COLUMN {self._quote(ensure_column_name(column.name))} {action}"
        )
        await self._execute(statement, f"{action.lower()} on {column.name}")

    def validate_definition(self, column: ColumnLike) -> None:
        """Reject a column definition before any DDL runs."""
        ensure_column_name(column.name)
        field_type = get_field_type(column.type)
        for key in ("min", "max", "maxLength", "decimal"):
            value = (column.config or {}).get(key)
            if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
                raise ValidationException(f"`{key}` must be a number for `{column.name}`")
        if field_type.type == ColumnType.RELATION and not (column.config or {}).get("targetTable"):
            raise ValidationException(f"Relation `{column.name}` needs a `targetTable`")
        if field_type.type == ColumnType.LOOKUP:
            config = column.config or {}
            if not config.get("relationField") or not config.get("targetField"):
                raise ValidationException(
                    f"Lookup `{column.name}` needs `relationField` and `targetField`"
                )
        if field_type.type == ColumnType.ROLLUP:
            config = column.config or {}
            if not config.get("sourceTable") or not (config.get("filterBy") or {}).get("field"):
                raise ValidationException(
                    f"Rollup `{column.name}` needs `sourceTable` and `filterBy.field`"
                )
        if field_type.type == ColumnType.FORMULA and not (column.config or {}).get("formula"):
            raise ValidationException(f"Formula `{column.name}` needs a `formula`")
