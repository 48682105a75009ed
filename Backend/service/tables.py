from logging import Logger
from typing import Any
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.constants import DEFAULT_VIEW_NAME, SYSTEM_COLUMNS
from core.database import SQLDatabase
from core.exceptions import (
    ConflictException,
    FormulaException,
    NotFoundException,
    StorageException,
    ValidationException,
)
from core.logger import app_logger
from core.utils import label_from_name, slugify, unique_slug, utc_now
from model.dao.data_table import DataTableColumnDAO, DataTableDAO, DataTableViewDAO
from model.dao.enums import ColumnType
from model.dto.data_table import (
    ColumnDefinitionDTO,
    ColumnDTO,
    CreateTableDTO,
    DataTableDTO,
    ReorderColumnsDTO,
    UpdateColumnDTO,
)
from service.computed_fields.formula import parse_formula
from service.computed_fields.pipeline import ComputedFieldPipeline
from service.field_types import FieldCoercionError, get_field_type, is_computed, resolve
from service.identifiers import is_system_column, physical_table_name
from service.schema_manager import SchemaManager, build_table
from service.view_query import load_table_columns


async def get_company_table(
    db: SQLDatabase, table_id: UUID, company_id: UUID | None
) -> DataTableDAO:
    table = await DataTableDAO.get(table_id, db_resource=db)
    if table is None or (company_id is not None and table.company_id != company_id):
        raise NotFoundException("Table not found")
    return table


class DataTableService:
    """Tables, their columns and their rows.

    Schema changes run DDL and metadata writes as separate steps. DDL always goes
    first so a failed statement leaves no metadata behind. A metadata write that
    fails after successful DDL is logged as orphaned physical state.
    """

    def __init__(
        self,
        pg_database: SQLDatabase,
        schema_manager: SchemaManager,
        pipeline: ComputedFieldPipeline,
        logger: Logger = app_logger,
    ):
        self._db = pg_database
        self._schema = schema_manager
        self._pipeline = pipeline
        self._logger = logger

    # Tables

    async def list_tables(self, company_id: UUID) -> list[DataTableDTO]:
        tables = await DataTableDAO.filter(company_id=company_id, db_resource=self._db)
        return [table.to_dto() for table in tables]

    async def get_table(self, table_id: UUID, company_id: UUID | None = None) -> DataTableDTO:
        table = await get_company_table(self._db, table_id, company_id)
        dto = table.to_dto()
        dto.columns = await load_table_columns(self._db, table.id)
        dto.views = [
            view.to_dto()
            for view in await DataTableViewDAO.filter(table_id=table.id, db_resource=self._db)
        ]
        return dto

    async def create_table(
        self, company_id: UUID, dto: CreateTableDTO, user_id: UUID | None = None
    ) -> DataTableDTO:
        names = [column.name for column in dto.columns]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ValidationException(f"Duplicate column names: {', '.join(sorted(duplicates))}")

        slug = await self._table_slug(company_id, dto.name, dto.slug)
        for column in dto.columns:
            await self._validate_definition(company_id, column, own_slug=slug)

        table_id = uuid4()
        table_name = physical_table_name(company_id, table_id)

        await self._schema.create_table(table_name, dto.columns)

        table = DataTableDAO(
            id=table_id,
            company_id=company_id,
            name=dto.name,
            slug=slug,
            table_name=table_name,
            description=dto.description,
            created_by=user_id,
        )
        columns = [
            DataTableColumnDAO(
                table_id=table_id,
                name=column.name,
                label=column.label or label_from_name(column.name),
                type=column.type,
                required=column.required,
                order=index,
                config=self._with_defaults(column.type, column.config),
            )
            for index, column in enumerate(dto.columns)
        ]
        default_view = DataTableViewDAO(
            table_id=table_id,
            name=DEFAULT_VIEW_NAME,
            slug=slugify(DEFAULT_VIEW_NAME),
            is_default=True,
            visible_columns=[str(column.id) for column in columns],
            page_size=50,
            created_by=user_id,
        )

        try:
            async with self._db.session() as session:
                session.add(table)
                await session.flush()
                session.add_all([*columns, default_view])
                await session.commit()
        except SQLAlchemyError as exc:
            self._logger.error(
                f"Physical table {table_name} created but metadata was not saved, "
                f"table is orphaned: {exc}"
            )
            raise StorageException(f"Failed to save table metadata: {getattr(exc, 'orig', exc)}")

        self._logger.info(f"Created table {dto.name} ({table_name}) for company {company_id}")
        return await self.get_table(table_id, company_id)

    async def delete_table(self, table_id: UUID, company_id: UUID | None = None) -> None:
        table = await get_company_table(self._db, table_id, company_id)

        await self._schema.drop_table(table.table_name)

        try:
            async with self._db.session() as session:
                await session.execute(
                    sa.delete(DataTableViewDAO).where(DataTableViewDAO.table_id == table.id)
                )
                await session.execute(
                    sa.delete(DataTableColumnDAO).where(DataTableColumnDAO.table_id == table.id)
                )
                await session.execute(sa.delete(DataTableDAO).where(DataTableDAO.id == table.id))
                await session.commit()
        except SQLAlchemyError as exc:
            self._logger.error(
                f"Physical table {table.table_name} dropped but metadata for {table.id} remains: {exc}"
            )
            raise StorageException(f"Failed to delete table metadata: {getattr(exc, 'orig', exc)}")

        self._logger.info(f"Deleted table {table.name} ({table.table_name})")

    async def _table_slug(self, company_id: UUID, name: str, requested: str | None) -> str:
        taken = {
            table.slug
            for table in await DataTableDAO.filter(company_id=company_id, db_resource=self._db)
        }
        if requested:
            slug = slugify(requested)
            if not slug:
                raise ValidationException("Slug must contain letters or digits")
            if slug in taken:
                raise ConflictException(f"A table with slug `{slug}` already exists")
            return slug
        return unique_slug(slugify(name), taken)

    # Columns

    def _with_defaults(self, column_type: str, config: dict | None) -> dict:
        return {**get_field_type(column_type).default_config, **(config or {})}

    async def _validate_definition(
        self, company_id: UUID, column: ColumnDefinitionDTO, own_slug: str | None = None
    ) -> None:
        self._schema.validate_definition(column)
        config = column.config or {}

        if column.type == ColumnType.FORMULA:
            try:
                parse_formula(config["formula"])
            except FormulaException as exc:
                raise ValidationException(f"Invalid formula for `{column.name}`: {exc.message}")

        if column.type == ColumnType.RELATION and config["targetTable"] != own_slug:
            target = (
                await DataTableDAO.filter(
                    company_id=company_id, slug=config["targetTable"], db_resource=self._db
                )
            ).first()
            if target is None:
                raise NotFoundException(f"Target table `{config['targetTable']}` not found")

    async def _get_column(self, table: DataTableDAO, column_id: UUID) -> DataTableColumnDAO:
        column = (
            await DataTableColumnDAO.filter(id=column_id, table_id=table.id, db_resource=self._db)
        ).first()
        if column is None:
            raise NotFoundException("Column not found")
        return column

    async def add_column(
        self, table_id: UUID, dto: ColumnDefinitionDTO, company_id: UUID | None = None
    ) -> ColumnDTO:
        table = await get_company_table(self._db, table_id, company_id)
        await self._validate_definition(table.company_id, dto, own_slug=table.slug)

        existing = list(await DataTableColumnDAO.filter(table_id=table.id, db_resource=self._db))
        if any(column.name == dto.name for column in existing):
            raise ConflictException(f"Column `{dto.name}` already exists")

        if dto.required and resolve(dto.type, dto.config).is_physical:
            if await self._schema.count_rows(table.table_name):
                raise ConflictException(
                    f"Cannot add required column `{dto.name}` to a table that already has rows"
                )

        await self._schema.add_column(table.table_name, dto)

        column = DataTableColumnDAO(
            table_id=table.id,
            name=dto.name,
            label=dto.label or label_from_name(dto.name),
            type=dto.type,
            required=dto.required,
            order=max((c.order for c in existing), default=-1) + 1,
            config=self._with_defaults(dto.type, dto.config),
        )
        try:
            await column.save(self._db)
        except SQLAlchemyError as exc:
            self._logger.error(
                f"Column {dto.name} added to {table.table_name} but metadata was not saved, "
                f"column is orphaned: {exc}"
            )
            raise StorageException(f"Failed to save column metadata: {getattr(exc, 'orig', exc)}")

        default_view = (
            await DataTableViewDAO.filter(table_id=table.id, is_default=True, db_resource=self._db)
        ).first()
        if default_view is not None and default_view.visible_columns:
            default_view.visible_columns = [*default_view.visible_columns, str(column.id)]
            await default_view.save(self._db)

        self._logger.info(f"Added column {dto.name} ({dto.type}) to {table.table_name}")
        return column.to_dto()

    async def update_column(
        self,
        table_id: UUID,
        column_id: UUID,
        dto: UpdateColumnDTO,
        company_id: UUID | None = None,
    ) -> ColumnDTO:
        table = await get_company_table(self._db, table_id, company_id)
        column = await self._get_column(table, column_id)
        if is_system_column(column.name):
            raise ValidationException(f"`{column.name}` is a system column")

        new_type = dto.type or column.type
        new_config = {**column.config, **dto.config} if dto.config is not None else column.config

        # Reject unsafe conversions before any DDL
        if new_type != column.type:
            self._schema.alter_type_statement(
                table.table_name, column.name, column.type, new_type, new_config, column.config
            )
        if new_type != column.type or dto.config is not None:
            await self._validate_definition(
                table.company_id,
                ColumnDefinitionDTO(
                    name=column.name, type=new_type, required=column.required, config=new_config
                ),
                own_slug=table.slug,
            )

        if new_type != column.type:
            await self._schema.alter_column_type(
                table.table_name, column.name, column.type, new_type, new_config, column.config
            )
            column.type = new_type

        if dto.required is not None and dto.required != column.required:
            await self._schema.set_required(table.table_name, column, dto.required)
            column.required = dto.required

        if dto.label:
            column.label = dto.label
        column.config = self._with_defaults(new_type, new_config)

        try:
            await column.save(self._db)
        except SQLAlchemyError as exc:
            self._logger.error(f"Schema of {column.name} changed but metadata was not saved: {exc}")
            raise StorageException(f"Failed to save column metadata: {getattr(exc, 'orig', exc)}")

        return column.to_dto()

    async def delete_column(
        self, table_id: UUID, column_id: UUID, company_id: UUID | None = None
    ) -> None:
        table = await get_company_table(self._db, table_id, company_id)
        column = await self._get_column(table, column_id)
        if is_system_column(column.name):
            raise ValidationException(f"`{column.name}` is a system column and cannot be deleted")

        if resolve(column.type, column.config).is_physical:
            await self._schema.drop_column(table.table_name, column.name)

        key = str(column.id)
        try:
            async with self._db.session() as session:
                views = await session.scalars(
                    sa.select(DataTableViewDAO).where(DataTableViewDAO.table_id == table.id)
                )
                for view in views:
                    if key in view.visible_columns:
                        view.visible_columns = [c for c in view.visible_columns if c != key]
                    if key in view.column_widths:
                        view.column_widths = {
                            k: v for k, v in view.column_widths.items() if k != key
                        }
                    if any(str(sort.get("columnId")) == key for sort in view.sort):
                        view.sort = [s for s in view.sort if str(s.get("columnId")) != key]
                    session.add(view)
                await session.execute(
                    sa.delete(DataTableColumnDAO).where(DataTableColumnDAO.id == column.id)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            self._logger.error(
                f"Column {column.name} dropped from {table.table_name} but metadata remains: {exc}"
            )
            raise StorageException(f"Failed to delete column metadata: {getattr(exc, 'orig', exc)}")

        self._logger.info(f"Deleted column {column.name} from {table.table_name}")

    async def reorder_columns(
        self, table_id: UUID, dto: ReorderColumnsDTO, company_id: UUID | None = None
    ) -> list[ColumnDTO]:
        table = await get_company_table(self._db, table_id, company_id)
        columns = {
            column.id: column
            for column in await DataTableColumnDAO.filter(table_id=table.id, db_resource=self._db)
        }
        unknown = [str(column_id) for column_id in dto.column_ids if column_id not in columns]
        if unknown:
            raise ValidationException(f"Unknown column ids: {', '.join(unknown)}")
        if len(set(dto.column_ids)) != len(dto.column_ids):
            raise ValidationException("Column ids must not repeat")

        view = None
        if dto.view_id is not None:
            view = (
                await DataTableViewDAO.filter(
                    id=dto.view_id, table_id=table.id, db_resource=self._db
                )
            ).first()
            if view is None:
                raise NotFoundException("View not found")

        async with self._db.session() as session:
            for position, column_id in enumerate(dto.column_ids):
                column = columns[column_id]
                column.order = position
                session.add(column)
            if view is not None:
                view.visible_columns = [str(column_id) for column_id in dto.column_ids]
                session.add(view)
            await session.commit()

        return await load_table_columns(self._db, table.id)

    # Rows

    async def _table_context(
        self, table_id: UUID, company_id: UUID | None
    ) -> tuple[DataTableDAO, list[ColumnDTO], sa.Table]:
        table = await get_company_table(self._db, table_id, company_id)
        columns = await load_table_columns(self._db, table.id)
        return table, columns, build_table(table.table_name, columns)

    def _coerce_values(
        self, columns: list[ColumnDTO], values: dict[str, Any], *, partial: bool
    ) -> dict[str, Any]:
        by_name = {column.name: column for column in columns}
        coerced = {}
        errors = []
        for name, value in values.items():
            if name in SYSTEM_COLUMNS:
                errors.append(f"`{name}` is managed by the system")
                continue
            column = by_name.get(name)
            if column is None:
                errors.append(f"Unknown field `{name}`")
                continue
            if is_computed(column.type):
                errors.append(f"`{name}` is a computed field")
                continue
            try:
                coerced[name] = get_field_type(column.type).coerce(value, column.config)
            except FieldCoercionError as exc:
                errors.append(f"{name}: {exc}")

        for column in columns:
            if not column.required or is_computed(column.type):
                continue
            if partial and column.name not in values:
                continue
            if coerced.get(column.name) in (None, "", []):
                errors.append(f"`{column.name}` is required")

        if errors:
            raise ValidationException("; ".join(errors))
        return coerced

    async def _execute_dml(self, statement, description: str):
        try:
            async with self._db.connection() as conn:
                return await conn.execute(statement)
        except IntegrityError as exc:
            raise ConflictException(f"Failed to {description}: {getattr(exc, 'orig', exc)}")
        except SQLAlchemyError as exc:
            self._logger.error(f"Failed to {description}: {exc}")
            raise StorageException(f"Failed to {description}: {getattr(exc, 'orig', exc)}")

    async def insert_row(
        self,
        table_id: UUID,
        values: dict[str, Any],
        company_id: UUID | None = None,
        user_id: UUID | None = None,
    ) -> dict[str, Any]:
        table, columns, physical = await self._table_context(table_id, company_id)
        row = self._coerce_values(columns, values, partial=False)

        now = utc_now()
        row_id = uuid4()
        row.update(id=row_id, created_at=now, updated_at=now, created_by=user_id)

        await self._execute_dml(sa.insert(physical).values(**row), "insert row")
        self._logger.debug(f"Inserted row {row_id} into {table.table_name}")

        return await self.get_row(table_id, row_id, company_id)

    async def get_row(
        self, table_id: UUID, row_id: UUID, company_id: UUID | None = None
    ) -> dict[str, Any]:
        table, columns, physical = await self._table_context(table_id, company_id)
        result = await self._execute_dml(
            sa.select(physical).where(physical.c.id == row_id), "load row"
        )
        record = result.mappings().one_or_none()
        if record is None:
            raise NotFoundException("Row not found")

        rows = await self._pipeline.resolve([dict(record)], table.to_dto(), columns, table.company_id)
        return rows[0]

    async def update_row(
        self,
        table_id: UUID,
        row_id: UUID,
        values: dict[str, Any],
        company_id: UUID | None = None,
    ) -> dict[str, Any]:
        table, columns, physical = await self._table_context(table_id, company_id)
        changes = self._coerce_values(columns, values, partial=True)
        changes["updated_at"] = utc_now()

        result = await self._execute_dml(
            sa.update(physical).where(physical.c.id == row_id).values(**changes), "update row"
        )
        if result.rowcount == 0:
            raise NotFoundException("Row not found")

        return await self.get_row(table_id, row_id, company_id)

    async def delete_row(
        self, table_id: UUID, row_id: UUID, company_id: UUID | None = None
    ) -> None:
        table, _, physical = await self._table_context(table_id, company_id)
        result = await self._execute_dml(
            sa.delete(physical).where(physical.c.id == row_id), "delete row"
        )
        if result.rowcount == 0:
            raise NotFoundException("Row not found")
        self._logger.debug(f"Deleted row {row_id} from {table.table_name}")
