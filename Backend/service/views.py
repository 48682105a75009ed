from logging import Logger
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError

from core.database import SQLDatabase
from core.exceptions import (
    ConflictException,
    NotFoundException,
    StorageException,
    ValidationException,
)
from core.logger import app_logger
from core.utils import slugify, unique_slug
from model.dao.data_table import DataTableColumnDAO, DataTableDAO, DataTableViewDAO
from model.dto.data_table import CreateViewDTO, UpdateViewDTO, ViewDTO
from service.tables import get_company_table


class ViewService:
    """Saved views of a table. Exactly one view per table is the default."""

    def __init__(self, pg_database: SQLDatabase, logger: Logger = app_logger):
        self._db = pg_database
        self._logger = logger

    async def _get_view(self, view_id: UUID, company_id: UUID | None) -> tuple[DataTableDAO, DataTableViewDAO]:
        view = await DataTableViewDAO.get(view_id, db_resource=self._db)
        if view is None:
            raise NotFoundException("View not found")
        table = await DataTableDAO.get(view.table_id, db_resource=self._db)
        if table is None or (company_id is not None and table.company_id != company_id):
            raise NotFoundException("View not found")
        return table, view

    async def _check_columns(self, table: DataTableDAO, column_ids: list[UUID]) -> list[str]:
        known = {
            column.id
            for column in await DataTableColumnDAO.filter(table_id=table.id, db_resource=self._db)
        }
        unknown = [str(column_id) for column_id in column_ids if column_id not in known]
        if unknown:
            raise ValidationException(f"Unknown column ids: {', '.join(unknown)}")
        return [str(column_id) for column_id in column_ids]

    async def _view_slug(
        self, table: DataTableDAO, name: str, requested: str | None, exclude: UUID | None = None
    ) -> str:
        taken = {
            view.slug
            for view in await DataTableViewDAO.filter(table_id=table.id, db_resource=self._db)
            if view.id != exclude
        }
        if requested:
            slug = slugify(requested)
            if not slug:
                raise ValidationException("Slug must contain letters or digits")
            if slug in taken:
                raise ConflictException(f"A view with slug `{slug}` already exists")
            return slug
        return unique_slug(slugify(name), taken)

    async def _save(self, view: DataTableViewDAO) -> None:
        """Save a view, clearing the default flag on its siblings in the same transaction."""
        try:
            async with self._db.session() as session:
                if view.is_default:
                    await session.execute(
                        sa.update(DataTableViewDAO)
                        .where(
                            DataTableViewDAO.table_id == view.table_id,
                            DataTableViewDAO.id != view.id,
                        )
                        .values(is_default=False)
                    )
                session.add(view)
                await session.commit()
                await session.refresh(view)
        except IntegrityError as exc:
            raise ConflictException(f"Failed to save view: {getattr(exc, 'orig', exc)}")

    async def list_views(self, table_id: UUID, company_id: UUID | None = None) -> list[ViewDTO]:
        table = await get_company_table(self._db, table_id, company_id)
        return [
            view.to_dto()
            for view in await DataTableViewDAO.filter(table_id=table.id, db_resource=self._db)
        ]

    async def get_view(self, view_id: UUID, company_id: UUID | None = None) -> ViewDTO:
        _, view = await self._get_view(view_id, company_id)
        return view.to_dto()

    async def create_view(
        self,
        table_id: UUID,
        dto: CreateViewDTO,
        company_id: UUID | None = None,
        user_id: UUID | None = None,
    ) -> ViewDTO:
        table = await get_company_table(self._db, table_id, company_id)
        slug = await self._view_slug(table, dto.name, dto.slug)

        if dto.visible_columns is None:
            visible_columns = [
                str(column.id)
                for column in await DataTableColumnDAO.filter(table_id=table.id, db_resource=self._db)
            ]
        else:
            visible_columns = await self._check_columns(table, dto.visible_columns)

        existing = (await DataTableViewDAO.filter(table_id=table.id, db_resource=self._db)).first()

        view = DataTableViewDAO(
            table_id=table.id,
            name=dto.name,
            slug=slug,
            type=dto.type,
            # The first view of a table always becomes the default
            is_default=dto.is_default or existing is None,
            is_public=dto.is_public,
            is_shared=dto.is_shared,
            visible_columns=visible_columns,
            column_widths=dto.column_widths,
            filters=dto.filters.model_dump(mode="json", by_alias=True) if dto.filters else None,
            sort=[sort.model_dump(mode="json", by_alias=True) for sort in dto.sort],
            view_config=dto.view_config,
            page_size=dto.page_size,
            created_by=user_id,
        )
        await self._save(view)

        self._logger.debug(f"Created view {view.name} on table {table.id}")
        return view.to_dto()

    async def update_view(
        self, view_id: UUID, dto: UpdateViewDTO, company_id: UUID | None = None
    ) -> ViewDTO:
        table, view = await self._get_view(view_id, company_id)
        fields = dto.model_fields_set

        if dto.name is not None:
            view.name = dto.name
        if "slug" in fields and dto.slug:
            view.slug = await self._view_slug(table, view.name, dto.slug, exclude=view.id)
        if dto.type is not None:
            view.type = dto.type
        if dto.is_default is not None:
            if not dto.is_default and view.is_default:
                raise ValidationException(
                    "Make another view the default instead of unsetting this one"
                )
            view.is_default = dto.is_default
        if dto.is_public is not None:
            view.is_public = dto.is_public
        if dto.is_shared is not None:
            view.is_shared = dto.is_shared
        if dto.visible_columns is not None:
            view.visible_columns = await self._check_columns(table, dto.visible_columns)
        if dto.column_widths is not None:
            view.column_widths = dto.column_widths
        if "filters" in fields:
            # An explicit null clears the view's filters
            view.filters = (
                dto.filters.model_dump(mode="json", by_alias=True) if dto.filters else None
            )
        if dto.sort is not None:
            view.sort = [sort.model_dump(mode="json", by_alias=True) for sort in dto.sort]
        if dto.view_config is not None:
            view.view_config = dto.view_config
        if dto.page_size is not None:
            view.page_size = dto.page_size

        await self._save(view)
        return view.to_dto()

    async def delete_view(self, view_id: UUID, company_id: UUID | None = None) -> None:
        table, view = await self._get_view(view_id, company_id)
        siblings = [
            sibling
            for sibling in await DataTableViewDAO.filter(table_id=table.id, db_resource=self._db)
            if sibling.id != view.id
        ]
        if not siblings:
            raise ConflictException("Cannot delete the last view of a table")

        try:
            await view.delete(self._db)
        except IntegrityError as exc:
            raise StorageException(f"Failed to delete view: {getattr(exc, 'orig', exc)}")

        if view.is_default:
            # Promote the oldest remaining view
            successor = siblings[0]
            successor.is_default = True
            await self._save(successor)
            self._logger.info(f"View {successor.name} is now the default of table {table.id}")
