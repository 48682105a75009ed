from typing import Any, Self
from uuid import UUID

from sqlalchemy import ScalarResult, UniqueConstraint
from sqlmodel import Column, Enum, Field, asc, desc, select

from core.database import SQLDatabase
from model.dao.base import JSONDocument, TimestampDAO, UuidDAO
from model.dao.enums import ColumnType, ViewType
from model.dto.data_table import ColumnDTO, DataTableDTO, ViewDTO


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class DataTableDAO(UuidDAO, TimestampDAO, table=True):
    # model config
    __tablename__ = "data_tables"
    __table_args__ = (UniqueConstraint("company_id", "slug"),)
    __dto_class__ = DataTableDTO

    company_id: UUID = Field(nullable=False, index=True)
    name: str
    slug: str
    # Physical table name, fixed at creation
    table_name: str = Field(nullable=False, unique=True)
    description: str | None = None
    created_by: UUID | None = None

    @classmethod
    async def filter(
        cls,
        *,
        db_resource: SQLDatabase,
        id: UUID | None = None,
        company_id: UUID | None = None,
        slug: str | None = None,
        slug_in: list[str] | None = None,
    ) -> ScalarResult[Self]:
        """Filter data tables by id, company and slug, newest first."""
        async with db_resource.session() as session:
            query = select(DataTableDAO)
            if id is not None:
                query = query.where(DataTableDAO.id == id)
            if company_id is not None:
                query = query.where(DataTableDAO.company_id == company_id)
            if slug is not None:
                query = query.where(DataTableDAO.slug == slug)
            if slug_in is not None:
                query = query.where(DataTableDAO.slug.in_(slug_in))

            query = query.order_by(desc(DataTableDAO.created_at))

            return await session.scalars(query)


class DataTableColumnDAO(UuidDAO, TimestampDAO, table=True):
    # model config
    __tablename__ = "data_table_columns"
    __table_args__ = (UniqueConstraint("table_id", "name"),)
    __dto_class__ = ColumnDTO

    table_id: UUID = Field(foreign_key="data_tables.id", ondelete="CASCADE")
    name: str
    label: str
    type: ColumnType = Field(
        sa_column=Column(
            Enum(ColumnType, native_enum=False, values_callable=_enum_values),
            nullable=False,
        )
    )
    required: bool = Field(nullable=False, default=False)
    order: int = Field(nullable=False, default=0)
    config: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSONDocument, nullable=False)
    )

    @classmethod
    async def filter(
        cls,
        *,
        db_resource: SQLDatabase,
        id: UUID | None = None,
        table_id: UUID | None = None,
        table_id_in: list[UUID] | None = None,
        name: str | None = None,
    ) -> ScalarResult[Self]:
        """Filter columns by id, table and name, in display order."""
        async with db_resource.session() as session:
            query = select(DataTableColumnDAO)
            if id is not None:
                query = query.where(DataTableColumnDAO.id == id)
            if table_id is not None:
                query = query.where(DataTableColumnDAO.table_id == table_id)
            if table_id_in is not None:
                query = query.where(DataTableColumnDAO.table_id.in_(table_id_in))
            if name is not None:
                query = query.where(DataTableColumnDAO.name == name)

            query = query.order_by(
                asc(DataTableColumnDAO.order), asc(DataTableColumnDAO.created_at)
            )

            return await session.scalars(query)


class DataTableViewDAO(UuidDAO, TimestampDAO, table=True):
    # model config
    __tablename__ = "data_table_views"
    __table_args__ = (UniqueConstraint("table_id", "slug"),)
    __dto_class__ = ViewDTO

    table_id: UUID = Field(foreign_key="data_tables.id", ondelete="CASCADE")
    name: str
    slug: str
    type: ViewType = Field(
        sa_column=Column(
            Enum(ViewType, native_enum=False, values_callable=_enum_values),
            nullable=False,
        ),
        default=ViewType.TABLE,
    )
    # Not backed by a constraint, kept unique per table by ViewService
    is_default: bool = Field(nullable=False, default=False)
    is_public: bool = Field(nullable=False, default=False)
    is_shared: bool = Field(nullable=False, default=False)
    visible_columns: list[str] = Field(
        default_factory=list, sa_column=Column(JSONDocument, nullable=False)
    )
    column_widths: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSONDocument, nullable=False)
    )
    filters: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSONDocument, nullable=True)
    )
    sort: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSONDocument, nullable=False)
    )
    view_config: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSONDocument, nullable=False)
    )
    page_size: int = Field(nullable=False, default=50)
    created_by: UUID | None = None

    @classmethod
    async def filter(
        cls,
        *,
        db_resource: SQLDatabase,
        id: UUID | None = None,
        table_id: UUID | None = None,
        slug: str | None = None,
        is_default: bool | None = None,
    ) -> ScalarResult[Self]:
        """Filter views by id, table, slug and default flag."""
        async with db_resource.session() as session:
            query = select(DataTableViewDAO)
            if id is not None:
                query = query.where(DataTableViewDAO.id == id)
            if table_id is not None:
                query = query.where(DataTableViewDAO.table_id == table_id)
            if slug is not None:
                query = query.where(DataTableViewDAO.slug == slug)
            if is_default is not None:
                query = query.where(DataTableViewDAO.is_default == is_default)

            query = query.order_by(asc(DataTableViewDAO.created_at))

            return await session.scalars(query)
