from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from model.dao.enums import ColumnType, ViewType
from model.dto.base import CamelModel
from model.dto.filters import FilterGroup, SortConfig


class ColumnDTO(CamelModel):
    id: UUID
    table_id: UUID
    name: str
    label: str
    type: ColumnType
    required: bool = False
    order: int = 0
    config: dict[str, Any] = {}


class ViewDTO(CamelModel):
    id: UUID
    table_id: UUID
    name: str
    slug: str
    type: ViewType = ViewType.TABLE
    is_default: bool = False
    is_public: bool = False
    is_shared: bool = False
    visible_columns: list[UUID] = []
    column_widths: dict[str, Any] = {}
    filters: FilterGroup | None = None
    sort: list[SortConfig] = []
    view_config: dict[str, Any] = {}
    page_size: int = 50
    created_by: UUID | None = None


class DataTableDTO(CamelModel):
    id: UUID
    company_id: UUID
    name: str
    slug: str
    table_name: str
    description: str | None = None
    created_by: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    columns: list[ColumnDTO] = []
    views: list[ViewDTO] = []


class ColumnDefinitionDTO(CamelModel):
    name: str
    label: str | None = None
    type: ColumnType
    required: bool = False
    config: dict[str, Any] = {}


class CreateTableDTO(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    slug: str | None = None
    description: str | None = None
    columns: list[ColumnDefinitionDTO] = []


class UpdateColumnDTO(CamelModel):
    label: str | None = None
    type: ColumnType | None = None
    required: bool | None = None
    config: dict[str, Any] | None = None


class ReorderColumnsDTO(CamelModel):
    column_ids: list[UUID]
    view_id: UUID | None = None


class CreateViewDTO(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    slug: str | None = None
    type: ViewType = ViewType.TABLE
    is_default: bool = False
    is_public: bool = False
    is_shared: bool = False
    visible_columns: list[UUID] | None = None
    column_widths: dict[str, Any] = {}
    filters: FilterGroup | None = None
    sort: list[SortConfig] = []
    view_config: dict[str, Any] = {}
    page_size: int = Field(default=50, ge=1, le=1000)


class UpdateViewDTO(CamelModel):
    name: str | None = None
    slug: str | None = None
    type: ViewType | None = None
    is_default: bool | None = None
    is_public: bool | None = None
    is_shared: bool | None = None
    visible_columns: list[UUID] | None = None
    column_widths: dict[str, Any] | None = None
    filters: FilterGroup | None = None
    sort: list[SortConfig] | None = None
    view_config: dict[str, Any] | None = None
    page_size: int | None = Field(default=None, ge=1, le=1000)
