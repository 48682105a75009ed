from typing import Any
from uuid import UUID

from pydantic import Field

from core.environment import settings
from model.dto.base import CamelModel
from model.dto.data_table import ColumnDTO
from model.dto.filters import FilterGroup, SortConfig


class QueryRowsDTO(CamelModel):
    limit: int = Field(
        default=settings.QUERY_DEFAULT_LIMIT, ge=1, le=settings.QUERY_MAX_LIMIT
    )
    offset: int = Field(default=0, ge=0)
    filters: FilterGroup | None = None
    additional_filters: FilterGroup | None = None
    sorts: list[SortConfig] | None = None


class ViewSummaryDTO(CamelModel):
    id: UUID
    name: str
    type: str
    columns: list[ColumnDTO]


class QueryRowsResultDTO(CamelModel):
    rows: list[dict[str, Any]]
    total: int
    has_more: bool
    view: ViewSummaryDTO


class GroupOptionsDTO(CamelModel):
    column_name: str
    filters: FilterGroup | None = None
    additional_filters: FilterGroup | None = None
    max_options: int = Field(default=settings.GROUP_OPTIONS_MAX, ge=1, le=1000)
    include_empty: bool = True
    min_count: int = Field(default=1, ge=0)


class GroupOptionDTO(CamelModel):
    id: str | None = None
    label: str
    count: int


class GroupOptionsResultDTO(CamelModel):
    column_type: str
    options: list[GroupOptionDTO]
    total: int
    has_more: bool
