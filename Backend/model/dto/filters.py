from typing import Any
from uuid import UUID

from model.dao.enums import FilterOperator, GroupOperator, SortDirection
from model.dto.base import CamelModel


class FilterCondition(CamelModel):
    id: str | None = None
    column_id: UUID
    operator: FilterOperator
    value: Any = None


class FilterGroup(CamelModel):
    id: str | None = None
    operator: GroupOperator = GroupOperator.AND
    conditions: list["FilterCondition | FilterGroup"] = []


class SortConfig(CamelModel):
    column_id: UUID
    direction: SortDirection = SortDirection.ASC


FilterGroup.model_rebuild()
