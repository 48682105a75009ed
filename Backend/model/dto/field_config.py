from typing import Any

from pydantic import Field

from model.dao.enums import Aggregation, FormulaResultType
from model.dto.base import CamelModel


class RelationFieldConfig(CamelModel):
    # Slug of the target table within the same company
    target_table: str
    display_field: str = "name"
    allow_multiple: bool = False


class LookupFieldConfig(CamelModel):
    relation_field: str
    target_field: str


class RollupAndFilter(CamelModel):
    field: str
    equals: Any = None


class RollupFilter(CamelModel):
    field: str
    matches_value: Any = None
    and_: RollupAndFilter | None = Field(default=None, alias="and")


class RollupFieldConfig(CamelModel):
    source_table: str
    filter_by: RollupFilter
    aggregation: Aggregation = Aggregation.COUNT
    aggregation_field: str | None = None


class FormulaFieldConfig(CamelModel):
    formula: str
    result_type: FormulaResultType = FormulaResultType.NUMBER


class FieldTypeDTO(CamelModel):
    type: str
    label: str
    storage_type: str | None = None
    default_config: dict[str, Any] = {}
    computed: bool = False
    document_backed: bool = False
    numeric: bool = False
