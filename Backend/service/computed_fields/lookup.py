from typing import Any

from pydantic import ValidationError

from model.dao.enums import ColumnType
from model.dto.data_table import ColumnDTO
from model.dto.field_config import LookupFieldConfig, RelationFieldConfig
from service.computed_fields.base import (
    ComputedFieldResolver,
    ResolverContext,
    relation_ids,
    unwrap_relation_id,
)


class LookupResolver(ComputedFieldResolver):
    """Copies a field from the record a sibling relation points at."""

    column_type = ColumnType.LOOKUP

    async def resolve_column(
        self, rows: list[dict[str, Any]], column: ColumnDTO, context: ResolverContext
    ) -> None:
        target = None
        relation_field = None
        target_field = None
        try:
            config = LookupFieldConfig.model_validate(column.config)
            relation_field = config.relation_field
            target_field = config.target_field
            relation_column = next(
                (
                    sibling
                    for sibling in context.columns
                    if sibling.name == relation_field and sibling.type == ColumnType.RELATION
                ),
                None,
            )
            if relation_column is not None:
                relation_config = RelationFieldConfig.model_validate(relation_column.config)
                target = await context.directory.get(relation_config.target_table)
        except ValidationError:
            self._logger.warning(f"Lookup `{column.name}` has an invalid config")

        if target is None:
            self._logger.warning(f"Lookup `{column.name}` has no resolvable relation")
            for row in rows:
                row[column.name] = None
            return

        loaded = await self.load_per_row(
            rows,
            lambda row: relation_ids(row.get(relation_field)),
            target,
            target_field,
            context,
        )

        for row, values in zip(rows, loaded):
            related = unwrap_relation_id(row.get(relation_field))
            if related is None or values is None:
                row[column.name] = None
            elif isinstance(related, list):
                row[column.name] = [values.get(str(item)) for item in related if item is not None]
            else:
                row[column.name] = values.get(str(related))
