from typing import Any

from pydantic import ValidationError

from model.dao.enums import ColumnType
from model.dto.data_table import ColumnDTO
from model.dto.field_config import RelationFieldConfig
from service.computed_fields.base import (
    ComputedFieldResolver,
    ResolverContext,
    relation_ids,
    unwrap_relation_id,
)


def enrich(related_id: Any, display_field: str, values: dict[str, Any] | None) -> dict:
    key = str(related_id)
    return {
        "relatedId": key,
        "displayFieldValue": (values or {}).get(key),
        "displayField": display_field,
    }


class RelationResolver(ComputedFieldResolver):
    """Replaces stored record ids with ``{relatedId, displayFieldValue, displayField}``."""

    column_type = ColumnType.RELATION

    async def resolve_column(
        self, rows: list[dict[str, Any]], column: ColumnDTO, context: ResolverContext
    ) -> None:
        try:
            config = RelationFieldConfig.model_validate(column.config)
        except ValidationError:
            self._logger.warning(f"Relation `{column.name}` has an invalid config")
            return

        target = await context.directory.get(config.target_table)
        if target is None:
            self._logger.warning(
                f"Relation `{column.name}`: target table `{config.target_table}` not found"
            )
            loaded = [{} for _ in rows]
        else:
            loaded = await self.load_per_row(
                rows,
                lambda row: relation_ids(row.get(column.name)),
                target,
                config.display_field,
                context,
            )

        for row, values in zip(rows, loaded):
            raw = unwrap_relation_id(row.get(column.name))
            if raw is None:
                row[column.name] = None
            elif isinstance(raw, list):
                row[column.name] = [
                    enrich(item, config.display_field, values)
                    for item in raw
                    if item is not None
                ]
            else:
                row[column.name] = enrich(raw, config.display_field, values)
