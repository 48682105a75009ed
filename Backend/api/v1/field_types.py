from fastapi import APIRouter, status

from model.dto.base import BaseResponseDTO
from model.dto.field_config import FieldTypeDTO
from service.field_types import FieldType, list_field_types

field_types_router = APIRouter(prefix="/field-types", tags=["Field Types"])


def _storage_type(entry: FieldType) -> str | None:
    sa_type = entry.sa_type(entry.default_config)
    return str(sa_type) if sa_type is not None else None


@field_types_router.get("", status_code=status.HTTP_200_OK)
async def get_field_types() -> BaseResponseDTO:
    field_types = [
        FieldTypeDTO(
            type=str(entry.type),
            label=entry.label,
            storage_type=_storage_type(entry),
            default_config=entry.default_config,
            computed=entry.computed,
            document_backed=entry.document_backed,
            numeric=entry.numeric,
        )
        for entry in list_field_types()
    ]
    return BaseResponseDTO(data=field_types, message="Field types fetched successfully.")
