from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Request, status

from core.di_container import DependencyContainer
from dependency_injector.wiring import Provide, inject

from model.dto.base import BaseResponseDTO
from model.dto.data_table import (
    ColumnDefinitionDTO,
    CreateTableDTO,
    CreateViewDTO,
    ReorderColumnsDTO,
    UpdateColumnDTO,
)
from service.tables import DataTableService
from service.views import ViewService

tables_router = APIRouter(prefix="/tables", tags=["Tables"])

TableServiceDependency = Depends(Provide[DependencyContainer.table_service_factory])

ViewServiceDependency = Depends(Provide[DependencyContainer.view_service_factory])


@tables_router.get("", status_code=status.HTTP_200_OK)
@inject
async def list_tables(
    request: Request, service: DataTableService = TableServiceDependency
) -> BaseResponseDTO:
    tables = await service.list_tables(request.state.company_id)
    return BaseResponseDTO(data=tables, message="Tables fetched successfully.")


@tables_router.post("", status_code=status.HTTP_201_CREATED)
@inject
async def create_table(
    request: Request,
    dto: CreateTableDTO,
    service: DataTableService = TableServiceDependency,
) -> BaseResponseDTO:
    table = await service.create_table(
        request.state.company_id, dto, request.state.user_id
    )
    return BaseResponseDTO(data=table, message="Table created successfully.")


@tables_router.get("/{table_id}", status_code=status.HTTP_200_OK)
@inject
async def get_table(
    request: Request,
    table_id: UUID,
    service: DataTableService = TableServiceDependency,
) -> BaseResponseDTO:
    table = await service.get_table(table_id, request.state.company_id)
    return BaseResponseDTO(data=table, message="Table fetched successfully.")


@tables_router.delete("/{table_id}", status_code=status.HTTP_200_OK)
@inject
async def delete_table(
    request: Request,
    table_id: UUID,
    service: DataTableService = TableServiceDependency,
) -> BaseResponseDTO:
    await service.delete_table(table_id, request.state.company_id)
    return BaseResponseDTO(message="Table deleted successfully.")


@tables_router.post("/{table_id}/columns", status_code=status.HTTP_201_CREATED)
@inject
async def add_column(
    request: Request,
    table_id: UUID,
    dto: ColumnDefinitionDTO,
    service: DataTableService = TableServiceDependency,
) -> BaseResponseDTO:
    column = await service.add_column(table_id, dto, request.state.company_id)
    return BaseResponseDTO(data=column, message="Column added successfully.")


@tables_router.post("/{table_id}/columns/reorder", status_code=status.HTTP_200_OK)
@inject
async def reorder_columns(
    request: Request,
    table_id: UUID,
    dto: ReorderColumnsDTO,
    service: DataTableService = TableServiceDependency,
) -> BaseResponseDTO:
    columns = await service.reorder_columns(table_id, dto, request.state.company_id)
    return BaseResponseDTO(data=columns, message="Columns reordered successfully.")


@tables_router.patch("/{table_id}/columns/{column_id}", status_code=status.HTTP_200_OK)
@inject
async def update_column(
    request: Request,
    table_id: UUID,
    column_id: UUID,
    dto: UpdateColumnDTO,
    service: DataTableService = TableServiceDependency,
) -> BaseResponseDTO:
    column = await service.update_column(table_id, column_id, dto, request.state.company_id)
    return BaseResponseDTO(data=column, message="Column updated successfully.")


@tables_router.delete("/{table_id}/columns/{column_id}", status_code=status.HTTP_200_OK)
@inject
async def delete_column(
    request: Request,
    table_id: UUID,
    column_id: UUID,
    service: DataTableService = TableServiceDependency,
) -> BaseResponseDTO:
    await service.delete_column(table_id, column_id, request.state.company_id)
    return BaseResponseDTO(message="Column deleted successfully.")


@tables_router.post("/{table_id}/rows", status_code=status.HTTP_201_CREATED)
@inject
async def insert_row(
    request: Request,
    table_id: UUID,
    values: dict[str, Any] = Body(...),
    service: DataTableService = TableServiceDependency,
) -> BaseResponseDTO:
    row = await service.insert_row(
        table_id, values, request.state.company_id, request.state.user_id
    )
    return BaseResponseDTO(data=row, message="Row created successfully.")


@tables_router.get("/{table_id}/rows/{row_id}", status_code=status.HTTP_200_OK)
@inject
async def get_row(
    request: Request,
    table_id: UUID,
    row_id: UUID,
    service: DataTableService = TableServiceDependency,
) -> BaseResponseDTO:
    row = await service.get_row(table_id, row_id, request.state.company_id)
    return BaseResponseDTO(data=row, message="Row fetched successfully.")


@tables_router.patch("/{table_id}/rows/{row_id}", status_code=status.HTTP_200_OK)
@inject
async def update_row(
    request: Request,
    table_id: UUID,
    row_id: UUID,
    values: dict[str, Any] = Body(...),
    service: DataTableService = TableServiceDependency,
) -> BaseResponseDTO:
    row = await service.update_row(table_id, row_id, values, request.state.company_id)
    return BaseResponseDTO(data=row, message="Row updated successfully.")


@tables_router.delete("/{table_id}/rows/{row_id}", status_code=status.HTTP_200_OK)
@inject
async def delete_row(
    request: Request,
    table_id: UUID,
    row_id: UUID,
    service: DataTableService = TableServiceDependency,
) -> BaseResponseDTO:
    await service.delete_row(table_id, row_id, request.state.company_id)
    return BaseResponseDTO(message="Row deleted successfully.")


@tables_router.get("/{table_id}/views", status_code=status.HTTP_200_OK)
@inject
async def list_views(
    request: Request,
    table_id: UUID,
    service: ViewService = ViewServiceDependency,
) -> BaseResponseDTO:
    views = await service.list_views(table_id, request.state.company_id)
    return BaseResponseDTO(data=views, message="Views fetched successfully.")


@tables_router.post("/{table_id}/views", status_code=status.HTTP_201_CREATED)
@inject
async def create_view(
    request: Request,
    table_id: UUID,
    dto: CreateViewDTO,
    service: ViewService = ViewServiceDependency,
) -> BaseResponseDTO:
    view = await service.create_view(
        table_id, dto, request.state.company_id, request.state.user_id
    )
    return BaseResponseDTO(data=view, message="View created successfully.")
