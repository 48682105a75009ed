from uuid import UUID

from fastapi import APIRouter, Depends, Request, status

from core.di_container import DependencyContainer
from dependency_injector.wiring import Provide, inject

from model.dto.base import BaseResponseDTO
from model.dto.data_table import UpdateViewDTO
from model.dto.query import GroupOptionsDTO, QueryRowsDTO
from service.group_options import GroupOptionsService
from service.view_query import ViewQueryService
from service.views import ViewService

views_router = APIRouter(prefix="/views", tags=["Views"])

ViewServiceDependency = Depends(Provide[DependencyContainer.view_service_factory])

ViewQueryServiceDependency = Depends(
    Provide[DependencyContainer.view_query_service_factory]
)

GroupOptionsServiceDependency = Depends(
    Provide[DependencyContainer.group_options_service_factory]
)


@views_router.get("/{view_id}", status_code=status.HTTP_200_OK)
@inject
async def get_view(
    request: Request,
    view_id: UUID,
    service: ViewService = ViewServiceDependency,
) -> BaseResponseDTO:
    view = await service.get_view(view_id, request.state.company_id)
    return BaseResponseDTO(data=view, message="View fetched successfully.")


@views_router.patch("/{view_id}", status_code=status.HTTP_200_OK)
@inject
async def update_view(
    request: Request,
    view_id: UUID,
    dto: UpdateViewDTO,
    service: ViewService = ViewServiceDependency,
) -> BaseResponseDTO:
    view = await service.update_view(view_id, dto, request.state.company_id)
    return BaseResponseDTO(data=view, message="View updated successfully.")


@views_router.delete("/{view_id}", status_code=status.HTTP_200_OK)
@inject
async def delete_view(
    request: Request,
    view_id: UUID,
    service: ViewService = ViewServiceDependency,
) -> BaseResponseDTO:
    await service.delete_view(view_id, request.state.company_id)
    return BaseResponseDTO(message="View deleted successfully.")


@views_router.post("/{view_id}/rows", status_code=status.HTTP_200_OK)
@inject
async def query_view_rows(
    request: Request,
    view_id: UUID,
    dto: QueryRowsDTO,
    service: ViewQueryService = ViewQueryServiceDependency,
) -> BaseResponseDTO:
    result = await service.query_rows(view_id, dto, request.state.company_id)
    return BaseResponseDTO(data=result, message="Rows fetched successfully.")


@views_router.post("/{view_id}/group-options", status_code=status.HTTP_200_OK)
@inject
async def group_options(
    request: Request,
    view_id: UUID,
    dto: GroupOptionsDTO,
    service: GroupOptionsService = GroupOptionsServiceDependency,
) -> BaseResponseDTO:
    result = await service.group_options(view_id, dto, request.state.company_id)
    return BaseResponseDTO(data=result, message="Group options fetched successfully.")
