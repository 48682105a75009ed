from fastapi import APIRouter, Depends
from core.auth import verify_access_token
from api.v1.field_types import field_types_router
from api.v1.health import health_router
from api.v1.tables import tables_router
from api.v1.views import views_router

v1_router = APIRouter(prefix="/api/v1")


authenticated_v1_router = APIRouter(dependencies=[Depends(verify_access_token)])

# Add routes that need authentication
authenticated_v1_router.include_router(tables_router)
authenticated_v1_router.include_router(views_router)
authenticated_v1_router.include_router(field_types_router)


v1_router.include_router(authenticated_v1_router)
v1_router.include_router(health_router)

__all__ = ["v1_router"]
