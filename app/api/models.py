from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_platform_config, http_error
from app.auth.api_key import require_tenant_api_key
from app.core.exceptions import WidgetPlatformError
from app.db.models import Tenant
from app.db.session import get_db
from app.schemas.model import (
    AIModelCreate,
    AIModelListResponse,
    AIModelOut,
    AIModelUpdate,
    FetchModelsRequest,
    ModelSortField,
    ModelTestRequest,
    ModelTestResponse,
)
from app.schemas.provider import ModelListResponse
from app.services.model_service import MAX_PER_PAGE, model_service
from app.services.settings_service import PlatformConfig

router = APIRouter()


@router.get("", response_model=AIModelListResponse)
async def list_models(
    provider_type: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    sort_by: ModelSortField = "created_at",
    sort_direction: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=MAX_PER_PAGE),
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    models, total = await model_service.list_models(
        db, tenant.id, provider_type=provider_type, is_active=is_active, search=search,
        sort_by=sort_by, sort_direction=sort_direction, page=page, per_page=per_page,
    )
    return {"items": models, "total": total, "page": page, "per_page": per_page}


@router.post("", response_model=AIModelOut, status_code=status.HTTP_201_CREATED)
async def create_model(
    payload: AIModelCreate,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await model_service.create_model(db, tenant.id, payload)
    except WidgetPlatformError as e:
        raise http_error(e)


@router.post("/fetch-available", response_model=ModelListResponse)
async def fetch_available_models(
    payload: FetchModelsRequest,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
    platform_config: PlatformConfig = Depends(get_platform_config),
):
    try:
        models, source = await model_service.fetch_available(
            db, tenant.id, payload.provider_type, payload.api_key, platform_config
        )
    except WidgetPlatformError as e:
        raise http_error(e)
    return {"provider_type": payload.provider_type, "models": models, "source": source}


@router.post("/test", response_model=ModelTestResponse)
async def test_model(
    payload: ModelTestRequest,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
    platform_config: PlatformConfig = Depends(get_platform_config),
):
    try:
        return await model_service.test_model(db, tenant.id, payload, platform_config)
    except WidgetPlatformError as e:
        raise http_error(e)


@router.get("/{catalog_id}", response_model=AIModelOut)
async def get_model(
    catalog_id: UUID,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await model_service.get_model(db, tenant.id, catalog_id)
    except WidgetPlatformError as e:
        raise http_error(e)


@router.put("/{catalog_id}", response_model=AIModelOut)
async def update_model(
    catalog_id: UUID,
    payload: AIModelUpdate,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await model_service.update_model(db, tenant.id, catalog_id, payload)
    except WidgetPlatformError as e:
        raise http_error(e)


@router.delete("/{catalog_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_model(
    catalog_id: UUID,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        await model_service.delete_model(db, tenant.id, catalog_id)
    except WidgetPlatformError as e:
        raise http_error(e)


@router.patch("/{catalog_id}/toggle-active", response_model=AIModelOut)
async def toggle_model_active(
    catalog_id: UUID,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await model_service.toggle(db, tenant.id, catalog_id, "is_active")
    except WidgetPlatformError as e:
        raise http_error(e)


@router.patch("/{catalog_id}/toggle-featured", response_model=AIModelOut)
async def toggle_model_featured(
    catalog_id: UUID,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await model_service.toggle(db, tenant.id, catalog_id, "is_featured")
    except WidgetPlatformError as e:
        raise http_error(e)


@router.post("/{catalog_id}/test", response_model=ModelTestResponse)
async def test_stored_model(
    catalog_id: UUID,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
    platform_config: PlatformConfig = Depends(get_platform_config),
):
    try:
        return await model_service.test_stored(db, tenant.id, catalog_id, platform_config)
    except WidgetPlatformError as e:
        raise http_error(e)
